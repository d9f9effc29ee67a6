from __future__ import annotations

from typer.testing import CliRunner

from nirctl import cli
from nirctl.core.assembler import build_spectrum
from nirctl.core.errors import NoDeviceFoundError
from nirctl.core.model import (
    ByteOrder,
    ConnectStatus,
    DeviceProfile,
    Dialect,
    SerialPortInfo,
    SerialSpec,
)

PROFILE = DeviceProfile(
    id="micronir_serial",
    name="MicroNIR",
    transport="serial",
    dialect=Dialect.STX_ASCII,
    byte_order=ByteOrder.LITTLE,
    serial=SerialSpec(usb_vendor_ids=(0x0403,)),
)


class FakeDriver:
    def __init__(self, log_sink=None, status=ConnectStatus.CONNECTED, spectrum_ok=True) -> None:
        self.log_sink = log_sink
        self.status = status
        self.spectrum_ok = spectrum_ok
        self.calls: list[str] = []

    async def __aenter__(self):
        if self.log_sink:
            self.log_sink("Connected: MicroNIR @ 115200")
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def scan(self):
        self.calls.append("scan")
        return build_spectrum(tuple([0, 65535] * 64)) if self.spectrum_ok else None

    async def dark_reference(self):
        self.calls.append("dark")
        return await self.scan()

    async def white_reference(self):
        self.calls.append("white")
        return await self.scan()

    async def set_lamp(self, on: bool) -> bool:
        self.calls.append(f"lamp:{on}")
        return True

    async def warm_up(self) -> bool:
        return False

    async def sniff(self, duration_s: float) -> bool:
        return True


class FakeClient:
    driver_kwargs: dict = {}
    last_driver: FakeDriver | None = None
    driver_factory = FakeDriver

    def __init__(self) -> None:
        self.load_warnings = ()

    def list_profiles(self):
        return [PROFILE]

    def list_serial_ports(self):
        return [
            SerialPortInfo(device="/dev/ttyUSB0", description="FT232R", vid=0x0403),
            SerialPortInfo(device="/dev/ttyS0", description="Builtin"),
        ]

    def driver(self, profile_id, *, port=None, address=None, log_sink=None):
        FakeClient.driver_kwargs = {"profile_id": profile_id, "port": port, "address": address}
        FakeClient.last_driver = type(self).driver_factory(log_sink=log_sink)
        return FakeClient.last_driver


runner = CliRunner()


def test_profiles_command(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "micronir_serial: MicroNIR" in result.stdout
    assert "dialect=stx_ascii byte_order=little" in result.stdout


def test_ports_command_shows_matching_profiles(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["ports"])
    assert result.exit_code == 0
    assert "/dev/ttyUSB0 [0403] FT232R -> micronir_serial" in result.stdout
    assert "/dev/ttyS0 [----] Builtin -> <no-match>" in result.stdout


def test_scan_command_prints_spectrum(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["scan", "--port", "/dev/ttyUSB0"])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines[0] == "wavelength_nm\tintensity\traw"
    assert lines[1] == "900\t0.000000\t0"
    assert lines[-1] == "1700\t1.000000\t65535"
    assert FakeClient.driver_kwargs["port"] == "/dev/ttyUSB0"


def test_scan_white_reference(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["scan", "--reference", "white"])
    assert result.exit_code == 0
    assert FakeClient.last_driver.calls[0] == "white"


def test_scan_without_spectrum_exits_nonzero(monkeypatch):
    class NoDataClient(FakeClient):
        driver_factory = staticmethod(lambda log_sink=None: FakeDriver(log_sink, spectrum_ok=False))

    monkeypatch.setattr(cli, "Client", NoDataClient)
    result = runner.invoke(cli.app, ["scan"])
    assert result.exit_code == 1
    assert "No spectrum acquired" in result.stderr


def test_forced_connection_warns(monkeypatch):
    class ForcedClient(FakeClient):
        driver_factory = staticmethod(
            lambda log_sink=None: FakeDriver(log_sink, status=ConnectStatus.CONNECTED_FORCED)
        )

    monkeypatch.setattr(cli, "Client", ForcedClient)
    result = runner.invoke(cli.app, ["lamp", "on"])
    assert result.exit_code == 0
    assert "Lamp on" in result.stdout
    assert "forced connection" in result.stderr


def test_verbose_routes_log_lines_to_stderr(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["scan", "-v"])
    assert result.exit_code == 0
    assert "Connected: MicroNIR @ 115200" in result.stderr


def test_warmup_failure_is_reported(monkeypatch):
    monkeypatch.setattr(cli, "Client", FakeClient)
    result = runner.invoke(cli.app, ["warmup"])
    assert result.exit_code == 1
    assert "Warm-up command was not sent" in result.stderr


def test_connect_error_is_clean(monkeypatch):
    class FailingDriver(FakeDriver):
        async def __aenter__(self):
            raise NoDeviceFoundError("No serial port matches profile 'micronir_serial'")

    class FailingClient(FakeClient):
        driver_factory = FailingDriver

    monkeypatch.setattr(cli, "Client", FailingClient)
    result = runner.invoke(cli.app, ["sniff", "--duration", "0.1"])
    assert result.exit_code == 1
    assert "Error: No serial port matches profile" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_profile_load_warnings_go_to_stderr(monkeypatch):
    class WarningClient(FakeClient):
        def __init__(self) -> None:
            self.load_warnings = ("Skipping user profile broken.yaml: missing 'protocol'",)

    monkeypatch.setattr(cli, "Client", WarningClient)
    result = runner.invoke(cli.app, ["profiles"])
    assert result.exit_code == 0
    assert "Warning: Skipping user profile broken.yaml" in result.stderr
    assert "micronir_serial: MicroNIR" in result.stdout
