"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

import typer

from nirctl.api import Client, NIRDriver
from nirctl.core.device_match import port_matches
from nirctl.core.errors import NirctlError
from nirctl.core.model import ConnectStatus, Spectrum

app = typer.Typer(help="Handheld NIR spectrometer control over USB-serial or BLE")

T = TypeVar("T")

ProfileOption = typer.Option("micronir_serial", "--profile", help="Device profile ID")
PortOption = typer.Option(None, "--port", help="Serial port (auto-detected by USB vendor id if omitted)")
AddressOption = typer.Option(None, "--address", help="BLE address (scans if omitted)")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Print TX/RX diagnostics to stderr")


class Reference(str, Enum):
    none = "none"
    dark = "dark"
    white = "white"


class LampState(str, Enum):
    on = "on"
    off = "off"


def _build_client() -> Client:
    client = Client()
    for warning in client.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return client


def _stderr_sink(line: str) -> None:
    typer.echo(line, err=True)


def _run_with_driver(
    profile: str,
    port: str | None,
    address: str | None,
    verbose: bool,
    action: Callable[[NIRDriver], Awaitable[T]],
) -> T:
    client = _build_client()
    driver = client.driver(
        profile,
        port=port,
        address=address,
        log_sink=_stderr_sink if verbose else None,
    )

    async def _session() -> T:
        async with driver:
            if driver.status is ConnectStatus.CONNECTED_FORCED:
                typer.echo("Warning: link not confirmed by the instrument (forced connection)", err=True)
            return await action(driver)

    return asyncio.run(_session())


def _echo_spectrum(spectrum: Spectrum) -> None:
    typer.echo("wavelength_nm\tintensity\traw")
    for point, raw in zip(spectrum.points, spectrum.samples):
        typer.echo(f"{point.wavelength_nm}\t{point.intensity:.6f}\t{raw}")


@app.command("profiles")
def list_profiles() -> None:
    """List available device profiles."""
    try:
        client = _build_client()
        profiles = client.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(
                f"  transport={profile.transport} dialect={profile.dialect.value} "
                f"byte_order={profile.byte_order.value}"
            )
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("ports")
def list_ports() -> None:
    """List serial ports and the serial profiles matching them."""
    try:
        client = _build_client()
        ports = client.list_serial_ports()
        if not ports:
            typer.echo("No serial ports found")
            return

        serial_profiles = [p for p in client.list_profiles() if p.transport == "serial"]
        for port in ports:
            matched = [p.id for p in serial_profiles if port_matches(port, p)]
            vid = f"{port.vid:04X}" if port.vid is not None else "----"
            typer.echo(f"{port.device} [{vid}] {port.description} -> {', '.join(matched) or '<no-match>'}")
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    profile: str = ProfileOption,
    port: str | None = PortOption,
    address: str | None = AddressOption,
    reference: Reference = typer.Option(Reference.none, "--reference", help="Take a dark or white reference"),
    verbose: bool = VerboseOption,
) -> None:
    """Acquire one spectrum and print it as tab-separated columns."""

    async def _action(driver: NIRDriver) -> Spectrum | None:
        if reference is Reference.dark:
            return await driver.dark_reference()
        if reference is Reference.white:
            return await driver.white_reference()
        return await driver.scan()

    try:
        spectrum = _run_with_driver(profile, port, address, verbose, _action)
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if spectrum is None:
        typer.echo("Error: No spectrum acquired (timeout or incomplete frame)", err=True)
        raise typer.Exit(code=1)
    _echo_spectrum(spectrum)


@app.command("sniff")
def sniff(
    duration: float = typer.Option(3.0, "--duration", help="Seconds to listen"),
    profile: str = ProfileOption,
    port: str | None = PortOption,
    address: str | None = AddressOption,
) -> None:
    """Listen passively and print every received chunk."""
    try:
        received = _run_with_driver(profile, port, address, True, lambda d: d.sniff(duration))
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo("Data received" if received else "No data received")


@app.command("info")
def info(
    profile: str = ProfileOption,
    port: str | None = PortOption,
    address: str | None = AddressOption,
) -> None:
    """Query the firmware version and print whatever the instrument answers."""
    try:
        _run_with_driver(profile, port, address, True, lambda d: d.get_system_info())
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("lamp")
def lamp(
    state: LampState,
    profile: str = ProfileOption,
    port: str | None = PortOption,
    address: str | None = AddressOption,
    verbose: bool = VerboseOption,
) -> None:
    """Switch the illumination lamp on or off."""
    try:
        ok = _run_with_driver(profile, port, address, verbose, lambda d: d.set_lamp(state is LampState.on))
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        typer.echo(f"Error: Lamp {state.value} command was not sent", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Lamp {state.value}")


@app.command("warmup")
def warmup(
    profile: str = ProfileOption,
    port: str | None = PortOption,
    address: str | None = AddressOption,
    verbose: bool = VerboseOption,
) -> None:
    """Send the warm-up command."""
    try:
        ok = _run_with_driver(profile, port, address, verbose, lambda d: d.warm_up())
    except NirctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    if not ok:
        typer.echo("Error: Warm-up command was not sent", err=True)
        raise typer.Exit(code=1)
    typer.echo("Warm-up sent")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
