"""Device profile loading and validation for YAML-based nirctl profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from nirctl.core.errors import ProfileLoadError, ProfileValidationError
from nirctl.core.model import (
    DEFAULT_BAUD,
    DEFAULT_BAUD_CANDIDATES,
    BLESpec,
    ByteOrder,
    DeviceProfile,
    Dialect,
    SerialSpec,
    Timings,
)

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, DeviceProfile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("nirctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "nirctl/profiles", xdg_data / "nirctl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_vendor_id(value: Any, *, context: str) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip(), 16)
    except ValueError as exc:
        raise ProfileValidationError(f"{context} must be a USB vendor id like '0x0403'") from exc


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_timings(doc: dict[str, Any]) -> Timings:
    defaults = Timings()
    values = {
        name: float(doc.get(name, getattr(defaults, name)))
        for name in Timings.__dataclass_fields__
    }
    return Timings(**values)


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> DeviceProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    transport_doc = doc["transport"]
    transport_type = transport_doc["type"]
    serial_spec: SerialSpec | None = None
    ble_spec: BLESpec | None = None
    if transport_type == "serial":
        candidates = tuple(int(b) for b in transport_doc.get("baud_candidates", DEFAULT_BAUD_CANDIDATES))
        if len(set(candidates)) != len(candidates):
            raise ProfileValidationError(f"{doc['id']}.transport.baud_candidates must not repeat")
        serial_spec = SerialSpec(
            baud_candidates=candidates,
            default_baud=int(transport_doc.get("default_baud", DEFAULT_BAUD)),
            usb_vendor_ids=tuple(
                _normalize_vendor_id(v, context=f"{doc['id']}.transport.usb_vendor_ids")
                for v in transport_doc.get("usb_vendor_ids", [])
            ),
        )
    elif transport_type == "ble":
        ble_spec = BLESpec(
            service_uuid=_normalize_uuid(
                transport_doc["service_uuid"],
                context=f"{doc['id']}.transport.service_uuid",
            ),
            characteristic_uuid=_normalize_uuid(
                transport_doc["characteristic_uuid"],
                context=f"{doc['id']}.transport.characteristic_uuid",
            ),
            write_char_uuid=_normalize_uuid(
                transport_doc["write_char_uuid"],
                context=f"{doc['id']}.transport.write_char_uuid",
            )
            if "write_char_uuid" in transport_doc
            else None,
            discovery=transport_doc.get("discovery", "service_first"),
            name_prefixes=tuple(transport_doc.get("name_prefixes", [])),
            write_with_response=_normalize_bool(
                transport_doc.get("write_with_response", False),
                context=f"{doc['id']}.transport.write_with_response",
            ),
            scan_timeout_s=float(transport_doc.get("scan_timeout_s", 10.0)),
        )
    else:
        raise ProfileValidationError(
            f"Unsupported transport type '{transport_type}' in {source}"
        )

    return DeviceProfile(
        id=doc["id"],
        name=doc["name"],
        transport=transport_type,
        dialect=Dialect(doc["protocol"]["dialect"]),
        byte_order=ByteOrder(doc["protocol"]["byte_order"]),
        serial=serial_spec,
        ble=ble_spec,
        timings=_build_timings(doc.get("timings", {})),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("nirctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, DeviceProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
