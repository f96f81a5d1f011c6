"""
siteplane — configuration schema and validation.

File: src/siteplane/config/schema.py
Last updated: 2026-10-17

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support ``development`` and ``production`` profile overlays.
- Runtime instances must have unique versions and unique ports.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from siteplane.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_EXEMPT_OWNERS,
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("development", "production")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_RUNTIME_VERSION_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,31}$")
_GROUP_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{0,64}$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

_SECTION_NAMES: Final[tuple[str, ...]] = (
    "paths",
    "proxy",
    "registry",
    "isolation",
    "host",
    "observability",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "data_dir"),
    ("paths", "sites_dir"),
    ("paths", "log_dir"),
    ("paths", "proxy_config_dir"),
    ("isolation", "cgroup_root"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    data_dir: str
    sites_dir: str
    log_dir: str
    proxy_config_dir: str


class ProxyConfig(TypedDict):
    http_port: int
    https_port: int
    admin_address: str
    log_roll_size_mb: int
    log_roll_keep: int


class RuntimeConfig(TypedDict):
    version: str
    port: int
    admin_port: int
    enabled: bool


class RegistryConfig(TypedDict):
    exempt_owners: list[str]
    landing_document: str


class IsolationConfig(TypedDict):
    cgroup_root: str
    group_prefix: str
    cpu_period_us: int
    quota_soft_inodes: int
    quota_hard_inodes: int
    disk_scan_ttl_seconds: float


class HostConfig(TypedDict):
    command_timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    paths: dict[str, object]
    proxy: dict[str, object]
    runtimes: list[dict[str, object]]
    registry: dict[str, object]
    isolation: dict[str, object]
    host: dict[str, object]
    observability: dict[str, object]


class SiteplaneConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    proxy: ProxyConfig
    runtimes: list[RuntimeConfig]
    registry: RegistryConfig
    isolation: IsolationConfig
    host: HostConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[SiteplaneConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "data_dir": "state/",
        "sites_dir": "sites/",
        "log_dir": "logs/",
        "proxy_config_dir": "proxy/",
    },
    "proxy": {
        "http_port": DEFAULT_HTTP_PORT,
        "https_port": DEFAULT_HTTPS_PORT,
        "admin_address": "localhost:2019",
        "log_roll_size_mb": 100,
        "log_roll_keep": 5,
    },
    "runtimes": [
        {"version": "8.3", "port": 9001, "admin_port": 2020, "enabled": True},
        {"version": "8.4", "port": 9002, "admin_port": 2021, "enabled": True},
    ],
    "registry": {
        "exempt_owners": list(DEFAULT_EXEMPT_OWNERS),
        "landing_document": "index.php",
    },
    "isolation": {
        "cgroup_root": "/sys/fs/cgroup",
        "group_prefix": "siteplane-",
        "cpu_period_us": 100_000,
        "quota_soft_inodes": 100_000,
        "quota_hard_inodes": 150_000,
        "disk_scan_ttl_seconds": 300.0,
    },
    "host": {
        "command_timeout_seconds": DEFAULT_COMMAND_TIMEOUT_SECONDS,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/siteplane/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "development": {
            "proxy": {"http_port": 8080, "https_port": 8443},
            "observability": {"log_level": "DEBUG", "log_to_stdout": True},
        },
        "production": {
            "paths": {
                "data_dir": "/var/lib/siteplane",
                "sites_dir": "/var/www",
                "log_dir": "/var/log/siteplane",
                "proxy_config_dir": "/etc/siteplane/proxy",
            },
            "observability": {"log_dir": "/var/log/siteplane/control"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> SiteplaneConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade siteplane.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the siteplane package"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``. Lists are replaced whole."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues, partial=False)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"meta", "runtimes", "profiles", *_SECTION_NAMES}
    required = {"meta", "runtimes", *_SECTION_NAMES}

    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    _section(
        payload,
        key="meta",
        path=path,
        issues=issues,
        validator=lambda section, section_path: _validate_meta(
            section, section_path, issues, partial=partial
        ),
        out=out,
    )
    for name in _SECTION_NAMES:
        validator = _SECTION_VALIDATORS[name]
        _section(
            payload,
            key=name,
            path=path,
            issues=issues,
            validator=lambda section, section_path, _v=validator: _v(
                section, section_path, issues, partial=partial
            ),
            out=out,
        )

    if "runtimes" in payload:
        runtimes = _validate_runtimes(payload["runtimes"], _join(path, "runtimes"), issues)
        if runtimes is not None:
            out["runtimes"] = runtimes

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_path = _join(path, "profiles")
        profiles_obj = _as_object(profiles_raw, profiles_path, issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, profiles_path, issues)

    _validate_port_cross_fields(out, path, issues)
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    path: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_path = _join(path, key)
    section_obj = _as_object(raw, section_path, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, section_path)


def _validate_meta(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_paths(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"data_dir", "sites_dir", "log_dir", "proxy_config_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_proxy(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"http_port", "https_port", "admin_address", "log_roll_size_mb", "log_roll_keep"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("http_port", "https_port"):
        if key in payload:
            parsed_port = _as_port(payload[key], _join(path, key), issues)
            if parsed_port is not None:
                out[key] = parsed_port

    if "admin_address" in payload:
        parsed_admin = _as_str(payload["admin_address"], _join(path, "admin_address"), issues)
        if parsed_admin is not None:
            if any(char.isspace() for char in parsed_admin):
                issues.add(_join(path, "admin_address"), "must not contain whitespace")
            else:
                out["admin_address"] = parsed_admin

    for key in ("log_roll_size_mb", "log_roll_keep"):
        if key in payload:
            parsed_roll = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed_roll is not None:
                out[key] = parsed_roll
    return out


def _validate_runtimes(
    value: object,
    path: str,
    issues: _IssueCollector,
) -> list[dict[str, Any]] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None

    out: list[dict[str, Any]] = []
    versions: dict[str, int] = {}
    ports: dict[int, str] = {}
    for index, raw in enumerate(value):
        item_path = f"{path}[{index}]"
        item = _as_object(raw, item_path, issues)
        if item is None:
            continue
        allowed = {"version", "port", "admin_port", "enabled"}
        _reject_unknown_keys(item, allowed, item_path, issues)
        _require_keys(item, {"version", "port", "admin_port"}, item_path, issues)

        parsed: dict[str, Any] = {}
        if "version" in item:
            version = _as_str(item["version"], _join(item_path, "version"), issues)
            if version is not None:
                if not _RUNTIME_VERSION_PATTERN.fullmatch(version):
                    issues.add(_join(item_path, "version"), f"invalid runtime version {version!r}")
                elif version in versions:
                    issues.add(
                        _join(item_path, "version"),
                        f"duplicate runtime version (also at {path}[{versions[version]}])",
                    )
                else:
                    versions[version] = index
                    parsed["version"] = version
        for key in ("port", "admin_port"):
            if key not in item:
                continue
            port = _as_port(item[key], _join(item_path, key), issues)
            if port is None:
                continue
            holder = ports.get(port)
            if holder is not None:
                issues.add(_join(item_path, key), f"port {port} already used by {holder}")
                continue
            ports[port] = _join(item_path, key)
            parsed[key] = port
        enabled = _as_bool(item.get("enabled", True), _join(item_path, "enabled"), issues)
        if enabled is not None:
            parsed["enabled"] = enabled
        out.append(parsed)
    return out


def _validate_registry(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"exempt_owners", "landing_document"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "exempt_owners" in payload:
        raw = payload["exempt_owners"]
        owners_path = _join(path, "exempt_owners")
        if not isinstance(raw, list):
            issues.add(owners_path, f"expected array, got {type(raw).__name__}")
        else:
            owners: list[str] = []
            for index, item in enumerate(raw):
                owner = _as_str(item, f"{owners_path}[{index}]", issues)
                if owner is not None and owner not in owners:
                    owners.append(owner)
            out["exempt_owners"] = owners

    if "landing_document" in payload:
        landing = _as_str(payload["landing_document"], _join(path, "landing_document"), issues)
        if landing is not None:
            if "/" in landing or landing in {".", ".."}:
                issues.add(_join(path, "landing_document"), "must be a plain file name")
            else:
                out["landing_document"] = landing
    return out


def _validate_isolation(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "cgroup_root",
        "group_prefix",
        "cpu_period_us",
        "quota_soft_inodes",
        "quota_hard_inodes",
        "disk_scan_ttl_seconds",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "cgroup_root" in payload:
        parsed_root = _as_path_text(payload["cgroup_root"], _join(path, "cgroup_root"), issues)
        if parsed_root is not None:
            out["cgroup_root"] = parsed_root

    if "group_prefix" in payload:
        raw_prefix = payload["group_prefix"]
        if not isinstance(raw_prefix, str) or not _GROUP_PREFIX_PATTERN.fullmatch(raw_prefix):
            issues.add(_join(path, "group_prefix"), "must match ^[A-Za-z0-9_.-]{0,64}$")
        else:
            out["group_prefix"] = raw_prefix

    if "cpu_period_us" in payload:
        parsed_period = _as_int(
            payload["cpu_period_us"], _join(path, "cpu_period_us"), issues, minimum=1000
        )
        if parsed_period is not None:
            if parsed_period > 1_000_000:
                issues.add(_join(path, "cpu_period_us"), "must be <= 1000000")
            else:
                out["cpu_period_us"] = parsed_period

    for key in ("quota_soft_inodes", "quota_hard_inodes"):
        if key in payload:
            parsed_inodes = _as_int(payload[key], _join(path, key), issues, minimum=0)
            if parsed_inodes is not None:
                out[key] = parsed_inodes
    soft = out.get("quota_soft_inodes")
    hard = out.get("quota_hard_inodes")
    if isinstance(soft, int) and isinstance(hard, int) and hard < soft:
        issues.add(_join(path, "quota_hard_inodes"), "must be >= quota_soft_inodes")

    if "disk_scan_ttl_seconds" in payload:
        parsed_ttl = _as_float(
            payload["disk_scan_ttl_seconds"], _join(path, "disk_scan_ttl_seconds"), issues, minimum=0
        )
        if parsed_ttl is not None:
            out["disk_scan_ttl_seconds"] = parsed_ttl
    return out


def _validate_host(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"command_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "command_timeout_seconds" in payload:
        parsed = _as_float(
            payload["command_timeout_seconds"],
            _join(path, "command_timeout_seconds"),
            issues,
            minimum=0.1,
        )
        if parsed is not None:
            out["command_timeout_seconds"] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_log_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level

    if "log_dir" in payload:
        parsed_log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_log_dir is not None:
            out["log_dir"] = parsed_log_dir

    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


_SECTION_VALIDATORS: Final[dict[str, Callable[..., dict[str, Any]]]] = {
    "paths": _validate_paths,
    "proxy": _validate_proxy,
    "registry": _validate_registry,
    "isolation": _validate_isolation,
    "host": _validate_host,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        raw = payload[profile_name]
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(raw, profile_path, issues)
        if profile_obj is None:
            continue
        out[profile_name] = _validate_profile_overlay(profile_obj, profile_path, issues)
    return out


def _validate_profile_overlay(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"runtimes", *_SECTION_NAMES}, path, issues)

    out: dict[str, Any] = {}
    for section in sorted(_SECTION_NAMES):
        raw = payload.get(section)
        if raw is None:
            continue
        section_path = _join(path, section)
        section_obj = _as_object(raw, section_path, issues)
        if section_obj is None:
            continue
        out[section] = _SECTION_VALIDATORS[section](section_obj, section_path, issues, partial=True)

    if "runtimes" in payload:
        runtimes = _validate_runtimes(payload["runtimes"], _join(path, "runtimes"), issues)
        if runtimes is not None:
            out["runtimes"] = runtimes
    return out


def _validate_port_cross_fields(config: Mapping[str, Any], path: str, issues: _IssueCollector) -> None:
    proxy = config.get("proxy")
    runtimes = config.get("runtimes")
    if not isinstance(proxy, Mapping) or not isinstance(runtimes, list):
        return
    front_ports = {proxy.get("http_port"), proxy.get("https_port")}
    if proxy.get("http_port") is not None and proxy.get("http_port") == proxy.get("https_port"):
        issues.add(_join(path, "proxy.https_port"), "must differ from http_port")
    for index, runtime in enumerate(runtimes):
        for key in ("port", "admin_port"):
            if runtime.get(key) in front_ports:
                issues.add(
                    f"{_join(path, 'runtimes')}[{index}].{key}",
                    f"port {runtime[key]} collides with a front-door port",
                )


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_port(value: object, path: str, issues: _IssueCollector) -> int | None:
    parsed = _as_int(value, path, issues, minimum=1)
    if parsed is not None and parsed > 65535:
        issues.add(path, "must be <= 65535")
        return None
    return parsed


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in siteplane.toml")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ProfileOverlay",
    "SiteplaneConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
