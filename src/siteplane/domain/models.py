"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import NoReturn, Protocol, TypeVar

from siteplane.domain import ids as domain_ids
from siteplane.domain.errors import ValidationError
JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

DEFAULT_PUBLIC_PATH = "public"
DEFAULT_WORKER_NUM = 2
MAX_WORKER_NUM = 1024

_MAX_TEXT = 1024
_MAX_HOSTNAME = 253
_MAX_ENVIRONMENT = 256

_HOST_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_HOSTNAME_RE = re.compile(rf"^(?:\*\.)?{_HOST_LABEL}(?:\.{_HOST_LABEL})*$")
_RUNTIME_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,31}$")
_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


class SiteStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class DiskUsageSource(StrEnum):
    """Where a ``ResourceUsage.disk_used_mb`` figure came from."""

    QUOTA = "quota"
    SCAN = "scan"
    CACHED = "cached"
    NONE = "none"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


# ---------------------------------------------------------------------------
# Sites
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Site(CanonicalModel):
    """One hosted hostname (plus aliases) bound to a document root and runtime version.

    Instances are immutable snapshots; use :func:`dataclasses.replace` or
    :meth:`SitePatch.merge_into` to derive modified copies.
    """

    domain: str
    runtime_version: str
    name: str = ""
    id: str = ""
    aliases: tuple[str, ...] = ()
    root_path: str = ""
    public_path: str = DEFAULT_PUBLIC_PATH
    status: SiteStatus = SiteStatus.ACTIVE
    worker_mode: bool = False
    worker_file: str = ""
    worker_num: int = 0
    environment: Mapping[str, str] = field(default_factory=dict)
    owner_id: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        domain = normalize_hostname(self.domain, "Site.domain")
        object.__setattr__(self, "domain", domain)
        object.__setattr__(self, "aliases", _as_aliases(self.aliases, domain, "Site.aliases"))
        object.__setattr__(
            self, "runtime_version", validate_runtime_version(self.runtime_version, "Site.runtime_version")
        )
        name = _as_line(self.name, "Site.name", allow_empty=True)
        object.__setattr__(self, "name", name or domain)
        if self.id:
            _as_opaque_id(self.id, "Site.id")
        object.__setattr__(self, "root_path", _as_line(self.root_path, "Site.root_path", allow_empty=True))
        object.__setattr__(
            self, "public_path", _as_public_path(self.public_path or DEFAULT_PUBLIC_PATH, "Site.public_path")
        )
        object.__setattr__(self, "status", _as_enum(SiteStatus, self.status, "Site.status"))
        object.__setattr__(self, "worker_mode", _as_bool(self.worker_mode, "Site.worker_mode"))
        object.__setattr__(
            self, "worker_file", _as_line(self.worker_file, "Site.worker_file", allow_empty=True)
        )
        worker_num = _as_int(self.worker_num, "Site.worker_num")
        if worker_num > MAX_WORKER_NUM:
            _fail("Site.worker_num", f"must be <= {MAX_WORKER_NUM}")
        if self.worker_mode and worker_num <= 0:
            worker_num = DEFAULT_WORKER_NUM
        object.__setattr__(self, "worker_num", worker_num)
        object.__setattr__(self, "environment", _as_environment(self.environment, "Site.environment"))
        if self.owner_id:
            _as_opaque_id(self.owner_id, "Site.owner_id")
        object.__setattr__(self, "created_at", _as_optional_datetime(self.created_at, "Site.created_at"))
        object.__setattr__(self, "updated_at", _as_optional_datetime(self.updated_at, "Site.updated_at"))

    @property
    def hostnames(self) -> tuple[str, ...]:
        return (self.domain, *self.aliases)

    @property
    def is_active(self) -> bool:
        return self.status is SiteStatus.ACTIVE

    @property
    def effective_worker_num(self) -> int:
        return self.worker_num if self.worker_num > 0 else DEFAULT_WORKER_NUM

    @property
    def document_root(self) -> str:
        return str(PurePosixPath(self.root_path) / self.public_path)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Site:
        parsed = _expect_object(
            data,
            "Site",
            required={"domain", "runtime_version"},
            optional={
                "id",
                "name",
                "aliases",
                "root_path",
                "public_path",
                "status",
                "worker_mode",
                "worker_file",
                "worker_num",
                "environment",
                "owner_id",
                "created_at",
                "updated_at",
            },
        )
        aliases = parsed.get("aliases")
        environment = parsed.get("environment")
        return cls(
            id=_as_str(parsed.get("id", ""), "Site.id"),
            name=_as_str(parsed.get("name", ""), "Site.name"),
            domain=_as_str(parsed["domain"], "Site.domain"),
            aliases=tuple(_as_sequence(aliases, "Site.aliases")) if aliases is not None else (),
            runtime_version=_as_str(parsed["runtime_version"], "Site.runtime_version"),
            root_path=_as_str(parsed.get("root_path", ""), "Site.root_path"),
            public_path=_as_str(parsed.get("public_path", DEFAULT_PUBLIC_PATH), "Site.public_path"),
            status=_as_enum(SiteStatus, parsed.get("status", SiteStatus.ACTIVE.value), "Site.status"),
            worker_mode=_as_bool(parsed.get("worker_mode", False), "Site.worker_mode"),
            worker_file=_as_str(parsed.get("worker_file", ""), "Site.worker_file"),
            worker_num=_as_int(parsed.get("worker_num", 0), "Site.worker_num"),
            environment=_as_environment(environment if environment is not None else {}, "Site.environment"),
            owner_id=_as_str(parsed.get("owner_id", ""), "Site.owner_id"),
            created_at=_as_optional_datetime(parsed.get("created_at"), "Site.created_at"),
            updated_at=_as_optional_datetime(parsed.get("updated_at"), "Site.updated_at"),
        )


@dataclass(frozen=True, slots=True)
class SitePatch:
    """Partial update for a site.

    ``None`` (or an empty string) leaves a field unchanged. ``aliases`` and
    ``environment`` replace the whole collection when supplied, so an empty
    tuple/mapping clears them. ``status`` and ``worker_mode`` are whole-value
    replacements whenever they are supplied, including ``False``.
    """

    name: str | None = None
    domain: str | None = None
    aliases: tuple[str, ...] | None = None
    runtime_version: str | None = None
    public_path: str | None = None
    status: SiteStatus | None = None
    worker_mode: bool | None = None
    worker_file: str | None = None
    worker_num: int | None = None
    environment: Mapping[str, str] | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))

    def changes_runtime(self, site: Site) -> bool:
        return bool(self.runtime_version) and self.runtime_version != site.runtime_version

    def merge_into(self, site: Site) -> Site:
        """Return ``site`` with this patch applied; the result is fully re-validated."""

        changes: dict[str, object] = {}
        if self.name:
            changes["name"] = self.name
        if self.domain:
            changes["domain"] = self.domain
        if self.aliases is not None:
            changes["aliases"] = tuple(self.aliases)
        if self.runtime_version:
            changes["runtime_version"] = self.runtime_version
        if self.public_path:
            changes["public_path"] = self.public_path
        if self.status is not None:
            changes["status"] = self.status
        if self.worker_mode is not None:
            changes["worker_mode"] = self.worker_mode
        if self.worker_file:
            changes["worker_file"] = self.worker_file
        if self.worker_num is not None and self.worker_num > 0:
            changes["worker_num"] = self.worker_num
        if self.environment is not None:
            changes["environment"] = dict(self.environment)
        return replace(site, **changes)


# ---------------------------------------------------------------------------
# Runtime instances
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RuntimeInstance(CanonicalModel):
    """A language-runtime backend reachable on a fixed port."""

    version: str
    port: int
    admin_port: int
    enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "version", validate_runtime_version(self.version, "RuntimeInstance.version")
        )
        _as_port(self.port, "RuntimeInstance.port")
        _as_port(self.admin_port, "RuntimeInstance.admin_port")
        _as_bool(self.enabled, "RuntimeInstance.enabled")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RuntimeInstance:
        parsed = _expect_object(
            data,
            "RuntimeInstance",
            required={"version", "port", "admin_port"},
            optional={"enabled"},
        )
        return cls(
            version=_as_str(parsed["version"], "RuntimeInstance.version"),
            port=_as_int(parsed["port"], "RuntimeInstance.port"),
            admin_port=_as_int(parsed["admin_port"], "RuntimeInstance.admin_port"),
            enabled=_as_bool(parsed.get("enabled", True), "RuntimeInstance.enabled"),
        )


class RuntimeTable(Protocol):
    """Read-only view of the runtime-instance table owned by the lifecycle manager."""

    def instances(self) -> tuple[RuntimeInstance, ...]: ...

    def get(self, version: str) -> RuntimeInstance | None: ...


class StaticRuntimeTable:
    """Fixed runtime table, typically built from configuration."""

    def __init__(self, instances: Iterable[RuntimeInstance] = ()) -> None:
        by_version: dict[str, RuntimeInstance] = {}
        ports: dict[int, str] = {}
        for instance in instances:
            if instance.version in by_version:
                _fail("runtimes", f"duplicate runtime version {instance.version!r}")
            for port in (instance.port, instance.admin_port):
                owner = ports.get(port)
                if owner is not None:
                    _fail(
                        "runtimes",
                        f"port {port} of runtime {instance.version!r} already used by {owner!r}",
                    )
                ports[port] = instance.version
            by_version[instance.version] = instance
        self._by_version = dict(sorted(by_version.items()))

    def instances(self) -> tuple[RuntimeInstance, ...]:
        return tuple(self._by_version.values())

    def get(self, version: str) -> RuntimeInstance | None:
        return self._by_version.get(version)

    def enabled(self) -> tuple[RuntimeInstance, ...]:
        return tuple(item for item in self._by_version.values() if item.enabled)

    def is_enabled(self, version: str) -> bool:
        instance = self._by_version.get(version)
        return instance is not None and instance.enabled

    def __len__(self) -> int:
        return len(self._by_version)


# ---------------------------------------------------------------------------
# Tenant limits and usage
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UserLimits(CanonicalModel):
    """Declared per-tenant limits. ``0`` means unlimited for every dimension."""

    owner_id: str
    max_sites: int = 0
    max_disk_mb: int = 0
    max_ram_mb: int = 0
    max_cpu_percent: int = 0
    max_processes: int = 0

    def __post_init__(self) -> None:
        _as_opaque_id(self.owner_id, "UserLimits.owner_id")
        for name in ("max_sites", "max_disk_mb", "max_ram_mb", "max_cpu_percent", "max_processes"):
            _as_int(getattr(self, name), f"UserLimits.{name}", minimum=0)

    @property
    def has_site_limit(self) -> bool:
        return self.max_sites > 0

    @property
    def has_disk_limit(self) -> bool:
        return self.max_disk_mb > 0

    @property
    def has_ram_limit(self) -> bool:
        return self.max_ram_mb > 0

    @property
    def has_cpu_limit(self) -> bool:
        return self.max_cpu_percent > 0

    @property
    def has_process_limit(self) -> bool:
        return self.max_processes > 0

    @classmethod
    def unlimited(cls, owner_id: str) -> UserLimits:
        return cls(owner_id=owner_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> UserLimits:
        parsed = _expect_object(
            data,
            "UserLimits",
            required={"owner_id"},
            optional={"max_sites", "max_disk_mb", "max_ram_mb", "max_cpu_percent", "max_processes"},
        )
        return cls(
            owner_id=_as_str(parsed["owner_id"], "UserLimits.owner_id"),
            max_sites=_as_int(parsed.get("max_sites", 0), "UserLimits.max_sites", minimum=0),
            max_disk_mb=_as_int(parsed.get("max_disk_mb", 0), "UserLimits.max_disk_mb", minimum=0),
            max_ram_mb=_as_int(parsed.get("max_ram_mb", 0), "UserLimits.max_ram_mb", minimum=0),
            max_cpu_percent=_as_int(
                parsed.get("max_cpu_percent", 0), "UserLimits.max_cpu_percent", minimum=0
            ),
            max_processes=_as_int(
                parsed.get("max_processes", 0), "UserLimits.max_processes", minimum=0
            ),
        )


@dataclass(frozen=True, slots=True)
class ResourceUsage(CanonicalModel):
    """Point-in-time usage snapshot for one tenant. Never persisted."""

    owner_id: str
    ram_used_mb: int = 0
    cpu_usage_micros: int = 0
    disk_used_mb: int = 0
    process_count: int = 0
    disk_source: DiskUsageSource = DiskUsageSource.NONE


@dataclass(frozen=True, slots=True)
class RegistryStats(CanonicalModel):
    total: int
    active: int

    @property
    def suspended(self) -> int:
        return self.total - self.active


# ---------------------------------------------------------------------------
# Public validators
# ---------------------------------------------------------------------------


def normalize_hostname(value: object, path: str = "hostname") -> str:
    """Return a lowercase hostname or raise ``ValidationError``."""

    text = _as_str(value, path).strip().lower().rstrip(".")
    if not text:
        _fail(path, "must not be empty")
    if len(text) > _MAX_HOSTNAME:
        _fail(path, f"must be <= {_MAX_HOSTNAME} characters")
    if not _HOSTNAME_RE.fullmatch(text):
        _fail(path, f"invalid hostname {text!r}")
    return text


def validate_runtime_version(value: object, path: str = "runtime_version") -> str:
    text = _as_str(value, path).strip()
    if not _RUNTIME_VERSION_RE.fullmatch(text):
        _fail(path, f"invalid runtime version {text!r}")
    return text


# ---------------------------------------------------------------------------
# Internal coercion helpers
# ---------------------------------------------------------------------------


def _fail(path: str, message: str) -> NoReturn:
    raise ValidationError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_line(value: object, path: str, *, allow_empty: bool) -> str:
    text = _as_str(value, path).strip()
    if not text and not allow_empty:
        _fail(path, "must not be empty")
    if len(text) > _MAX_TEXT:
        _fail(path, f"must be <= {_MAX_TEXT} characters")
    if _CONTROL_CHARS_RE.search(text):
        _fail(path, "must not contain control characters")
    return text


def _as_opaque_id(value: object, path: str) -> str:
    text = _as_str(value, path)
    try:
        domain_ids.validate_opaque_id(text)
    except ValueError as exc:
        _fail(path, str(exc))
    return text


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_port(value: object, path: str) -> int:
    port = _as_int(value, path, minimum=1)
    if port > 65535:
        _fail(path, "must be <= 65535")
    return port


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_aliases(value: object, domain: str, path: str) -> tuple[str, ...]:
    items = _as_sequence(value, path)
    parsed: list[str] = []
    for index, item in enumerate(items):
        hostname = normalize_hostname(item, f"{path}[{index}]")
        if hostname == domain:
            _fail(f"{path}[{index}]", f"alias {hostname!r} duplicates the primary domain")
        if hostname in parsed:
            _fail(f"{path}[{index}]", f"duplicate alias {hostname!r}")
        parsed.append(hostname)
    return tuple(parsed)


def _as_public_path(value: object, path: str) -> str:
    text = _as_line(value, path, allow_empty=False)
    pure = PurePosixPath(text)
    if pure.is_absolute():
        _fail(path, "must be a relative POSIX path")
    if any(part == ".." for part in pure.parts):
        _fail(path, "must not contain '..' traversal")
    return text


def _as_environment(value: object, path: str) -> Mapping[str, str]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    if len(value) > _MAX_ENVIRONMENT:
        _fail(path, f"too many entries (>{_MAX_ENVIRONMENT})")
    parsed: dict[str, str] = {}
    for key in sorted(value, key=str):
        if not isinstance(key, str) or not _ENV_KEY_RE.fullmatch(key):
            _fail(path, f"invalid environment key {key!r}")
        item = value[key]
        if not isinstance(item, str):
            _fail(f"{path}.{key}", f"expected string, got {type(item).__name__}")
        if _CONTROL_CHARS_RE.search(item):
            _fail(f"{path}.{key}", "must not contain control characters")
        parsed[key] = item
    return MappingProxyType(parsed)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        if isinstance(value, Enum):
            return str(value.value)
        return value
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, Mapping):
        return {str(key): _serialize_value(item, f"{path}.{key}") for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[{index}]") for index, item in enumerate(value)]
    if isinstance(value, CanonicalModel):
        return {
            item.name: _serialize_value(getattr(value, item.name), f"{path}.{item.name}")
            for item in fields(value)  # type: ignore[arg-type]
        }
    _fail(path, f"unsupported value type {type(value).__name__}")


__all__ = [
    "DEFAULT_PUBLIC_PATH",
    "DEFAULT_WORKER_NUM",
    "CanonicalModel",
    "DiskUsageSource",
    "JSONValue",
    "RegistryStats",
    "ResourceUsage",
    "RuntimeInstance",
    "RuntimeTable",
    "Site",
    "SitePatch",
    "SiteStatus",
    "StaticRuntimeTable",
    "UserLimits",
    "normalize_hostname",
    "validate_runtime_version",
]
