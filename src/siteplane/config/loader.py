"""
siteplane — effective config assembly

File: src/siteplane/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the config a control plane runs with, in this order (later wins):
  built-in defaults, ``siteplane.toml``, the selected profile, ``SITEPLANE_*``
  variables, then CLI ``section.key`` overrides.
- Anchor relative directories at the config file so the CLI behaves the same from
  any working directory.

Functional requirements
- Every layer is re-validated; unknown keys and bad values fail before anything
  touches the host.
- ``runtimes`` is a table array and can only come from the file or a profile.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from siteplane.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "siteplane.toml"
ENV_PREFIX: Final[str] = "SITEPLANE_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

# Settings readable from the environment as SITEPLANE_<SECTION>_<KEY>.
ENV_SETTINGS: Final[tuple[tuple[str, str], ...]] = (
    ("paths", "data_dir"),
    ("paths", "sites_dir"),
    ("paths", "log_dir"),
    ("paths", "proxy_config_dir"),
    ("proxy", "http_port"),
    ("proxy", "https_port"),
    ("proxy", "admin_address"),
    ("proxy", "log_roll_size_mb"),
    ("proxy", "log_roll_keep"),
    ("registry", "exempt_owners"),
    ("registry", "landing_document"),
    ("isolation", "cgroup_root"),
    ("isolation", "group_prefix"),
    ("isolation", "cpu_period_us"),
    ("isolation", "quota_soft_inodes"),
    ("isolation", "quota_hard_inodes"),
    ("isolation", "disk_scan_ttl_seconds"),
    ("host", "command_timeout_seconds"),
    ("observability", "log_level"),
    ("observability", "log_dir"),
    ("observability", "log_to_stdout"),
    ("observability", "redact_secrets"),
)

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """The config file is missing or unreadable, or an override has the wrong type."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    Without ``config_path`` the loader looks for ``siteplane.toml`` in the working
    directory and falls back to defaults when it is absent; an explicit path must exist.
    The profile comes from ``profile``, then a ``"profile"`` CLI override, then
    ``SITEPLANE_PROFILE``.
    """

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()
    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    selected = _select_profile(profile, overrides.pop("profile", None), env)

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    if selected is not None:
        config = apply_profile_overlay(config, selected)
    config = merge_config(config, _env_overrides(env))
    config = merge_config(config, _dotted_overrides(overrides))
    config = assert_valid_config(config, active_profile=selected)

    for section, key in PATH_FIELDS:
        config[section][key] = _anchor_path(config[section][key], source.parent)
    return assert_valid_config(config, active_profile=selected)


def env_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Stable, secret-free JSON for ``siteplane config``."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None, from_cli: object, environ: Mapping[str, str]
) -> str | None:
    if explicit is None and from_cli is not None and not isinstance(from_cli, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    for candidate in (explicit, from_cli, environ.get(PROFILE_ENV)):
        if isinstance(candidate, str):
            return candidate.strip() or None
    return None


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    defaults: Mapping[str, Any] = DEFAULT_CONFIG
    overrides: dict[str, dict[str, object]] = {}
    for section, key in ENV_SETTINGS:
        name = env_name(section, key)
        raw = environ.get(name)
        if raw is not None:
            overrides.setdefault(section, {})[key] = _coerce(name, raw.strip(), defaults[section][key])
    return overrides


def _coerce(name: str, raw: str, default: object) -> object:
    # The built-in default fixes each setting's type.
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false, yes/no, on/off, 1/0)")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be an integer, got {raw!r}") from exc
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be a number, got {raw!r}") from exc
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        parts = dotted.split(".")
        if not all(parts):
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        node = payload
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return payload


def _anchor_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SETTINGS",
    "PROFILE_ENV",
    "ConfigLoadError",
    "dump_effective_config",
    "env_name",
    "load_config",
]
