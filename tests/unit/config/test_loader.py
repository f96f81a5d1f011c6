"""
siteplane — unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-19

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Profile selection and redacted effective config dumping.

Functional requirements
- Works against the shipped siteplane.toml without touching the host.

Non-functional requirements
- Deterministic output across repeated loads.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from siteplane.config.loader import (
    ENV_SETTINGS,
    ConfigLoadError,
    dump_effective_config,
    env_name,
    load_config,
)
from siteplane.config.schema import DEFAULT_CONFIG, ConfigValidationError

REPO_ROOT = Path(__file__).resolve().parents[3]


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(
        config_path,
        """
[proxy]
http_port = 8000
log_roll_keep = 9
""".strip(),
    )

    from_file = load_config(tmp_path / "siteplane.toml", environ={})
    assert from_file["proxy"]["http_port"] == 8000
    assert from_file["proxy"]["https_port"] == 443
    assert from_file["proxy"]["log_roll_keep"] == 9

    from_env = load_config(
        config_path,
        environ={"SITEPLANE_PROXY_HTTP_PORT": "8001", "SITEPLANE_PROXY_LOG_ROLL_KEEP": "2"},
    )
    assert from_env["proxy"]["http_port"] == 8001
    assert from_env["proxy"]["log_roll_keep"] == 2

    from_cli = load_config(
        config_path,
        environ={"SITEPLANE_PROXY_HTTP_PORT": "8001"},
        cli_overrides={"proxy.http_port": 8002},
    )
    assert from_cli["proxy"]["http_port"] == 8002


def test_env_coercion_for_lists_booleans_and_floats(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "SITEPLANE_REGISTRY_EXEMPT_OWNERS": " admin, root ,,ops",
            "SITEPLANE_OBSERVABILITY_LOG_TO_STDOUT": "yes",
            "SITEPLANE_HOST_COMMAND_TIMEOUT_SECONDS": "12.5",
        },
    )

    assert loaded["registry"]["exempt_owners"] == ["admin", "root", "ops"]
    assert loaded["observability"]["log_to_stdout"] is True
    assert loaded["host"]["command_timeout_seconds"] == 12.5


@pytest.mark.parametrize(
    ("env_name", "raw", "message"),
    [
        ("SITEPLANE_PROXY_HTTP_PORT", "eighty", "must be an integer"),
        ("SITEPLANE_OBSERVABILITY_REDACT_SECRETS", "maybe", "must be a boolean"),
        ("SITEPLANE_ISOLATION_DISK_SCAN_TTL_SECONDS", "soon", "must be a number"),
    ],
)
def test_env_coercion_failures_name_the_variable(
    tmp_path: Path, env_name: str, raw: str, message: str
) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match=message) as exc_info:
        load_config(config_path, environ={env_name: raw})
    assert env_name in str(exc_info.value)


def test_env_overrides_are_revalidated(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="runtimes\\[0\\].port"):
        load_config(config_path, environ={"SITEPLANE_PROXY_HTTPS_PORT": "9001"})


def test_missing_explicit_file_and_invalid_toml_fail(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[proxy\nhttp_port = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML in"):
        load_config(broken, environ={})


def test_unknown_file_keys_fail_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "[registry]\nquota = 3\n")

    with pytest.raises(ConfigValidationError, match="registry.quota: unknown field"):
        load_config(config_path, environ={})


def test_paths_are_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_dir = tmp_path / "etc"
    config_path = config_dir / "siteplane.toml"
    _write_config(
        config_path,
        """
[paths]
data_dir = "../var/state/"
sites_dir = "/srv/www/"
""".strip(),
    )

    loaded = load_config(config_path, environ={})
    root = tmp_path.resolve()
    config_dir = config_dir.resolve()

    assert loaded["paths"]["data_dir"] == (root / "var" / "state").as_posix()
    assert loaded["paths"]["sites_dir"] == "/srv/www"
    assert loaded["paths"]["proxy_config_dir"] == (config_dir / "proxy").as_posix()
    assert loaded["observability"]["log_dir"] == (config_dir / "logs" / "siteplane").as_posix()
    assert loaded["isolation"]["cgroup_root"] == "/sys/fs/cgroup"


def test_profile_selection_from_argument_env_and_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    by_env = load_config(config_path, environ={"SITEPLANE_PROFILE": "development"})
    assert by_env["proxy"]["http_port"] == 8080
    assert by_env["observability"]["log_level"] == "DEBUG"

    by_cli = load_config(
        config_path,
        environ={"SITEPLANE_PROFILE": "development"},
        cli_overrides={"profile": "production"},
    )
    assert by_cli["proxy"]["http_port"] == 80
    assert by_cli["paths"]["sites_dir"] == "/var/www"

    env_beats_profile = load_config(
        config_path,
        profile="development",
        environ={"SITEPLANE_PROXY_HTTP_PORT": "8081"},
    )
    assert env_beats_profile["proxy"]["http_port"] == 8081

    with pytest.raises(ConfigValidationError, match="profile 'staging' is not defined"):
        load_config(config_path, profile="staging", environ={})


def test_cli_override_keys_must_not_be_empty(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="invalid CLI override key"):
        load_config(config_path, environ={}, cli_overrides={"..": 1})


def test_effective_config_dump_is_deterministic_and_redacted(tmp_path: Path) -> None:
    config_path = tmp_path / "siteplane.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))
    assert first == second
    assert json.loads(first)["proxy"]["http_port"] == 80

    redacted = json.loads(dump_effective_config({"host": {"api_token": "abc", "name": "n"}}))
    assert redacted == {"host": {"api_token": "<redacted>", "name": "n"}}


def test_repository_config_file_loads() -> None:
    loaded = load_config(REPO_ROOT / "siteplane.toml", environ={})

    assert loaded["meta"]["schema_version"] == 1
    assert loaded["paths"]["data_dir"] == (REPO_ROOT / "state").as_posix()
    assert [item["port"] for item in loaded["runtimes"]] == [9001, 9002]


def test_every_scalar_setting_has_an_environment_variable() -> None:
    scalar_settings = {
        (section, key)
        for section, values in DEFAULT_CONFIG.items()
        if section not in {"meta", "runtimes", "profiles"} and isinstance(values, dict)
        for key in values
    }

    assert set(ENV_SETTINGS) == scalar_settings
    assert env_name("proxy", "http_port") == "SITEPLANE_PROXY_HTTP_PORT"


def test_missing_default_file_falls_back_to_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["proxy"]["http_port"] == 80
    assert loaded["paths"]["sites_dir"] == (tmp_path.resolve() / "sites").as_posix()
