"""
siteplane config package public API.

File: src/siteplane/config/__init__.py
Last updated: 2026-10-17

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``siteplane.toml`` + ``SITEPLANE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from siteplane.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ENV_SETTINGS,
    ConfigLoadError,
    dump_effective_config,
    env_name,
    load_config,
)
from siteplane.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ProfileOverlay,
    SiteplaneConfig,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SETTINGS",
    "PATH_FIELDS",
    "ProfileOverlay",
    "SiteplaneConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_name",
    "load_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
