"""Command-line interface router for siteplane."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from siteplane.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
    redact_config,
)
from siteplane.control import ControlPlane, build_control_plane
from siteplane.domain.errors import NotFoundError
from siteplane.domain.ids import generate_session_id
from siteplane.domain.models import Site, SitePatch, SiteStatus, UserLimits
from siteplane.observability.logging import correlation_scope, setup_logging, shutdown_logging
from siteplane.ui.render import CLIRenderer, create_renderer


@dataclass(slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="siteplane",
        description=(
            "siteplane — single-node hosting control plane.\n\n"
            "Common workflows:\n"
            "  siteplane init                          Create state and routing files\n"
            "  siteplane sites create a.test -r 8.3    Register a site\n"
            "  siteplane render                        Preview routing documents\n"
            "  siteplane limits set alice --max-ram-mb 512\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to siteplane TOML config (default: ./siteplane.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # sites ---------------------------------------------------------------
    sites_parser = subparsers.add_parser("sites", help="Manage hosted sites")
    sites_sub = sites_parser.add_subparsers(dest="sites_command", required=True)

    list_parser = sites_sub.add_parser("list", parents=[common], help="List sites")
    list_parser.add_argument("--owner", default="", help="Only sites owned by this tenant")
    list_parser.set_defaults(handler=_cmd_sites_list)

    show_parser = sites_sub.add_parser("show", parents=[common], help="Show one site")
    show_parser.add_argument("site", help="Site id or any of its hostnames")
    show_parser.set_defaults(handler=_cmd_sites_show)

    create_parser = sites_sub.add_parser("create", parents=[common], help="Register a site")
    create_parser.add_argument("domain", help="Primary hostname")
    create_parser.add_argument("--runtime", "-r", required=True, help="Runtime version, e.g. 8.3")
    create_parser.add_argument("--id", dest="site_id", default="", help="Explicit site id")
    create_parser.add_argument("--owner", default="", help="Owning tenant")
    _add_site_fields(create_parser)
    create_parser.set_defaults(handler=_cmd_sites_create)

    update_parser = sites_sub.add_parser("update", parents=[common], help="Patch a site")
    update_parser.add_argument("site_id")
    update_parser.add_argument("--domain", default=None, help="New primary hostname")
    update_parser.add_argument("--runtime", "-r", default=None, help="New runtime version")
    update_parser.add_argument("--clear-aliases", action="store_true", help="Remove all aliases")
    update_parser.add_argument("--clear-env", action="store_true", help="Remove all env entries")
    _add_site_fields(update_parser)
    update_parser.set_defaults(handler=_cmd_sites_update)

    for name, handler, text in (
        ("delete", _cmd_sites_delete, "Delete a site (files are kept)"),
        ("suspend", _cmd_sites_suspend, "Stop routing a site"),
        ("unsuspend", _cmd_sites_unsuspend, "Resume routing a site"),
    ):
        sub = sites_sub.add_parser(name, parents=[common], help=text)
        sub.add_argument("site_id")
        sub.set_defaults(handler=handler)

    # render --------------------------------------------------------------
    render_parser = subparsers.add_parser(
        "render",
        parents=[common],
        help="Render routing documents (dry run unless --write)",
    )
    render_parser.add_argument("--write", action="store_true", help="Write changed documents")
    render_parser.add_argument(
        "--version", dest="runtime_version", default=None, help="Only this runtime's document"
    )
    render_parser.set_defaults(handler=_cmd_render)

    # limits --------------------------------------------------------------
    limits_parser = subparsers.add_parser("limits", help="Manage tenant resource limits")
    limits_sub = limits_parser.add_subparsers(dest="limits_command", required=True)

    set_parser = limits_sub.add_parser("set", parents=[common], help="Store and apply limits")
    set_parser.add_argument("owner")
    for flag in ("--max-sites", "--max-disk-mb", "--max-ram-mb", "--max-cpu-percent", "--max-processes"):
        set_parser.add_argument(flag, type=int, default=0, help="0 means unlimited")
    set_parser.set_defaults(handler=_cmd_limits_set)

    limits_show = limits_sub.add_parser("show", parents=[common], help="Show stored limits")
    limits_show.add_argument("owner", nargs="?", default=None)
    limits_show.set_defaults(handler=_cmd_limits_show)

    apply_parser = limits_sub.add_parser("apply", parents=[common], help="Re-apply stored limits")
    apply_parser.add_argument("owner", nargs="?", default=None, help="Default: every tenant")
    apply_parser.set_defaults(handler=_cmd_limits_apply)

    usage_parser = limits_sub.add_parser("usage", parents=[common], help="Live resource usage")
    usage_parser.add_argument("owner")
    usage_parser.set_defaults(handler=_cmd_limits_usage)

    remove_parser = limits_sub.add_parser(
        "remove", parents=[common], help="Remove a tenant's isolation group and limits"
    )
    remove_parser.add_argument("owner")
    remove_parser.set_defaults(handler=_cmd_limits_remove)

    # misc ----------------------------------------------------------------
    stats_parser = subparsers.add_parser("stats", parents=[common], help="Registry statistics")
    stats_parser.set_defaults(handler=_cmd_stats)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show the effective (redacted) configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    init_parser = subparsers.add_parser(
        "init", parents=[common], help="Create directories, empty snapshots and routing files"
    )
    init_parser.add_argument(
        "--secure", action="store_true", help="Own the sites directory by root with mode 0751"
    )
    init_parser.set_defaults(handler=_cmd_init)

    return parser


def _add_site_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument(
        "--alias", dest="aliases", action="append", default=None, help="Extra hostname (repeatable)"
    )
    parser.add_argument("--public-path", default=None, help="Document root below the site root")
    parser.add_argument(
        "--worker", dest="worker_mode", action=argparse.BooleanOptionalAction, default=None
    )
    parser.add_argument("--worker-file", default=None, help="Worker script, relative to docroot")
    parser.add_argument("--worker-num", type=int, default=None, help="Worker count")
    parser.add_argument(
        "--env", dest="env", action="append", default=None, metavar="KEY=VALUE", help="Repeatable"
    )


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        with correlation_scope(operation=_operation_name(namespace)):
            return int(handler(namespace))
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers — sites
# ---------------------------------------------------------------------------


def _cmd_sites_list(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    sites = control.registry.list(owner_id=args.owner)
    if _flag(args, "json"):
        _emit_json({"command": "sites list", "sites": [site.to_dict() for site in sites]})
        return 0

    renderer = _get_renderer(args)
    renderer.table(
        ("ID", "DOMAIN", "RUNTIME", "STATUS", "OWNER", "ALIASES"),
        [
            (site.id, site.domain, site.runtime_version, site.status.value, site.owner_id or "-", len(site.aliases))
            for site in sites
        ],
        empty="(no sites)",
    )
    return 0


def _cmd_sites_show(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    key = _require_str(args.site, "site")
    try:
        site = control.registry.get(key)
    except NotFoundError:
        site = control.registry.get_by_domain(key)
    _emit_site(args, "sites show", site)
    return 0


def _cmd_sites_create(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    site = Site(
        id=args.site_id,
        domain=_require_str(args.domain, "domain"),
        runtime_version=_require_str(args.runtime, "runtime"),
        name=args.name or "",
        aliases=tuple(args.aliases or ()),
        public_path=args.public_path or "",
        worker_mode=bool(args.worker_mode),
        worker_file=args.worker_file or "",
        worker_num=args.worker_num or 0,
        environment=_parse_env(args.env),
        owner_id=args.owner,
    )
    created = control.create_site(site)
    _emit_site(args, "sites create", created)
    return 0


def _cmd_sites_update(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    aliases: tuple[str, ...] | None = None
    if args.clear_aliases:
        aliases = ()
    elif args.aliases is not None:
        aliases = tuple(args.aliases)
    environment: Mapping[str, str] | None = None
    if args.clear_env:
        environment = {}
    elif args.env is not None:
        environment = _parse_env(args.env)

    patch = SitePatch(
        name=args.name,
        domain=args.domain,
        aliases=aliases,
        runtime_version=args.runtime,
        public_path=args.public_path,
        worker_mode=args.worker_mode,
        worker_file=args.worker_file,
        worker_num=args.worker_num,
        environment=environment,
    )
    if patch.is_empty:
        raise CLIError("nothing to update", exit_code=2)
    updated = control.update_site(_require_str(args.site_id, "site_id"), patch)
    _emit_site(args, "sites update", updated)
    return 0


def _cmd_sites_delete(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    removed = control.delete_site(_require_str(args.site_id, "site_id"))
    _emit_site(args, "sites delete", removed)
    return 0


def _cmd_sites_suspend(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    _emit_site(args, "sites suspend", control.suspend_site(_require_str(args.site_id, "site_id")))
    return 0


def _cmd_sites_unsuspend(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    _emit_site(args, "sites unsuspend", control.unsuspend_site(_require_str(args.site_id, "site_id")))
    return 0


# ---------------------------------------------------------------------------
# Command handlers — routing
# ---------------------------------------------------------------------------


def _cmd_render(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    version = _optional_str(args.runtime_version)

    if _flag(args, "write"):
        if version is not None:
            raise CLIError("--version cannot be combined with --write", exit_code=2)
        results = control.sync_routing()
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "render",
                    "written": [{"path": str(item.path), "changed": item.changed} for item in results],
                }
            )
            return 0
        renderer = _get_renderer(args)
        for item in results:
            renderer.kv(str(item.path), "written" if item.changed else "unchanged")
        return 0

    bundle = control.render()
    documents = list(bundle.documents)
    if version is not None:
        target = control.generator.instance_path(version)
        documents = [item for item in documents if item.path == target]
        if not documents:
            raise CLIError(f"no enabled runtime instance for version {version!r}", exit_code=1)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "render",
                "documents": [
                    {"path": str(item.path), "digest": item.digest, "content": item.content}
                    for item in documents
                ],
                "skipped_site_ids": list(bundle.skipped_site_ids),
            }
        )
        return 0

    renderer = _get_renderer(args)
    for item in documents:
        renderer.heading(f"# ---- {item.path} ----")
        renderer.text(item.content.rstrip("\n"))
        renderer.text("")
    if bundle.skipped_site_ids:
        renderer.warning("sites without an enabled runtime: " + ", ".join(bundle.skipped_site_ids))
    return 0


# ---------------------------------------------------------------------------
# Command handlers — limits
# ---------------------------------------------------------------------------


def _cmd_limits_set(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    limits = UserLimits(
        owner_id=_require_str(args.owner, "owner"),
        max_sites=args.max_sites,
        max_disk_mb=args.max_disk_mb,
        max_ram_mb=args.max_ram_mb,
        max_cpu_percent=args.max_cpu_percent,
        max_processes=args.max_processes,
    )
    report = control.set_limits(limits)
    _emit_reports(args, "limits set", [report])
    return 0 if report.ok else 3


def _cmd_limits_show(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    owner = _optional_str(args.owner)
    if owner is not None:
        entries = [control.registry.get_user_limit(owner)]
    else:
        entries = control.registry.list_user_limits()

    if _flag(args, "json"):
        _emit_json({"command": "limits show", "limits": [item.to_dict() for item in entries]})
        return 0

    renderer = _get_renderer(args)
    renderer.table(
        ("OWNER", "SITES", "DISK_MB", "RAM_MB", "CPU_%", "PROCS"),
        [
            (
                item.owner_id,
                _limit_text(item.max_sites),
                _limit_text(item.max_disk_mb),
                _limit_text(item.max_ram_mb),
                _limit_text(item.max_cpu_percent),
                _limit_text(item.max_processes),
            )
            for item in entries
        ],
        empty="(no limits stored)",
    )
    return 0


def _cmd_limits_apply(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    owner = _optional_str(args.owner)
    if owner is not None:
        reports = [control.apply_limits(owner)]
    else:
        reports = control.apply_all_limits()
    _emit_reports(args, "limits apply", reports)
    return 0 if all(item.ok for item in reports) else 3


def _cmd_limits_usage(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    usage = control.usage(_require_str(args.owner, "owner"))
    if _flag(args, "json"):
        _emit_json({"command": "limits usage", "usage": usage.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Owner", usage.owner_id)
    renderer.kv("RAM (MB)", usage.ram_used_mb)
    renderer.kv("CPU (usec)", usage.cpu_usage_micros)
    renderer.kv("Processes", usage.process_count)
    renderer.kv("Disk (MB)", f"{usage.disk_used_mb} ({usage.disk_source.value})")
    return 0


def _cmd_limits_remove(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    result = control.remove_owner(_require_str(args.owner, "owner"))
    if _flag(args, "json"):
        _emit_json({"command": "limits remove", **result.to_dict()})
        return 0 if result.ok else 3

    renderer = _get_renderer(args)
    renderer.kv(result.owner_id, "limits removed" if result.limits_deleted else "no stored limits")
    if not result.ok:
        renderer.kv("Group", f"not removed: {result.teardown_error}")
        return 3
    return 0


# ---------------------------------------------------------------------------
# Command handlers — misc
# ---------------------------------------------------------------------------


def _cmd_stats(args: argparse.Namespace) -> int:
    control = _open_control_plane(args)
    stats = control.stats()
    if _flag(args, "json"):
        _emit_json({"command": "stats", **stats})
        return 0

    renderer = _get_renderer(args)
    sites = stats["sites"]
    assert isinstance(sites, Mapping)
    renderer.kv("Sites", f"{sites['total']} ({sites['active']} active, {sites['suspended']} suspended)")
    renderer.kv("Tenants with limits", stats["user_limits"])
    by_version = stats["by_runtime_version"]
    assert isinstance(by_version, Mapping)
    renderer.table(
        ("RUNTIME", "ACTIVE SITES"),
        [(version, count) for version, count in by_version.items()],
        title="Active sites by runtime:",
    )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": redact_config(config)})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(dump_effective_config(config))
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    paths = config["paths"]
    for key in ("data_dir", "sites_dir", "log_dir", "proxy_config_dir"):
        Path(paths[key]).mkdir(parents=True, exist_ok=True)
    control = _open_control_plane(args, config=config)
    results = control.initialize(secure=_flag(args, "secure"))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "init",
                "paths": dict(paths),
                "written": [{"path": str(item.path), "changed": item.changed} for item in results],
            }
        )
        return 0

    renderer = _get_renderer(args)
    for key in ("data_dir", "sites_dir", "log_dir", "proxy_config_dir"):
        renderer.kv(key, paths[key])
    renderer.section("Routing documents:")
    renderer.items([str(item.path) for item in results])
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _emit_site(args: argparse.Namespace, command: str, site: Site) -> None:
    if _flag(args, "json"):
        _emit_json({"command": command, "site": site.to_dict()})
        return

    renderer = _get_renderer(args)
    renderer.kv("ID", site.id)
    renderer.kv("Name", site.name)
    renderer.kv("Domain", site.domain)
    if site.aliases:
        renderer.kv("Aliases", ", ".join(site.aliases))
    renderer.kv("Runtime", site.runtime_version)
    renderer.kv("Status", site.status.value)
    renderer.kv("Owner", site.owner_id or "-")
    renderer.kv("Document root", site.document_root)
    if site.worker_mode:
        renderer.kv("Worker", f"{site.worker_file or '-'} x{site.effective_worker_num}")
    if renderer.verbose and site.environment:
        renderer.section("Environment:")
        renderer.items([f"{key}={value}" for key, value in site.environment.items()])
    if site.status is SiteStatus.SUSPENDED:
        renderer.warning("site is suspended and not routed")


def _emit_reports(args: argparse.Namespace, command: str, reports: Sequence[Any]) -> None:
    if _flag(args, "json"):
        _emit_json({"command": command, "reports": [item.to_dict() for item in reports]})
        return

    renderer = _get_renderer(args)
    for report in reports:
        renderer.heading(f"{report.owner_id}:")
        if not report.supported:
            renderer.text("  isolation is not supported on this platform; nothing applied")
            continue
        renderer.items([f"applied {name}" for name in report.applied])
        for name, reason in report.skipped:
            renderer.warning(f"{name} skipped: {reason}")
        for name, reason in report.failed:
            renderer.failure(f"{name}: {reason}")


def _limit_text(value: int) -> str:
    return str(value) if value > 0 else "unlimited"


# ---------------------------------------------------------------------------
# Helpers — config, wiring
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        return load_config(config_path, profile=profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _open_control_plane(
    args: argparse.Namespace, *, config: Mapping[str, Any] | None = None
) -> ControlPlane:
    effective = config if config is not None else _load_effective_config(args)
    setup_logging(effective["observability"], session_id=generate_session_id())
    return build_control_plane(effective)


def _operation_name(args: argparse.Namespace) -> str:
    parts = [args.command]
    for attr in ("sites_command", "limits_command"):
        value = getattr(args, attr, None)
        if isinstance(value, str):
            parts.append(value)
    return ".".join(parts)


# ---------------------------------------------------------------------------
# Helpers — argument parsing
# ---------------------------------------------------------------------------


def _parse_env(entries: Sequence[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for entry in entries or ():
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise CLIError(f"invalid --env entry {entry!r}: expected KEY=VALUE", exit_code=2)
        parsed[key.strip()] = value
    return parsed


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "main",
    "run_cli",
]
