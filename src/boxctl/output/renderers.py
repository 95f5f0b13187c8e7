"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO).  The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer. Warnings are not
rendered here; :meth:`AppContext.emit` writes them to stderr.
"""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from boxctl.output.console import create_console, get_output, style_for_state

if TYPE_CHECKING:
    from rich.console import Console

    from boxctl.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    """
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"

    # Listings print one name per line so they can be piped.
    if result.op == "list":
        return "\n".join(p["name"] for p in result.data.get("projects", []))
    if result.op == "library_list":
        return "\n".join(item["ref"] for item in result.data.get("items", []))

    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    """Print the OK/ERROR status line."""
    label = Text("OK", style="box.ok")
    op = Text(f"  {result.op}", style="box.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="box.key")
    if key in ("project", "name"):
        v = Text(str(value), style="box.name")
    elif key == "path" or key.endswith("_path"):
        v = Text(str(value), style="box.path")
    elif isinstance(value, (dict, list)):
        v = Text(_json.dumps(value, separators=(",", ":")))
    else:
        v = Text(str(value))
    console.print(k, v, end="")
    console.print()


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Print meta block including telemetry span tree (verbose only)."""
    if not result.meta:
        return

    console.print()
    console.print(Text("  meta:", style="dim"))

    for k, v in result.meta.items():
        if k == "telemetry":
            _render_telemetry_tree(console, v, indent=4)
        else:
            console.print(f"    {k}: {v}")


def _render_telemetry_tree(
    console: Console,
    span_data: dict[str, Any],
    indent: int = 4,
) -> None:
    """Render a hierarchical span tree with color-coded timing."""
    prefix = " " * indent
    name = span_data.get("name", "?")
    duration = span_data.get("duration_ms", 0.0)

    if duration > 1000:
        style = "bold red"
    elif duration > 100:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>8.2f}ms[/{style}]  {name}"
    attributes = span_data.get("attributes")
    if attributes:
        line += "  (" + ", ".join(f"{k}={v}" for k, v in attributes.items()) + ")"
    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


def _service_table(services: list[dict[str, Any]]) -> Table:
    """Containers with ports, running state and the projects sharing them."""
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Service", style="box.name", no_wrap=True)
    table.add_column("Port", style="box.port", justify="right")
    table.add_column("Extra")
    table.add_column("State")
    table.add_column("Used by")

    for svc in services:
        label, style = style_for_state(svc.get("running"))
        table.add_row(
            str(svc.get("name", "")),
            str(svc.get("port", "")),
            ", ".join(str(p) for p in svc.get("extra_ports", [])),
            Text(label, style=style),
            ", ".join(svc.get("users", [])),
        )
    return table


def _issues(console: Console, issues: list[dict[str, Any]], *, severity: str) -> None:
    style = "box.error" if severity == "error" else "box.warning"
    for issue in issues:
        console.print(
            Text.assemble(
                "  ",
                (severity, style),
                f" {issue.get('component', '?')}: {issue.get('message', '')}",
            )
        )
        if issue.get("command"):
            console.print(Text(f"      $ {issue['command']}", style="dim"))


def _mark(value: bool | None) -> Text:
    if value is None:
        return Text("-", style="box.unknown")
    if value:
        return Text("yes", style="box.ok")
    return Text("no", style="box.error")


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="box.error")
    op = Text(f"  {result.op}", style="box.op")
    sep = Text(" — ")
    console.print(label, op, sep, msg)

    if result.data.get("projects") and result.op.endswith("_all"):
        console.print(_project_summary(result.data["projects"]))

    if not err:
        return
    for conflict in err.detail.get("conflicts", []):
        console.print(f"  [box.error]conflict[/box.error] {conflict}")
    if err.detail.get("command"):
        console.print(Text(f"  $ {err.detail['command']}", style="dim"))
    if verbose and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            if k == "projects":
                continue
            console.print(f"    {k}: {v}")


# ── Reconcile renderers ───────────────────────────────────────────────


def _render_start(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render start/restart: services table, domains and accumulated errors."""
    d = result.data
    _status_line(console, result)
    _field(console, "project", d.get("project", ""))
    _field(console, "path", d.get("path", ""))
    _field(console, "php", d.get("php_version", ""))

    services = d.get("services", [])
    if services:
        console.print()
        console.print(_service_table(services))

    domains = d.get("domains", [])
    if domains:
        console.print()
        for domain in domains:
            console.print(f"  [box.name]{domain}[/box.name]")

    errors = d.get("errors", [])
    if errors:
        console.print()
        _issues(console, errors, severity="error")

    console.print(
        f"\n{len(d.get('warnings', []))} warnings, {len(errors)} errors"
    )
    if verbose:
        console.print(Text(f"  states: {' -> '.join(d.get('states', []))}", style="dim"))
        _render_meta(console, result)


def _render_stop(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _status_line(console, result)
    _field(console, "project", d.get("project", ""))
    if d.get("dry_run"):
        console.print(Text("  dry run: nothing was changed", style="box.warning"))

    removed = d.get("removed", [])
    verb = "would remove" if d.get("dry_run") else "removed"
    for item in removed:
        console.print(f"  {verb} [box.path]{item}[/box.path]")

    stopped = d.get("stopped_services", [])
    if stopped:
        verb = "would stop" if d.get("dry_run") else "stopped"
        console.print(f"  {verb}: {', '.join(stopped)}")
    for service, users in d.get("kept_services", {}).items():
        console.print(f"  kept [box.name]{service}[/box.name] (used by {', '.join(users)})")

    errors = d.get("errors", [])
    if errors:
        console.print()
        _issues(console, errors, severity="error")
    if verbose:
        _render_meta(console, result)


def _render_check(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render the reconciled-state report of a single project."""
    d = result.data
    console.print(
        f"[box.name]{d.get('project', '?')}[/box.name]  "
        f"[box.path]{d.get('path', '')}[/box.path]  PHP {d.get('php_version', '')}"
    )

    services = d.get("services", [])
    if services:
        console.print()
        console.print(_service_table(services))

    vhosts = d.get("vhosts", [])
    if vhosts:
        console.print()
        table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
        table.add_column("Domain", style="box.name", no_wrap=True)
        table.add_column("Vhost")
        table.add_column("SSL")
        table.add_column("Cert")
        table.add_column("DNS")
        for vhost in vhosts:
            table.add_row(
                str(vhost.get("host", "")),
                _mark(vhost.get("present")),
                _mark(vhost.get("ssl")),
                _mark(vhost.get("certificate")),
                _mark(vhost.get("dns")),
            )
        console.print(table)

    pool = d.get("pool", {})
    console.print()
    console.print(Text("  pool: ", style="box.key"), _mark(pool.get("present")))
    console.print(Text("  marker: ", style="box.key"), _mark(d.get("marker")))

    system = d.get("system_ini", {})
    if system.get("declared") or system.get("owner"):
        console.print(
            Text("  system ini owner: ", style="box.key"),
            Text(str(system.get("owner") or "-")),
        )
        console.print(Text("  system ini active: ", style="box.key"), _mark(system.get("active")))
        if not system.get("active") and system.get("enable_command"):
            console.print(Text(f"      $ {system['enable_command']}", style="dim"))

    errors = d.get("errors", [])
    if errors:
        console.print()
        _issues(console, errors, severity="error")

    warnings = d.get("warnings", [])
    if not warnings and not errors:
        console.print("\n[box.ok]OK[/box.ok]  No issues found.")
    else:
        console.print(f"\n{len(warnings)} warnings, {len(errors)} errors")

    if verbose:
        commands = d.get("commands", {})
        if commands:
            console.print("\n[bold]Commands[/bold]")
            for name, description in commands.items():
                console.print(f"  {name}: {description}")
        includes = d.get("includes", {})
        if includes:
            console.print("\n[bold]Includes[/bold]")
            for target, directive in includes.items():
                console.print(Text(f"  {target}: {directive}"))
        _render_meta(console, result)


def _render_validate(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _status_line(console, result)
    _field(console, "project", d.get("project", ""))
    _field(console, "path", d.get("path", ""))
    services = d.get("services", [])
    _field(console, "services", ", ".join(services) if services else "none")
    if verbose:
        _render_meta(console, result)


def _project_summary(projects: list[dict[str, Any]]) -> Table:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Project", style="box.name", no_wrap=True)
    table.add_column("Result")
    table.add_column("Errors", justify="right")
    table.add_column("Detail")
    for entry in projects:
        errors = entry.get("errors", [])
        if entry.get("ok"):
            outcome = Text("errors", style="box.warning") if errors else Text("ok", style="box.ok")
            detail = "; ".join(f"{e['component']}: {e['message']}" for e in errors)
        else:
            outcome = Text("failed", style="box.error")
            detail = str(entry.get("error", ""))
        table.add_row(str(entry.get("project", "?")), outcome, str(len(errors)), detail)
    return table


def _render_all(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render start_all / stop_all / restart_all / check_all."""
    projects = result.data.get("projects", [])
    _status_line(console, result)
    if not projects:
        console.print("  No projects found.")
        return
    console.print(_project_summary(projects))
    console.print(f"\n{len(projects)} projects")
    if verbose:
        _render_meta(console, result)


# ── Project renderers ─────────────────────────────────────────────────


def _render_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    projects = result.data.get("projects", [])
    if not projects:
        console.print("No projects found.")
        return
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Project", style="box.name", no_wrap=True)
    table.add_column("PHP")
    table.add_column("Domains")
    table.add_column("Path", style="box.path")
    if verbose:
        table.add_column("Descriptor")
    for project in projects:
        row: list[Any] = [
            str(project.get("name", "")),
            str(project.get("php_version", "")),
            ", ".join(project.get("domains", [])),
            str(project.get("path", "")),
        ]
        if verbose:
            row.append(_mark(project.get("has_config")))
        table.add_row(*row)
    console.print(table)
    console.print(f"\n{result.data.get('count', len(projects))} projects")


def _render_init(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _status_line(console, result)
    for key in ("project", "path", "php"):
        if key in d:
            _field(console, key, d[key])
    _field(console, "domains", ", ".join(d.get("domains", [])))
    _field(console, "services", ", ".join(d.get("services", [])) or "none")
    console.print("\nNext: edit the descriptor, then run [bold]boxctl start[/bold].")


# ── Library renderers ─────────────────────────────────────────────────


def _render_library_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Template", style="box.name", no_wrap=True)
    table.add_column("Source")
    for item in items:
        overridden = item.get("overridden")
        source = Text("override", style="box.warning") if overridden else Text("packaged")
        table.add_row(str(item.get("ref", "")), source)
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} templates")
    if verbose:
        console.print(Text(f"overrides: {result.data.get('override_root', '')}", style="dim"))


def _render_library_show(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    origin = "override" if d.get("overridden") else "packaged"
    title = f"{d.get('ref', '?')} ({origin})"
    source = d.get("source", "").rstrip("\n")
    console.print(Panel(Text(source), title=title, border_style="dim", expand=False))
    if verbose:
        console.print(Text(str(d.get("origin", "")), style="box.path"))


# ── PHP system settings renderers ─────────────────────────────────────


def _render_php_system(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render php_system_show / enable / disable."""
    versions = result.data.get("versions")
    if versions is None:
        _status_line(console, result)
        versions = [result.data]
    elif not versions:
        console.print("No PHP system settings staged.")
        return

    for entry in versions:
        owner = entry.get("owner") or {}
        console.print(f"\n[bold]PHP {entry.get('php_version', '?')}[/bold]")
        _field(console, "ini_path", entry.get("ini_path", ""))
        console.print(Text("  staged: ", style="box.key"), _mark(entry.get("staged")))
        console.print(Text("  active: ", style="box.key"), _mark(entry.get("active")))
        if owner:
            _field(console, "owner", f"{owner.get('project_name')} ({owner.get('project_path')})")
            settings = owner.get("settings", {})
            for key, value in settings.items():
                console.print(f"    {key} = {value}")
        which = "disable_command" if entry.get("active") else "enable_command"
        command = entry.get(which)
        if command:
            console.print(Text(f"  $ {command}", style="dim"))


def _render_php_system_clear(
    result: ServiceResult, console: Console, *, verbose: bool = False
) -> None:
    _status_line(console, result)
    _field(console, "php_version", result.data.get("php_version", ""))
    _field(console, "removed", result.data.get("removed", False))


# ── DNS renderers ─────────────────────────────────────────────────────


def _render_dns_status(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _field(console, "mode", d.get("mode", ""))
    _field(console, "tld", d.get("tld", ""))
    console.print(Text("  configured: ", style="box.key"), _mark(d.get("configured")))
    _field(console, "hosts_file", d.get("hosts_file", ""))
    for key in ("config_path", "resolver_path"):
        if key in d:
            _field(console, key, d[key])
    domains = d.get("managed_domains", [])
    if domains:
        console.print(f"\n[bold]Managed hosts entries[/bold] ({len(domains)})")
        for domain in domains:
            console.print(f"  [box.name]{domain}[/box.name]")


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    # Reconcile
    "validate": _render_validate,
    "start": _render_start,
    "restart": _render_start,
    "stop": _render_stop,
    "check": _render_check,
    "start_all": _render_all,
    "stop_all": _render_all,
    "restart_all": _render_all,
    "check_all": _render_all,
    # Projects
    "list": _render_list,
    "init": _render_init,
    # Library
    "library_list": _render_library_list,
    "library_show": _render_library_show,
    # PHP system settings
    "php_system_show": _render_php_system,
    "php_system_enable": _render_php_system,
    "php_system_disable": _render_php_system,
    "php_system_clear": _render_php_system_clear,
    # DNS
    "dns_status": _render_dns_status,
    "dns_tld": _render_generic,
}
