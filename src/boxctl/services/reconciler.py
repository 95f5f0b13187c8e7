"""Project reconciler — validate, start, stop, restart and check.

Every run recomputes the complete desired state from the descriptors (this
project's plus every discovered project's) and overwrites the generated
artifacts. Nothing is diffed and nothing is persisted between runs apart from
the artifacts themselves, so any failed run is safe to repeat.

Start order is fixed: containers, PHP pool (with system ini claim and FPM
reload), vhosts, SSL, proxy dry-run and reload, DNS. Only validation failures
and an unusable state directory abort a run; every other failure is recorded
on the result as a warning (independent component) or an error (component
the site needs) and the remaining steps still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from boxctl.config.descriptor import load_descriptor
from boxctl.config.discovery import find_project_root
from boxctl.domain.errors import (
    BoxError,
    ConfigError,
    ExternalToolError,
    InvalidIniValueError,
    Issue,
    ResourceConflictError,
    StateDirectoryError,
)
from boxctl.domain.lifecycle import ProjectLifecycle, ProjectState
from boxctl.domain.phpini import split_settings
from boxctl.domain.ports import SEARCH_KINDS, known_versions, validate_port_table
from boxctl.domain.project import ProjectConfig, validate_structure
from boxctl.domain.services import (
    ServiceInstance,
    check_conflicts,
    check_shared_ports,
    derive_instances,
    union_instances,
    usage_counts,
)
from boxctl.infrastructure.compose import relational_instance
from boxctl.infrastructure.discovery import ProjectInfo, orphaned_services
from boxctl.infrastructure.nginx import ConfigTestError
from boxctl.services.base import BaseService
from boxctl.services.result import (
    ServiceError,
    ServiceResult,
    ServiceStatus,
    StartResult,
    StopResult,
)
from boxctl.services.telemetry import trace_span, traced

logger = logging.getLogger(__name__)

# PHP releases past upstream end of life.
DEPRECATED_PHP = frozenset({"7.2", "7.3", "7.4", "8.0", "8.1"})


@dataclass(frozen=True)
class LoadedProject:
    config: ProjectConfig
    path: Path

    @property
    def name(self) -> str:
        return self.config.name


def _status(instance: ServiceInstance, *, running: bool | None, users: list[str]) -> ServiceStatus:
    return ServiceStatus(
        name=instance.service_name,
        kind=instance.kind.value,
        version=instance.version,
        port=instance.port,
        extra_ports=list(instance.extra_ports),
        container=instance.container_name,
        running=running,
        users=users,
    )


class ReconcileService(BaseService):
    """Brings projects up and down on this host."""

    # ── loading ──────────────────────────────────────────────────────

    def load(self, project_path: Path) -> LoadedProject:
        """Load the descriptor for the project containing *project_path*.

        Raises:
            ConfigNotFoundError: If no ``.boxctl.yaml`` is found walking up.
            ConfigError: If the descriptor cannot be parsed.
        """
        root = find_project_root(project_path) or project_path.resolve()
        return LoadedProject(config=load_descriptor(root), path=root)

    def known_configs(
        self, *, exclude: str | None = None
    ) -> tuple[list[ProjectConfig], list[Issue]]:
        """Descriptors of every discovered project except *exclude*.

        Unreadable projects are skipped with a warning; they must not block
        reconciling the others.
        """
        configs: list[ProjectConfig] = []
        warnings: list[Issue] = []
        for info in self._host.discovery.discover():
            if info.name == exclude:
                continue
            if not info.has_config:
                warnings.append(
                    Issue(
                        component="discovery",
                        message=f"project {info.name!r} has no descriptor at {info.path}; ignored",
                    )
                )
                continue
            try:
                config = load_descriptor(info.path)
            except ConfigError as exc:
                warnings.append(
                    Issue(component="discovery", message=f"project {info.name!r}: {exc.message}")
                )
                continue
            if config.name == exclude:
                continue
            configs.append(config)
        return configs, warnings

    # ── validate ─────────────────────────────────────────────────────

    def validate_config(
        self, config: ProjectConfig, *, others: list[ProjectConfig] | None = None
    ) -> list[Issue]:
        """Structural and semantic checks. Returns non-fatal warnings.

        Raises:
            ConfigError: For structurally invalid descriptors.
            ResourceConflictError: If the port table or the union of all
                projects' services would bind one host port twice.
        """
        validate_structure(config)
        validate_port_table()
        instances = derive_instances(config)
        everyone = [config, *(others or [])]
        check_shared_ports(everyone)
        check_conflicts(union_instances(everyone))

        warnings: list[Issue] = []
        for instance in instances:
            if instance.fallback:
                warnings.append(
                    Issue(
                        component="services",
                        message=(
                            f"{instance.label} is not a known version; using the latest "
                            f"stable port {instance.port} (known: "
                            f"{', '.join(known_versions(instance.kind))})"
                        ),
                    )
                )
        search = sorted(i.kind.value for i in instances if i.kind in SEARCH_KINDS)
        if len(search) > 1:
            warnings.append(
                Issue(component="services", message=f"both {' and '.join(search)} are enabled")
            )
        dns = self._host.settings.dns
        if dns.mode == "dnsmasq":
            for host in self._host.dns.outside_tld(config.hosts):
                warnings.append(
                    Issue(
                        component="dns",
                        message=f"{host} is outside .{dns.tld}; it is resolved via the hosts file",
                    )
                )
        if config.php in DEPRECATED_PHP:
            warnings.append(
                Issue(component="php", message=f"PHP {config.php} is past end of life")
            )
        return warnings

    @traced
    def validate(self, project_path: Path) -> ServiceResult:
        try:
            project = self.load(project_path)
            others, discovery_warnings = self.known_configs(exclude=project.name)
            warnings = self.validate_config(project.config, others=others)
        except (ConfigError, ResourceConflictError) as exc:
            return ServiceResult.failure("validate", exc)
        issues = [*discovery_warnings, *warnings]
        return ServiceResult(
            ok=True,
            op="validate",
            data={
                "project": project.name,
                "path": str(project.path),
                "services": [i.service_name for i in derive_instances(project.config)],
                "warnings": [w.model_dump() for w in issues],
            },
            warnings=[str(w) for w in issues],
        )

    # ── start ────────────────────────────────────────────────────────

    @traced
    def start(self, project_path: Path) -> ServiceResult:
        try:
            project = self.load(project_path)
        except ConfigError as exc:
            return ServiceResult.failure("start", exc)
        return self._start(project, op="start")

    def _start(
        self, project: LoadedProject, *, op: str, carried: list[Issue] | None = None
    ) -> ServiceResult:
        config = project.config
        lifecycle = ProjectLifecycle(config.name or str(project.path))
        others, discovery_warnings = self.known_configs(exclude=config.name)
        try:
            with trace_span("validate", project=config.name):
                warnings = self.validate_config(config, others=others)
            lifecycle.transition(ProjectState.VALIDATED)
            self._host.ensure_state_dirs()
        except (ConfigError, ResourceConflictError, StateDirectoryError) as exc:
            return ServiceResult.failure(op, exc, project=config.name)

        lifecycle.transition(ProjectState.STARTING)
        result = StartResult(
            project=config.name,
            path=project.path,
            php_version=config.php,
            domains=config.hosts,
            warnings=[*(carried or []), *discovery_warnings, *warnings],
        )
        with trace_span("containers", project=config.name, result=result):
            self._start_containers(config, others, result)
        with trace_span("php", project=config.name, result=result):
            self._start_php(project, result)
        with trace_span("vhosts", project=config.name, result=result):
            previous = self._write_vhosts(project, result)
        with trace_span("ssl", project=config.name, result=result):
            self._ensure_ssl(config, result)
        with trace_span("proxy", project=config.name, result=result):
            if previous is not None and not self._reload_proxy(result, start_if_stopped=True):
                self._restore_vhosts(config.name, previous, result)
        with trace_span("dns", project=config.name, result=result):
            self._ensure_dns(config, result)
        lifecycle.transition(ProjectState.STARTED)
        result.states = [s.value for s in lifecycle.history]
        logger.info(
            "Started %s with %d warnings and %d errors",
            config.name,
            len(result.warnings),
            len(result.errors),
        )
        return self._wrap(op, result)

    def _start_containers(
        self, config: ProjectConfig, others: list[ProjectConfig], result: StartResult
    ) -> None:
        host = self._host
        instances = derive_instances(config)
        if not host.settings.docker.enabled:
            if instances:
                result.warnings.append(
                    Issue(
                        component="docker",
                        message="docker is disabled in host settings; services not started",
                    )
                )
            return
        try:
            host.compose.generate([config, *others])
        except OSError as exc:
            result.errors.append(
                Issue(
                    component="docker",
                    message=f"cannot write {host.compose.compose_file_path}: {exc}",
                )
            )
            return
        if not instances:
            return

        users = usage_counts([config, *others])
        try:
            host.docker.ensure_daemon()
        except ExternalToolError as exc:
            self._record(exc, result.errors)
            result.services = [
                _status(i, running=False, users=users.get(i.identity, [])) for i in instances
            ]
            return

        running: dict[str, bool] = {}
        for instance in instances:
            try:
                host.docker.start_service(instance.service_name)
                running[instance.service_name] = True
            except ExternalToolError as exc:
                self._record(exc, result.warnings)
                running[instance.service_name] = False
            result.services.append(
                _status(
                    instance,
                    running=running[instance.service_name],
                    users=users.get(instance.identity, []),
                )
            )

        database = relational_instance(instances)
        if database is not None and running.get(database.service_name):
            self._ensure_database(database, config.database_name, result)

    def _ensure_database(self, instance: ServiceInstance, name: str, result: StartResult) -> None:
        docker = self._host.docker
        if docker.database_exists(instance.service_name, name):
            return
        try:
            docker.create_database(instance.service_name, name)
        except ExternalToolError as exc:
            issue = exc.to_issue()
            result.warnings.append(
                Issue(
                    component="database",
                    message=f"database {name!r} not created on {instance.label} ({issue.message})",
                    command=issue.command,
                )
            )

    def _start_php(self, project: LoadedProject, result: StartResult) -> None:
        host = self._host
        config = project.config
        try:
            system, _ = split_settings(config.php_ini)
            host.pools.generate(config)
        except InvalidIniValueError as exc:
            result.errors.append(Issue(component="php-pool", message=exc.message))
            return
        except OSError as exc:
            result.errors.append(Issue(component="php-pool", message=f"cannot write pool: {exc}"))
            return

        # A project that switched PHP versions leaves an old pool behind.
        current = host.pools.pool_path(config.name, config.php)
        dropped: list[str] = []
        for stale in host.pools.find_pools(config.name):
            if stale == current:
                continue
            try:
                stale.unlink(missing_ok=True)
            except OSError as exc:
                result.errors.append(
                    Issue(component="php-pool", message=f"cannot remove stale pool: {exc}")
                )
                continue
            dropped.append(stale.parent.name)
        for version in dropped:
            try:
                host.fpm(version).reload_if_running()
            except ExternalToolError as exc:
                self._record(exc, result.warnings)

        if system:
            claim = host.system_ini.claim(config.name, project.path, config.php, system)
            if claim.warning is not None:
                result.warnings.append(claim.warning.to_issue())
            if not host.system_ini.is_active(config.php):
                result.warnings.append(
                    Issue(
                        component="php-system",
                        message=(
                            f"system settings for PHP {config.php} are staged but not active; "
                            "run 'boxctl php system enable'"
                        ),
                        command=host.system_ini.enable_command(config.php),
                    )
                )

        try:
            host.fpm(config.php).reload_or_start()
        except ExternalToolError as exc:
            self._record(exc, result.errors)

    def _write_vhosts(
        self, project: LoadedProject, result: StartResult
    ) -> dict[Path, str] | None:
        """Write the project's vhosts and return the contents they replaced."""
        vhosts = self._host.vhosts
        try:
            previous = vhosts.backup(project.config.name)
            vhosts.generate(project.config, project.path)
        except OSError as exc:
            result.errors.append(Issue(component="nginx", message=f"cannot write vhosts: {exc}"))
            return None
        return previous

    def _restore_vhosts(
        self, project: str, previous: dict[Path, str], result: StartResult
    ) -> None:
        try:
            self._host.vhosts.restore(project, previous)
        except OSError as exc:
            result.errors.append(Issue(component="nginx", message=f"cannot restore vhosts: {exc}"))
            return
        result.warnings.append(
            Issue(component="nginx", message="rejected vhosts rolled back to the previous version")
        )

    def _ensure_ssl(self, config: ProjectConfig, result: StartResult) -> None:
        ssl_hosts = [d.host for d in config.domains if d.ssl]
        if not ssl_hosts:
            return
        ssl = self._host.ssl
        try:
            ssl.ensure_ca()
        except ExternalToolError as exc:
            self._record(exc, result.errors)
            return
        for domain in ssl_hosts:
            try:
                ssl.ensure_certificate(domain)
            except ExternalToolError as exc:
                self._record(exc, result.errors)

    def _reload_proxy(self, result: StartResult | StopResult, *, start_if_stopped: bool) -> bool:
        """Returns False when nginx rejected the configuration on disk."""
        try:
            self._host.nginx.test_and_reload(start_if_stopped=start_if_stopped)
        except ConfigTestError as exc:
            self._record(exc, result.errors)
            return False
        except ExternalToolError as exc:
            self._record(exc, result.errors)
        return True

    def _ensure_dns(self, config: ProjectConfig, result: StartResult) -> None:
        try:
            self._host.dns.ensure(config.hosts)
        except ExternalToolError as exc:
            self._record(exc, result.warnings)

    # ── stop ─────────────────────────────────────────────────────────

    @traced
    def stop(self, project_path: Path, *, dry_run: bool = False) -> ServiceResult:
        try:
            project = self.load(project_path)
        except ConfigError as exc:
            return ServiceResult.failure("stop", exc)
        return self._wrap("stop", self._stop(project, dry_run=dry_run))

    def _stop(self, project: LoadedProject, *, dry_run: bool) -> StopResult:
        host = self._host
        config = project.config
        lifecycle = ProjectLifecycle(config.name)
        lifecycle.transition(ProjectState.VALIDATED)
        lifecycle.transition(ProjectState.STOPPING)
        result = StopResult(project=config.name, path=project.path, dry_run=dry_run)

        with trace_span("vhosts", project=config.name, result=result):
            for component, remove in (
                ("nginx", host.vhosts.remove),
                ("php-pool", host.pools.remove),
            ):
                try:
                    removed = remove(config.name, dry_run=dry_run)
                except OSError as exc:
                    result.errors.append(
                        Issue(component=component, message=f"cannot remove files: {exc}")
                    )
                    continue
                result.removed += [str(p) for p in removed]
        if not dry_run:
            with trace_span("reload", project=config.name, result=result):
                try:
                    host.fpm(config.php).reload_if_running()
                except ExternalToolError as exc:
                    self._record(exc, result.errors)
                self._reload_proxy(result, start_if_stopped=False)

        with trace_span("dns", project=config.name, result=result):
            try:
                dropped = host.dns.remove(config.hosts, dry_run=dry_run)
                result.removed += [f"hosts: {d}" for d in dropped]
            except ExternalToolError as exc:
                self._record(exc, result.warnings)

        with trace_span("containers", project=config.name, result=result):
            others, discovery_warnings = self.known_configs(exclude=config.name)
            result.warnings.extend(discovery_warnings)
            self._stop_containers(config, others, result, dry_run=dry_run)

        lifecycle.transition(ProjectState.STOPPED)
        result.states = [s.value for s in lifecycle.history]
        return result

    def _stop_containers(
        self,
        config: ProjectConfig,
        others: list[ProjectConfig],
        result: StopResult,
        *,
        dry_run: bool,
    ) -> None:
        host = self._host
        remaining = usage_counts(others)
        to_stop: list[str] = []
        for instance in derive_instances(config):
            users = remaining.get(instance.identity)
            if users:
                result.kept_services[instance.service_name] = users
            else:
                to_stop.append(instance.service_name)
        result.stopped_services = to_stop
        if dry_run or not host.settings.docker.enabled:
            return

        for service in to_stop:
            try:
                host.docker.stop_service(service)
            except ExternalToolError as exc:
                self._record(exc, result.warnings)
        try:
            host.compose.generate(others)
        except (OSError, ResourceConflictError) as exc:
            message = exc.message if isinstance(exc, BoxError) else str(exc)
            result.errors.append(
                Issue(component="docker", message=f"cannot regenerate compose file: {message}")
            )

    # ── restart ──────────────────────────────────────────────────────

    @traced
    def restart(self, project_path: Path) -> ServiceResult:
        try:
            project = self.load(project_path)
        except ConfigError as exc:
            return ServiceResult.failure("restart", exc)
        return self._restart(project)

    def _restart(self, project: LoadedProject) -> ServiceResult:
        with trace_span("stop", project=project.config.name):
            stopped = self._stop(project, dry_run=False)
        # A half-stopped project is fine to restart.
        carried = [*stopped.warnings]
        for issue in stopped.errors:
            carried.append(issue.model_copy(update={"message": f"stop: {issue.message}"}))
        with trace_span("start", project=project.config.name):
            return self._start(project, op="restart", carried=carried)

    # ── check ────────────────────────────────────────────────────────

    @traced
    def check(self, project_path: Path) -> ServiceResult:
        try:
            project = self.load(project_path)
        except ConfigError as exc:
            return ServiceResult.failure("check", exc)
        return self._check(project)

    def _check(self, project: LoadedProject) -> ServiceResult:
        host = self._host
        config = project.config
        others, warnings = self.known_configs(exclude=config.name)
        errors: list[Issue] = []
        try:
            warnings.extend(self.validate_config(config, others=others))
        except (ConfigError, ResourceConflictError) as exc:
            errors.append(Issue(component="config", message=exc.message))

        instances = derive_instances(config)
        users = usage_counts([config, *others])
        running: dict[str, bool] | None = None
        if host.settings.docker.enabled and instances:
            try:
                running = {
                    i.service_name: host.docker.is_service_running(i.service_name)
                    for i in instances
                }
            except ExternalToolError as exc:
                warnings.append(exc.to_issue())
        services = [
            _status(
                i,
                running=None if running is None else running[i.service_name],
                users=users.get(i.identity, []),
            )
            for i in instances
        ]

        pool = host.pools.pool_path(config.name, config.php)
        managed = set(host.dns.hosts.list_domains())
        vhosts: list[dict[str, Any]] = []
        for domain in config.domains:
            certs = host.ssl.cert_paths(domain.host)
            resolves = (
                domain.host in managed
                if host.dns.mode == "hosts" or domain.host in host.dns.outside_tld([domain.host])
                else host.dns.dnsmasq.is_configured(host.settings.dns.tld)
            )
            vhosts.append(
                {
                    "host": domain.host,
                    "file": str(host.vhosts.vhost_path(config.name, domain.host)),
                    "present": host.vhosts.vhost_path(config.name, domain.host).is_file(),
                    "ssl": domain.ssl,
                    "certificate": certs.exist() if domain.ssl else None,
                    "dns": resolves,
                }
            )

        system, _ = self._split_quietly(config, errors)
        owner = host.system_ini.get_current_owner(config.php)
        system_report: dict[str, Any] = {
            "declared": system,
            "owner": owner.project_name if owner else None,
            "owned_by_project": bool(owner and owner.same_project(config.name, str(project.path))),
            "active": host.system_ini.is_active(config.php),
            "enable_command": host.system_ini.enable_command(config.php),
        }
        if system and owner and not system_report["owned_by_project"]:
            warnings.append(
                Issue(
                    component="php-system",
                    message=f"PHP {config.php} system settings are owned by {owner.project_name!r}",
                )
            )

        orphans = orphaned_services(
            host.compose.defined_services(), union_instances([config, *others])
        )
        for name in orphans:
            warnings.append(
                Issue(
                    component="docker",
                    message=f"compose service {name!r} is not required by any known project",
                )
            )

        data = {
            "project": config.name,
            "path": str(project.path),
            "php_version": config.php,
            "services": [s.model_dump(mode="json") for s in services],
            "pool": {"file": str(pool), "present": pool.is_file()},
            "marker": host.vhosts.marker_path(config.name).is_file(),
            "vhosts": vhosts,
            "system_ini": system_report,
            "orphaned_services": orphans,
            "includes": {
                "nginx": host.vhosts.include_directive(),
                "php_fpm": host.pools.include_directive(config.php),
            },
            "commands": {name: cmd.description or cmd.run for name, cmd in config.commands.items()},
            "warnings": [w.model_dump() for w in warnings],
            "errors": [e.model_dump() for e in errors],
        }
        return ServiceResult(ok=True, op="check", data=data, warnings=[str(w) for w in warnings])

    @staticmethod
    def _split_quietly(
        config: ProjectConfig, errors: list[Issue]
    ) -> tuple[dict[str, str], dict[str, str]]:
        try:
            return split_settings(config.php_ini)
        except InvalidIniValueError as exc:
            errors.append(Issue(component="php-pool", message=exc.message))
            return {}, {}

    # ── all projects ─────────────────────────────────────────────────

    def _each(self, op: str, action: Any) -> ServiceResult:
        """Run *action(project)* over discovered projects, serially."""
        projects: list[dict[str, Any]] = []
        warnings: list[str] = []
        failed = 0
        discovered: list[ProjectInfo] = self._host.discovery.discover()
        for info in discovered:
            if not info.has_config:
                warnings.append(f"discovery: {info.name} has no descriptor at {info.path}; skipped")
                continue
            try:
                project = LoadedProject(config=load_descriptor(info.path), path=info.path)
            except ConfigError as exc:
                failed += 1
                projects.append({"project": info.name, "ok": False, "error": exc.message})
                continue
            result: ServiceResult = action(project)
            warnings.extend(f"{info.name}: {w}" for w in result.warnings)
            if result.ok:
                projects.append({"ok": True, **result.data})
            else:
                failed += 1
                message = result.error.message if result.error else "failed"
                projects.append({"project": info.name, "ok": False, "error": message})

        error = None
        if failed:
            error = ServiceError(
                code="PARTIAL_FAILURE",
                message=f"{failed} of {len(projects)} projects failed",
                detail={"projects": projects},
            )
        return ServiceResult(
            ok=failed == 0,
            op=op,
            data={"projects": projects},
            warnings=warnings,
            error=error,
        )

    @traced
    def start_all(self) -> ServiceResult:
        return self._each("start_all", lambda p: self._start(p, op="start"))

    @traced
    def stop_all(self, *, dry_run: bool = False) -> ServiceResult:
        return self._each("stop_all", lambda p: self._wrap("stop", self._stop(p, dry_run=dry_run)))

    @traced
    def restart_all(self) -> ServiceResult:
        return self._each("restart_all", self._restart)

    @traced
    def check_all(self) -> ServiceResult:
        return self._each("check_all", self._check)

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _wrap(op: str, result: StartResult | StopResult) -> ServiceResult:
        return ServiceResult(
            ok=True,
            op=op,
            data=result.model_dump(mode="json"),
            warnings=[str(w) for w in result.warnings],
        )
