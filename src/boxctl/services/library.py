"""LibraryService — inspect the templates consumed by the generators.

Templates resolve user overrides under ``<state>/templates/<group>/`` before
the packaged defaults, so ``library show`` reports which one actually wins.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import TemplateNotFound

from boxctl.infrastructure.templates import (
    TEMPLATE_GROUPS,
    build_template_environment,
    list_group_templates,
    override_root,
)
from boxctl.services.base import BaseService
from boxctl.services.result import ServiceError, ServiceResult
from boxctl.services.telemetry import traced


class LibraryService(BaseService):
    @traced
    def list_templates(self, group: str | None = None) -> ServiceResult:
        if group is not None and group not in TEMPLATE_GROUPS:
            return self._unknown_group("library_list", group)
        groups = [group] if group else list(TEMPLATE_GROUPS)
        state_dir = self._host.state_dir
        items = [
            {"group": g, "name": name, "ref": f"{g}/{name}", "overridden": overridden}
            for g in groups
            for name, overridden in list_group_templates(g, state_dir=state_dir)
        ]
        return ServiceResult(
            ok=True,
            op="library_list",
            data={
                "count": len(items),
                "override_root": str(override_root(state_dir)),
                "items": items,
            },
        )

    @traced
    def show_template(self, ref: str) -> ServiceResult:
        """Source of ``<group>/<name>`` as the generators would load it."""
        group, _, name = ref.partition("/")
        if group not in TEMPLATE_GROUPS:
            return self._unknown_group("library_show", group)
        env = build_template_environment(group, state_dir=self._host.state_dir)
        assert env.loader is not None
        try:
            source, filename, _ = env.loader.get_source(env, name)
        except TemplateNotFound:
            return ServiceResult(
                ok=False,
                op="library_show",
                error=ServiceError(
                    code="NOT_FOUND",
                    message=f"No template {name!r} in group {group!r}",
                    detail={"ref": ref},
                ),
            )
        overrides = override_root(self._host.state_dir) / group
        overridden = bool(filename) and overrides.resolve() in Path(filename).resolve().parents
        return ServiceResult(
            ok=True,
            op="library_show",
            data={
                "ref": ref,
                "group": group,
                "name": name,
                "origin": filename,
                "overridden": overridden,
                "source": source,
            },
        )

    @staticmethod
    def _unknown_group(op: str, group: str) -> ServiceResult:
        return ServiceResult(
            ok=False,
            op=op,
            error=ServiceError(
                code="NOT_FOUND",
                message=f"Unknown template group {group!r}",
                detail={"groups": list(TEMPLATE_GROUPS)},
            ),
        )
