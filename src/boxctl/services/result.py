"""ServiceResult and ServiceError — the universal service contract.

INVARIANT: All service-layer methods return ServiceResult.
The CLI (and anything else driving the services) consumes this type.

Reconcile operations additionally build a :class:`StartResult` or
:class:`StopResult` and place its dump under ``data``. Their ``errors`` are
accumulated, not raised: a run with errors still completes (``ok=True``)
unless something fatal stopped it before any side effect.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from boxctl.domain.errors import BoxError, Issue


class ServiceError(BaseModel):
    """Structured error payload within a ServiceResult."""

    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)


class ServiceResult(BaseModel):
    """Universal return type for all service operations.

    Attributes:
        ok: Whether the operation succeeded.
        op: Name of the operation (e.g. ``"start"``).
        data: Operation-specific payload on success.
        warnings: Non-fatal issues encountered during the operation.
        error: Structured error if ``ok`` is False.
        meta: Optional metadata (timing, telemetry).
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def failure(cls, op: str, exc: BoxError, **detail: Any) -> ServiceResult:
        """Wrap a fatal domain exception."""
        extra = dict(detail)
        conflicts = getattr(exc, "conflicts", None)
        if conflicts:
            extra["conflicts"] = conflicts
        command_line = getattr(exc, "command_line", None)
        if command_line:
            extra["command"] = command_line
        return cls(
            ok=False,
            op=op,
            error=ServiceError(code=exc.code, message=exc.message, detail=extra),
        )


class ServiceStatus(BaseModel):
    """One container instance as reported by start/check."""

    name: str
    kind: str
    version: str
    port: int
    extra_ports: list[int] = Field(default_factory=list)
    container: str
    running: bool | None = None
    users: list[str] = Field(default_factory=list)


class StartResult(BaseModel):
    """Outcome of reconciling one project up."""

    project: str
    path: Path
    php_version: str
    domains: list[str] = Field(default_factory=list)
    services: list[ServiceStatus] = Field(default_factory=list)
    warnings: list[Issue] = Field(default_factory=list)
    errors: list[Issue] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)


class StopResult(BaseModel):
    """Outcome of reconciling one project down."""

    project: str
    path: Path
    dry_run: bool = False
    removed: list[str] = Field(default_factory=list)
    stopped_services: list[str] = Field(default_factory=list)
    kept_services: dict[str, list[str]] = Field(default_factory=dict)
    warnings: list[Issue] = Field(default_factory=list)
    errors: list[Issue] = Field(default_factory=list)
    states: list[str] = Field(default_factory=list)
