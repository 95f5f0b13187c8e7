"""Per-step timing for reconcile operations.

With ``--verbose``, every ``@traced`` service call gets a root span and each
reconcile step (validate, containers, php, vhosts, ssl, proxy, dns) opens a
:class:`StepSpan` beneath it. A step span records the project, the component
the step drives, and how many errors and warnings the step added to the
result. The tree lands in ``ServiceResult.meta["telemetry"]``.

Independently of ``--verbose``, :func:`trace_span` binds ``project`` and
``step`` into the structlog context, so log lines emitted during a step
carry both.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

import structlog

from boxctl.services.result import ServiceResult, StartResult, StopResult

# Component each reconcile step drives; matches Issue.component values.
STEP_COMPONENTS: dict[str, str] = {
    "validate": "config",
    "containers": "docker",
    "php": "php-fpm",
    "vhosts": "nginx",
    "ssl": "ssl",
    "proxy": "nginx",
    "reload": "nginx",
    "dns": "dns",
}

_verbose_enabled: ContextVar[bool] = ContextVar("_verbose_enabled", default=False)
_current_span: ContextVar[StepSpan | None] = ContextVar("_current_span", default=None)

log = structlog.get_logger("boxctl.telemetry")


@dataclass
class StepSpan:
    """One timed step, nested under the operation that ran it."""

    step: str
    project: str | None = None
    component: str | None = None
    children: list[StepSpan] = field(default_factory=list)
    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None
    errors: int = 0
    warnings: int = 0
    outcome: str | None = None

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000

    def end(self) -> None:
        self.end_time = time.perf_counter()

    def attributes(self) -> dict[str, Any]:
        attrs: dict[str, Any] = {}
        if self.project:
            attrs["project"] = self.project
        if self.component:
            attrs["component"] = self.component
        if self.errors:
            attrs["errors"] = self.errors
        if self.warnings:
            attrs["warnings"] = self.warnings
        if self.outcome:
            attrs["outcome"] = self.outcome
        return attrs

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.step, "duration_ms": round(self.duration_ms, 2)}
        attrs = self.attributes()
        if attrs:
            data["attributes"] = attrs
        if self.children:
            data["children"] = [c.to_dict() for c in self.children]
        return data


def _issue_counts(result: StartResult | StopResult | None) -> tuple[int, int]:
    if result is None:
        return 0, 0
    return len(result.errors), len(result.warnings)


@contextmanager
def trace_span(
    step: str,
    *,
    project: str | None = None,
    result: StartResult | StopResult | None = None,
) -> Generator[StepSpan | None]:
    """Time *step* under the current operation span.

    When *result* is given, the span counts the errors and warnings the step
    appended to it. Yields None when telemetry is off or no operation span
    is open.
    """
    context = {"step": step} if project is None else {"step": step, "project": project}
    with structlog.contextvars.bound_contextvars(**context):
        parent = _current_span.get() if _verbose_enabled.get() else None
        if parent is None:
            yield None
            return

        span = StepSpan(
            step=step,
            project=project or parent.project,
            component=STEP_COMPONENTS.get(step),
        )
        parent.children.append(span)
        errors_before, warnings_before = _issue_counts(result)
        token = _current_span.set(span)
        try:
            yield span
        finally:
            span.end()
            _current_span.reset(token)
            errors_after, warnings_after = _issue_counts(result)
            span.errors = errors_after - errors_before
            span.warnings = warnings_after - warnings_before
            log.debug(
                "reconcile.step",
                duration_ms=round(span.duration_ms, 2),
                component=span.component,
                errors=span.errors,
                warnings=span.warnings,
            )


def _finish_root(span: StepSpan, result: ServiceResult) -> ServiceResult:
    """Fill the root span from the result and attach the tree (results are frozen)."""
    data = result.data or {}
    project = data.get("project")
    if isinstance(project, str):
        span.project = project
    span.errors = len(data.get("errors") or [])
    span.warnings = len(result.warnings)
    span.outcome = "ok" if result.ok else (result.error.code if result.error else "failed")
    meta = {**(result.meta or {}), "telemetry": span.to_dict()}
    return result.model_copy(update={"meta": meta})


_P = ParamSpec("_P")
_R = TypeVar("_R")


def traced(func: Callable[_P, _R]) -> Callable[_P, _R]:  # noqa: UP047
    """Open the operation span for a service method and attach its step tree."""

    @functools.wraps(func)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        if not _verbose_enabled.get():
            return func(*args, **kwargs)

        span = StepSpan(step=func.__qualname__)
        token = _current_span.set(span)
        try:
            result = func(*args, **kwargs)
        except Exception:
            log.debug("operation.failed", operation=span.step)
            raise
        finally:
            span.end()
            _current_span.reset(token)

        if isinstance(result, ServiceResult):
            result = _finish_root(span, result)  # type: ignore[assignment]
        log.debug(
            "operation.complete",
            operation=span.step,
            project=span.project,
            duration_ms=round(span.duration_ms, 2),
            outcome=span.outcome,
        )
        return result

    return wrapper


def enable_telemetry() -> None:
    """Turn on step timing (AppContext calls this under ``--verbose``)."""
    _verbose_enabled.set(True)


def disable_telemetry() -> None:
    _verbose_enabled.set(False)
