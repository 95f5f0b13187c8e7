"""structlog setup for boxctl.

Every module logs through stdlib ``logging.getLogger(__name__)``; records are
routed through structlog's ProcessorFormatter to stderr so stdout stays free
for command output. Reconcile steps bind ``project`` and ``step`` into the
structlog context (see :func:`boxctl.services.telemetry.trace_span`):

- console (default): the pair becomes a ``[project/step]`` prefix
- ``--log-json``: they stay as separate keys on each JSON line
"""

from __future__ import annotations

import logging
import sys
from pathlib import PurePath

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger


def _stringify_paths(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """State paths, certificate paths and the like render as plain strings."""
    for key, value in event_dict.items():
        if isinstance(value, PurePath):
            event_dict[key] = str(value)
    return event_dict


def _reconcile_prefix(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    project = event_dict.pop("project", None)
    step = event_dict.pop("step", None)
    tag = "/".join(str(part) for part in (project, step) if part)
    if tag:
        event_dict["event"] = f"[{tag}] {event_dict.get('event', '')}"
    return event_dict


def configure_logging(*, verbose: bool = False, log_json: bool = False) -> None:
    """Install the single stderr handler; safe to call more than once.

    Args:
        verbose: Show boxctl DEBUG records (external commands, reconcile
            steps). Otherwise only warnings and errors.
        log_json: One JSON object per line instead of console output.
    """
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _stringify_paths,
    ]

    final: list[Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if log_json:
        final.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        final += [_reconcile_prefix, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(foreign_pre_chain=shared, processors=final)
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)
    logging.getLogger("boxctl").setLevel(logging.DEBUG if verbose else logging.WARNING)
