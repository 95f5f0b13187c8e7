"""BaseService — abstract foundation for all boxctl services.

Every service receives a :class:`Host` at construction time. The Host owns
the command runner, platform facts, and every generator/controller; services
own sequencing and turn exceptions into :class:`ServiceResult` payloads.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from boxctl.domain.errors import ExternalToolError, Issue

if TYPE_CHECKING:
    from boxctl.infrastructure.host import Host

logger = logging.getLogger(__name__)


class BaseService:
    """Abstract base for all service-layer classes.

    Usage::

        class LibraryService(BaseService):
            def list_templates(self) -> ServiceResult:
                ...
    """

    def __init__(self, host: Host) -> None:
        self._host = host

    @staticmethod
    def _record(exc: ExternalToolError, bucket: list[Issue]) -> Issue:
        """Append *exc* as an Issue to *bucket* (warnings or errors)."""
        issue = exc.to_issue()
        logger.debug("%s", issue)
        bucket.append(issue)
        return issue
