"""Error taxonomy shared by every boxctl layer.

Fatal conditions are exceptions (``ConfigError``, ``ResourceConflictError``).
Tool failures (``ExternalToolError``) are raised by infrastructure and turned
into :class:`Issue` records by the reconciler, which decides whether the
affected step is optional (warning) or required (error).
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence

from pydantic import BaseModel


class Issue(BaseModel):
    """A surfaced, non-fatal condition with enough detail to reproduce it."""

    model_config = {"frozen": True}

    component: str
    message: str
    command: str | None = None

    def __str__(self) -> str:
        text = f"{self.component}: {self.message}"
        if self.command:
            text += f" (command: {self.command})"
        return text


class BoxError(Exception):
    """Base class for all boxctl errors."""

    code = "BOX_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(BoxError):
    """The project descriptor is structurally invalid."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, *, field: str | None = None, index: int | None = None) -> None:
        if field is not None:
            location = field if index is None else f"{field}[{index}]"
            message = f"{location}: {message}"
        super().__init__(message)
        self.field = field
        self.index = index


class ConfigNotFoundError(ConfigError):
    """No project descriptor was found."""

    code = "CONFIG_NOT_FOUND"


class InvalidIniValueError(ConfigError):
    """A php_ini override cannot be written to a generated ini file."""

    code = "INVALID_INI_VALUE"

    def __init__(self, key: str, value: str, reason: str) -> None:
        super().__init__(f"{key}={value!r}: {reason}", field="php_ini")
        self.key = key
        self.value = value


class ResourceConflictError(BoxError):
    """Two distinct service identities would bind the same host port."""

    code = "RESOURCE_CONFLICT"

    def __init__(self, message: str, *, conflicts: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


class ExternalToolError(BoxError):
    """An external tool (docker, nginx, mkcert, systemctl, ...) failed."""

    code = "EXTERNAL_TOOL_ERROR"

    def __init__(
        self,
        component: str,
        message: str,
        *,
        command: Sequence[str] | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.component = component
        self.command = list(command) if command else None
        self.output = output

    @property
    def command_line(self) -> str | None:
        if not self.command:
            return None
        return shlex.join(self.command)

    def to_issue(self) -> Issue:
        message = self.message
        if self.output:
            message = f"{message}: {self.output.strip()}"
        return Issue(component=self.component, message=message, command=self.command_line)


class StateDirectoryError(BoxError):
    """The host state directory cannot be created or written."""

    code = "STATE_DIRECTORY_ERROR"


class IllegalTransitionError(BoxError):
    """A project lifecycle transition that the state machine forbids."""

    code = "ILLEGAL_TRANSITION"


class OwnershipOverrideWarning(UserWarning):
    """Host-global PHP settings changed hands from one project to another.

    Always surfaced, never fatal.
    """

    def __init__(
        self,
        php_version: str,
        previous_project: str,
        previous_path: str,
        new_project: str,
        changes: Sequence[str],
    ) -> None:
        self.php_version = php_version
        self.previous_project = previous_project
        self.previous_path = previous_path
        self.new_project = new_project
        self.changes = list(changes)
        super().__init__(self.describe())

    def describe(self) -> str:
        summary = (
            f"PHP {self.php_version} system settings now owned by {self.new_project!r} "
            f"(previously {self.previous_project!r} at {self.previous_path})"
        )
        if self.changes:
            summary += "; " + ", ".join(self.changes)
        return summary

    def to_issue(self) -> Issue:
        return Issue(component="php-system", message=self.describe())
