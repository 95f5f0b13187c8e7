"""Per-project reconcile lifecycle.

States are never persisted: every invocation starts from ``not_validated``
and walks forward. The state machine only guards the order the reconciler
performs its steps in.
"""

from __future__ import annotations

from enum import StrEnum

from boxctl.domain.errors import IllegalTransitionError


class ProjectState(StrEnum):
    NOT_VALIDATED = "not_validated"
    VALIDATED = "validated"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


TRANSITIONS: dict[ProjectState, list[ProjectState]] = {
    ProjectState.NOT_VALIDATED: [ProjectState.VALIDATED],
    ProjectState.VALIDATED: [ProjectState.STARTING, ProjectState.STOPPING],
    ProjectState.STARTING: [ProjectState.STARTED],
    ProjectState.STARTED: [ProjectState.STOPPING],
    ProjectState.STOPPING: [ProjectState.STOPPED],
    ProjectState.STOPPED: [ProjectState.VALIDATED],
}


class ProjectLifecycle:
    """Tracks one project's state within a single invocation."""

    def __init__(self, project: str) -> None:
        self.project = project
        self.state = ProjectState.NOT_VALIDATED
        self.history: list[ProjectState] = [self.state]

    def can_transition(self, target: ProjectState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: ProjectState) -> None:
        if not self.can_transition(target):
            msg = f"{self.project}: cannot go from {self.state} to {target}"
            raise IllegalTransitionError(msg)
        self.state = target
        self.history.append(target)
