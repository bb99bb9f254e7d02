"""Pipeline run state.

A PipelineRun is one execution of the sign-in or withdrawal state machine. It
owns every intermediate value of that execution; nothing is shared between
runs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from ulid import ULID


class PipelineKind(str, Enum):
    sign_in = "sign_in"
    withdrawal = "withdrawal"


class PipelineState(str, Enum):
    idle = "idle"
    awaiting_authorization = "awaiting_authorization"
    checking_credential = "checking_credential"
    exchanging_code = "exchanging_code"
    signing = "signing"
    revoking = "revoking"
    confirming = "confirming"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


TERMINAL_STATES: FrozenSet[PipelineState] = frozenset(
    {PipelineState.completed, PipelineState.failed, PipelineState.cancelled}
)

# Forward steps only. Failed and cancelled are reachable from every
# non-terminal state and are not listed.
PIPELINE_STEPS: Dict[PipelineKind, List[PipelineState]] = {
    PipelineKind.sign_in: [
        PipelineState.idle,
        PipelineState.awaiting_authorization,
        PipelineState.checking_credential,
        PipelineState.confirming,
        PipelineState.completed,
    ],
    PipelineKind.withdrawal: [
        PipelineState.idle,
        PipelineState.awaiting_authorization,
        PipelineState.exchanging_code,
        PipelineState.signing,
        PipelineState.revoking,
        PipelineState.confirming,
        PipelineState.completed,
    ],
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PipelineRun:
    kind: PipelineKind
    run_id: str = field(default_factory=lambda: str(ULID()))
    state: PipelineState = PipelineState.idle
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.idle])
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    error: Optional[BaseException] = None

    # Intermediate values, never rendered in repr.
    nonce: Optional[str] = field(default=None, repr=False)
    nonce_hash: Optional[str] = field(default=None, repr=False)
    authorization_code: Optional[str] = field(default=None, repr=False)
    client_secret: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, state: PipelineState) -> None:
        """Move to ``state``, enforcing the step order of this pipeline kind."""
        if self.is_terminal:
            raise InvalidTransition(
                f"Run {self.run_id} is {self.state.value}, cannot move to {state.value}"
            )

        if state not in (PipelineState.failed, PipelineState.cancelled):
            steps = PIPELINE_STEPS[self.kind]
            current = steps.index(self.state)
            if current + 1 >= len(steps) or steps[current + 1] != state:
                raise InvalidTransition(
                    f"{self.kind.value} run cannot move from {self.state.value} to {state.value}"
                )

        self.state = state
        self.history.append(state)
        if self.is_terminal:
            self.finished_at = datetime.now(timezone.utc)

    def discard_secrets(self) -> None:
        """Drop every intermediate credential held by this run."""
        self.nonce = None
        self.nonce_hash = None
        self.authorization_code = None
        self.client_secret = None
        self.refresh_token = None


class RunGuard:
    """
    Single-flight guard for one user session.

    Every orchestrator of a session shares the session's guard, so a sign-in
    and a withdrawal can never be active at the same time. Acquiring never
    awaits, so check-and-set cannot interleave on the event loop.
    """

    def __init__(self) -> None:
        self.active: Optional[PipelineRun] = None

    def acquire(self, run: PipelineRun) -> bool:
        if self.active is not None:
            return False
        self.active = run
        return True

    def release(self, run: PipelineRun) -> None:
        if self.active is run:
            self.active = None
