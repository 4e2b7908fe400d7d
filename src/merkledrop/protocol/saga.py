"""
merkledrop/protocol/saga.py

Explicit state for one claim's payout saga.

    verified -> awaiting_registration -> registered_awaiting_transfer -> completed
        \\                 \\                          \\
         `-----------------`--------------------------`--> rolled_back

Every non-terminal stage may roll back; only the transfer stage may
complete.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..errors import ExternalCallFailedError, SagaStateError

logger = logging.getLogger("merkledrop.protocol.saga")


class ClaimStage(Enum):
    """Stages of a claim payout."""
    VERIFIED = "verified"
    AWAITING_REGISTRATION = "awaiting_registration"
    REGISTERED_AWAITING_TRANSFER = "registered_awaiting_transfer"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


TERMINAL_STAGES: FrozenSet[ClaimStage] = frozenset({
    ClaimStage.COMPLETED,
    ClaimStage.ROLLED_BACK,
})

ALLOWED_TRANSITIONS: Dict[ClaimStage, FrozenSet[ClaimStage]] = {
    ClaimStage.VERIFIED: frozenset({
        ClaimStage.AWAITING_REGISTRATION,
        ClaimStage.ROLLED_BACK,
    }),
    ClaimStage.AWAITING_REGISTRATION: frozenset({
        ClaimStage.REGISTERED_AWAITING_TRANSFER,
        ClaimStage.ROLLED_BACK,
    }),
    ClaimStage.REGISTERED_AWAITING_TRANSFER: frozenset({
        ClaimStage.COMPLETED,
        ClaimStage.ROLLED_BACK,
    }),
    ClaimStage.COMPLETED: frozenset(),
    ClaimStage.ROLLED_BACK: frozenset(),
}


@dataclass
class ClaimRecord:
    """Terminal record of a claim saga."""
    saga_id: str
    account_id: str
    amount: int
    ledger_id: str
    stage: str
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    started_at: float = 0.0
    finished_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            'saga_id': self.saga_id,
            'account_id': self.account_id,
            'amount': str(self.amount),
            'ledger_id': self.ledger_id,
            'stage': self.stage,
            'failed_stage': self.failed_stage,
            'error': self.error,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }


@dataclass
class ClaimSaga:
    """One in-flight or finished claim payout."""
    saga_id: str
    account_id: str
    amount: int
    ledger_id: str
    stage: ClaimStage = ClaimStage.VERIFIED
    error: Optional[ExternalCallFailedError] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    history: List[Tuple[ClaimStage, float]] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append((self.stage, self.started_at))

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.stage == ClaimStage.COMPLETED

    @property
    def rolled_back(self) -> bool:
        return self.stage == ClaimStage.ROLLED_BACK

    def advance(self, stage: ClaimStage) -> None:
        """
        Move to the next stage.

        Raises:
            SagaStateError: if the transition is not allowed
        """
        if stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise SagaStateError(
                f"Saga {self.saga_id} cannot move from {self.stage.value} to {stage.value}"
            )

        now = time.time()
        logger.debug(f"Saga {self.saga_id} @{self.account_id}: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append((stage, now))
        if stage.is_terminal:
            self.finished_at = now

    def fail(self, error: ExternalCallFailedError) -> None:
        """Roll back with the failure that caused it."""
        self.error = error
        self.advance(ClaimStage.ROLLED_BACK)

    def to_record(self) -> ClaimRecord:
        if not self.is_terminal:
            raise SagaStateError(f"Saga {self.saga_id} is still {self.stage.value}")
        return ClaimRecord(
            saga_id=self.saga_id,
            account_id=self.account_id,
            amount=self.amount,
            ledger_id=self.ledger_id,
            stage=self.stage.value,
            failed_stage=self.error.stage if self.error else None,
            error=str(self.error) if self.error else None,
            started_at=self.started_at,
            finished_at=self.finished_at or 0.0,
        )

    def to_dict(self) -> dict:
        return {
            'saga_id': self.saga_id,
            'account_id': self.account_id,
            'amount': str(self.amount),
            'ledger_id': self.ledger_id,
            'stage': self.stage.value,
            'error': str(self.error) if self.error else None,
            'failed_stage': self.error.stage if self.error else None,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'history': [stage.value for stage, _ in self.history],
        }
