"""
merkledrop/protocol/

Airdrop state, claim sagas and their coordinator.
"""

from .saga import (
    ClaimStage,
    ClaimRecord,
    ClaimSaga,
    TERMINAL_STAGES,
    ALLOWED_TRANSITIONS,
)

from .registry import (
    AirdropRegistry,
    require_attached_deposit,
)

from .claims import ClaimCoordinator

from .allowlist import AllowListAirdrop

__all__ = [
    # Sagas
    "ClaimStage",
    "ClaimRecord",
    "ClaimSaga",
    "TERMINAL_STAGES",
    "ALLOWED_TRANSITIONS",
    # State
    "AirdropRegistry",
    "require_attached_deposit",
    # Coordination
    "ClaimCoordinator",
    "AllowListAirdrop",
]
