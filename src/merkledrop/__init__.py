"""
merkledrop - Merkle-authorized token airdrop claims

Built on trio with:
- Sorted-pair SHA-256 merkle trees for eligibility
- Saga-style claim payouts with compensation on ledger failure
- JSON-RPC token ledger client
- HTTP API for claims and administration
- Prometheus metrics for monitoring

Usage:
    from merkledrop import AirdropRegistry, ClaimCoordinator, JsonRpcLedger, MerkleTree

    tree = MerkleTree([("alice.testnet", 100), ("bob.testnet", 250)])

    registry = AirdropRegistry("owner.testnet", "token.testnet", tree.root)
    coordinator = ClaimCoordinator(registry, JsonRpcLedger("token.testnet"))

    saga = await coordinator.claim(
        "alice.testnet", 100, tree.get_proof_for("alice.testnet"), attached_deposit=1
    )

REST API Usage:
    from merkledrop.api import AirdropAPI

    api = AirdropAPI(coordinator, host="0.0.0.0", port=8080)
    await api.start()
"""

from .config import (
    AirdropConfig,
    VERSION,
    ONE_YOCTO,
    STORAGE_REGISTRATION_DEPOSIT,
    MAX_PROOF_LENGTH,
)
from .errors import (
    AirdropError,
    AlreadyClaimedError,
    ProofInvalidError,
    ProofMalformedError,
    UnauthorizedError,
    DepositRequiredError,
    InvalidAdministratorError,
    InvalidAmountError,
    NothingToClaimError,
    SagaStateError,
    LedgerCallError,
    ExternalCallFailedError,
)
from .blockchain import (
    MerkleTree,
    hash_leaf,
    hash_pair,
    verify_claim,
    verify_proof,
    TokenLedger,
    JsonRpcLedger,
)
from .protocol import (
    ClaimStage,
    ClaimSaga,
    ClaimRecord,
    AirdropRegistry,
    ClaimCoordinator,
    AllowListAirdrop,
)
from .metrics import MetricsCollector
from .api import AirdropAPI

__version__ = VERSION
__all__ = [
    # Config
    "AirdropConfig",
    "ONE_YOCTO",
    "STORAGE_REGISTRATION_DEPOSIT",
    "MAX_PROOF_LENGTH",
    # Errors
    "AirdropError",
    "AlreadyClaimedError",
    "ProofInvalidError",
    "ProofMalformedError",
    "UnauthorizedError",
    "DepositRequiredError",
    "InvalidAdministratorError",
    "InvalidAmountError",
    "NothingToClaimError",
    "SagaStateError",
    "LedgerCallError",
    "ExternalCallFailedError",
    # Merkle / ledger
    "MerkleTree",
    "hash_leaf",
    "hash_pair",
    "verify_claim",
    "verify_proof",
    "TokenLedger",
    "JsonRpcLedger",
    # Protocol
    "ClaimStage",
    "ClaimSaga",
    "ClaimRecord",
    "AirdropRegistry",
    "ClaimCoordinator",
    "AllowListAirdrop",
    # Surfaces
    "MetricsCollector",
    "AirdropAPI",
]
