"""
merkledrop/blockchain/

Eligibility commitments and the token ledger boundary.
"""

from .merkle import (
    MerkleTree,
    compute_root,
    decode_proof,
    hash_leaf,
    hash_pair,
    leaf_input,
    normalize_amount,
    verify_claim,
    verify_proof,
)

from .ledger import (
    TokenLedger,
    JsonRpcLedger,
)

__all__ = [
    # Merkle commitments
    "MerkleTree",
    "compute_root",
    "decode_proof",
    "hash_leaf",
    "hash_pair",
    "leaf_input",
    "normalize_amount",
    "verify_claim",
    "verify_proof",
    # Ledger
    "TokenLedger",
    "JsonRpcLedger",
]
