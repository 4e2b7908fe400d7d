"""
merkledrop/blockchain/merkle.py

Sorted-pair merkle tree for airdrop eligibility.

A leaf commits to one ``(account, amount)`` pair as
``sha256("{account}:{amount}")``. Internal nodes hash the two children
in byte order, ``sha256(min(a, b) + max(a, b))``, so a proof is just
the ordered list of sibling hashes with no left/right markers.

Usage:
    from merkledrop.blockchain.merkle import MerkleTree, verify_claim

    tree = MerkleTree([("alice.testnet", 100), ("bob.testnet", 250)])
    proof = tree.get_proof_for("alice.testnet")

    verify_claim("alice.testnet", 100, tree.root, proof)  # True

Note: the plain scheme has no domain separation between leaves and
internal nodes, so a 64-byte leaf input equal to two concatenated
child hashes would hash to an internal node. ``domain_separated=True``
prefixes leaves with 0x00 and nodes with 0x01; roots built one way
never verify the other way.
"""

import hashlib
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..config import HASH_SIZE
from ..errors import InvalidAmountError, ProofMalformedError

logger = logging.getLogger("merkledrop.blockchain.merkle")

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

ProofElement = Union[str, bytes]


# ============================================================================
# HASHING
# ============================================================================

def normalize_amount(amount: Any) -> int:
    """
    Coerce an amount to a positive integer.

    Accepts ints and decimal digit strings (the JSON form of u128).

    Raises:
        InvalidAmountError: for anything else, zero or negative values
    """
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    if isinstance(amount, int):
        value = amount
    elif isinstance(amount, str) and amount.strip().isascii() and amount.strip().isdecimal():
        value = int(amount.strip())
    else:
        raise InvalidAmountError(f"Invalid amount: {amount!r}")

    if value <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {value}")
    return value


def leaf_input(account_id: str, amount: int) -> bytes:
    """Canonical leaf encoding: ``account:amount`` in UTF-8."""
    return f"{account_id}:{amount}".encode("utf-8")


def hash_leaf(account_id: str, amount: int, domain_separated: bool = False) -> bytes:
    """Hash one (account, amount) commitment."""
    data = leaf_input(account_id, amount)
    if domain_separated:
        data = LEAF_PREFIX + data
    return hashlib.sha256(data).digest()


def hash_pair(a: bytes, b: bytes, domain_separated: bool = False) -> bytes:
    """Hash two sibling nodes in byte order."""
    low, high = (a, b) if a <= b else (b, a)
    prefix = NODE_PREFIX if domain_separated else b""
    return hashlib.sha256(prefix + low + high).digest()


def decode_proof(proof: Sequence[ProofElement]) -> List[bytes]:
    """
    Decode proof elements into raw hashes.

    Elements may be 32-byte values or 64-character hex strings
    (an ``0x`` prefix is tolerated).

    Raises:
        ProofMalformedError: if the proof is not a sequence or any element
            cannot be decoded as a hash
    """
    if isinstance(proof, (str, bytes)) or not isinstance(proof, Sequence):
        raise ProofMalformedError("Proof must be a list of hashes")

    decoded = []
    for index, element in enumerate(proof):
        if isinstance(element, bytes):
            raw = element
        elif isinstance(element, str):
            text = element[2:] if element.startswith(("0x", "0X")) else element
            try:
                raw = bytes.fromhex(text)
            except ValueError:
                raise ProofMalformedError(
                    f"Proof element {index} is not hex: {element!r}", index=index
                ) from None
        else:
            raise ProofMalformedError(
                f"Proof element {index} has type {type(element).__name__}", index=index
            )

        if len(raw) != HASH_SIZE:
            raise ProofMalformedError(
                f"Proof element {index} is {len(raw)} bytes, expected {HASH_SIZE}",
                index=index,
            )
        decoded.append(raw)
    return decoded


# ============================================================================
# VERIFICATION
# ============================================================================

def compute_root(leaf_hash: bytes, proof: Sequence[bytes], domain_separated: bool = False) -> bytes:
    """Fold the siblings into the leaf hash, in the order given."""
    current = leaf_hash
    for sibling in proof:
        current = hash_pair(current, sibling, domain_separated)
    return current


def verify_proof(
    leaf_hash: bytes,
    merkle_root: str,
    proof: Sequence[bytes],
    domain_separated: bool = False,
) -> bool:
    """
    Verify a decoded proof.

    The final hash is compared to ``merkle_root`` as a lowercase hex
    string; the comparison is case-sensitive.
    """
    return compute_root(leaf_hash, proof, domain_separated).hex() == merkle_root


def verify_claim(
    account_id: str,
    amount: int,
    merkle_root: str,
    proof: Sequence[ProofElement],
    domain_separated: bool = False,
) -> bool:
    """
    Check that (account_id, amount) is committed under merkle_root.

    Returns:
        True if the proof reconstructs the root, False otherwise

    Raises:
        ProofMalformedError: if the proof cannot be decoded
    """
    siblings = decode_proof(proof)
    leaf = hash_leaf(account_id, amount, domain_separated)
    return verify_proof(leaf, merkle_root, siblings, domain_separated)


# ============================================================================
# MERKLE TREE
# ============================================================================

class MerkleTree:
    """
    Build sorted-pair merkle trees and proofs for an airdrop.

    Leaves keep insertion order. An odd node at any level is paired
    with itself.
    """

    def __init__(
        self,
        entries: Optional[Iterable[Tuple[str, Any]]] = None,
        domain_separated: bool = False,
    ):
        """
        Initialize MerkleTree.

        Args:
            entries: (account_id, amount) pairs
            domain_separated: Prefix leaf and node hashes
        """
        self.domain_separated = domain_separated
        self.entries: List[Tuple[str, int]] = []
        self.leaves: List[bytes] = []
        self.levels: List[List[bytes]] = []
        self.root: str = ""
        self._index: Dict[str, int] = {}

        for account_id, amount in entries or []:
            self._append(account_id, amount)
        self._build()

    def __len__(self) -> int:
        return len(self.entries)

    def _append(self, account_id: str, amount: Any) -> bytes:
        if not account_id:
            raise ValueError("Account id must not be empty")
        if account_id in self._index:
            raise ValueError(f"Duplicate account @{account_id}")

        value = normalize_amount(amount)
        leaf = hash_leaf(account_id, value, self.domain_separated)
        self._index[account_id] = len(self.entries)
        self.entries.append((account_id, value))
        self.leaves.append(leaf)
        return leaf

    def _build(self) -> None:
        """Build all levels bottom-up."""
        if not self.leaves:
            self.levels = []
            self.root = ""
            return

        self.levels = [list(self.leaves)]
        current_level = self.levels[0]

        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                left = current_level[i]
                right = current_level[i + 1] if i + 1 < len(current_level) else left
                next_level.append(hash_pair(left, right, self.domain_separated))
            self.levels.append(next_level)
            current_level = next_level

        self.root = current_level[0].hex()

    def add_entry(self, account_id: str, amount: Any) -> str:
        """
        Add an (account, amount) leaf and rebuild.

        Returns:
            Leaf hash (hex)
        """
        leaf = self._append(account_id, amount)
        self._build()
        return leaf.hex()

    def index_of(self, account_id: str) -> Optional[int]:
        return self._index.get(account_id)

    def amount_of(self, account_id: str) -> Optional[int]:
        index = self._index.get(account_id)
        return None if index is None else self.entries[index][1]

    def get_proof(self, leaf_index: int) -> List[str]:
        """
        Get the sibling path for a leaf.

        Args:
            leaf_index: Index of leaf in insertion order

        Returns:
            Ordered list of sibling hashes (hex), leaf level first
        """
        if leaf_index < 0 or leaf_index >= len(self.leaves):
            return []

        proof = []
        idx = leaf_index
        for level in self.levels[:-1]:
            sibling_idx = idx ^ 1
            sibling = level[sibling_idx] if sibling_idx < len(level) else level[idx]
            proof.append(sibling.hex())
            idx //= 2
        return proof

    def get_proof_for(self, account_id: str) -> List[str]:
        index = self._index.get(account_id)
        if index is None:
            return []
        return self.get_proof(index)

    def verify(self, account_id: str, amount: Any, proof: Sequence[ProofElement]) -> bool:
        """Verify a claim against this tree's root."""
        return verify_claim(
            account_id, normalize_amount(amount), self.root, proof, self.domain_separated
        )

    def to_manifest(self) -> Dict[str, Any]:
        """
        Export root and per-account proofs.

        Amounts are strings so u128 values survive JSON consumers.
        """
        claims = {}
        for index, (account_id, amount) in enumerate(self.entries):
            claims[account_id] = {
                "index": index,
                "amount": str(amount),
                "proof": self.get_proof(index),
            }
        return {
            "merkle_root": self.root,
            "token_total": str(sum(amount for _, amount in self.entries)),
            "domain_separated": self.domain_separated,
            "claims": claims,
        }

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any]) -> "MerkleTree":
        """Rebuild a tree from a manifest, ordered by leaf index."""
        claims = manifest.get("claims", {})
        ordered = sorted(claims.items(), key=lambda item: item[1].get("index", 0))
        tree = cls(
            [(account_id, claim["amount"]) for account_id, claim in ordered],
            domain_separated=bool(manifest.get("domain_separated", False)),
        )
        expected = manifest.get("merkle_root")
        if expected and expected != tree.root:
            logger.warning(f"Manifest root {expected} does not match rebuilt root {tree.root}")
        return tree
