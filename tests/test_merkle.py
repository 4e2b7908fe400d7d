"""
merkledrop/tests/test_merkle.py

Unit tests for merkle commitments:
- leaf and pair hashing
- proof decoding
- claim verification
- MerkleTree construction, proofs and manifests
"""

import hashlib

import pytest

from merkledrop.blockchain.merkle import (
    MerkleTree,
    compute_root,
    decode_proof,
    hash_leaf,
    hash_pair,
    normalize_amount,
    verify_claim,
    verify_proof,
)
from merkledrop.errors import InvalidAmountError, ProofMalformedError


def sha(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def node(a: bytes, b: bytes) -> bytes:
    return sha(min(a, b) + max(a, b))


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def entries():
    """Four accounts, the canonical two-sibling proof depth."""
    return [
        ("user1.testnet", 100),
        ("user2.testnet", 200),
        ("user3.testnet", 300),
        ("user4.testnet", 400),
    ]


@pytest.fixture
def tree(entries):
    return MerkleTree(entries)


# ============================================================================
# Hashing
# ============================================================================

class TestHashing:
    """Tests for leaf and pair hashing."""

    def test_leaf_is_sha256_of_account_colon_amount(self):
        """Leaf commits to the UTF-8 string account:amount."""
        assert hash_leaf("user1.testnet", 100) == sha(b"user1.testnet:100")

    def test_pair_hash_is_order_independent(self):
        """Children are sorted before hashing."""
        a = sha(b"a")
        b = sha(b"b")
        assert hash_pair(a, b) == hash_pair(b, a) == node(a, b)

    def test_domain_separated_prefixes(self):
        """Domain separation prefixes leaves with 0x00 and nodes with 0x01."""
        a = sha(b"a")
        b = sha(b"b")
        assert hash_leaf("user1.testnet", 100, True) == sha(b"\x00user1.testnet:100")
        assert hash_pair(a, b, True) == sha(b"\x01" + min(a, b) + max(a, b))

    def test_normalize_amount(self):
        """Ints and digit strings are accepted."""
        assert normalize_amount(100) == 100
        assert normalize_amount("340282366920938463463374607431768211455") == 2 ** 128 - 1

    @pytest.mark.parametrize("bad", [0, -5, "abc", "1.5", 1.5, True, None, "", "²", " ", "١٢"])
    def test_normalize_amount_rejects(self, bad):
        """Zero, negatives and non-integers are rejected."""
        with pytest.raises(InvalidAmountError):
            normalize_amount(bad)


# ============================================================================
# Proof decoding
# ============================================================================

class TestDecodeProof:
    """Tests for decode_proof."""

    def test_hex_and_bytes(self):
        """Hex strings (with or without 0x) and raw bytes decode."""
        h = sha(b"x")
        assert decode_proof([h.hex(), "0x" + h.hex(), h]) == [h, h, h]

    def test_empty_proof(self):
        assert decode_proof([]) == []

    def test_wrong_length(self):
        """A short element is malformed and reports its index."""
        with pytest.raises(ProofMalformedError) as exc_info:
            decode_proof([sha(b"x").hex(), "abcd"])
        assert exc_info.value.index == 1

    def test_not_hex(self):
        with pytest.raises(ProofMalformedError):
            decode_proof(["zz" * 32])

    def test_wrong_type(self):
        with pytest.raises(ProofMalformedError):
            decode_proof([12345])

    def test_proof_must_be_a_list(self):
        """A bare string is not a proof."""
        with pytest.raises(ProofMalformedError):
            decode_proof(sha(b"x").hex())


# ============================================================================
# Verification
# ============================================================================

class TestVerification:
    """Tests for verify_claim / verify_proof."""

    def test_two_sibling_proof_verifies(self, entries):
        """user1 with a two-sibling proof reconstructs the root."""
        leaves = [sha(f"{a}:{v}".encode()) for a, v in entries]
        root = node(node(leaves[0], leaves[1]), node(leaves[2], leaves[3])).hex()
        proof = [leaves[1].hex(), node(leaves[2], leaves[3]).hex()]

        assert verify_claim("user1.testnet", 100, root, proof) is True

    def test_reordered_siblings_fail(self, tree):
        """Application order of siblings matters."""
        proof = tree.get_proof_for("user1.testnet")
        assert verify_claim("user1.testnet", 100, tree.root, proof)
        assert not verify_claim("user1.testnet", 100, tree.root, list(reversed(proof)))

    def test_wrong_amount_fails(self, tree):
        proof = tree.get_proof_for("user1.testnet")
        assert not verify_claim("user1.testnet", 101, tree.root, proof)

    def test_wrong_account_fails(self, tree):
        proof = tree.get_proof_for("user1.testnet")
        assert not verify_claim("user2.testnet", 100, tree.root, proof)

    def test_single_bit_flip_fails(self, tree):
        """Flipping one bit of any sibling breaks the proof."""
        proof = decode_proof(tree.get_proof_for("user3.testnet"))
        for i in range(len(proof)):
            flipped = list(proof)
            flipped[i] = bytes([proof[i][0] ^ 0x01]) + proof[i][1:]
            assert not verify_claim("user3.testnet", 300, tree.root, flipped)

    def test_root_comparison_is_case_sensitive(self, tree):
        """An uppercase root never matches."""
        proof = tree.get_proof_for("user1.testnet")
        assert not verify_claim("user1.testnet", 100, tree.root.upper(), proof)

    def test_empty_proof_matches_leaf_root(self):
        """With no siblings the leaf itself is the root."""
        leaf = hash_leaf("solo.testnet", 7)
        assert verify_proof(leaf, leaf.hex(), [])
        assert compute_root(leaf, []) == leaf

    def test_malformed_proof_raises(self, tree):
        with pytest.raises(ProofMalformedError):
            verify_claim("user1.testnet", 100, tree.root, ["not-a-hash"])

    def test_domain_modes_do_not_mix(self, entries):
        """A plain proof never verifies against a domain-separated root."""
        plain = MerkleTree(entries)
        separated = MerkleTree(entries, domain_separated=True)
        proof = plain.get_proof_for("user2.testnet")

        assert plain.root != separated.root
        assert not verify_claim("user2.testnet", 200, separated.root, proof, domain_separated=True)
        assert verify_claim(
            "user2.testnet", 200, separated.root,
            separated.get_proof_for("user2.testnet"), domain_separated=True,
        )


# ============================================================================
# MerkleTree
# ============================================================================

class TestMerkleTree:
    """Tests for MerkleTree."""

    def test_empty_tree(self):
        tree = MerkleTree()
        assert tree.root == ""
        assert tree.get_proof(0) == []

    def test_single_leaf(self):
        """A single leaf is its own root."""
        tree = MerkleTree([("solo.testnet", 7)])
        assert tree.root == sha(b"solo.testnet:7").hex()
        assert tree.get_proof(0) == []

    def test_odd_leaf_pairs_with_itself(self):
        """With three leaves the last is hashed with itself."""
        tree = MerkleTree([("a", 1), ("b", 2), ("c", 3)])
        a, b, c = sha(b"a:1"), sha(b"b:2"), sha(b"c:3")

        assert tree.root == node(node(a, b), node(c, c)).hex()
        assert tree.get_proof(2) == [c.hex(), node(a, b).hex()]
        assert tree.verify("c", 3, tree.get_proof(2))

    def test_every_entry_verifies(self, entries):
        tree = MerkleTree(entries + [("user5.testnet", 500)])
        for account, amount in tree.entries:
            assert tree.verify(account, amount, tree.get_proof_for(account))

    def test_add_entry_changes_root(self, tree):
        before = tree.root
        leaf = tree.add_entry("user5.testnet", "500")
        assert leaf == sha(b"user5.testnet:500").hex()
        assert tree.root != before
        assert tree.amount_of("user5.testnet") == 500
        assert tree.index_of("user5.testnet") == 4

    def test_duplicate_account_rejected(self, entries):
        with pytest.raises(ValueError):
            MerkleTree(entries + [("user1.testnet", 5)])

    def test_unknown_account_has_no_proof(self, tree):
        assert tree.get_proof_for("nobody.testnet") == []
        assert tree.amount_of("nobody.testnet") is None

    def test_manifest(self, tree):
        """Manifest carries root, string amounts and per-account proofs."""
        manifest = tree.to_manifest()

        assert manifest["merkle_root"] == tree.root
        assert manifest["token_total"] == "1000"
        assert manifest["domain_separated"] is False
        assert manifest["claims"]["user2.testnet"] == {
            "index": 1,
            "amount": "200",
            "proof": tree.get_proof(1),
        }

    def test_from_manifest_rebuilds_same_root(self, tree):
        rebuilt = MerkleTree.from_manifest(tree.to_manifest())
        assert rebuilt.root == tree.root
        assert rebuilt.entries == tree.entries
