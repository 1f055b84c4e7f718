"""
Merkle tree over Keccak-256 leaves with sorted-pair hashing.

Channels commit to their set of active transfers through the root of this
tree; proofs are verified the way OpenZeppelin's ``MerkleProof`` library does,
so no left/right flags are carried in the proof.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .hashing import Hash, Keccak256Hasher


@dataclass(frozen=True)
class MerkleProof:
    """Proof of inclusion in a Merkle tree."""

    leaf_hash: Hash
    path: Tuple[Hash, ...]
    root_hash: Hash

    def verify(self) -> bool:
        """Verify that this proof is valid."""
        return verify_merkle_proof(self.leaf_hash, list(self.path), self.root_hash)

    def to_bytes_list(self) -> List[bytes]:
        """Proof siblings as raw bytes32 values for contract calls."""
        return [node.value for node in self.path]


def verify_merkle_proof(leaf: Hash, proof: List[Hash], root: Hash) -> bool:
    """Fold a leaf up through its sibling hashes and compare with the root."""
    current = leaf
    for sibling in proof:
        current = Keccak256Hasher.hash_pair_sorted(current, sibling)
    return current == root


class MerkleTree:
    """Merkle tree for transfer commitments."""

    def __init__(self, leaves: List[Hash]):
        """
        Initialize a Merkle tree with the given leaf hashes.

        An empty tree has the zero hash as its root. An odd node at the end of a
        level is promoted to the next level unchanged.
        """
        self.leaves = list(leaves)
        self.tree = self._build_tree()
        self.root = self.tree[-1][0] if self.leaves else Hash.zero()

    def _build_tree(self) -> List[List[Hash]]:
        if not self.leaves:
            return [[]]

        levels = [self.leaves]
        while len(levels[-1]) > 1:
            current = levels[-1]
            parents = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    parents.append(Keccak256Hasher.hash_pair_sorted(current[i], current[i + 1]))
                else:
                    parents.append(current[i])
            levels.append(parents)
        return levels

    def get_root(self) -> Hash:
        """Get the root hash of the tree."""
        return self.root

    def get_proof(self, leaf: Hash) -> Optional[MerkleProof]:
        """
        Get a Merkle proof for a leaf.

        Args:
            leaf: Leaf hash to prove

        Returns:
            MerkleProof if the leaf exists, None otherwise
        """
        try:
            index = self.leaves.index(leaf)
        except ValueError:
            return None

        path = []
        for level in self.tree[:-1]:
            sibling = index + 1 if index % 2 == 0 else index - 1
            if sibling < len(level):
                path.append(level[sibling])
            index //= 2

        return MerkleProof(leaf, tuple(path), self.root)

    def contains(self, leaf: Hash) -> bool:
        return leaf in self.leaves

    def __len__(self) -> int:
        return len(self.leaves)
