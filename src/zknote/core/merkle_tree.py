"""Fixed-height Merkle tree over deposit commitments."""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from zknote.crypto.mimc import FieldHasher, MiMCSponge
from zknote.utils.hash import is_field_element, keccak256_field
from zknote.exceptions import CapacityExceededError, IndexOutOfRangeError


# Canonical empty leaf, keccak256("tornado") % FIELD_SIZE
ZERO_VALUE = keccak256_field("tornado")


@dataclass(frozen=True)
class MerklePath:
    """Inclusion path for one leaf, ordered from leaf level to root."""

    root: int
    path_elements: Tuple[int, ...]
    path_index: Tuple[int, ...]
    element: int
    leaf_index: int


def compute_zero_levels(height: int, hasher: FieldHasher, zero_value: int = ZERO_VALUE) -> List[int]:
    """
    Empty-subtree roots for every level.

    Returns:
        List[int]: ``height + 1`` values; entry ``i`` is the root of an
        empty subtree of height ``i``
    """
    zeros = [zero_value]
    for _ in range(height):
        zeros.append(hasher.hash_pair(zeros[-1], zeros[-1]))
    return zeros


class MerkleTree:
    """
    Append-only Merkle tree for storing commitments.

    This implementation keeps one list per level where:
    - Level 0 holds the leaves in deposit order
    - Missing right siblings are the level's zero constant
    - Parents are H(left || right)
    """

    # Constants
    DEFAULT_HEIGHT = 20
    MAX_HEIGHT = 32

    def __init__(
        self,
        tree_height: int = DEFAULT_HEIGHT,
        leaves: Iterable[int] = (),
        hasher: Optional[FieldHasher] = None,
        zero_value: int = ZERO_VALUE,
    ):
        """
        Initialize a tree and load initial leaves.

        Args:
            tree_height: Height of the tree (capacity 2**height)
            leaves: Initial commitments in leaf-index order
            hasher: Node hash (default MiMC sponge)
            zero_value: Empty leaf constant

        Raises:
            ValueError: If height is invalid
            CapacityExceededError: If there are more leaves than capacity
        """
        if tree_height < 1 or tree_height > self.MAX_HEIGHT:
            raise ValueError(f"Tree height must be between 1 and {self.MAX_HEIGHT}")

        self.height = tree_height
        self.max_leaves = 2**tree_height
        self.hasher = hasher or MiMCSponge()
        self.zero_levels = compute_zero_levels(tree_height, self.hasher, zero_value)

        # _layers[0] are the leaves, _layers[height] holds the root once populated
        self._layers: List[List[int]] = [[] for _ in range(tree_height + 1)]

        self.bulk_insert(leaves)

    @classmethod
    def build(cls, height: int, leaves: Sequence[int], **kwargs) -> "MerkleTree":
        """Build a tree of ``height`` over ``leaves``."""
        return cls(tree_height=height, leaves=leaves, **kwargs)

    @property
    def leaves(self) -> List[int]:
        return list(self._layers[0])

    def _check_leaf(self, leaf: int) -> None:
        if not is_field_element(leaf):
            raise ValueError("Leaf must be a field element")

    def insert(self, leaf: int) -> int:
        """
        Append a commitment and return its leaf index.

        Only the path from the new leaf to the root is recomputed.

        Raises:
            CapacityExceededError: If the tree is full
            ValueError: If leaf is not a field element
        """
        self._check_leaf(leaf)
        if len(self._layers[0]) >= self.max_leaves:
            raise CapacityExceededError(f"Tree is full (max {self.max_leaves} commitments)")

        leaf_index = len(self._layers[0])
        self._layers[0].append(leaf)

        position = leaf_index
        current = leaf
        for level in range(self.height):
            if position % 2 == 0:
                current = self.hasher.hash_pair(current, self.zero_levels[level])
            else:
                current = self.hasher.hash_pair(self._layers[level][position - 1], current)
            position >>= 1
            layer = self._layers[level + 1]
            if position < len(layer):
                layer[position] = current
            else:
                layer.append(current)

        return leaf_index

    def bulk_insert(self, leaves: Iterable[int]) -> None:
        """
        Append many commitments, rebuilding each level once.

        Raises:
            CapacityExceededError: If the leaves do not fit
        """
        new_leaves = list(leaves)
        if not new_leaves:
            return
        for leaf in new_leaves:
            self._check_leaf(leaf)
        if len(self._layers[0]) + len(new_leaves) > self.max_leaves:
            raise CapacityExceededError(
                f"{len(self._layers[0]) + len(new_leaves)} leaves exceed capacity {self.max_leaves}"
            )

        self._layers[0].extend(new_leaves)
        self._rebuild()

    def _rebuild(self) -> None:
        """Recompute every internal level from the leaves."""
        current = self._layers[0]
        for level in range(self.height):
            zero = self.zero_levels[level]
            parents = []
            for i in range(0, len(current), 2):
                right = current[i + 1] if i + 1 < len(current) else zero
                parents.append(self.hasher.hash_pair(current[i], right))
            self._layers[level + 1] = parents
            current = parents

    @property
    def root(self) -> int:
        """Current root; ``zero_levels[height]`` when the tree is empty."""
        top = self._layers[self.height]
        return top[0] if top else self.zero_levels[self.height]

    def path(self, leaf_index: int) -> MerklePath:
        """
        Return the inclusion path of a leaf.

        Args:
            leaf_index: Index of the leaf

        Returns:
            MerklePath: Sibling hashes and left/right bits, leaf to root

        Raises:
            IndexOutOfRangeError: If leaf index is invalid
        """
        if not isinstance(leaf_index, int) or leaf_index < 0 or leaf_index >= len(self._layers[0]):
            raise IndexOutOfRangeError(f"Invalid leaf index: {leaf_index}")

        elements = []
        indices = []
        position = leaf_index

        for level in range(self.height):
            sibling = position ^ 1
            layer = self._layers[level]
            elements.append(layer[sibling] if sibling < len(layer) else self.zero_levels[level])
            indices.append(position % 2)
            position >>= 1

        return MerklePath(
            root=self.root,
            path_elements=tuple(elements),
            path_index=tuple(indices),
            element=self._layers[0][leaf_index],
            leaf_index=leaf_index,
        )

    def compute_root_from_path(
        self, leaf: int, path_elements: Sequence[int], path_index: Sequence[int]
    ) -> int:
        """Fold a leaf up through a path the way the circuit does."""
        current = leaf
        for sibling, bit in zip(path_elements, path_index):
            if bit == 0:
                current = self.hasher.hash_pair(current, sibling)
            else:
                current = self.hasher.hash_pair(sibling, current)
        return current

    def verify_path(self, leaf: int, path_elements: Sequence[int], path_index: Sequence[int]) -> bool:
        """
        Verify that a leaf and path lead to the current root.

        Returns:
            bool: True if path is well-formed and reproduces the root
        """
        if len(path_elements) != self.height or len(path_index) != self.height:
            return False
        if any(bit not in (0, 1) for bit in path_index):
            return False
        return self.compute_root_from_path(leaf, path_elements, path_index) == self.root

    def get_state(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: Tree state including leaves, height, and root
        """
        return {
            "height": self.height,
            "max_leaves": self.max_leaves,
            "num_leaves": len(self),
            "leaves": [hex(leaf) for leaf in self._layers[0]],
            "root": hex(self.root),
        }

    def __len__(self) -> int:
        """Return the number of leaves in the tree."""
        return len(self._layers[0])

    def __repr__(self) -> str:
        """String representation of the tree."""
        return (
            f"MerkleTree(height={self.height}, "
            f"leaves={len(self)}/{self.max_leaves}, "
            f"root={hex(self.root)[:18]}...)"
        )
