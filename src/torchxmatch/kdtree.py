"""
k-d tree construction and nearest-neighbour search.

The tree is stored as two index arrays over the input rows: ``left[i]`` and
``right[i]`` are the row indices of the children of row ``i`` (or
``BLANK_INDEX``), plus the row index of the root. Construction never moves
the coordinates. It permutes an array of row indices while selecting medians
and maps the child arrays back to input-row order at the end.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import torch
from torch import Tensor

from .column import Column, CoordinateInput, as_coordinates
from .logging import log_errors, log_performance, logger

BLANK_INDEX = -1

# Blank value of unsigned 32-bit tree columns written by other tools.
_BLANK_UINT32 = 2**32 - 1


class Neighbour(NamedTuple):
    """Result of a nearest-neighbour search."""

    index: int
    squared_distance: float

    @property
    def distance(self) -> float:
        return math.sqrt(self.squared_distance)

    @property
    def found(self) -> bool:
        return self.index != BLANK_INDEX


@dataclass
class KDTree:
    """Child index arrays of a k-d tree, indexed by input row."""

    left: Tensor
    right: Tensor
    root: int
    ndim: Optional[int] = None

    def __len__(self) -> int:
        return self.left.shape[0]

    @property
    def is_empty(self) -> bool:
        return self.root == BLANK_INDEX

    def __repr__(self) -> str:
        return f"KDTree(size={len(self)}, root={self.root}, ndim={self.ndim})"

    def to_columns(self) -> List[Column]:
        """Export as ``left``/``right`` index columns, e.g. for saving to a table."""
        return [
            Column(self.left.clone(), name="left", unit="index",
                   description="index of left subtree in the kd-tree"),
            Column(self.right.clone(), name="right", unit="index",
                   description="index of right subtree in the kd-tree"),
        ]

    @classmethod
    def from_columns(cls, columns: Sequence[Union[Column, Tensor, np.ndarray]],
                     root: int, ndim: Optional[int] = None) -> 'KDTree':
        """
        Rebuild a tree from its two saved index columns.

        Unsigned 32-bit columns may use 4294967295 as their blank value; it
        is read as ``BLANK_INDEX``.
        """
        if len(columns) != 2:
            raise ValueError(
                f"A kd-tree is stored in exactly 2 columns (left, right), got {len(columns)}"
            )
        arrays = []
        for name, col in zip(("left", "right"), columns):
            data = col.data if isinstance(col, Column) else col
            arr = np.asarray(data)
            if arr.ndim != 1:
                raise ValueError(f"The {name} kd-tree column must be one-dimensional")
            if not np.issubdtype(arr.dtype, np.integer):
                raise TypeError(
                    f"The {name} kd-tree column must have an integer type, got {arr.dtype}"
                )
            arr = arr.astype(np.int64)
            arr[arr == _BLANK_UINT32] = BLANK_INDEX
            arrays.append(torch.from_numpy(arr))

        left, right = arrays
        if left.shape[0] != right.shape[0]:
            raise ValueError(
                f"The left and right kd-tree columns must have the same size "
                f"({left.shape[0]} and {right.shape[0]})"
            )
        n = left.shape[0]
        root = int(root)
        if root == _BLANK_UINT32:
            root = BLANK_INDEX
        if n == 0:
            if root != BLANK_INDEX:
                raise ValueError(f"An empty kd-tree cannot have root {root}")
        elif not 0 <= root < n:
            raise ValueError(f"kd-tree root {root} is outside [0, {n})")
        for name, arr in (("left", left), ("right", right)):
            if n and (arr.min() < BLANK_INDEX or arr.max() >= n):
                raise ValueError(f"The {name} kd-tree column has indices outside [0, {n})")
        return cls(left, right, root, ndim)


class _KDTreeBuilder:
    """
    Quickselect-based tree construction over an arena of row slots.

    ``input_row[k]`` is the input row held in slot ``k``; ``left[k]`` and
    ``right[k]`` are the child rows of that slot. A swap exchanges all three
    entries of two slots.
    """

    def __init__(self, coords: Tensor):
        self.ndim = coords.shape[1]
        self.axes = [coords[:, i].tolist() for i in range(self.ndim)]
        n = coords.shape[0]
        self.input_row = list(range(n))
        self.left = [BLANK_INDEX] * n
        self.right = [BLANK_INDEX] * n

    def _swap(self, k1: int, k2: int):
        if k1 == k2:
            return
        ir, left, right = self.input_row, self.left, self.right
        ir[k1], ir[k2] = ir[k2], ir[k1]
        left[k1], left[k2] = left[k2], left[k1]
        right[k1], right[k2] = right[k2], right[k1]

    def _partition(self, lo: int, hi: int, k: int, values: List[float]) -> int:
        """Partition ``[lo, hi]`` around the value of slot ``k``; return its final slot."""
        ir = self.input_row
        pivot = values[ir[k]]
        self._swap(k, hi)
        store = lo
        for i in range(lo, hi):
            if values[ir[i]] < pivot:
                self._swap(store, i)
                store += 1
        self._swap(hi, store)
        return store

    def _median(self, lo: int, hi: int, values: List[float]) -> int:
        assert lo < hi, f"median of an invalid interval [{lo}, {hi}]"
        median = lo + (hi - lo) // 2
        while True:
            pivot = self._partition(lo, hi, median, values)
            if pivot == median:
                return median
            if median < pivot:
                hi = pivot - 1
            else:
                lo = pivot + 1

    def _fill(self, lo: int, hi: int, depth: int) -> int:
        if lo == hi:
            return self.input_row[lo]

        median = self._median(lo, hi, self.axes[depth % self.ndim])
        self.left[median] = (BLANK_INDEX if median == lo
                             else self._fill(lo, median - 1, depth + 1))
        # With two slots the median is the left one, so a right subtree always exists
        self.right[median] = self._fill(median + 1, hi, depth + 1)
        return self.input_row[median]

    def build(self) -> KDTree:
        n = len(self.input_row)
        root = self._fill(0, n - 1, 0)

        # Move the child entries from build slots back to input-row order
        left = [BLANK_INDEX] * n
        right = [BLANK_INDEX] * n
        for slot, row in enumerate(self.input_row):
            left[row] = self.left[slot]
            right[row] = self.right[slot]
        return KDTree(torch.tensor(left, dtype=torch.int64),
                      torch.tensor(right, dtype=torch.int64), root, self.ndim)


@log_errors
@log_performance
def build_kdtree(coords: CoordinateInput) -> KDTree:
    """
    Build a balanced k-d tree over a coordinate set.

    Parameters:
    -----------
    coords : tensor, array or sequence of columns
        ``N`` points in ``D`` dimensions (see :func:`as_coordinates`).

    Returns:
    --------
    KDTree
        The tree. With no rows the tree is empty (``root == BLANK_INDEX``).
    """
    return build_tree(as_coordinates(coords, "kd-tree"))


def build_tree(points: Tensor) -> KDTree:
    """Tree over an already normalised ``float64 [N, D]`` tensor, without logging wrappers."""
    n, ndim = points.shape
    if n == 0:
        logger.debug("build_kdtree: no input rows, returning an empty tree")
        empty = torch.empty(0, dtype=torch.int64)
        return KDTree(empty, empty.clone(), BLANK_INDEX, ndim)
    return _KDTreeBuilder(points).build()


class KDTreeSearcher:
    """
    Repeated nearest-neighbour queries against one tree.

    Holds plain-Python copies of the tree and coordinates so each query is a
    tight recursive descent. The object is read-only after construction and
    can be shared between threads.
    """

    def __init__(self, tree: KDTree, coords: Tensor):
        if coords.ndim != 2:
            raise ValueError(f"Coordinates must be [N, D], got shape {tuple(coords.shape)}")
        if len(tree) != coords.shape[0]:
            raise ValueError(
                f"The kd-tree has {len(tree)} nodes but the coordinates have "
                f"{coords.shape[0]} rows"
            )
        if tree.ndim is not None and tree.ndim != coords.shape[1]:
            raise ValueError(
                f"The kd-tree was built on {tree.ndim} dimensions, the coordinates "
                f"have {coords.shape[1]}"
            )
        self.ndim = coords.shape[1]
        self.root = tree.root
        self.rows = coords.tolist()
        self.left = tree.left.tolist()
        self.right = tree.right.tolist()

    def _descend(self, node: int, point: Sequence[float], depth: int,
                 best: int, best_dist: float) -> Tuple[int, float]:
        if node == BLANK_INDEX:
            return best, best_dist

        row = self.rows[node]
        d = 0.0
        for x, p in zip(row, point):
            d += (x - p) * (x - p)
        if d < best_dist:
            best, best_dist = node, d
        if best_dist == 0.0:
            return best, best_dist

        axis = depth % self.ndim
        dx = row[axis] - point[axis]
        if dx > 0:
            near, far = self.left[node], self.right[node]
        else:
            near, far = self.right[node], self.left[node]

        best, best_dist = self._descend(near, point, depth + 1, best, best_dist)

        # A closer point beyond the splitting plane must be nearer than the plane itself
        if dx * dx >= best_dist:
            return best, best_dist
        return self._descend(far, point, depth + 1, best, best_dist)

    def nearest(self, point: Sequence[float]) -> Neighbour:
        if len(point) != self.ndim:
            raise ValueError(
                f"Query point has {len(point)} dimensions, the tree has {self.ndim}"
            )
        best, best_dist = self._descend(self.root, point, 0, BLANK_INDEX, math.inf)
        return Neighbour(best, best_dist)


def nearest_neighbour(tree: KDTree, coords: CoordinateInput,
                      point: Union[Sequence[float], Tensor]) -> Neighbour:
    """
    Nearest input row to ``point``.

    Returns ``Neighbour(index, squared_distance)``; ``index`` is
    ``BLANK_INDEX`` (and the distance infinite) when the tree is empty.
    """
    if isinstance(point, Tensor):
        point = point.tolist()
    searcher = KDTreeSearcher(tree, as_coordinates(coords, "kd-tree"))
    return searcher.nearest([float(p) for p in point])


@log_errors
def query(tree: KDTree, coords: CoordinateInput,
          points: CoordinateInput) -> Tuple[Tensor, Tensor]:
    """
    Nearest neighbours of many query points.

    Returns:
    --------
    indices : Tensor (int64)
        Nearest input row per query point (``BLANK_INDEX`` if none).
    distances : Tensor (float64)
        Euclidean distance to that row (``inf`` if none).
    """
    data = as_coordinates(coords, "kd-tree")
    queries = as_coordinates(points, "query")
    if queries.shape[1] != data.shape[1]:
        raise ValueError(
            f"Query points have {queries.shape[1]} dimensions, the tree "
            f"coordinates have {data.shape[1]}"
        )
    searcher = KDTreeSearcher(tree, data)
    found = [searcher.nearest(p) for p in queries.tolist()]
    indices = torch.tensor([f.index for f in found], dtype=torch.int64)
    distances = torch.sqrt(
        torch.tensor([f.squared_distance for f in found], dtype=torch.float64)
    )
    return indices, distances
