"""
Test k-d tree construction and nearest-neighbour search.
"""

import sys
from pathlib import Path

import numpy as np
import pytest
import torch

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from torchxmatch.kdtree import (
    BLANK_INDEX,
    KDTree,
    build_kdtree,
    nearest_neighbour,
    query,
)


def _random_points(n, ndim, seed):
    rng = np.random.default_rng(seed)
    return torch.from_numpy(rng.uniform(-50.0, 50.0, size=(n, ndim)))


def _subtree_rows(tree, node):
    left, right = tree.left.tolist(), tree.right.tolist()
    rows, stack = [], [node]
    while stack:
        current = stack.pop()
        if current == BLANK_INDEX:
            continue
        rows.append(current)
        stack.extend((left[current], right[current]))
    return rows


class TestBuild:
    """Structure of the constructed tree."""

    @pytest.mark.parametrize("n", [1, 2, 3, 7, 64, 333])
    @pytest.mark.parametrize("ndim", [1, 2, 3])
    def test_every_row_appears_once(self, n, ndim):
        """Root plus all children cover every row exactly once."""
        tree = build_kdtree(_random_points(n, ndim, seed=n * 10 + ndim))

        children = [i for i in tree.left.tolist() + tree.right.tolist() if i != BLANK_INDEX]
        nodes = [tree.root] + children
        assert len(nodes) == n
        assert sorted(nodes) == list(range(n))

    @pytest.mark.parametrize("ndim", [1, 2, 3])
    def test_median_invariant(self, ndim):
        """Left subtrees sit at or below the split value, right subtrees at or above."""
        points = _random_points(257, ndim, seed=ndim)
        tree = build_kdtree(points)
        left, right = tree.left.tolist(), tree.right.tolist()

        stack = [(tree.root, 0)]
        while stack:
            node, depth = stack.pop()
            axis = depth % ndim
            split = points[node, axis]
            for row in _subtree_rows(tree, left[node]):
                assert points[row, axis] <= split
            for row in _subtree_rows(tree, right[node]):
                assert points[row, axis] >= split
            for child in (left[node], right[node]):
                if child != BLANK_INDEX:
                    stack.append((child, depth + 1))

    def test_tree_is_balanced(self):
        """Median splits keep the depth logarithmic."""
        tree = build_kdtree(_random_points(1000, 2, seed=3))
        left, right = tree.left.tolist(), tree.right.tolist()

        def depth(node):
            if node == BLANK_INDEX:
                return 0
            return 1 + max(depth(left[node]), depth(right[node]))

        assert depth(tree.root) == 10

    def test_duplicate_values(self):
        """Identical points still give a valid tree."""
        points = torch.ones((50, 2), dtype=torch.float64)
        tree = build_kdtree(points)

        children = [i for i in tree.left.tolist() + tree.right.tolist() if i != BLANK_INDEX]
        assert sorted([tree.root] + children) == list(range(50))

        found = nearest_neighbour(tree, points, [1.0, 1.0])
        assert found.found
        assert found.squared_distance == 0.0

    def test_single_point(self):
        tree = build_kdtree(torch.tensor([[3.0, 4.0]]))
        assert tree.root == 0
        assert tree.left.tolist() == [BLANK_INDEX]
        assert tree.right.tolist() == [BLANK_INDEX]

    def test_empty_input(self):
        """No rows gives an empty tree instead of an error."""
        tree = build_kdtree(torch.empty((0, 2), dtype=torch.float64))
        assert tree.is_empty
        assert len(tree) == 0
        assert tree.root == BLANK_INDEX

    def test_input_not_modified(self):
        points = _random_points(100, 3, seed=5)
        before = points.clone()
        build_kdtree(points)
        assert torch.equal(points, before)

    def test_column_input(self):
        """A sequence of columns builds the same tree as the stacked tensor."""
        points = _random_points(40, 2, seed=8)
        from_tensor = build_kdtree(points)
        from_columns = build_kdtree([points[:, 0].numpy(), points[:, 1].numpy()])
        assert torch.equal(from_tensor.left, from_columns.left)
        assert torch.equal(from_tensor.right, from_columns.right)
        assert from_tensor.root == from_columns.root


class TestNearestNeighbour:
    """Nearest-neighbour search against a brute-force scan."""

    @pytest.mark.parametrize("n", [1, 2, 5, 31, 200, 1000])
    @pytest.mark.parametrize("ndim", [1, 2, 3])
    def test_matches_brute_force(self, n, ndim):
        points = _random_points(n, ndim, seed=n + 100 * ndim)
        queries = _random_points(25, ndim, seed=n + 100 * ndim + 1)
        tree = build_kdtree(points)

        for q in queries:
            found = nearest_neighbour(tree, points, q)
            d2 = ((points - q) ** 2).sum(dim=1)
            assert found.index == int(torch.argmin(d2))
            assert found.squared_distance == pytest.approx(float(d2.min()), rel=1e-12, abs=1e-12)

    def test_exact_hit(self):
        points = _random_points(100, 2, seed=11)
        tree = build_kdtree(points)
        found = nearest_neighbour(tree, points, points[42])
        assert found.index == 42
        assert found.distance == 0.0

    def test_empty_tree_not_found(self):
        points = torch.empty((0, 2), dtype=torch.float64)
        tree = build_kdtree(points)
        found = nearest_neighbour(tree, points, [0.0, 0.0])
        assert not found.found
        assert found.index == BLANK_INDEX
        assert found.squared_distance == float("inf")

    def test_query_many(self):
        points = _random_points(300, 3, seed=21)
        queries = _random_points(50, 3, seed=22)
        tree = build_kdtree(points)

        indices, distances = query(tree, points, queries)
        brute = torch.cdist(queries, points, compute_mode="donot_use_mm_for_euclid_dist")
        torch.testing.assert_close(indices, brute.argmin(dim=1))
        torch.testing.assert_close(distances, brute.min(dim=1).values, atol=1e-10, rtol=0.0)

    def test_dimension_mismatch(self):
        points = _random_points(10, 2, seed=1)
        tree = build_kdtree(points)
        with pytest.raises(ValueError):
            nearest_neighbour(tree, points, [0.0, 0.0, 0.0])
        with pytest.raises(ValueError):
            query(tree, points, _random_points(3, 3, seed=2))

    def test_tree_size_mismatch(self):
        tree = build_kdtree(_random_points(10, 2, seed=1))
        with pytest.raises(ValueError):
            nearest_neighbour(tree, _random_points(11, 2, seed=1), [0.0, 0.0])


class TestTreeColumns:
    """Saving and restoring a tree as index columns."""

    def test_round_trip(self):
        tree = build_kdtree(_random_points(77, 2, seed=4))
        left, right = tree.to_columns()
        assert left.name == "left" and right.name == "right"
        assert left.unit == "index"

        restored = KDTree.from_columns([left, right], tree.root)
        assert torch.equal(restored.left, tree.left)
        assert torch.equal(restored.right, tree.right)

    def test_uint32_blank(self):
        """Unsigned columns use their maximum value as the blank."""
        tree = build_kdtree(_random_points(20, 2, seed=6))
        left = tree.left.numpy().astype(np.uint32)
        right = tree.right.numpy().astype(np.uint32)
        assert (left == 2**32 - 1).any()

        restored = KDTree.from_columns([left, right], np.uint32(tree.root))
        assert torch.equal(restored.left, tree.left)
        assert torch.equal(restored.right, tree.right)

    def test_invalid_columns(self):
        tree = build_kdtree(_random_points(5, 2, seed=7))
        with pytest.raises(ValueError):
            KDTree.from_columns([tree.left], tree.root)
        with pytest.raises(ValueError):
            KDTree.from_columns([tree.left, tree.right[:3]], tree.root)
        with pytest.raises(TypeError):
            KDTree.from_columns([tree.left.double(), tree.right], tree.root)
        with pytest.raises(ValueError):
            KDTree.from_columns([tree.left, tree.right], 5)
