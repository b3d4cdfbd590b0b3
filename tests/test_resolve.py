"""
Test candidate containers, match results and the deduplication strategies.
"""

import pytest
import torch

from torchxmatch.crossmatch import CandidateMatches, MatchResult, resolve


def _candidates(size_a, size_b, triples):
    found = CandidateMatches(size_a, size_b)
    for ai, bi, r in triples:
        found.add(ai, bi, r)
    return found


class TestCandidateMatches:
    """Bookkeeping of candidate triples."""

    def test_add_and_extend_keep_discovery_order(self):
        found = CandidateMatches(5, 5)
        found.add(3, 0, 0.5)
        found.extend(torch.tensor([1, 0]), torch.tensor([2, 4]),
                     torch.tensor([0.1, 0.2], dtype=torch.float64))
        found.add(2, 1, 0.3)
        assert len(found) == 4

        a_index, b_index, distance = found.tensors()
        assert a_index.tolist() == [3, 1, 0, 2]
        assert b_index.tolist() == [0, 2, 4, 1]
        assert distance.dtype == torch.float64

    def test_ordered_is_stable_within_a(self):
        found = _candidates(3, 4, [(2, 0, 0.1), (0, 3, 0.2), (2, 1, 0.3), (0, 1, 0.4)])
        a_index, b_index, _ = found.ordered()
        assert a_index.tolist() == [0, 0, 2, 2]
        assert b_index.tolist() == [3, 1, 0, 1]

    def test_merge(self):
        first = _candidates(4, 4, [(0, 0, 0.1)])
        second = _candidates(4, 4, [(1, 1, 0.2), (2, 2, 0.3)])
        first.merge(second)
        assert len(first) == 3
        assert first.tensors()[0].tolist() == [0, 1, 2]

    def test_extend_shape_mismatch(self):
        found = CandidateMatches(2, 2)
        with pytest.raises(ValueError):
            found.extend(torch.tensor([0, 1]), torch.tensor([0]), torch.tensor([0.1, 0.2]))


class TestRearrange:
    """The default two-pass deduplication."""

    def test_closest_b_wins(self):
        found = _candidates(1, 2, [(0, 0, 0.0), (0, 1, 0.07)])
        result = resolve(found)
        assert list(result) == [(0, 0, 0.0)]
        assert result.unmatched_a.tolist() == []
        assert result.unmatched_b.tolist() == [1]

    def test_closest_a_wins(self):
        found = _candidates(2, 1, [(0, 0, 0.5), (1, 0, 0.2)])
        result = resolve(found)
        assert list(result) == [(1, 0, 0.2)]
        assert result.unmatched_a.tolist() == [0]

    def test_chained_conflict_drops_a_row(self):
        """A row whose only B prefers another A stays unmatched after two passes."""
        found = _candidates(2, 2, [(0, 0, 0.1), (0, 1, 0.2), (1, 1, 0.3)])
        result = resolve(found, strategy="rearrange")
        assert list(result) == [(0, 0, 0.1)]
        assert result.unmatched_a.tolist() == [1]
        assert result.unmatched_b.tolist() == [1]

    def test_equal_distance_first_a_wins(self):
        found = _candidates(2, 1, [(1, 0, 0.5), (0, 0, 0.5)])
        result = resolve(found)
        assert list(result) == [(0, 0, 0.5)]

    def test_equal_distance_lowest_b_wins(self):
        found = _candidates(1, 2, [(0, 1, 0.5), (0, 0, 0.5)])
        result = resolve(found)
        assert list(result) == [(0, 0, 0.5)]

    def test_pairs_sorted_by_a(self):
        found = _candidates(3, 3, [(2, 0, 0.1), (0, 2, 0.1), (1, 1, 0.1)])
        result = resolve(found)
        assert result.a_index.tolist() == [0, 1, 2]
        assert result.b_index.tolist() == [2, 1, 0]


class TestGreedy:
    """Global greedy deduplication."""

    def test_recovers_chained_conflict(self):
        found = _candidates(2, 2, [(0, 0, 0.1), (0, 1, 0.2), (1, 1, 0.3)])
        result = resolve(found, strategy="greedy")
        assert list(result) == [(0, 0, 0.1), (1, 1, 0.3)]
        assert result.unmatched_a.numel() == 0
        assert result.unmatched_b.numel() == 0

    def test_never_fewer_matches_than_rearrange(self):
        gen = torch.Generator().manual_seed(0)
        a_index = torch.randint(0, 30, (200,), generator=gen)
        b_index = torch.randint(0, 30, (200,), generator=gen)
        distance = torch.rand(200, generator=gen, dtype=torch.float64)

        def build():
            found = CandidateMatches(30, 30)
            found.extend(a_index, b_index, distance)
            return found

        greedy = resolve(build(), strategy="greedy")
        rearrange = resolve(build(), strategy="rearrange")
        assert greedy.nummatched >= rearrange.nummatched
        for result in (greedy, rearrange):
            assert result.a_index.unique().numel() == result.nummatched
            assert result.b_index.unique().numel() == result.nummatched


class TestResolve:
    """Common behaviour of :func:`resolve`."""

    def test_no_candidates(self):
        result = resolve(CandidateMatches(3, 2))
        assert result.nummatched == 0
        assert result.unmatched_a.tolist() == [0, 1, 2]
        assert result.unmatched_b.tolist() == [0, 1]

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown deduplication strategy"):
            resolve(_candidates(1, 1, [(0, 0, 0.1)]), strategy="hungarian")

    def test_permutations_map_back_to_caller_rows(self):
        found = _candidates(3, 2, [(0, 0, 0.1), (2, 1, 0.2)])
        result = resolve(found, a_perm=torch.tensor([2, 0, 1]),
                         b_perm=torch.tensor([1, 0]))
        assert list(result) == [(1, 0, 0.2), (2, 1, 0.1)]
        assert result.unmatched_a.tolist() == [0]


class TestMatchResult:
    """Accessors of the final result."""

    def _result(self):
        found = _candidates(4, 3, [(0, 2, 0.1), (3, 0, 0.2)])
        return resolve(found)

    def test_permutations(self):
        result = self._result()
        assert result.a_permutation().tolist() == [0, 3, 1, 2]
        assert result.b_permutation().tolist() == [2, 0, 1]

    def test_columns(self):
        cat1, cat2, dist = self._result().to_columns(dist_unit="deg")
        assert (cat1.name, cat2.name, dist.name) == ("CAT1_ROW", "CAT2_ROW", "MATCH_DIST")
        assert cat1.unit == "counter"
        assert dist.unit == "deg"
        torch.testing.assert_close(dist.data, torch.tensor([0.1, 0.2], dtype=torch.float64))

    def test_empty(self):
        result = MatchResult.empty(2, 0)
        assert len(result) == 0
        assert result.unmatched_a.tolist() == [0, 1]
        assert result.unmatched_b.tolist() == []
        assert "nummatched=0" in repr(result)
