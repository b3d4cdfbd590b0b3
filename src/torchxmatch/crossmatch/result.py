"""
Containers for match candidates and final match results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import torch
from torch import Tensor

from ..column import Column


class CandidateMatches:
    """
    Candidate (A, B, distance) triples found by a matcher.

    Triples are appended in discovery order, either one at a time or in
    tensor batches. :meth:`ordered` groups them by A row while keeping the
    discovery order inside each group, which is the order the deduplication
    passes scan them in.
    """

    def __init__(self, size_a: int, size_b: int):
        self.size_a = int(size_a)
        self.size_b = int(size_b)
        self._batches: List[Tuple[Tensor, Tensor, Tensor]] = []
        self._pending: List[Tuple[int, int, float]] = []

    def add(self, ai: int, bi: int, distance: float):
        self._pending.append((int(ai), int(bi), float(distance)))

    def extend(self, a_index: Tensor, b_index: Tensor, distance: Tensor):
        if not (a_index.shape == b_index.shape == distance.shape):
            raise ValueError(
                f"Candidate tensors must have equal shapes, got "
                f"{tuple(a_index.shape)}, {tuple(b_index.shape)}, {tuple(distance.shape)}"
            )
        self._flush()
        if a_index.numel():
            self._batches.append((a_index.to(torch.int64), b_index.to(torch.int64),
                                  distance.to(torch.float64)))

    def merge(self, other: 'CandidateMatches'):
        """Append the candidates of ``other`` after the current ones."""
        a_index, b_index, distance = other.tensors()
        self.extend(a_index, b_index, distance)

    def _flush(self):
        if self._pending:
            a, b, r = zip(*self._pending)
            self._batches.append((torch.tensor(a, dtype=torch.int64),
                                  torch.tensor(b, dtype=torch.int64),
                                  torch.tensor(r, dtype=torch.float64)))
            self._pending = []

    def tensors(self) -> Tuple[Tensor, Tensor, Tensor]:
        """All candidates in discovery order."""
        self._flush()
        if not self._batches:
            empty = torch.empty(0, dtype=torch.int64)
            return empty, empty.clone(), torch.empty(0, dtype=torch.float64)
        if len(self._batches) > 1:
            self._batches = [tuple(torch.cat(parts) for parts in zip(*self._batches))]
        return self._batches[0]

    def ordered(self) -> Tuple[Tensor, Tensor, Tensor]:
        """Candidates sorted by A row, discovery order within each A row."""
        a_index, b_index, distance = self.tensors()
        order = torch.sort(a_index, stable=True).indices
        return a_index[order], b_index[order], distance[order]

    def __len__(self) -> int:
        return sum(batch[0].shape[0] for batch in self._batches) + len(self._pending)

    def __repr__(self) -> str:
        return (f"CandidateMatches(size_a={self.size_a}, size_b={self.size_b}, "
                f"candidates={len(self)})")


@dataclass(frozen=True)
class MatchResult:
    """
    One-to-one matches between two coordinate sets.

    All indices refer to the caller's original row order. Pairs are sorted by
    ascending A index. The unmatched lists are ascending.
    """

    a_index: Tensor
    b_index: Tensor
    distance: Tensor
    unmatched_a: Tensor
    unmatched_b: Tensor
    size_a: int
    size_b: int

    @classmethod
    def empty(cls, size_a: int, size_b: int) -> 'MatchResult':
        """Result with no matches: every row of both sets is unmatched."""
        none = torch.empty(0, dtype=torch.int64)
        return cls(none, none.clone(), torch.empty(0, dtype=torch.float64),
                   torch.arange(size_a, dtype=torch.int64),
                   torch.arange(size_b, dtype=torch.int64), int(size_a), int(size_b))

    @property
    def nummatched(self) -> int:
        return self.a_index.shape[0]

    def __len__(self) -> int:
        return self.nummatched

    def __iter__(self) -> Iterator[Tuple[int, int, float]]:
        return iter(zip(self.a_index.tolist(), self.b_index.tolist(),
                        self.distance.tolist()))

    def __repr__(self) -> str:
        return (f"MatchResult(nummatched={self.nummatched}, size_a={self.size_a}, "
                f"size_b={self.size_b})")

    def a_permutation(self) -> Tensor:
        """Rows of A: the matched ones in pair order, then the unmatched ones."""
        return torch.cat([self.a_index, self.unmatched_a])

    def b_permutation(self) -> Tensor:
        """Rows of B: the matched ones in pair order, then the unmatched ones."""
        return torch.cat([self.b_index, self.unmatched_b])

    def to_columns(self, dist_unit: Optional[str] = None) -> List[Column]:
        """The matched pairs as ``CAT1_ROW``, ``CAT2_ROW`` and ``MATCH_DIST`` columns."""
        return [
            Column(self.a_index, name="CAT1_ROW", unit="counter",
                   description="Row index in first catalog (counting from 0)."),
            Column(self.b_index, name="CAT2_ROW", unit="counter",
                   description="Row index in second catalog (counting from 0)."),
            Column(self.distance, name="MATCH_DIST", unit=dist_unit,
                   description="Distance between the match."),
        ]
