"""
Turn many-to-many match candidates into one-to-one matches.

Two strategies are available:

``"rearrange"`` (default)
    Two fixed passes. Each B row first keeps only its closest A row. Each A
    row then keeps the closest of the B rows that chose it. With chained
    conflicts an A row can lose its only B even when another free B was in
    its aperture; no further passes are made.

``"greedy"``
    All candidates are taken in order of increasing distance (ties by A
    then B index) and a pair is accepted when neither row is taken yet.
"""

from __future__ import annotations

from typing import Optional, Tuple

import torch
from torch import Tensor

from ..config import DEDUP_STRATEGIES
from .result import CandidateMatches, MatchResult


def _first_per_group(keys: Tensor, values: Tensor) -> Tensor:
    """
    Positions of the smallest ``values`` entry of each ``keys`` group.

    Ties go to the earliest position. The returned positions are sorted by
    ascending key.
    """
    by_value = torch.sort(values, stable=True).indices
    by_key = by_value[torch.sort(keys[by_value], stable=True).indices]
    sorted_keys = keys[by_key]
    first = torch.ones_like(sorted_keys, dtype=torch.bool)
    first[1:] = sorted_keys[1:] != sorted_keys[:-1]
    return by_key[first]


def _rearrange(a_index: Tensor, b_index: Tensor,
               distance: Tensor) -> Tuple[Tensor, Tensor, Tensor]:
    # Pass 1: the closest A for every B (first seen wins ties)
    keep = _first_per_group(b_index, distance)
    a_index, b_index, distance = a_index[keep], b_index[keep], distance[keep]

    # Pass 2: scanning B in ascending order, the closest B for every A
    keep = _first_per_group(a_index, distance)
    return a_index[keep], b_index[keep], distance[keep]


def _greedy(a_index: Tensor, b_index: Tensor,
            distance: Tensor) -> Tuple[Tensor, Tensor, Tensor]:
    order = torch.sort(b_index, stable=True).indices
    order = order[torch.sort(a_index[order], stable=True).indices]
    order = order[torch.sort(distance[order], stable=True).indices]

    taken_a, taken_b, accepted = set(), set(), []
    for pos, ai, bi in zip(order.tolist(), a_index[order].tolist(),
                           b_index[order].tolist()):
        if ai in taken_a or bi in taken_b:
            continue
        taken_a.add(ai)
        taken_b.add(bi)
        accepted.append(pos)

    keep = torch.tensor(accepted, dtype=torch.int64)
    return a_index[keep], b_index[keep], distance[keep]


def resolve(candidates: CandidateMatches, a_perm: Optional[Tensor] = None,
            b_perm: Optional[Tensor] = None,
            strategy: str = "rearrange") -> MatchResult:
    """
    Resolve candidates into a one-to-one :class:`MatchResult`.

    Parameters:
    -----------
    candidates : CandidateMatches
        Candidate triples, indexed in the matcher's working order.
    a_perm, b_perm : Tensor, optional
        Map working-order rows back to the caller's rows
        (``original = perm[working]``). ``None`` means identity.
    strategy : str
        ``"rearrange"`` or ``"greedy"`` (see module docstring).
    """
    if strategy not in DEDUP_STRATEGIES:
        raise ValueError(
            f"Unknown deduplication strategy '{strategy}'. "
            f"Available: {list(DEDUP_STRATEGIES)}"
        )
    size_a, size_b = candidates.size_a, candidates.size_b
    a_index, b_index, distance = candidates.ordered()
    if a_index.numel() == 0:
        return MatchResult.empty(size_a, size_b)

    if strategy == "rearrange":
        a_index, b_index, distance = _rearrange(a_index, b_index, distance)
    else:
        a_index, b_index, distance = _greedy(a_index, b_index, distance)

    if a_perm is not None:
        a_index = a_perm[a_index]
    if b_perm is not None:
        b_index = b_perm[b_index]

    order = torch.sort(a_index).indices
    a_index, b_index, distance = a_index[order], b_index[order], distance[order]

    matched_a = torch.zeros(size_a, dtype=torch.bool)
    matched_a[a_index] = True
    matched_b = torch.zeros(size_b, dtype=torch.bool)
    matched_b[b_index] = True

    assert int(matched_a.sum()) == a_index.numel(), "an A row was matched twice"
    assert int(matched_b.sum()) == b_index.numel(), "a B row was matched twice"

    return MatchResult(
        a_index=a_index,
        b_index=b_index,
        distance=distance,
        unmatched_a=torch.nonzero(~matched_a).flatten(),
        unmatched_b=torch.nonzero(~matched_b).flatten(),
        size_a=size_a,
        size_b=size_b,
    )
