"""
Sort-based matching.

Both coordinate sets are sorted by their first axis. A sweep over A then
finds, for every A row, the window of B rows whose first coordinate lies
within the aperture's half-width. Window pairs pass a bounding-box test on
the other axes before the exact aperture distance is evaluated.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple, Union

import torch
from torch import Tensor

from ..aperture import Aperture, ApertureGeometry, prepare_aperture
from ..column import CoordinateInput, coordinate_columns
from ..config import get_config
from ..logging import log_errors, log_match_summary, log_timing, logger
from .resolve import resolve
from .result import CandidateMatches, MatchResult

# Upper bound on window pairs evaluated in one vectorised batch.
_MAX_PAIRS_PER_BATCH = 1 << 22


def _check_inputs(cols1: List[Tensor], cols2: List[Tensor]) -> int:
    if len(cols1) != len(cols2):
        raise ValueError(
            f"The two inputs have different numbers of coordinate columns "
            f"({len(cols1)} and {len(cols2)} respectively)"
        )
    ndim = len(cols1)
    if ndim > 3:
        raise ValueError(
            f"{ndim} dimension matching requested, only datasets with a "
            f"maximum of 3 dimensions can be matched"
        )
    return ndim


def _sort_permutation(first_axis: Tensor) -> Tensor:
    # NaN sorts last; rows keep their input order on ties
    key = torch.nan_to_num(first_axis.to(torch.float64), nan=math.inf)
    return torch.sort(key, stable=True).indices


def _prepare_side(columns: List[Tensor], presorted: bool, inplace: bool,
                  label: str) -> Tuple[Tensor, Optional[Tensor]]:
    """Return the working ``[N, D]`` coordinates and the sort permutation."""
    if inplace:
        for i, col in enumerate(columns):
            if col.dtype != torch.float64:
                raise ValueError(
                    f"When 'inplace' is activated, the input coordinates must be "
                    f"float64. Column {i} of the {label} coordinates is {col.dtype}"
                )

    if presorted:
        return torch.stack([c.to(torch.float64) for c in columns], dim=1), None

    perm = _sort_permutation(columns[0])
    if inplace:
        for col in columns:
            col.copy_(col[perm])
        coords = torch.stack(columns, dim=1)
    else:
        coords = torch.stack([c.to(torch.float64)[perm] for c in columns], dim=1)
    return coords, perm


def _sweep_windows(a0: Sequence[float], b0: Sequence[float],
                   half_width: float) -> Tuple[List[int], List[int], List[int]]:
    """
    For each A row, the ``[start, stop)`` range of B rows within
    ``half_width`` along the sorted first axis. Rows with an empty window
    are left out.
    """
    nb = len(b0)
    rows, starts, stops = [], [], []
    blow = bhigh = 0
    for ai, x in enumerate(a0):
        if math.isnan(x):
            continue
        # Both sets ascend, so B rows below this window are below every later one
        while blow < nb and b0[blow] < x - half_width:
            blow += 1
        if blow >= nb:
            break
        bhigh = max(bhigh, blow)
        while bhigh < nb and b0[bhigh] <= x + half_width:
            bhigh += 1
        if bhigh > blow:
            rows.append(ai)
            starts.append(blow)
            stops.append(bhigh)
    return rows, starts, stops


def _window_pairs(rows: Tensor, starts: Tensor, stops: Tensor) -> Tuple[Tensor, Tensor]:
    """Expand windows into explicit (A row, B row) pairs."""
    counts = stops - starts
    offsets = torch.cumsum(counts, dim=0) - counts
    total = int(counts.sum())
    within = torch.arange(total, dtype=torch.int64) - torch.repeat_interleave(offsets, counts)
    a_index = torch.repeat_interleave(rows, counts)
    b_index = torch.repeat_interleave(starts, counts) + within
    return a_index, b_index


def _window_candidates(A: Tensor, B: Tensor, geometry: ApertureGeometry,
                       rows: List[int], starts: List[int], stops: List[int],
                       candidates: CandidateMatches):
    rows_t = torch.tensor(rows, dtype=torch.int64)
    starts_t = torch.tensor(starts, dtype=torch.int64)
    stops_t = torch.tensor(stops, dtype=torch.int64)
    cumulative = torch.cumsum(stops_t - starts_t, dim=0)

    first = 0
    while first < len(rows):
        # Whole windows per batch, at least one
        limit = (int(cumulative[first - 1]) if first else 0) + _MAX_PAIRS_PER_BATCH
        fits = torch.searchsorted(cumulative, torch.tensor([limit]), right=True)
        last = max(first + 1, int(fits[0]))
        a_index, b_index = _window_pairs(rows_t[first:last], starts_t[first:last],
                                         stops_t[first:last])
        first = last

        # Cheap bounding-box test on the unsorted axes first
        a_pts, b_pts = A[a_index], B[b_index]
        lo = a_pts[:, 1:] - geometry.half_widths[1:]
        hi = a_pts[:, 1:] + geometry.half_widths[1:]
        inbox = ((b_pts[:, 1:] >= lo) & (b_pts[:, 1:] <= hi)).all(dim=1)
        a_index, b_index = a_index[inbox], b_index[inbox]

        distance = geometry.distance(b_pts[inbox] - a_pts[inbox])
        keep = distance < geometry.radius
        candidates.extend(a_index[keep], b_index[keep], distance[keep])


@log_errors
def match_sort_based(coord1: CoordinateInput, coord2: CoordinateInput,
                     aperture: Union[Aperture, float, Sequence[float]],
                     presorted: bool = False, inplace: bool = False,
                     strategy: Optional[str] = None) -> MatchResult:
    """
    Match two coordinate sets by sorting and sweeping the first axis.

    Parameters:
    -----------
    coord1, coord2 : tensor, array or sequence of columns
        The first (A) and second (B) coordinate sets, with the same number
        of columns (at most 3).
    aperture : Aperture, float or sequence
        Matching aperture (see :meth:`Aperture.from_values`).
    presorted : bool
        Both inputs are already sorted by their first column.
    inplace : bool
        Sort float64 input tensors in place instead of copying them.
    strategy : str, optional
        Deduplication strategy, defaults to the global configuration.

    Returns:
    --------
    MatchResult
        Matches in the callers' row indices.
    """
    cols1 = coordinate_columns(coord1, "first")
    cols2 = coordinate_columns(coord2, "second")
    ndim = _check_inputs(cols1, cols2)
    geometry = prepare_aperture(ndim, aperture)
    strategy = strategy or get_config().strategy

    size_a, size_b = cols1[0].shape[0], cols2[0].shape[0]
    if size_a == 0 or size_b == 0:
        logger.debug(f"match_sort_based: empty input ({size_a} and {size_b} rows)")
        return MatchResult.empty(size_a, size_b)

    with log_timing("match_sort_based"):
        A, a_perm = _prepare_side(cols1, presorted, inplace, "first")
        B, b_perm = _prepare_side(cols2, presorted, inplace, "second")

        candidates = CandidateMatches(size_a, size_b)
        rows, starts, stops = _sweep_windows(A[:, 0].tolist(), B[:, 0].tolist(),
                                             float(geometry.half_widths[0]))
        if rows:
            _window_candidates(A, B, geometry, rows, starts, stops, candidates)
        logger.debug(f"match_sort_based: {len(candidates)} candidates in "
                     f"{len(rows)} windows")

        result = resolve(candidates, a_perm, b_perm, strategy)

    log_match_summary("sort-based", size_a, size_b, result.nummatched)
    return result
