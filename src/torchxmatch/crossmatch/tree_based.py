"""
k-d tree based matching.

A k-d tree over the first coordinate set (A) is searched for the nearest
neighbour of every row of the second set (B). Before any search, a coarse
occupancy grid of A along each axis rejects B rows that cannot have an A
row nearby; confirming a non-match in the tree is the expensive case.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import torch
from torch import Tensor

from ..aperture import Aperture, ApertureGeometry, prepare_aperture
from ..column import CoordinateInput, as_coordinates, column_maximum, column_minimum
from ..config import get_config
from ..kdtree import BLANK_INDEX, KDTree, KDTreeSearcher, build_tree
from ..logging import log_errors, log_match_summary, log_timing, logger
from ..threads import spin_off
from .resolve import resolve
from .result import CandidateMatches, MatchResult


class Coverage:
    """
    Per-axis occupancy of a coordinate set.

    Along each axis the range ``[min - radius, max + radius]`` is split into
    bins about one radius wide (at most ``max_bins``). A bin is occupied
    when it, or one of its neighbours, holds a point.
    """

    def __init__(self, lower: List[float], upper: List[float],
                 bin_width: List[float], occupied: List[Tensor]):
        self.lower = lower
        self.upper = upper
        self.bin_width = bin_width
        self.occupied = occupied

    @property
    def ndim(self) -> int:
        return len(self.occupied)

    @classmethod
    def from_coordinates(cls, coords: Tensor, radius: float,
                         max_bins: int) -> 'Coverage':
        lower, upper, widths, occupied = [], [], [], []
        for dim in range(coords.shape[1]):
            column = coords[:, dim]
            # Infinite rows can never match, so only finite values span the axis
            values = column[torch.isfinite(column)]
            if values.numel() == 0:
                # Nothing usable on this axis, so nothing can be covered
                lower.append(0.0)
                upper.append(0.0)
                widths.append(1.0)
                occupied.append(torch.zeros(1, dtype=torch.bool))
                continue

            lo = column_minimum(values) - radius
            hi = column_maximum(values) + radius
            span = (hi - lo) / radius
            if math.isfinite(span):
                numbins = min(max(int(span), 1), max_bins)
            else:
                numbins = max_bins
            if numbins == 1:
                width = hi - lo
                occ = torch.ones(1, dtype=torch.bool)
            else:
                if math.isfinite(hi - lo):
                    width = (hi - lo) / numbins
                else:
                    width = hi / numbins - lo / numbins
                index = _bin_index(values, lo, hi, width, numbins)
                counts = torch.bincount(index, minlength=numbins)
                hits = counts > 0

                # Dilate by one bin against matches straddling a bin edge
                occ = hits.clone()
                occ[1:] |= hits[:-1]
                occ[:-1] |= hits[1:]

            lower.append(lo)
            upper.append(hi)
            widths.append(width)
            occupied.append(occ)
        return cls(lower, upper, widths, occupied)

    def covers(self, points: Tensor) -> Tensor:
        """Boolean mask of rows of ``points`` that fall in occupied bins on every axis."""
        mask = torch.ones(points.shape[0], dtype=torch.bool)
        for dim in range(self.ndim):
            x = points[:, dim]
            occ = self.occupied[dim]
            inrange = (x >= self.lower[dim]) & (x <= self.upper[dim])
            safe = torch.where(inrange, x, torch.full_like(x, self.lower[dim]))
            index = _bin_index(safe, self.lower[dim], self.upper[dim],
                               self.bin_width[dim], occ.shape[0])
            mask &= inrange & occ[index]
        return mask


def _bin_index(x: Tensor, lo: float, hi: float, width: float, numbins: int) -> Tensor:
    # The upper edge belongs to the last bin
    if math.isfinite(hi - lo):
        index = torch.floor((x - lo) / width)
    else:
        # x - lo overflows when the range spans most of the float64 line
        index = torch.floor(x / width - lo / width)
    return index.to(torch.int64).clamp(0, numbins - 1)


@dataclass
class _SearchParams:
    A: Tensor
    B: Tensor
    rows: Tensor
    points: List[List[float]]
    searcher: KDTreeSearcher
    geometry: ApertureGeometry


def _search_worker(indices: range, p: _SearchParams) -> CandidateMatches:
    """Nearest A row for each assigned B row, kept when inside the aperture."""
    found = CandidateMatches(p.A.shape[0], p.B.shape[0])
    nearest = [p.searcher.nearest(p.points[i]).index for i in indices]
    if not nearest:
        return found

    a_index = torch.tensor(nearest, dtype=torch.int64)
    b_index = p.rows[indices.start:indices.stop]
    hit = a_index != BLANK_INDEX
    a_index, b_index = a_index[hit], b_index[hit]

    # Nearest in Euclidean terms; elliptical apertures need the exact check
    distance = p.geometry.distance(p.B[b_index] - p.A[a_index])
    keep = distance < p.geometry.radius
    found.extend(a_index[keep], b_index[keep], distance[keep])
    return found


@log_errors
def match_kdtree(coord1: CoordinateInput, coord2: CoordinateInput,
                 aperture: Union[Aperture, float, Sequence[float]],
                 kdtree: Optional[KDTree] = None,
                 num_threads: Optional[int] = None,
                 coverage_max_bins: Optional[int] = None,
                 min_items_for_parallel: Optional[int] = None,
                 strategy: Optional[str] = None) -> MatchResult:
    """
    Match two coordinate sets with a k-d tree over the first one.

    Parameters:
    -----------
    coord1, coord2 : tensor, array or sequence of columns
        The first (A) and second (B) coordinate sets, with the same number
        of columns (at most 3).
    aperture : Aperture, float or sequence
        Matching aperture (see :meth:`Aperture.from_values`).
    kdtree : KDTree, optional
        Tree built on ``coord1``. Built here when not given.
    num_threads : int, optional
        Worker threads for the tree searches.
    coverage_max_bins : int, optional
        Cap on occupancy bins per axis.
    min_items_for_parallel : int, optional
        Fewer searches than this run on the calling thread.
    strategy : str, optional
        Deduplication strategy.

    Unset options come from the global :class:`~torchxmatch.config.MatchConfig`.
    """
    config = get_config()
    if num_threads is None:
        num_threads = config.num_threads
    if coverage_max_bins is None:
        coverage_max_bins = config.coverage_max_bins
    if min_items_for_parallel is None:
        min_items_for_parallel = config.min_items_for_parallel
    strategy = strategy or config.strategy
    if num_threads < 1:
        raise ValueError(f"num_threads must be at least 1, got {num_threads}")
    if coverage_max_bins < 1:
        raise ValueError(f"coverage_max_bins must be at least 1, got {coverage_max_bins}")

    A = as_coordinates(coord1, "first")
    B = as_coordinates(coord2, "second")
    if A.shape[1] != B.shape[1]:
        raise ValueError(
            f"The first and second coordinates should have the same number of "
            f"columns, but they have {A.shape[1]} and {B.shape[1]}"
        )
    ndim = A.shape[1]
    if ndim > 3:
        raise ValueError(
            f"{ndim} dimension matching requested, only datasets with a "
            f"maximum of 3 dimensions can be matched"
        )
    geometry = prepare_aperture(ndim, aperture)

    size_a, size_b = A.shape[0], B.shape[0]
    if kdtree is None:
        kdtree = build_tree(A)
    if len(kdtree) != size_a:
        raise ValueError(
            f"The kd-tree has {len(kdtree)} nodes but the first coordinates "
            f"have {size_a} rows"
        )
    if kdtree.ndim is not None and kdtree.ndim != ndim:
        raise ValueError(
            f"The kd-tree was built on {kdtree.ndim} dimensions, the coordinates "
            f"have {ndim}"
        )
    if kdtree.is_empty or size_b == 0:
        logger.debug(f"match_kdtree: empty input ({size_a} and {size_b} rows)")
        return MatchResult.empty(size_a, size_b)

    with log_timing("match_kdtree"):
        coverage = Coverage.from_coordinates(A, geometry.radius, coverage_max_bins)
        rows = torch.nonzero(coverage.covers(B)).flatten()
        logger.debug(f"match_kdtree: {rows.numel()} of {size_b} rows inside coverage")

        params = _SearchParams(A=A, B=B, rows=rows, points=B[rows].tolist(),
                               searcher=KDTreeSearcher(kdtree, A), geometry=geometry)
        found = spin_off(_search_worker, params, rows.numel(), num_threads,
                         min_items_for_parallel)

        candidates = CandidateMatches(size_a, size_b)
        for part in found:
            candidates.merge(part)
        logger.debug(f"match_kdtree: {len(candidates)} candidates")

        result = resolve(candidates, strategy=strategy)

    log_match_summary("kd-tree", size_a, size_b, result.nummatched)
    return result
