"""
Coordinate matching between two point sets.
"""

from typing import Sequence, Union

from ..aperture import Aperture
from ..column import CoordinateInput
from .resolve import resolve
from .result import CandidateMatches, MatchResult
from .sort_based import match_sort_based
from .tree_based import Coverage, match_kdtree

MATCH_METHODS = ("kdtree", "sort")


def match(coord1: CoordinateInput, coord2: CoordinateInput,
          aperture: Union[Aperture, float, Sequence[float]],
          method: str = "kdtree", **kwargs) -> MatchResult:
    """
    Match two coordinate sets with the chosen method.

    ``method="kdtree"`` calls :func:`match_kdtree` and ``method="sort"``
    calls :func:`match_sort_based`; ``kwargs`` go to that function.
    """
    if method == "kdtree":
        return match_kdtree(coord1, coord2, aperture, **kwargs)
    if method == "sort":
        return match_sort_based(coord1, coord2, aperture, **kwargs)
    raise ValueError(f"Unknown match method '{method}'. Available: {list(MATCH_METHODS)}")


__all__ = [
    "CandidateMatches",
    "Coverage",
    "MATCH_METHODS",
    "MatchResult",
    "match",
    "match_kdtree",
    "match_sort_based",
    "resolve",
]
