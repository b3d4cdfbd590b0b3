"""
torchxmatch: k-d trees and catalog cross-matching for PyTorch

Builds k-d trees over coordinate columns, answers nearest-neighbour queries
and matches two catalogs under circular or elliptical apertures in one to
three dimensions.
"""

from .aperture import (
    Aperture, ApertureGeometry, CircularAperture, EllipticalAperture,
    EllipsoidalAperture, bound_ellipse_extent, bound_ellipsoid_extent,
    prepare_aperture,
)
from .column import (
    Column, ColumnInfo, as_coordinates, column_maximum, column_minimum,
    coordinate_columns,
)
from .config import MatchConfig, configure, configure_for_environment, get_config
from .crossmatch import (
    CandidateMatches, Coverage, MatchResult, match, match_kdtree,
    match_sort_based, resolve,
)
from .kdtree import (
    BLANK_INDEX, KDTree, KDTreeSearcher, Neighbour, build_kdtree,
    nearest_neighbour, query,
)
from .logging import set_log_level
from .threads import distribute_indices, spin_off

__version__ = "0.1.0"
__all__ = [
    # Apertures
    "Aperture", "ApertureGeometry", "CircularAperture", "EllipticalAperture",
    "EllipsoidalAperture", "bound_ellipse_extent", "bound_ellipsoid_extent",
    "prepare_aperture",
    # Columns
    "Column", "ColumnInfo", "as_coordinates", "coordinate_columns",
    "column_minimum", "column_maximum",
    # k-d tree
    "BLANK_INDEX", "KDTree", "KDTreeSearcher", "Neighbour", "build_kdtree",
    "nearest_neighbour", "query",
    # Matching
    "CandidateMatches", "Coverage", "MatchResult", "match", "match_kdtree",
    "match_sort_based", "resolve",
    # Configuration and runtime
    "MatchConfig", "configure", "configure_for_environment", "get_config",
    "set_log_level", "distribute_indices", "spin_off",
]
