"""
Matching apertures in one, two and three dimensions.

An aperture is a radius plus, for 2D and 3D, axis ratios and rotation
angles. :func:`prepare_aperture` turns it into a geometry object once per
match call. The geometry knows the half-width of the aperture's axis-aligned
bounding box and evaluates the aperture distance of coordinate differences.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np
import torch
from torch import Tensor

# Number of ratios and angles each dimensionality takes.
_SHAPE_PARAMS = {1: (0, 0), 2: (1, 1), 3: (2, 3)}


@dataclass(frozen=True)
class Aperture:
    """
    Matching tolerance around a point.

    ``radius`` is the semi-major axis. In 2D, ``ratios`` holds the minor to
    major axis ratio and ``angles`` the position angle (degrees). In 3D there
    are two ratios and three ZXZ Euler angles. Leaving them empty means a
    circle or sphere.
    """

    radius: float
    ratios: Tuple[float, ...] = ()
    angles: Tuple[float, ...] = ()

    @classmethod
    def from_values(cls, values: Union['Aperture', float, Sequence[float]],
                    ndim: int) -> 'Aperture':
        """
        Build an aperture from the flat form ``[r]``, ``[r, q, pa]`` or
        ``[r, q1, q2, a1, a2, a3]``. A bare number is a circular radius.
        """
        if isinstance(values, Aperture):
            return values
        if isinstance(values, numbers.Real):
            return cls(float(values))
        if isinstance(values, Tensor):
            values = values.flatten().tolist()
        elif isinstance(values, np.ndarray):
            values = values.ravel().tolist()
        values = [float(v) for v in values]
        if len(values) == 1:
            return cls(values[0])
        if ndim not in _SHAPE_PARAMS:
            raise ValueError(
                f"{ndim} dimension matching requested, only 1 to 3 dimensions "
                f"are supported"
            )
        nratio, nangle = _SHAPE_PARAMS[ndim]
        if len(values) != 1 + nratio + nangle:
            raise ValueError(
                f"A {ndim}D aperture takes 1 or {1 + nratio + nangle} values, "
                f"got {len(values)}: {values}"
            )
        return cls(values[0], tuple(values[1:1 + nratio]),
                   tuple(values[1 + nratio:]))

    def validate(self, ndim: int) -> None:
        """Check the aperture against the coordinate dimensionality."""
        if ndim not in _SHAPE_PARAMS:
            raise ValueError(
                f"{ndim} dimension matching requested, only 1 to 3 dimensions "
                f"are supported"
            )
        if not math.isfinite(self.radius) or self.radius <= 0:
            raise ValueError(
                f"The aperture radius ({self.radius:g}) must be a positive number"
            )
        nratio, nangle = _SHAPE_PARAMS[ndim]
        if self.ratios and len(self.ratios) != nratio:
            raise ValueError(
                f"A {ndim}D aperture needs {nratio} axis ratio(s), got {len(self.ratios)}"
            )
        if self.angles and len(self.angles) != nangle:
            raise ValueError(
                f"A {ndim}D aperture needs {nangle} angle(s), got {len(self.angles)}"
            )
        for q in self.ratios:
            if not (0 < q <= 1):
                raise ValueError(
                    f"Aperture axis ratios must be larger than zero and at most "
                    f"one, got {q:g}"
                )
        if any(not math.isfinite(a) for a in self.angles):
            raise ValueError(f"Aperture angles must be finite, got {self.angles}")

    def is_circular(self) -> bool:
        return all(q == 1 for q in self.ratios)


def bound_ellipse_extent(a: float, b: float, theta_deg: float) -> Tuple[float, float]:
    """Half-widths of the axis-aligned box around a rotated ellipse."""
    t = math.radians(theta_deg)
    c, s = math.cos(t), math.sin(t)
    return (math.sqrt((a * c) ** 2 + (b * s) ** 2),
            math.sqrt((a * s) ** 2 + (b * c) ** 2))


def rotation_matrix_3d(angles_deg: Sequence[float]) -> Tensor:
    """
    ZXZ Euler rotation that takes a difference vector into the frame of the
    ellipsoid's principal axes.
    """
    c1, c2, c3 = (math.cos(math.radians(a)) for a in angles_deg)
    s1, s2, s3 = (math.sin(math.radians(a)) for a in angles_deg)
    return torch.tensor(
        [
            [c3 * c1 - s3 * c2 * s1, c3 * s1 + s3 * c2 * c1, s3 * s2],
            [-s3 * c1 - c3 * c2 * s1, -s3 * s1 + c3 * c2 * c1, c3 * s2],
            [s1 * s2, -s2 * c1, c2],
        ],
        dtype=torch.float64,
    )


def bound_ellipsoid_extent(semiaxes: Sequence[float],
                           angles_deg: Sequence[float]) -> Tuple[float, float, float]:
    """Half-widths of the axis-aligned box around a rotated ellipsoid."""
    rot = rotation_matrix_3d(angles_deg)
    axes = torch.as_tensor(semiaxes, dtype=torch.float64)
    # Body-frame axis j contributes R[j, i] * s_j along lab axis i
    extent = torch.sqrt(((rot * axes[:, None]) ** 2).sum(dim=0))
    return tuple(float(v) for v in extent)


class ApertureGeometry:
    """Derived constants of an aperture for one dimensionality."""

    is_circular = True

    def __init__(self, ndim: int, radius: float, half_widths: Sequence[float]):
        self.ndim = ndim
        self.radius = float(radius)
        self.half_widths = torch.as_tensor(list(half_widths), dtype=torch.float64)

    def distance(self, delta: Tensor) -> Tensor:
        """Aperture distance of ``delta`` (``[..., D]``, B minus A)."""
        raise NotImplementedError

    def within(self, delta: Tensor) -> Tensor:
        """Boolean mask of differences strictly inside the aperture."""
        return self.distance(delta) < self.radius

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(ndim={self.ndim}, radius={self.radius:g}, "
                f"half_widths={self.half_widths.tolist()})")


class CircularAperture(ApertureGeometry):
    """Euclidean distance; also used for every 1D aperture."""

    def __init__(self, ndim: int, radius: float):
        super().__init__(ndim, radius, [radius] * ndim)

    def distance(self, delta: Tensor) -> Tensor:
        return torch.linalg.vector_norm(delta, dim=-1)


class EllipticalAperture(ApertureGeometry):
    is_circular = False

    def __init__(self, radius: float, ratio: float, angle_deg: float):
        super().__init__(2, radius, bound_ellipse_extent(radius, radius * ratio, angle_deg))
        self.ratio = float(ratio)
        self.cos = math.cos(math.radians(angle_deg))
        self.sin = math.sin(math.radians(angle_deg))

    def distance(self, delta: Tensor) -> Tensor:
        dx, dy = delta[..., 0], delta[..., 1]
        xr = dx * self.cos + dy * self.sin
        yr = -dx * self.sin + dy * self.cos
        return torch.sqrt(xr * xr + (yr / self.ratio) ** 2)


class EllipsoidalAperture(ApertureGeometry):
    is_circular = False

    def __init__(self, radius: float, ratios: Sequence[float], angles_deg: Sequence[float]):
        semiaxes = (radius, radius * ratios[0], radius * ratios[1])
        super().__init__(3, radius, bound_ellipsoid_extent(semiaxes, angles_deg))
        self.ratios = tuple(float(q) for q in ratios)
        self.rotation = rotation_matrix_3d(angles_deg)
        self._scale = torch.tensor([1.0, 1.0 / ratios[0], 1.0 / ratios[1]],
                                   dtype=torch.float64)

    def distance(self, delta: Tensor) -> Tensor:
        rotated = delta @ self.rotation.T
        return torch.linalg.vector_norm(rotated * self._scale, dim=-1)


def prepare_aperture(ndim: int, aperture: Union[Aperture, float, Sequence[float]]) -> ApertureGeometry:
    """
    Validate ``aperture`` for ``ndim`` dimensions and pick its geometry.

    Raises ``ValueError`` for a non-positive radius, axis ratios outside
    (0, 1], the wrong number of shape parameters, or ``ndim`` outside 1..3.
    """
    ap = Aperture.from_values(aperture, ndim)
    ap.validate(ndim)

    if ndim == 1 or ap.is_circular():
        return CircularAperture(ndim, ap.radius)
    if ndim == 2:
        angle = ap.angles[0] if ap.angles else 0.0
        return EllipticalAperture(ap.radius, ap.ratios[0], angle)
    angles = ap.angles if ap.angles else (0.0, 0.0, 0.0)
    return EllipsoidalAperture(ap.radius, ap.ratios, angles)
