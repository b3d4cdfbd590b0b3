"""
Column abstraction for coordinate sets.

A coordinate set is an ordered group of equally long numeric columns, one per
axis. The matchers and the k-d tree only ever see the normalised form: a
contiguous ``float64`` tensor of shape ``[N, D]``.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import torch


class ColumnInfo:
    """
    Provenance metadata for a column.

    Parameters:
    -----------
    name : str
        Column name
    dtype : torch.dtype, optional
        PyTorch data type
    unit : str, optional
        Physical unit (e.g., 'deg', 'pix', 'index')
    description : str, optional
        Human-readable description
    """

    def __init__(
        self,
        name: str,
        dtype: Optional[torch.dtype] = None,
        unit: Optional[str] = None,
        description: Optional[str] = None,
    ):
        self.name = name
        self.dtype = dtype
        self.unit = unit
        self.description = description

    def __repr__(self) -> str:
        parts = [f"name='{self.name}'", f"dtype={self.dtype}"]
        if self.unit:
            parts.append(f"unit='{self.unit}'")
        if self.description:
            parts.append(f"description='{self.description[:30]}...'")
        return f"ColumnInfo({', '.join(parts)})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "dtype": str(self.dtype),
            "unit": self.unit,
            "description": self.description,
        }


class Column:
    """A named one-dimensional tensor with its metadata."""

    def __init__(
        self,
        data: Union[torch.Tensor, np.ndarray, Sequence[float]],
        name: Optional[str] = None,
        unit: Optional[str] = None,
        description: Optional[str] = None,
    ):
        tensor = torch.as_tensor(data)
        if tensor.ndim != 1:
            raise ValueError(
                f"Column '{name}' must be one-dimensional, got shape {tuple(tensor.shape)}"
            )
        self.data = tensor
        self.info = ColumnInfo(name=name or "", dtype=tensor.dtype, unit=unit,
                               description=description)

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def unit(self) -> Optional[str]:
        return self.info.unit

    @property
    def description(self) -> Optional[str]:
        return self.info.description

    @property
    def dtype(self) -> torch.dtype:
        return self.data.dtype

    def __len__(self) -> int:
        return self.data.shape[0]

    def __getitem__(self, key):
        return self.data[key]

    def __array__(self, dtype=None, copy=None):
        arr = self.data.detach().cpu().numpy()
        return arr if dtype is None else arr.astype(dtype)

    def __repr__(self) -> str:
        return f"Column(name='{self.name}', size={len(self)}, dtype={self.dtype})"


CoordinateInput = Union[torch.Tensor, np.ndarray, Sequence[Any]]


def _column_tensor(column: Any, label: str, axis: int) -> torch.Tensor:
    """Convert a single coordinate column to a 1-D tensor."""
    if isinstance(column, Column):
        tensor = column.data
    elif isinstance(column, torch.Tensor):
        tensor = column
    else:
        data = np.asarray(column)
        # FITS columns arrive big-endian, torch only takes native byte order
        if data.dtype.byteorder not in ('=', '|'):
            data = data.astype(data.dtype.newbyteorder('='))
        try:
            tensor = torch.as_tensor(data)
        except (TypeError, ValueError) as e:
            raise TypeError(
                f"Column {axis} of the {label} coordinates is not numeric"
            ) from e

    if tensor.ndim != 1:
        raise ValueError(
            f"Each coordinate column must be one-dimensional. Column {axis} "
            f"of the {label} coordinates has shape {tuple(tensor.shape)}"
        )
    if tensor.dtype == torch.bool or tensor.is_complex():
        raise TypeError(
            f"Column {axis} of the {label} coordinates has non-numeric type {tensor.dtype}"
        )
    return tensor


def coordinate_columns(coords: CoordinateInput, label: str = "input") -> List[torch.Tensor]:
    """
    Split a coordinate set into its 1-D column tensors, without copying.

    Accepts a ``[N, D]`` tensor or array, a 1-D tensor or array (a single
    axis), or a sequence of columns.
    """
    if isinstance(coords, Column):
        return [_column_tensor(coords, label, 0)]
    if isinstance(coords, (torch.Tensor, np.ndarray)):
        if isinstance(coords, np.ndarray) and coords.dtype.byteorder not in ('=', '|'):
            coords = coords.astype(coords.dtype.newbyteorder('='))
        tensor = torch.as_tensor(coords)
        if tensor.ndim == 1:
            return [_column_tensor(tensor, label, 0)]
        if tensor.ndim != 2 or tensor.shape[1] == 0:
            raise ValueError(
                f"The {label} coordinates must be a [N, D] array with D >= 1, "
                f"got shape {tuple(tensor.shape)}"
            )
        return [_column_tensor(tensor[:, i], label, i) for i in range(tensor.shape[1])]
    if isinstance(coords, (str, bytes)):
        raise TypeError(f"The {label} coordinates cannot be a string")

    columns = [_column_tensor(col, label, i) for i, col in enumerate(coords)]
    if not columns:
        raise ValueError(f"The {label} coordinates have no columns")
    lengths = [c.shape[0] for c in columns]
    if len(set(lengths)) > 1:
        raise ValueError(
            f"The columns of each coordinate set must have the same number of "
            f"elements. The {label} coordinates have lengths {lengths}"
        )
    return columns


def as_coordinates(coords: CoordinateInput, label: str = "input") -> torch.Tensor:
    """
    Normalise a coordinate set to a contiguous ``float64`` tensor ``[N, D]``.

    The caller's data is never modified: float64 input is stacked into a new
    tensor and other numeric types are converted.
    """
    columns = coordinate_columns(coords, label)
    return torch.stack([c.to(torch.float64) for c in columns], dim=1).contiguous()


def column_minimum(column: Union[torch.Tensor, Column]) -> float:
    """Minimum of a column, ignoring NaN. NaN when nothing is left."""
    data = column.data if isinstance(column, Column) else torch.as_tensor(column)
    finite = data[~torch.isnan(data)] if data.is_floating_point() else data
    if finite.numel() == 0:
        return float("nan")
    return float(finite.min())


def column_maximum(column: Union[torch.Tensor, Column]) -> float:
    """Maximum of a column, ignoring NaN. NaN when nothing is left."""
    data = column.data if isinstance(column, Column) else torch.as_tensor(column)
    finite = data[~torch.isnan(data)] if data.is_floating_point() else data
    if finite.numel() == 0:
        return float("nan")
    return float(finite.max())
