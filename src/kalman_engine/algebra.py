"""Linear algebra backends.

The filtering equations are written once against the small :class:`Algebra`
protocol. A backend provides construction of fixed-shape values, the matrix
product, and the few customization points the Kalman equations need:

- ``transpose(m)``: Mᵀ
- ``divide(a, b)``: a·b⁻¹, computed with a linear solve rather than an explicit inverse.
- ``symmetrize(m)``: (M + Mᵀ) / 2, used to counteract floating point asymmetry.
- ``identity``: identity matrix of a given shape.
- ``evaluate(v)``: materialize lazily represented values before they are stored.

Two backends are shipped:

- :class:`ScalarAlgebra`: plain Python floats, the degenerate 1x1 case.
- :class:`TorchAlgebra`: PyTorch tensors. Vectors are column vectors with shape ``(..., dim, 1)``
  and leading dimensions are broadcastable batch dimensions.

Other numeric types can be supported by implementing the protocol and registering
the backend with :func:`register_algebra` for the free functions.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import numbers
from typing import Any, Protocol, runtime_checkable

import torch
import torch.linalg

from . import config
from .exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


@runtime_checkable
class Algebra(Protocol):
    """Operations a numeric backend must provide to run a Kalman filter.

    Every operation is side-effect free on its inputs and must preserve
    dimensional consistency. A backend unable to represent some shape rejects
    it in ``cast``/``zero``/``identity`` with a ``DimensionMismatchError``, so
    that filters fail at construction rather than while filtering.
    """

    def cast(self, value: Any, rows: int, cols: int) -> Any:
        """Coerce a user value into the backend representation of a ``rows x cols`` matrix."""

    def shape(self, value: Any) -> tuple[int, int]:
        """Matrix shape ``(rows, cols)`` of a value (ignoring batch dimensions)."""

    def zero(self, rows: int, cols: int) -> Any:
        """Zero matrix."""

    def identity(self, rows: int, cols: int, like: Any = None) -> Any:
        """Identity matrix (ones on the main diagonal), with the format of ``like`` if given."""

    def multiply(self, lhs: Any, rhs: Any) -> Any:
        """Matrix product."""

    def transpose(self, matrix: Any) -> Any:
        """Matrix transpose."""

    def divide(self, numerator: Any, denominator: Any) -> Any:
        """Right division ``numerator · denominator⁻¹``."""

    def symmetrize(self, matrix: Any) -> Any:
        """Symmetric part ``(M + Mᵀ) / 2``."""

    def evaluate(self, value: Any) -> Any:
        """Materialize a value. Evaluating a concrete value returns it unchanged."""

    def is_missing(self, value: Any) -> bool:
        """Whether the measure of every batch element holds missing (NaN) components."""

    def missing_mask(self, value: Any) -> Any:
        """Per batch element, whether its measure holds missing (NaN) components."""

    def select(self, mask: Any, missing: Any, updated: Any) -> Any:
        """Per batch element, ``missing`` where ``mask`` is set and ``updated`` elsewhere."""

    def log_det(self, matrix: Any) -> Any:
        """Log-determinant."""

    def to_scalar(self, value: Any) -> Any:
        """Collapse a 1x1 matrix into a scalar (one per batch element)."""

    def to_builtin(self, value: Any) -> Any:
        """Convert to Python numbers and (nested) lists."""

    def to(self, fmt: Any) -> Algebra:
        """Same backend with another memory format."""


class ScalarAlgebra:
    """Python float backend.

    Scalars are the degenerate 1x1 case: any other shape is rejected.
    Division follows IEEE-754 like matrix backends do: dividing by zero yields
    ``inf`` or ``nan`` instead of raising ``ZeroDivisionError``.
    """

    @staticmethod
    def _check_shape(rows: int, cols: int) -> None:
        if (rows, cols) != (1, 1):
            raise DimensionMismatchError(f"The scalar algebra only represents 1x1 quantities, got {rows}x{cols}")

    def cast(self, value, rows=1, cols=1) -> float:
        self._check_shape(rows, cols)
        while isinstance(value, (list, tuple)) and len(value) == 1:
            value = value[0]
        try:
            return float(value)
        except (TypeError, ValueError) as error:
            raise DimensionMismatchError(f"Cannot represent {value!r} as a scalar") from error

    def shape(self, value) -> tuple[int, int]:
        return (1, 1)

    def zero(self, rows=1, cols=1) -> float:
        self._check_shape(rows, cols)
        return 0.0

    def identity(self, rows=1, cols=1, like=None) -> float:
        self._check_shape(rows, cols)
        return 1.0

    def multiply(self, lhs, rhs):
        return lhs * rhs

    def transpose(self, matrix):
        return matrix

    def divide(self, numerator, denominator):
        try:
            return numerator / denominator
        except ZeroDivisionError:
            if numerator == 0 or math.isnan(numerator):
                return math.nan
            return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)

    def symmetrize(self, matrix):
        return matrix

    def evaluate(self, value):
        return value if isinstance(value, float) else float(value)

    def is_missing(self, value) -> bool:
        return math.isnan(value)

    def missing_mask(self, value) -> bool:
        return math.isnan(value)

    def select(self, mask, missing, updated):
        return missing if mask else updated

    def log_det(self, matrix):
        if matrix > 0:
            return math.log(matrix)
        return -math.inf if matrix == 0 else math.nan

    def to_scalar(self, value):
        return value

    def to_builtin(self, value):
        return value

    def to(self, fmt) -> ScalarAlgebra:
        raise TypeError("Scalar algebra has no dtype or device to convert to.")

    def __repr__(self) -> str:
        return "ScalarAlgebra()"


@dataclasses.dataclass
class TorchAlgebra:
    """PyTorch tensor backend.

    Vectors are column vectors ``(..., dim, 1)`` and matrices ``(..., rows, cols)``.
    Leading dimensions are batch dimensions and may be broadcastable, allowing to
    run the same filter on many independent signals at once.

    Numerical notes:
    - ``divide`` relies on ``torch.linalg.solve_ex`` which does not check for errors:
      a singular denominator yields non-finite values instead of raising.
    - ``evaluate`` materializes expanded (stride 0) views, e.g. the broadcast identity,
      into contiguous storage.

    Attributes:
        dtype (torch.dtype): Dtype of created and casted tensors.
            Default: :func:`kalman_engine.config.get_dtype`
        device (torch.device): Device of created and casted tensors.
            Default: :func:`kalman_engine.config.get_device`
    """

    dtype: torch.dtype | None = None
    device: torch.device | str | None = None

    def __post_init__(self) -> None:
        if self.dtype is None:
            self.dtype = config.get_dtype()
        self.device = config.get_device() if self.device is None else torch.device(self.device)

    def cast(self, value, rows: int, cols: int) -> torch.Tensor:
        tensor = torch.as_tensor(value, dtype=self.dtype, device=self.device)
        if tensor.ndim == 0:
            tensor = tensor.reshape(1, 1)
        elif tensor.ndim == 1:  # Vectors are given flat, columns unless a single row is expected
            tensor = tensor[:, None] if cols == 1 else tensor[None]

        if tensor.shape[-2:] != (rows, cols):
            raise DimensionMismatchError(f"Expected a tensor of shape (..., {rows}, {cols}), got {tuple(tensor.shape)}")
        return tensor

    def shape(self, value: torch.Tensor) -> tuple[int, int]:
        return (value.shape[-2], value.shape[-1])

    def zero(self, rows: int, cols: int) -> torch.Tensor:
        return torch.zeros(rows, cols, dtype=self.dtype, device=self.device)

    def identity(self, rows: int, cols: int, like: torch.Tensor | None = None) -> torch.Tensor:
        if like is None:
            return torch.eye(rows, cols, dtype=self.dtype, device=self.device)
        # Broadcast view, materialized by `evaluate` if it has to be stored
        return torch.eye(rows, cols, dtype=like.dtype, device=like.device).expand(like.shape)

    def multiply(self, lhs: torch.Tensor, rhs: torch.Tensor) -> torch.Tensor:
        return lhs @ rhs

    def transpose(self, matrix: torch.Tensor) -> torch.Tensor:
        return matrix.mT

    def divide(self, numerator: torch.Tensor, denominator: torch.Tensor) -> torch.Tensor:
        # Solves X D = N without inverting D
        return torch.linalg.solve_ex(denominator, numerator, left=False).result

    def symmetrize(self, matrix: torch.Tensor) -> torch.Tensor:
        return (matrix + matrix.mT) / 2

    def evaluate(self, value: torch.Tensor) -> torch.Tensor:
        return value.contiguous()

    def is_missing(self, value: torch.Tensor) -> bool:
        return bool(self.missing_mask(value).all())

    def missing_mask(self, value: torch.Tensor) -> torch.Tensor:
        return torch.isnan(value[..., 0]).any(dim=-1)

    def select(self, mask: torch.Tensor, missing: torch.Tensor, updated: torch.Tensor) -> torch.Tensor:
        return torch.where(mask[..., None, None], missing, updated)

    def log_det(self, matrix: torch.Tensor) -> torch.Tensor:
        return torch.logdet(matrix)

    def to_scalar(self, value: torch.Tensor) -> torch.Tensor:
        return value[..., 0, 0]

    def to_builtin(self, value: torch.Tensor):
        return value.tolist()

    def to(self, fmt: torch.dtype | torch.device | str) -> TorchAlgebra:
        if isinstance(fmt, torch.dtype):
            return TorchAlgebra(fmt, self.device)
        return TorchAlgebra(self.dtype, fmt)


_REGISTRY: dict[type, Algebra] = {}


def register_algebra(kind: type, algebra: Algebra) -> None:
    """Register the backend used by the free functions for values of type ``kind``.

    Later registrations take precedence over earlier ones.

    Args:
        kind (type): Value type (or abstract base class) handled by the backend.
        algebra (Algebra): Backend implementing the protocol.
    """
    _REGISTRY[kind] = algebra
    logger.debug("Registered %r for %s values", algebra, kind.__name__)


def algebra_of(value: Any) -> Algebra:
    """Find the backend registered for a value.

    Raises:
        TypeError: No backend is registered for the type of ``value``.
    """
    for kind, algebra in reversed(_REGISTRY.items()):
        if isinstance(value, kind):
            return algebra
    raise TypeError(f"No algebra registered for values of type {type(value).__name__}")


def transpose(matrix: Any) -> Any:
    """Transpose a matrix (a scalar is its own transpose)."""
    return algebra_of(matrix).transpose(matrix)


def divide(numerator: Any, denominator: Any) -> Any:
    """Compute ``numerator · denominator⁻¹`` (ordinary division for scalars)."""
    return algebra_of(denominator).divide(numerator, denominator)


def symmetrize(matrix: Any) -> Any:
    """Average a matrix with its transpose."""
    return algebra_of(matrix).symmetrize(matrix)


def identity(like: Any) -> Any:
    """Identity matrix with the shape and format of ``like``."""
    algebra = algebra_of(like)
    return algebra.identity(*algebra.shape(like), like=like)


def evaluate(value: Any) -> Any:
    """Materialize a value. Idempotent on concrete values."""
    return algebra_of(value).evaluate(value)


register_algebra(numbers.Real, ScalarAlgebra())
register_algebra(torch.Tensor, TorchAlgebra())
