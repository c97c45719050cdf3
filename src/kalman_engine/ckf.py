"""Constant-derivative motion models.

Builders of the classical filter elements (F, H, Q, R) for constant-derivative
models:

- constant position (order = 0),
- constant velocity (order = 1),
- constant acceleration (order = 2), and so on.

The state holds a value and its derivatives up to ``order`` for each of the
``dim`` independent dimensions. Only the values are measured.

The time step is either fixed at construction, or given to each ``predict``
call (``dt=None``), in which case ``F`` and ``Q`` are computed per call.
"""

from __future__ import annotations

import functools
import math

import torch

from .algebra import Algebra
from .kalman_filter import KalmanFilter


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave tensor along the first dimension.

    Rows ``0, 1, ..., k*size-1`` are reordered as
    ``0, size, 2*size, ..., 1, 1+size, 1+2*size, ..., size-1, ..., k*size-1``.

    Example:
        >>> interleave(torch.arange(6), 3)
        tensor([0, 3, 1, 4, 2, 5])

    Args:
        x (torch.Tensor): Tensor to interleave.
            Shape: ``(B, ...)``
        size (int): Block size. Must divide ``B``.

    Returns:
        torch.Tensor: Interleaved tensor.
            Shape: ``(B, ...)``
    """
    index = torch.arange(x.shape[0]).reshape(-1, size).mT.reshape(-1)
    return x[index]


def _taylor_coefficients(length: int, dt: float) -> torch.Tensor:
    # 1, dt, dt^2 / 2, ..., dt^k / k!
    return torch.tensor([dt**k / math.factorial(k) for k in range(length)], dtype=torch.float64)


def create_ckf_process_matrix(order: int, dt=1.0, approximate=False) -> torch.Tensor:
    r"""Create the transition matrix ``F`` of a single dimension.

    From the Taylor expansion, assuming derivatives above ``order`` are zero:

        x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    Args:
        order (int): Highest derivative order of the state.
        dt (float): Time step duration.
            Default: 1.0
        approximate (bool): Keep only first order terms: ``x^{(i)}(t+dt) = x^{(i)}(t) + dt * x^{(i+1)}(t)``.
            Default: False

    Returns:
        torch.Tensor: Transition matrix ``F``
            Shape: ``(order + 1, order + 1)``
    """
    coefficients = _taylor_coefficients(order + 1, dt)
    if approximate:
        coefficients[2:] = 0

    # Upper triangular Toeplitz matrix: F[i, j] = coefficients[j - i]
    offsets = torch.arange(order + 1)[None] - torch.arange(order + 1)[:, None]
    return torch.where(offsets >= 0, coefficients[offsets.clamp(min=0)], 0.0).to(torch.get_default_dtype())


def create_ckf_process_noise(
    process_std: float, order: int, dt=1.0, expected_model=False, approximate=False
) -> torch.Tensor:
    r"""Create the process noise covariance ``Q`` of a single dimension.

    Two models are supported:

    - Constant order-th derivative (default): over a time step, the highest derivative
      receives an additive noise ``w ~ N(0, process_std**2)``.
    - Expected model: the (order+1)-th derivative is a zero-mean noise ``w ~ N(0, process_std**2)``
      over the time step.

    The noise is propagated to lower derivatives through the Taylor expansion, leading to
    ``Q = process_std**2 * g gᵀ`` with ``g_i = dt^{order - i + e} / (order - i + e)!``
    (``e = 1`` for the expected model).

    Args:
        process_std (float): Process noise standard deviation.
        order (int): Highest derivative order of the state.
        dt (float): Time step duration.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False
        approximate (bool): Only the highest derivative receives noise.
            Default: False

    Returns:
        torch.Tensor: Process noise covariance ``Q``.
            Shape: ``(order + 1, order + 1)``
    """
    shift = int(expected_model)
    gain = _taylor_coefficients(order + 1 + shift, dt)[shift:].flip(0)
    if approximate:
        gain[:-1] = 0
    return (process_std**2 * gain[:, None] @ gain[None]).to(torch.get_default_dtype())


@functools.lru_cache(maxsize=16)
def _model(order: int, dim: int, dt: float, process_std: tuple[float, ...], options: tuple[bool, ...]):
    expected_model, order_by_dim, approximate = options

    process_matrix = torch.block_diag(*(create_ckf_process_matrix(order, dt, approximate) for _ in range(dim)))
    process_noise = torch.block_diag(
        *(create_ckf_process_noise(std, order, dt, expected_model, approximate) for std in process_std)
    )

    if not order_by_dim:
        process_matrix = interleave(interleave(process_matrix, order + 1).mT, order + 1).mT
        process_noise = interleave(interleave(process_noise, order + 1).mT, order + 1).mT

    return process_matrix.contiguous(), process_noise.contiguous()


def constant_kalman_filter(
    measurement_std: float | torch.Tensor,
    process_std: float | torch.Tensor,
    *,
    dim=2,
    order=1,
    dt: float | None = 1.0,
    expected_model=False,
    order_by_dim=False,
    approximate=False,
    algebra: Algebra | None = None,
) -> KalmanFilter:
    r"""Create a constant-derivative Kalman filter.

    The state consists of values and their derivatives up to ``order``, for each
    dimension. Its dimension is ``(order + 1) * dim``. The measure holds the ``dim`` values.

    See :func:`create_ckf_process_matrix` and :func:`create_ckf_process_noise` for the models.

    NOTE: ``approximate=True`` and ``dt=1.0`` give the future finite difference model: the state holds
    the finite differences of the values up to ``order``.

    Args:
        measurement_std (float | torch.Tensor): Measurement noise standard deviation.
            Shape: broadcastable to ``(dim,)``
        process_std (float | torch.Tensor): Process noise standard deviation (homogeneous to the
            order-th derivative, or to the (order+1)-th one for the expected model).
            Shape: broadcastable to ``(dim,)``
        dim (int): Number of independent dimensions.
            Default: 2
        order (int): Highest derivative order of the state.
            Default: 1 (constant velocity)
        dt (float | None): Time step duration. If None, the filter expects the time step
            as the only prediction argument: ``kf.predict(dt)``.
            Default: 1.0
        expected_model (bool): Use the zero-mean (order+1)-th derivative model.
            Default: False
        order_by_dim (bool): State ordering. True groups by dimension (``x, x', y, y'``),
            False by derivative order (``x, y, x', y'``).
            Default: False
        approximate (bool): First order approximation of the model.
            Default: False
        algebra (Algebra | None): Tensor backend of the filter.
            Default: :class:`~kalman_engine.algebra.TorchAlgebra` with the configured dtype and device.

    Returns:
        KalmanFilter: Filter of the constant-derivative model.
    """
    measurement_std = torch.broadcast_to(torch.as_tensor(measurement_std, dtype=torch.float64), (dim,))
    stds = tuple(torch.broadcast_to(torch.as_tensor(process_std, dtype=torch.float64), (dim,)).tolist())
    options = (expected_model, order_by_dim, approximate)

    state_dim = (order + 1) * dim

    # Only values are measured, with independent noises
    measurement_matrix = torch.eye(dim, state_dim)
    if order_by_dim:
        measurement_matrix = interleave(measurement_matrix.mT, dim).mT.contiguous()
    measurement_noise = torch.diag(measurement_std**2)

    if dt is None:
        kf = KalmanFilter(
            state_dim, dim, prediction_types=(float,), algebra=algebra, h=measurement_matrix, r=measurement_noise
        )
        kf.f = lambda x, dt: _model(order, dim, float(dt), stds, options)[0]
        kf.q = lambda x, dt: _model(order, dim, float(dt), stds, options)[1]
        return kf

    process_matrix, process_noise = _model(order, dim, float(dt), stds, options)
    return KalmanFilter(
        state_dim,
        dim,
        algebra=algebra,
        f=process_matrix,
        h=measurement_matrix,
        q=process_noise,
        r=measurement_noise,
    )
