"""Kalman-Engine: generic Kalman filtering over scalars or PyTorch tensors.

kalman-engine keeps a running estimate of the state of a dynamical system, and
of its uncertainty, from a sequence of noisy and possibly partial observations.
The filter is advanced by successive ``predict``/``update`` calls and mutated
in place, exposing the last gain, innovation and innovation covariance for
diagnostics.

Key features
------------
- **Any dimensions, any backend**: a textbook scalar filter on Python floats, or
  batched filters on PyTorch tensors (CPU or GPU). Other numeric types can be
  plugged in through the :class:`~kalman_engine.algebra.Algebra` protocol.
- **Constant or computed models**: every element (``F``, ``G``, ``H``, ``Q``,
  ``R``) is a constant or a function evaluated on each call, with extra typed
  arguments threaded through ``predict``/``update`` (e.g. a varying time step).
- **Control input**: :class:`~kalman_engine.ControlKalmanFilter` adds ``G u``.
- **Extended Kalman filtering**: nonlinear transition and observation functions.
- **Tracing**: ``kf | Printer`` writes every event as a JSON line.

Numerical notes
---------------
Tensors default to ``float32`` (see :mod:`kalman_engine.config`), which is fast
but may be less robust. If you encounter numerical instability, consider
switching to ``float64`` and enabling ``joseph_update=True``.

Getting started
---------------
The core API consists of:
- :class:`~kalman_engine.KalmanFilter` with :meth:`~kalman_engine.KalmanFilter.predict`,
  :meth:`~kalman_engine.KalmanFilter.update` and :meth:`~kalman_engine.KalmanFilter.filter`.
- :class:`~kalman_engine.GaussianState` for estimates and innovations.

:mod:`kalman_engine.ckf` provides ready-to-use constant position / velocity /
acceleration models.

Notes on shapes
---------------
kalman-engine uses column vectors. With tensors, state and measurement vectors
have shape ``(..., dim, 1)``. Leading dimensions ``...`` are treated as batch
dimensions and may be broadcastable across operations.
"""

from .algebra import Algebra, ScalarAlgebra, TorchAlgebra, register_algebra
from .capabilities import Capabilities
from .decorator import Printer
from .exceptions import ConfigurationError, DimensionMismatchError, KalmanError, SignatureMismatchError
from .kalman_filter import ControlKalmanFilter, GaussianState, KalmanFilter

__all__ = [
    "Algebra",
    "Capabilities",
    "ConfigurationError",
    "ControlKalmanFilter",
    "DimensionMismatchError",
    "GaussianState",
    "KalmanError",
    "KalmanFilter",
    "Printer",
    "ScalarAlgebra",
    "SignatureMismatchError",
    "TorchAlgebra",
    "register_algebra",
]
__version__ = "0.1.0"
