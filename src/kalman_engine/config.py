"""Package-wide defaults for the tensor backend.

Provides ``set_dtype``/``get_dtype`` and ``set_device``/``get_device`` to
control the dtype and device used by :class:`~kalman_engine.algebra.TorchAlgebra`
when it is built without explicit arguments. The default is ``torch.float32``
on CPU, which is fast but may be less robust: consider ``torch.float64`` for
long or ill-conditioned filtering runs.

The values are read once, when a backend is constructed. Changing them does not
affect filters that already exist.
"""

from __future__ import annotations

import torch

_VALID_DTYPES = (torch.float16, torch.bfloat16, torch.float32, torch.float64)

_dtype = torch.float32
_device = torch.device("cpu")


def set_dtype(dtype: torch.dtype) -> None:
    """Set the default float dtype of new tensor backends.

    Args:
        dtype (torch.dtype): One of ``torch.float16``, ``torch.bfloat16``,
            ``torch.float32`` or ``torch.float64``.

    Raises:
        ValueError: If ``dtype`` is not a supported float type.
    """
    global _dtype  # noqa: PLW0603
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: torch.float16, torch.bfloat16, torch.float32, torch.float64"
        )
    _dtype = dtype


def get_dtype() -> torch.dtype:
    """Return the default float dtype (``torch.float32`` unless changed)."""
    return _dtype


def set_device(device: torch.device | str) -> None:
    """Set the default device of new tensor backends.

    Args:
        device (torch.device | str): Any device understood by ``torch.device``.
    """
    global _device  # noqa: PLW0603
    _device = torch.device(device)


def get_device() -> torch.device:
    """Return the default device (CPU unless changed)."""
    return _device
