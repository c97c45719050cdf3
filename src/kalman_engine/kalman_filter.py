from __future__ import annotations

import contextlib
import copy
import dataclasses
import json
import logging
import math
from typing import Any, Callable, Iterable, overload

import torch

from .algebra import Algebra, ScalarAlgebra, TorchAlgebra, algebra_of
from .capabilities import Capabilities, Computed, Signature, check_signature
from .exceptions import SignatureMismatchError

logger = logging.getLogger(__name__)


if hasattr(torch._tensor_str, "printoptions"):  # noqa: SLF001
    printoptions = torch._tensor_str.printoptions  # noqa: SLF001
else:

    @contextlib.contextmanager
    def printoptions(**kwargs):
        """Change pytorch printoptions temporarily. From the future of pytorch."""
        old_printoptions = torch._tensor_str.PRINT_OPTS  # noqa: SLF001
        torch.set_printoptions(**kwargs)
        try:
            yield
        finally:
            torch._tensor_str.PRINT_OPTS = old_printoptions  # noqa: SLF001


def _json_default(value: Any) -> Any:
    # Extra call arguments may be tensors or arbitrary objects
    if hasattr(value, "tolist"):
        return value.tolist()
    return repr(value)


@dataclasses.dataclass
class GaussianState:
    """Gaussian state for Kalman filtering.

    This dataclass stores a multivariate Gaussian distribution:

        x ~ N(mean, covariance)

    It works with any registered algebra: floats for scalar filters, or tensors where
    vectors are **column vectors** with shape ``(..., dim, 1)`` and leading dimensions
    ``...`` are broadcastable batch dimensions.

    An optional precision matrix (inverse covariance) can be stored. When present, it
    speeds up repeated computations such as Mahalanobis distance and likelihood evaluation.

    Attributes:
        mean: Mean of the distribution.
            Shape: ``(..., dim, 1)``
        covariance: Covariance matrix of the distribution.
            Shape: ``(..., dim, dim)``
        precision: Optional precision matrix (inverse covariance).
            Shape: ``(..., dim, dim)``
            If ``None``, it is computed lazily by the distance methods.
    """

    mean: Any
    covariance: Any
    precision: Any | None = None

    def clone(self) -> GaussianState:
        """Return a deep copy of the state."""
        return copy.deepcopy(self)

    @overload
    def to(self, dtype: torch.dtype) -> GaussianState: ...

    @overload
    def to(self, device: torch.device) -> GaussianState: ...

    def to(self, fmt):
        """Convert a tensor GaussianState to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the state to.

        Returns:
            GaussianState: The GaussianState with the right format
        """
        return GaussianState(
            self.mean.to(fmt),
            self.covariance.to(fmt),
            self.precision.to(fmt) if self.precision is not None else None,
        )

    def mahalanobis_squared(self, measure: Any) -> Any:
        """Compute squared Mahalanobis distance to a measure.

        Computes:

            MAHA^2 = (x - μ)^T P^{-1} (x - μ)

        Args:
            measure: Measure(s) to evaluate (column vector).
                Shape: ``(..., dim, 1)``

        Returns:
            Squared Mahalanobis distance for broadcasted measures & states.
            Shape: ``(...)``
        """
        algebra = algebra_of(self.covariance)
        diff = self.mean - measure  # Should be broadcastable
        if self.precision is None:
            rows, cols = algebra.shape(self.covariance)
            self.precision = algebra.divide(algebra.identity(rows, cols, like=self.covariance), self.covariance)
        return algebra.to_scalar(algebra.multiply(algebra.multiply(algebra.transpose(diff), self.precision), diff))

    def mahalanobis(self, measure: Any) -> Any:
        """Compute Mahalanobis distance to a measure (square root of the squared distance)."""
        return self.mahalanobis_squared(measure) ** 0.5

    def log_likelihood(self, measure: Any) -> Any:
        """Compute the log-likelihood of the given measure under the Gaussian distribution.

        For dimension ``dim``:

            log p(x) = -1/2 * ( dim*log(2π) + log|Σ| + MAHA^2 )

        Args:
            measure: Measure(s) to evaluate (column vector).
                Shape: ``(..., dim, 1)``

        Returns:
            Log-likelihood for broadcasted measures & states.
            Shape: ``(...)``
        """
        algebra = algebra_of(self.covariance)
        maha_2 = self.mahalanobis_squared(measure)
        dim = algebra.shape(self.covariance)[0]
        return -0.5 * (dim * math.log(2 * math.pi) + algebra.log_det(self.covariance) + maha_2)

    def likelihood(self, measure: Any) -> Any:
        """Compute the likelihood of the given measure (exponential of the log-likelihood)."""
        return math.e ** self.log_likelihood(measure)


class _Quantity:
    """Read-only named quantity of a filter."""

    def __init__(self, doc: str) -> None:
        self.__doc__ = doc

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: KalmanFilter | None, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance._values[self.name]  # noqa: SLF001

    def __set__(self, instance: KalmanFilter, value: Any) -> None:
        raise AttributeError(f"{self.name} is computed by the filter and cannot be set")


class _Estimate(_Quantity):
    """Estimated quantity, assigned with a constant value."""

    def __set__(self, instance: KalmanFilter, value: Any) -> None:
        instance._values[self.name] = instance.algebra.cast(value, *instance._shape(self.name))  # noqa: SLF001


class _ModelElement(_Quantity):
    """Model element, assigned with a constant value or with a function computing it on each call.

    Reading it returns the value used by the last call (or the constant value).
    """

    def __set__(self, instance: KalmanFilter, value: Any) -> None:
        instance._assign(self.name, value)  # noqa: SLF001


class KalmanFilter:
    """Kalman filter with a mutable estimate, run by successive ``predict``/``update`` calls.

    This class estimates the latent state of a dynamical system under Gaussian noise:

        x_k = F x_{k-1} + w_k,   w_k ~ N(0, Q)
        z_k = H x_k     + v_k,   v_k ~ N(0, R)

    where:
    - ``x_k`` is the hidden state (dimension ``state_dim``),
    - ``z_k`` is the measure (dimension ``measure_dim``),
    - ``F`` is the transition (process) matrix,
    - ``Q`` is the process noise covariance,
    - ``H`` is the measurement/projection matrix,
    - ``R`` is the measurement noise covariance.

    The filter holds the current estimate x_k ~ N(x, P) and updates it in place. After each update,
    the innovation ``y``, its covariance ``s`` and the gain ``k`` are kept for diagnostics.

    Every model element (``f``, ``h``, ``q``, ``r``) can be assigned a constant value or a callable
    computing it on each call (see :mod:`kalman_engine.capabilities` for the expected signatures).
    Callables receive the extra arguments of ``predict``/``update``, declared at construction with
    ``prediction_types``/``update_types``, allowing time varying models (e.g. a varying time step).

    Extended Kalman filtering is supported by replacing the linear state extrapolation ``F x`` with a
    ``transition`` function and/or the linear observation ``H x`` with an ``observation`` function.
    The covariance is still propagated with ``F`` and ``H``, which are then expected to be the
    jacobians of these functions (typically assigned as callables of the state).

    Numeric backend:
    - Without any dimension, the filter is a textbook scalar filter working on Python floats.
    - Otherwise it works on PyTorch tensors: vectors are **column vectors** with shape ``(..., dim, 1)``
      and leading ``...`` batch dimensions may be broadcastable, to filter many signals at once.
    - Any other backend can be given with ``algebra``.

    Numerical notes:
    - The gain is computed with a linear solve (``divide``) rather than an explicit inverse.
      A singular innovation covariance produces non-finite values, it is not caught by the filter.
    - The covariance is re-symmetrized after each update.
    - For improved numerical robustness, consider running in float64 and enabling ``joseph_update``.

    Attributes:
        algebra (Algebra): Numeric backend of the filter.
        signature (Signature): Control input and extra arguments accepted by ``predict``/``update``.
        joseph_update (bool): If True, use the Joseph form covariance update.
            Default: False
    """

    _REPR_SPLIT_LENGTH = 110
    _CONTROL = False

    x = _Estimate("State estimate ``x``. Shape: ``(..., state_dim, 1)``")
    p = _Estimate("Estimate covariance ``P``. Shape: ``(..., state_dim, state_dim)``")
    f = _ModelElement("State transition matrix ``F``. Shape: ``(..., state_dim, state_dim)``")
    h = _ModelElement("Observation matrix ``H``. Shape: ``(..., measure_dim, state_dim)``")
    q = _ModelElement("Process noise covariance ``Q``. Shape: ``(..., state_dim, state_dim)``")
    r = _ModelElement("Observation noise covariance ``R``. Shape: ``(..., measure_dim, measure_dim)``")
    z = _Quantity("Last observation ``z``. Shape: ``(..., measure_dim, 1)``")
    y = _Quantity("Last innovation ``y = z - H x``. Shape: ``(..., measure_dim, 1)``")
    s = _Quantity("Last innovation covariance ``S``. Shape: ``(..., measure_dim, measure_dim)``")
    k = _Quantity("Last gain ``K``. Shape: ``(..., state_dim, measure_dim)``")

    def __init__(
        self,
        state_dim: int | None = None,
        measure_dim: int | None = None,
        *,
        prediction_types: tuple[type, ...] = (),
        update_types: tuple[type, ...] = (),
        algebra: Algebra | None = None,
        joseph_update=False,
        x=None,
        p=None,
        f=None,
        h=None,
        q=None,
        r=None,
        transition: Callable[..., Any] | None = None,
        observation: Callable[..., Any] | None = None,
    ) -> None:
        """Build a filter with default values, then apply the given ones.

        Defaults are ``x = 0``, ``P = I``, ``F = I``, ``H = I``, ``Q = 0`` and ``R = 0``.

        Args:
            state_dim (int | None): Dimension of the state. Default: 1
            measure_dim (int | None): Dimension of the measure. Default: 1
            prediction_types (tuple[type, ...]): Types of the extra arguments of ``predict``.
            update_types (tuple[type, ...]): Types of the extra arguments of ``update``.
            algebra (Algebra | None): Numeric backend. By default, :class:`ScalarAlgebra` if no
                dimension is given, :class:`TorchAlgebra` otherwise.
            joseph_update (bool): Use the Joseph form covariance update. Default: False
            x, p: Initial state estimate and covariance.
            f, h, q, r: Model elements, constant values or callables.
            transition (Callable | None): Nonlinear state extrapolation ``transition(x, *prediction_arguments)``.
            observation (Callable | None): Nonlinear observation ``observation(x, *update_arguments)``.

        Raises:
            DimensionMismatchError: A value does not have the expected shape, or the algebra
                cannot represent the requested dimensions.
            SignatureMismatchError: A callable does not accept the arguments of its model element.
        """
        if algebra is None:
            scalar = state_dim is None and measure_dim is None and self._input_dim() is None
            algebra = ScalarAlgebra() if scalar else TorchAlgebra()

        self.algebra = algebra
        self.signature = Signature(self._CONTROL, tuple(prediction_types), tuple(update_types))
        self.joseph_update = joseph_update
        self._state_dim = 1 if state_dim is None else state_dim
        self._measure_dim = 1 if measure_dim is None else measure_dim
        self._prediction_arguments: tuple = ()
        self._update_arguments: tuple = ()

        self._identity = algebra.identity(self._state_dim, self._state_dim)
        self._values: dict[str, Any] = {}
        self._elements: dict[str, Any] = {}
        self._initialize()

        for name, value in (("x", x), ("p", p), ("f", f), ("h", h), ("q", q), ("r", r)):
            if value is not None:
                setattr(self, name, value)
        if transition is not None:
            self.transition = transition
        if observation is not None:
            self.observation = observation

    def _input_dim(self) -> int | None:
        return None

    def _initialize(self) -> None:
        # Default value of every named quantity, overridden by constant assignments
        for name in ("x", "z", "y", "q", "r"):
            self._values[name] = self.algebra.zero(*self._shape(name))
        for name in ("p", "f", "h", "k", "s"):
            self._values[name] = self.algebra.identity(*self._shape(name))
        for name in ("f", "h", "q", "r"):
            self._assign(name, self._values[name])

        self._elements["transition"] = Computed(self._linear_transition)
        self._elements["observation"] = Computed(self._linear_observation)

    def _shape(self, name: str) -> tuple[int, int]:
        state, measure = self._state_dim, self._measure_dim
        return {
            "x": (state, 1),
            "p": (state, state),
            "f": (state, state),
            "q": (state, state),
            "h": (measure, state),
            "r": (measure, measure),
            "z": (measure, 1),
            "y": (measure, 1),
            "s": (measure, measure),
            "k": (state, measure),
        }[name]

    def _assign(self, name: str, value: Any) -> None:
        element = self.signature.element(name, value, lambda constant: self.algebra.cast(constant, *self._shape(name)))
        self._elements[name] = element
        if not element.computed:
            self._values[name] = element.value
        logger.debug("Model element %s set to %r", name, element)

    def _resolve(self, name: str, *arguments) -> Any:
        """Compute a model element for the current call and keep its value."""
        return self._store(name, self.algebra.cast(self._elements[name](*arguments), *self._shape(name)))

    def _store(self, name: str, value: Any) -> Any:
        value = self.algebra.evaluate(value)
        self._values[name] = value
        return value

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self._state_dim

    @property
    def measure_dim(self) -> int:
        """Dimension of the measured variable."""
        return self._measure_dim

    @property
    def transition(self) -> Callable[..., Any]:
        """State extrapolation function ``transition(x, *prediction_arguments) -> x``.

        Defaults to the linear extrapolation ``F x``. Assign None to restore it.
        """
        return self._elements["transition"].function

    @transition.setter
    def transition(self, function: Callable[..., Any] | None) -> None:
        if function is None:
            function = self._linear_transition
        else:
            check_signature(function, self.signature.parameters("transition"), "transition")
        self._elements["transition"] = Computed(function)
        logger.debug("State transition function set to %r", function)

    @property
    def observation(self) -> Callable[..., Any]:
        """Observation function ``observation(x, *update_arguments) -> z``.

        Defaults to the linear observation ``H x``. Assign None to restore it.
        """
        return self._elements["observation"].function

    @observation.setter
    def observation(self, function: Callable[..., Any] | None) -> None:
        if function is None:
            function = self._linear_observation
        else:
            check_signature(function, self.signature.parameters("observation"), "observation")
        self._elements["observation"] = Computed(function)
        logger.debug("Observation function set to %r", function)

    @property
    def prediction_arguments(self) -> tuple:
        """Extra arguments of the last ``predict`` call."""
        return self._prediction_arguments

    @property
    def update_arguments(self) -> tuple:
        """Extra arguments of the last ``update`` call."""
        return self._update_arguments

    @property
    def capabilities(self) -> Capabilities:
        """Optional model elements currently used by the filter."""
        elements = self._elements
        return Capabilities(
            control=self.signature.control,
            computed_state_transition=elements["f"].computed,
            computed_input_control=elements["g"].computed if "g" in elements else False,
            computed_output_model=elements["h"].computed,
            computed_process_noise=elements["q"].computed,
            computed_observation_noise=elements["r"].computed,
            nonlinear_transition=self.transition != self._linear_transition,
            nonlinear_observation=self.observation != self._linear_observation,
            prediction_types=self.signature.prediction_types,
            update_types=self.signature.update_types,
        )

    @property
    def estimate(self) -> GaussianState:
        """Current state estimate N(x, P)."""
        return GaussianState(self.x, self.p)

    @property
    def innovation(self) -> GaussianState:
        """Last innovation distribution N(y, S)."""
        return GaussianState(self.y, self.s)

    @property
    def nis(self) -> Any:
        """Normalized innovation squared ``yᵀ S⁻¹ y`` of the last update.

        For a consistent filter, it follows a chi-squared distribution with ``measure_dim`` degrees of freedom.
        """
        return self.innovation.mahalanobis_squared(self.algebra.zero(self._measure_dim, 1))

    def _linear_transition(self, x, *arguments):
        return self.algebra.multiply(self._values["f"], x)

    def _linear_observation(self, x, *arguments):
        return self.algebra.multiply(self._values["h"], x)

    def predict(self, *arguments) -> None:
        """Extrapolate the state estimate to the next time step.

        From the current estimate x_{k-1} ~ N(x, P), it applies the process model:

            x_k = F x_{k-1} + w_k,   w_k ~ N(0, Q)

        leading to the prior estimate:

            x = transition(x, ...)     (F x by default)
            P = F P Fᵀ + Q

        ``F`` and ``Q`` are first computed if they were assigned as callables.
        It can be called several times in a row to extrapolate over missed observations.

        Args:
            *arguments: Extra arguments, matching ``prediction_types``.

        Raises:
            SignatureMismatchError: The arguments do not match ``prediction_types``.
        """
        self.signature.check_prediction(arguments)
        self._prediction_arguments = arguments
        self._extrapolate(arguments)

    def _extrapolate(self, arguments: tuple, control: tuple = ()) -> None:
        algebra = self.algebra
        x, p = self._values["x"], self._values["p"]

        f = self._resolve("f", x, *control, *arguments)
        q = self._resolve("q", x, *arguments)

        self._store("x", algebra.cast(self._elements["transition"](x, *control, *arguments), self._state_dim, 1))
        self._store("p", algebra.multiply(algebra.multiply(f, p), algebra.transpose(f)) + q)

    def update(self, z, *arguments) -> None:
        """Correct the state estimate with a new measure.

        Given the prior estimate x_k ~ N(x, P) and a new observation z_k, it computes:

            S = H P Hᵀ + R
            K = P Hᵀ S⁻¹
            y = z - observation(x, ...)     (H x by default)
            x = x + K y
            P = sym((I - K H) P)   OR [JOSEPH_UPDATE] P = sym((I - K H) P (I - K H)ᵀ + K R Kᵀ)

        ``H`` and ``R`` are first computed if they were assigned as callables.

        Args:
            z: Measure of the state (column vector).
                Shape: ``(..., measure_dim, 1)``
            *arguments: Extra arguments, matching ``update_types``.

        Raises:
            DimensionMismatchError: The measure does not have the expected shape.
            SignatureMismatchError: The arguments do not match ``update_types``.
        """
        algebra = self.algebra
        z = algebra.cast(z, self._measure_dim, 1)
        self.signature.check_update(arguments)
        self._update_arguments = arguments
        self._store("z", z)

        x, p = self._values["x"], self._values["p"]
        h = self._resolve("h", x, *arguments)
        r = self._resolve("r", x, z, *arguments)

        p_ht = algebra.multiply(p, algebra.transpose(h))
        s = self._store("s", algebra.multiply(h, p_ht) + r)
        k = self._store("k", algebra.divide(p_ht, s))
        y = self._store(
            "y", z - algebra.cast(self._elements["observation"](x, *arguments), self._measure_dim, 1)
        )

        self._store("x", x + algebra.multiply(k, y))

        factor = self._identity - algebra.multiply(k, h)
        if self.joseph_update:
            covariance = algebra.multiply(algebra.multiply(factor, p), algebra.transpose(factor)) + algebra.multiply(
                algebra.multiply(k, r), algebra.transpose(k)
            )
        else:
            covariance = algebra.multiply(factor, p)
        self._store("p", algebra.symmetrize(covariance))

    def filter(self, measures: Iterable[Any], update_first=True, return_all=False) -> GaussianState | list[GaussianState]:
        """Run the classic predict/update loop over a sequence of measures.

        This is a convenience method for the common use case of a filter without control input
        nor extra arguments. The filter state is modified in place.

        A measure that is None or contains NaN is considered missed: the update is skipped for
        this time step, only the prediction is done. With batched measures, only the batch elements
        whose measure contains NaN skip the update.

        Args:
            measures (Iterable): Sequence of measures over time.
                Shape (each): ``(..., measure_dim, 1)``
            update_first (bool): If True, skip the prediction step on the first timestep, such that
                the current estimate is the prior of the first measure.
                Default: True
            return_all (bool): If True, return the estimate after every timestep.
                Default: False

        Returns:
            GaussianState | list[GaussianState]: Either the last estimate, or all of them.

        Raises:
            SignatureMismatchError: The filter has a control input or extra arguments.
        """
        if self.signature != Signature():
            raise SignatureMismatchError(
                "filter only runs filters without control input nor extra arguments, call predict/update instead"
            )

        estimates = []
        for t, measure in enumerate(measures):
            if t or not update_first:  # Do not predict on the first t
                self.predict()

            if measure is not None:
                measure = self.algebra.cast(measure, self._measure_dim, 1)  # noqa: PLW2901

            if measure is None or self.algebra.is_missing(measure):
                logger.debug("Missing measure at step %d, update skipped", t)
            else:
                # Support for nan measure: Do not update states associated with a nan measure
                mask = self.algebra.missing_mask(measure)
                x, p = self._values["x"], self._values["p"]
                self.update(measure)
                self._store("x", self.algebra.select(mask, x, self._values["x"]))
                self._store("p", self.algebra.select(mask, p, self._values["p"]))

            if return_all:
                estimates.append(self.estimate)

        return estimates if return_all else self.estimate

    def clone(self) -> KalmanFilter:
        """Return a deep copy of the filter.

        Stored values are copied, assigned callables are shared.
        """
        return copy.deepcopy(self)

    def __copy__(self) -> KalmanFilter:
        # A shallow copy would share the stored values with the original
        return self.clone()

    @overload
    def to(self, dtype: torch.dtype) -> KalmanFilter: ...

    @overload
    def to(self, device: torch.device) -> KalmanFilter: ...

    def to(self, fmt):
        """Convert a tensor Kalman filter to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the filter to.

        Returns:
            KalmanFilter: A converted copy of the filter
        """
        converted = self.clone()
        converted.algebra = self.algebra.to(fmt)
        converted._identity = converted.algebra.identity(self._state_dim, self._state_dim)
        converted._values = {
            name: converted.algebra.cast(value, *self._shape(name)) for name, value in converted._values.items()
        }
        for name, element in self._elements.items():
            if not element.computed:
                converted._assign(name, converted._values[name])
        return converted

    def __or__(self, decorator: Callable[[KalmanFilter], Any]) -> Any:
        """Decorate the filter: ``filter | Printer``."""
        return decorator(self)

    def to_dict(self) -> dict[str, Any]:
        """Named quantities of the filter as Python numbers and lists.

        Keys are sorted: ``f, g, h, k, p, prediction_<i>, q, r, s, u, update_<i>, x, y, z``
        (``g`` and ``u`` only with a control input).
        """
        quantities = {name: self.algebra.to_builtin(value) for name, value in self._values.items()}
        quantities.update({f"prediction_{i}": value for i, value in enumerate(self._prediction_arguments)})
        quantities.update({f"update_{i}": value for i, value in enumerate(self._update_arguments)})
        return dict(sorted(quantities.items()))

    def __format__(self, format_spec: str) -> str:
        """Structured (JSON) representation of the filter quantities.

        The format spec is an optional indentation: ``f"{kf}"`` or ``f"{kf:2}"``.
        """
        indent = int(format_spec) if format_spec else None
        return json.dumps(self.to_dict(), indent=indent, default=_json_default)

    def _repr_pair(self, title: str, left_name: str, left: Any, right_name: str, right: Any, linewidth: int) -> str:
        with printoptions(profile="short", sci_mode=False, linewidth=linewidth):
            left_lines = str(left).split("\n")
            right_lines = str(right).split("\n")

        head = f"{title}: {left_name} = "
        indent = " " * len(head)
        width = max(len(line) for line in left_lines)

        if width + max(len(line) for line in right_lines) <= self._REPR_SPLIT_LENGTH:  # Single line
            rows = max(len(left_lines), len(right_lines))
            left_lines += [""] * (rows - len(left_lines))
            right_lines += [""] * (rows - len(right_lines))
            heads = [head] + [indent] * (rows - 1)
            separators = [f"  &  {right_name} = "] + [" " * 9] * (rows - 1)
            return "\n".join(
                head_ + left_.ljust(width) + separator + right_
                for head_, left_, separator, right_ in zip(heads, left_lines, separators, right_lines)
            )

        # Two lines
        heads = [head] + [indent] * (len(left_lines) - 1)
        heads += ["", " " * (len(title) + 2) + f"{right_name} = "] + [indent] * (len(right_lines) - 1)
        return "\n".join(head_ + line for head_, line in zip(heads, [*left_lines, "", *right_lines]))

    def __repr__(self) -> str:
        """Convert the Kalman filter model into a readable string."""
        header = f"Kalman Filter (State dimension: {self.state_dim}, Measure dimension: {self.measure_dim})"
        process = self._repr_pair("Process", "F", self.f, "Q", self.q, linewidth=80)
        measurement = self._repr_pair("Measurement", "H", self.h, "R", self.r, linewidth=100)

        n_char = max(len(line) for line in (process + "\n" + measurement).split("\n"))
        return ("\n" + "-" * n_char + "\n").join([header, process, measurement])


class ControlKalmanFilter(KalmanFilter):
    """Kalman filter with a control input.

    The process model includes an external control input ``u`` (dimension ``input_dim``):

        x_k = F x_{k-1} + G u_k + w_k,   w_k ~ N(0, Q)

    ``predict`` takes the control input first, followed by the extra prediction arguments.
    The control matrix ``g`` can be assigned a constant or a callable ``g(*prediction_arguments)``,
    and the ``f`` and ``transition`` callables receive the control input after the state:
    ``f(x, u, *prediction_arguments)``.
    """

    _CONTROL = True

    u = _Quantity("Last control input ``u``. Shape: ``(..., input_dim, 1)``")
    g = _ModelElement("Control matrix ``G``. Shape: ``(..., state_dim, input_dim)``")

    def __init__(
        self,
        state_dim: int | None = None,
        measure_dim: int | None = None,
        input_dim: int | None = None,
        *,
        g=None,
        u=None,
        **kwargs,
    ) -> None:
        """Build a filter with a control input.

        Defaults are those of :class:`KalmanFilter` with ``G = I`` and ``u = 0``.

        Args:
            state_dim (int | None): Dimension of the state. Default: 1
            measure_dim (int | None): Dimension of the measure. Default: 1
            input_dim (int | None): Dimension of the control input. Default: 1
            g: Control matrix, constant value or callable.
            u: Initial control input.
            **kwargs: Keyword arguments of :class:`KalmanFilter`.
        """
        self._given_input_dim = input_dim
        super().__init__(state_dim, measure_dim, **kwargs)
        if g is not None:
            self.g = g
        if u is not None:
            self._values["u"] = self.algebra.cast(u, *self._shape("u"))

    def _input_dim(self) -> int | None:
        return self._given_input_dim

    @property
    def input_dim(self) -> int:
        """Dimension of the control input."""
        return 1 if self._given_input_dim is None else self._given_input_dim

    def _initialize(self) -> None:
        self._values["u"] = self.algebra.zero(*self._shape("u"))
        self._values["g"] = self.algebra.identity(*self._shape("g"))
        self._assign("g", self._values["g"])
        super()._initialize()

    def _shape(self, name: str) -> tuple[int, int]:
        if name == "u":
            return (self.input_dim, 1)
        if name == "g":
            return (self._state_dim, self.input_dim)
        return super()._shape(name)

    def _linear_transition(self, x, u, *arguments):
        algebra = self.algebra
        return algebra.multiply(self._values["f"], x) + algebra.multiply(self._values["g"], u)

    def predict(self, u, *arguments) -> None:
        """Extrapolate the state estimate to the next time step, given a control input.

            x = transition(x, u, ...)     (F x + G u by default)
            P = F P Fᵀ + Q

        Args:
            u: Control input (column vector).
                Shape: ``(..., input_dim, 1)``
            *arguments: Extra arguments, matching ``prediction_types``.

        Raises:
            DimensionMismatchError: The control input does not have the expected shape.
            SignatureMismatchError: The arguments do not match ``prediction_types``.
        """
        u = self.algebra.cast(u, *self._shape("u"))
        self.signature.check_prediction(arguments)
        self._prediction_arguments = arguments
        self._store("u", u)

        self._resolve("g", *arguments)
        self._extrapolate(arguments, (u,))
