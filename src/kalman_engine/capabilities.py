"""Capability resolution.

A filter is configured once, at construction, by its :class:`Signature`: whether it has a control
input, and the types of the extra positional arguments threaded through ``predict``
(``prediction_types``) and ``update`` (``update_types``). Those extra arguments carry per-call
parameters such as a varying time step.

Each model element (``f``, ``g``, ``h``, ``q``, ``r`` and the ``transition``/``observation``
functions) is then either a :class:`Constant` or a :class:`Computed` value. Both are called the
same way by the filtering equations, so optional capabilities cost nothing when unused and the
algorithm never branches on them. Callables are checked against the signature when assigned:

    f(x, [u], *prediction_arguments) -> F
    transition(x, [u], *prediction_arguments) -> x
    g(*prediction_arguments) -> G
    q(x, *prediction_arguments) -> Q
    h(x, *update_arguments) -> H
    observation(x, *update_arguments) -> z
    r(x, z, *update_arguments) -> R
"""

from __future__ import annotations

import dataclasses
import inspect
import numbers
from typing import Any, Callable

from .exceptions import SignatureMismatchError

# Builtin numeric types accept any value of the matching abstract number type (e.g. an int for a float)
_NUMERIC_TOWER = {float: numbers.Real, int: numbers.Integral, complex: numbers.Complex}


class Constant:
    """Model element with a fixed value, whatever the call arguments."""

    computed = False

    def __init__(self, value: Any) -> None:
        self.value = value

    def __call__(self, *arguments) -> Any:
        return self.value

    def __repr__(self) -> str:
        return f"Constant({self.value!r})"


class Computed:
    """Model element computed at each call from the filter state and the extra arguments."""

    computed = True

    def __init__(self, function: Callable[..., Any]) -> None:
        self.function = function

    def __call__(self, *arguments) -> Any:
        return self.function(*arguments)

    def __repr__(self) -> str:
        return f"Computed({getattr(self.function, '__qualname__', self.function)!r})"


def check_signature(function: Callable[..., Any], parameters: tuple[str, ...], name: str) -> None:
    """Check that a callable accepts the given positional parameters.

    Callables without an introspectable signature (some builtins and extensions) are accepted as is.

    Args:
        function (Callable): Callable to check.
        parameters (tuple[str, ...]): Names of the positional parameters it will be given.
        name (str): Name of the model element, for error messages.

    Raises:
        SignatureMismatchError: If the callable cannot be called with these parameters.
    """
    try:
        signature = inspect.signature(function)
    except (TypeError, ValueError):
        return

    try:
        signature.bind(*parameters)
    except TypeError as error:
        raise SignatureMismatchError(
            f"The {name} function must be callable as {name}({', '.join(parameters)}): {error}"
        ) from error


@dataclasses.dataclass(frozen=True)
class Signature:
    """Static configuration of a filter: control input and extra call arguments.

    Attributes:
        control (bool): Whether ``predict`` takes a control input ``u``.
        prediction_types (tuple[type, ...]): Types of the extra arguments of ``predict``.
        update_types (tuple[type, ...]): Types of the extra arguments of ``update``.
    """

    control: bool = False
    prediction_types: tuple[type, ...] = ()
    update_types: tuple[type, ...] = ()

    def parameters(self, element: str) -> tuple[str, ...]:
        """Positional parameters given to the function of a model element."""
        control = ("u",) if self.control else ()
        prediction = tuple(f"prediction_{i}" for i in range(len(self.prediction_types)))
        update = tuple(f"update_{i}" for i in range(len(self.update_types)))

        if element in ("f", "transition"):
            return ("x", *control, *prediction)
        if element == "g":
            return prediction
        if element == "q":
            return ("x", *prediction)
        if element in ("h", "observation"):
            return ("x", *update)
        if element == "r":
            return ("x", "z", *update)
        raise KeyError(element)

    def element(self, name: str, value: Any, cast: Callable[[Any], Any]) -> Constant | Computed:
        """Resolve an assigned value into a model element.

        Args:
            name (str): Name of the model element (``"f"``, ``"q"``, ...).
            value (Any): A callable, or a constant value.
            cast (Callable): Conversion of constant values into the filter representation.

        Returns:
            Constant | Computed: The model element.
        """
        if callable(value):
            check_signature(value, self.parameters(name), name)
            return Computed(value)
        return Constant(cast(value))

    def check_prediction(self, arguments: tuple) -> None:
        """Check the extra arguments given to ``predict``."""
        _check_arguments(self.prediction_types, arguments, "predict")

    def check_update(self, arguments: tuple) -> None:
        """Check the extra arguments given to ``update``."""
        _check_arguments(self.update_types, arguments, "update")


def _type_name(kind: Any) -> str:
    return getattr(kind, "__name__", repr(kind))


def _check_arguments(types: tuple[type, ...], arguments: tuple, operation: str) -> None:
    if len(arguments) != len(types):
        expected = ", ".join(_type_name(kind) for kind in types) or "none"
        raise SignatureMismatchError(
            f"{operation} expects {len(types)} extra argument(s) ({expected}), got {len(arguments)}"
        )

    for position, (kind, argument) in enumerate(zip(types, arguments)):
        if not isinstance(argument, _NUMERIC_TOWER.get(kind, kind)):
            raise SignatureMismatchError(
                f"{operation} extra argument {position} should be {_type_name(kind)}, "
                f"got {type(argument).__name__}"
            )


@dataclasses.dataclass(frozen=True)
class Capabilities:
    """Report of the optional model elements a filter currently uses.

    Attributes:
        control (bool): ``predict`` takes a control input and the filter has ``u`` and ``g``.
        computed_state_transition (bool): ``f`` is computed at each prediction.
        computed_input_control (bool): ``g`` is computed at each prediction.
        computed_output_model (bool): ``h`` is computed at each update.
        computed_process_noise (bool): ``q`` is computed at each prediction.
        computed_observation_noise (bool): ``r`` is computed at each update.
        nonlinear_transition (bool): The state is extrapolated by a user function instead of ``F x``.
        nonlinear_observation (bool): The observation is predicted by a user function instead of ``H x``.
        prediction_types (tuple[type, ...]): Types of the extra arguments of ``predict``.
        update_types (tuple[type, ...]): Types of the extra arguments of ``update``.
    """

    control: bool = False
    computed_state_transition: bool = False
    computed_input_control: bool = False
    computed_output_model: bool = False
    computed_process_noise: bool = False
    computed_observation_noise: bool = False
    nonlinear_transition: bool = False
    nonlinear_observation: bool = False
    prediction_types: tuple[type, ...] = ()
    update_types: tuple[type, ...] = ()

    @property
    def extended(self) -> bool:
        """Whether the filter runs as an Extended Kalman filter (any nonlinear function)."""
        return self.nonlinear_transition or self.nonlinear_observation
