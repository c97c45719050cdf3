"""Exceptions raised by kalman-engine.

Every error derives from :class:`KalmanError`. Shape errors also derive from
``ValueError`` and signature errors from ``TypeError``, so callers can catch
either the library error or the builtin one.
"""


class KalmanError(Exception):
    """Base class for all exceptions raised by kalman-engine."""


class ConfigurationError(KalmanError):
    """
    Raised when a filter is configured in a way it cannot run with.

    Configuration errors are always detected when the filter is built, when a
    model element is assigned, or when a call enters ``predict``/``update``,
    before any state is modified.
    """


class DimensionMismatchError(ValueError, ConfigurationError):
    """
    Raised when a vector or matrix does not have the shape the filter expects
    (e.g. a 3x3 process noise on a filter with a 2-dimensional state).
    Inherits from ValueError.
    """


class SignatureMismatchError(TypeError, ConfigurationError):
    """
    Raised when a callable model element or the extra arguments of a call do
    not match the capabilities of the filter (e.g. extra update arguments given
    to a filter configured without update types).
    Inherits from TypeError.
    """
