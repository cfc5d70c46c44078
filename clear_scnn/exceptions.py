# clear_scnn/exceptions.py

"""Errors raised by the clear_scnn engine.

None of these are retried internally. Every failure surfaces synchronously to
the caller, which decides whether to abort a run or skip an example.
"""


class ScnnError(Exception):
    """Base class for all engine errors."""


class StructuralLinkError(ScnnError):
    """Two layers were linked in an order the engine cannot propagate through,
    e.g. a DenseLayer directly after a multi-channel InputLayer."""


class DimensionMismatchError(ScnnError, ValueError):
    """Operand shapes do not agree (matrix algebra, input length, weights)."""


class MissingGradientError(ScnnError):
    """Back-propagation was asked for without the state it needs: no network
    error for the output layer, or an empty recurrent history."""


class ModeError(ScnnError):
    """A recurrent-only entry point was called on a non-recurrent model."""
