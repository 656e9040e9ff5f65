"""Exception taxonomy for the rearrangement engine."""

from __future__ import annotations


class RearrangeError(Exception):
    """Base class for every recoverable engine error."""


class InvalidCrop(RearrangeError):
    """The requested crop rectangle is empty or leaves the source bounds."""


class InvalidSettings(RearrangeError):
    """Generation settings or solver parameters are out of range."""


class MalformedAssignment(RearrangeError):
    """An assignment is not a permutation of the grid's pixel indices."""


class SolverFailure(RearrangeError):
    """Unexpected failure inside a running solver."""


class GenerationCancelled(Exception):
    """Raised by a solver that observed the cancellation flag.

    Not a :class:`RearrangeError`: cancellation is an expected outcome and
    the engine reports it as a ``Cancelled`` message, not as an error.
    """
