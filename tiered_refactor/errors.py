"""Exception hierarchy for tiered refactoring.

None of the refactoring stages retry: configuration problems abort the run
for a field, invariant violations are fatal, and failures reported by
external collaborators (key-value store, erasure coder, fragment sinks) are
wrapped and propagated to the caller unchanged.
"""

from __future__ import annotations


class RefactorError(Exception):
    """Base class for all tiered_refactor errors."""


class ConfigurationError(RefactorError, ValueError):
    """Invalid decomposition depth, tier parameters or strategy options.

    Attributes:
        parameter: Name of the offending parameter, when known
    """

    def __init__(self, message: str, parameter: str | None = None) -> None:
        super().__init__(message)
        self.parameter = parameter


class EncodingInvariantViolation(RefactorError, RuntimeError):
    """A plugged-in encoder or collector reported a non-monotone error sequence."""


class PersistenceFailure(RefactorError, RuntimeError):
    """Key-value store or fragment sink reported an error."""


class FragmentingFailure(RefactorError, RuntimeError):
    """Erasure coder failed or produced fragments with invalid headers."""
