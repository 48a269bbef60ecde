"""
Error and warning taxonomy.

Only structurally invalid input raises. Numerical edge cases (flat
criterion, tied spectra, exhausted iteration budget) are reported as
warnings and as flags on the result object, never as exceptions.

Usage:
    from fcpca.errors import InvalidInputError, NonConvergenceWarning

    try:
        result = solve(covs, weights)
    except InvalidInputError as e:
        for problem in e.errors:
            print(problem)
"""

from typing import List, Optional


class FCPCAError(Exception):
    """Base class for fcpca errors."""


class InvalidInputError(FCPCAError, ValueError):
    """Raised when covariance input fails structural validation."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])

        message = "Invalid CPC input:\n" + "\n".join(
            f"  ERROR: {e}" for e in self.errors
        )
        if self.warnings:
            message += "\n" + "\n".join(f"  WARNING: {w}" for w in self.warnings)

        super().__init__(message)


class NumericDegeneracyWarning(UserWarning):
    """Near-zero criterion denominator or zero-variance group."""


class NonConvergenceWarning(UserWarning):
    """Iteration budget exhausted before the angle tolerance was met."""
