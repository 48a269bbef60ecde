"""
Input Validation

Structural checks on the covariance set before the rotation engine runs.
Every problem is collected, then reported together in a single
InvalidInputError. Nothing is iterated until the input passes.

VALIDATION RULES:
    1. At least one group                      → FAIL
    2. Every matrix square, same P, P >= 2     → FAIL
    3. Finite entries                          → FAIL
    4. Symmetric within tolerance              → FAIL
    5. One finite, nonnegative weight per group, positive sum → FAIL
"""

from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from fcpca.errors import InvalidInputError


CovarianceInput = Union[np.ndarray, Sequence[np.ndarray]]


def as_covariance_stack(
    covariances: CovarianceInput,
    symmetry_tol: float = 1e-8,
) -> np.ndarray:
    """
    Validate and copy covariances into a float64 (M, P, P) array.

    Parameters
    ----------
    covariances : sequence of (P, P) arrays, or (M, P, P) array
        Group covariance matrices. Never modified.
    symmetry_tol : float
        Allowed asymmetry relative to the largest absolute entry.

    Returns
    -------
    np.ndarray
        Fresh (M, P, P) float64 array, exactly symmetrised.

    Raises
    ------
    InvalidInputError
        On any structural problem.
    """
    if isinstance(covariances, np.ndarray) and covariances.ndim == 3:
        mats = [covariances[m] for m in range(covariances.shape[0])]
    elif isinstance(covariances, np.ndarray) and covariances.ndim == 2:
        mats = [covariances]
    else:
        mats = list(covariances)

    if len(mats) == 0:
        raise InvalidInputError(["no groups supplied (M = 0)"])

    errors: List[str] = []
    arrays = []
    for m, mat in enumerate(mats):
        try:
            arr = np.array(mat, dtype=np.float64)
        except (TypeError, ValueError):
            errors.append(f"group {m}: covariance is not numeric")
            continue
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            errors.append(f"group {m}: covariance must be square, got shape {arr.shape}")
            continue
        arrays.append((m, arr))

    if errors:
        raise InvalidInputError(errors)

    sizes = {arr.shape[0] for _, arr in arrays}
    if len(sizes) > 1:
        raise InvalidInputError([
            f"mismatched dimensions across groups: {sorted(sizes)}"
        ])

    P = sizes.pop()
    if P < 2:
        raise InvalidInputError([f"need at least 2 variables, got P = {P}"])

    for m, arr in arrays:
        if not np.all(np.isfinite(arr)):
            errors.append(f"group {m}: covariance has non-finite entries")
            continue
        scale = float(np.max(np.abs(arr)))
        if np.max(np.abs(arr - arr.T)) > symmetry_tol * max(scale, 1.0):
            errors.append(f"group {m}: covariance is not symmetric")

    if errors:
        raise InvalidInputError(errors)

    stack = np.stack([arr for _, arr in arrays])
    # Remove rounding-level asymmetry so rotated matrices stay symmetric
    return 0.5 * (stack + np.transpose(stack, (0, 2, 1)))


def as_weights(weights: Optional[Sequence[float]], n_groups: int) -> np.ndarray:
    """
    Validate group weights and normalise them to sum to 1.

    None gives equal weights.
    """
    if weights is None:
        return np.full(n_groups, 1.0 / n_groups)

    try:
        w = np.array(weights, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        raise InvalidInputError(["weights are not numeric"])

    errors: List[str] = []
    if w.shape[0] != n_groups:
        errors.append(f"expected {n_groups} weights, got {w.shape[0]}")
    elif not np.all(np.isfinite(w)):
        errors.append("weights must be finite")
    elif np.any(w < 0):
        errors.append("weights must be nonnegative")
    elif not np.sum(w) > 0:
        errors.append("weights must not all be zero")

    if errors:
        raise InvalidInputError(errors)

    return w / np.sum(w)


def validate_inputs(
    covariances: CovarianceInput,
    weights: Optional[Sequence[float]] = None,
    symmetry_tol: float = 1e-8,
) -> Tuple[np.ndarray, np.ndarray]:
    """Validate covariances and weights together. Returns (stack, normalised weights)."""
    stack = as_covariance_stack(covariances, symmetry_tol=symmetry_tol)
    w = as_weights(weights, stack.shape[0])
    return stack, w
