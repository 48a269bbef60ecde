"""
CPC rotation engine.

Finds one orthogonal loading matrix W that approximately diagonalizes
every group covariance at once, by cyclic Givens rotations over pairs of
axes (Flury & Gautschi style sweeps, Jacobi-type pair solve).

For the pair (i, j) the engine maximizes, over the rotation angle θ,

    F(θ) = Σ_m w_m (a'_m − b'_m)²
         = Σ_m w_m (x_m cos 2θ + y_m sin 2θ)²,   x = a − b, y = 2c

where a, b, c are the (i,i), (j,j), (i,j) entries of W^T Σ_m W. With
A = Σ w (x² − y²) and B = Σ w 2xy the maximizer is θ = ¼·atan2(B, A).
Maximizing the spread of variances is the same as minimizing the
weighted off-diagonal mass, since (a' − b')² + 4c'² is rotation invariant.

With a single group this is the cyclic Jacobi eigenvalue method, so W
converges to the eigenvectors of Σ_1.

Usage:
    from fcpca.rotation import solve

    res = solve([S1, S2, S3], weights=[50, 50, 50])
    W = res.loadings
    if not res.converged:
        print(f"stopped after {res.n_sweeps} sweeps, max angle {res.max_angle:.2e}")
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import math
import warnings

import numpy as np

from fcpca.errors import InvalidInputError, NonConvergenceWarning, NumericDegeneracyWarning
from fcpca.validation import CovarianceInput, validate_inputs

logger = logging.getLogger(__name__)


# Classic FCPCA runs 15 sweeps
DEFAULT_MAX_ITERATIONS = 15
DEFAULT_TOLERANCE = 1e-6
INIT_METHODS = ("identity", "pooled")


@dataclass(frozen=True)
class SolveResult:
    """Output of the rotation engine plus its final iteration state."""
    loadings: np.ndarray                # (P, P), orthonormal columns
    converged: bool
    n_sweeps: int
    max_angle: float                    # largest |θ| in the last sweep
    max_iterations: int
    tolerance: float
    degenerate_pairs: int               # pairs skipped over all sweeps
    init: str
    weights: np.ndarray                 # normalized, sums to 1
    angle_history: List[float] = field(default_factory=list)
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Pair solve
# ---------------------------------------------------------------------------

def _criterion(theta: float, x: np.ndarray, y: np.ndarray, weights: np.ndarray) -> float:
    """Weighted squared variance difference after rotating the pair by theta."""
    d = x * math.cos(2.0 * theta) + y * math.sin(2.0 * theta)
    return float(np.dot(weights, d * d))


def pair_angle(
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
    weights: np.ndarray,
    degeneracy_tol: float = 1e-12,
) -> Tuple[float, bool]:
    """
    Optimal rotation angle for one pair of axes.

    Parameters
    ----------
    a, b, c : np.ndarray
        Per-group (i,i), (j,j) and (i,j) entries of the rotated covariances, shape (M,).
    weights : np.ndarray
        Group weights, shape (M,).
    degeneracy_tol : float
        Relative threshold under which the criterion is treated as flat.

    Returns
    -------
    (theta, degenerate)
        theta in [-π/4, π/4]; degenerate is True when the pair was skipped
        (theta = 0) because the closed form's denominator vanished.
    """
    x = a - b
    y = 2.0 * c

    energy = float(np.dot(weights, x * x + y * y))
    s = a + b
    level = float(np.dot(weights, s * s))

    A = float(np.dot(weights, x * x - y * y))
    B = float(np.dot(weights, 2.0 * x * y))
    amplitude = math.hypot(A, B)

    # energy and level are squared; compare their roots so the threshold is relative to the variances
    if math.sqrt(energy) <= degeneracy_tol * math.sqrt(level) or amplitude <= degeneracy_tol * energy:
        return 0.0, True

    theta = 0.25 * math.atan2(B, A)

    # Companion stationary point θ ∓ π/4 is the minimizer; keep whichever scores higher
    companion = theta - math.copysign(0.25 * math.pi, theta) if theta != 0.0 else 0.25 * math.pi
    if _criterion(companion, x, y, weights) > _criterion(theta, x, y, weights):
        theta = companion

    return theta, False


def _rotate(W: np.ndarray, T: np.ndarray, i: int, j: int, theta: float) -> None:
    """Apply the Givens rotation in place to W's columns and every T_m."""
    cs = math.cos(theta)
    sn = math.sin(theta)
    G = np.array([[cs, -sn], [sn, cs]])
    idx = [i, j]

    W[:, idx] = W[:, idx] @ G
    T[:, idx, :] = G.T @ T[:, idx, :]
    T[:, :, idx] = T[:, :, idx] @ G


# ---------------------------------------------------------------------------
# Initialization and stability
# ---------------------------------------------------------------------------

def pooled_covariance(covariances: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Weighted average of the group covariances, Σ w_m Σ_m / Σ w_m."""
    weights = np.asarray(weights, dtype=np.float64)
    return np.tensordot(weights, covariances, axes=1) / np.sum(weights)


def initial_loadings(covariances: np.ndarray, weights: np.ndarray, init: str = "identity") -> np.ndarray:
    """Starting loadings: identity, or pooled-covariance eigenvectors by descending eigenvalue."""
    P = covariances.shape[1]
    if init == "identity":
        return np.eye(P)
    if init == "pooled":
        vals, vecs = np.linalg.eigh(pooled_covariance(covariances, weights))
        order = np.argsort(vals)[::-1]
        return np.ascontiguousarray(vecs[:, order])
    raise InvalidInputError([f"unknown init method {init!r}, expected one of {INIT_METHODS}"])


def reorthonormalize(W: np.ndarray) -> np.ndarray:
    """
    Remove floating-point drift from an almost-orthogonal matrix.

    QR with the signs of R's diagonal folded back into Q, so each column
    keeps its orientation and only rounding error is corrected.
    """
    Q, R = np.linalg.qr(W)
    signs = np.sign(np.diag(R))
    signs[signs == 0] = 1.0
    return Q * signs


def _rotated_covariances(W: np.ndarray, covariances: np.ndarray) -> np.ndarray:
    T = W.T @ covariances @ W
    return 0.5 * (T + np.transpose(T, (0, 2, 1)))


def pair_sequence(P: int) -> List[Tuple[int, int]]:
    """Lexicographic order of all pairs (i, j), i < j."""
    return [(i, j) for i in range(P - 1) for j in range(i + 1, P)]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def solve(
    covariances: CovarianceInput,
    weights: Optional[Sequence[float]] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    tolerance: float = DEFAULT_TOLERANCE,
    init: str = "identity",
    reorthonormalize_every: int = 5,
    degeneracy_tol: float = 1e-12,
    symmetry_tol: float = 1e-8,
    should_stop: Optional[Callable[[], bool]] = None,
) -> SolveResult:
    """
    Estimate the common loadings of M group covariance matrices.

    Parameters
    ----------
    covariances : sequence of (P, P) arrays, or (M, P, P) array
        Symmetric positive-semidefinite group covariances. Not modified.
    weights : sequence of float, optional
        Nonnegative group weights (typically sample sizes). Equal if None.
    max_iterations : int
        Sweep budget (>= 1).
    tolerance : float
        Stop once the largest |θ| of a sweep falls below this (radians).
    init : str
        "identity" or "pooled".
    reorthonormalize_every : int
        Sweeps between QR corrections of W. W is always corrected at the end.
    degeneracy_tol : float
        Relative threshold for skipping a pair whose criterion is flat.
    symmetry_tol : float
        Relative tolerance for the input symmetry check.
    should_stop : callable, optional
        Polled between sweeps; returning True ends the loop early.

    Returns
    -------
    SolveResult

    Raises
    ------
    InvalidInputError
        Structurally invalid covariances, weights, or settings.
    """
    settings_errors = []
    if isinstance(max_iterations, bool) or not isinstance(max_iterations, (int, np.integer)) or max_iterations < 1:
        settings_errors.append(f"max_iterations must be an integer >= 1, got {max_iterations!r}")
    if not tolerance > 0:
        settings_errors.append(f"tolerance must be positive, got {tolerance!r}")
    if not isinstance(reorthonormalize_every, (int, np.integer)) or reorthonormalize_every < 1:
        settings_errors.append(f"reorthonormalize_every must be >= 1, got {reorthonormalize_every!r}")
    if init not in INIT_METHODS:
        settings_errors.append(f"unknown init method {init!r}, expected one of {INIT_METHODS}")
    if settings_errors:
        raise InvalidInputError(settings_errors)

    S, w = validate_inputs(covariances, weights, symmetry_tol=symmetry_tol)
    M, P, _ = S.shape

    W = initial_loadings(S, w, init)
    T = _rotated_covariances(W, S)
    pairs = pair_sequence(P)

    converged = False
    cancelled = False
    n_sweeps = 0
    max_angle = float('inf')
    degenerate_pairs = 0
    history: List[float] = []

    for sweep in range(1, max_iterations + 1):
        if should_stop is not None and should_stop():
            cancelled = True
            break

        sweep_max = 0.0
        sweep_degenerate = 0
        for i, j in pairs:
            theta, degenerate = pair_angle(
                T[:, i, i], T[:, j, j], T[:, i, j], w, degeneracy_tol
            )
            if degenerate:
                sweep_degenerate += 1
                continue
            if theta != 0.0:
                _rotate(W, T, i, j, theta)
            sweep_max = max(sweep_max, abs(theta))

        n_sweeps = sweep
        max_angle = sweep_max
        degenerate_pairs += sweep_degenerate
        history.append(sweep_max)

        logger.debug(
            f"sweep {sweep}/{max_iterations}: max |theta| = {sweep_max:.3e}, "
            f"degenerate pairs = {sweep_degenerate}"
        )

        if sweep_max < tolerance:
            converged = True
            break

        if sweep % reorthonormalize_every == 0:
            W = reorthonormalize(W)
            T = _rotated_covariances(W, S)

    W = reorthonormalize(W)

    if converged:
        logger.info(f"CPC converged after {n_sweeps} sweeps (M={M}, P={P})")
    elif cancelled:
        logger.info(f"CPC cancelled after {n_sweeps} sweeps (M={M}, P={P})")
    else:
        warnings.warn(
            f"CPC did not converge in {max_iterations} sweeps "
            f"(last max |theta| = {max_angle:.3e}, tolerance = {tolerance:g})",
            NonConvergenceWarning,
            stacklevel=2,
        )

    if degenerate_pairs:
        warnings.warn(
            f"{degenerate_pairs} pair rotation(s) skipped: criterion flat "
            "(tied variances or indistinguishable group spectra)",
            NumericDegeneracyWarning,
            stacklevel=2,
        )

    return SolveResult(
        loadings=W,
        converged=converged,
        n_sweeps=n_sweeps,
        max_angle=max_angle,
        max_iterations=int(max_iterations),
        tolerance=float(tolerance),
        degenerate_pairs=degenerate_pairs,
        init=init,
        weights=w,
        angle_history=history,
        cancelled=cancelled,
    )
