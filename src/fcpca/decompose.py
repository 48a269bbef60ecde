"""
Variance decomposition of the group covariances along the common loadings.

    lambda[m, k]   = w_k^T Σ_m w_k                   (group-specific variances)
    exp_var[m, k]  = 100 * lambda[m, k] / trace(Σ_m) (percent of group total)

Pure functions of (W, covariances); no iteration, no hidden state.
"""

from dataclasses import dataclass
from typing import Optional
import warnings

import numpy as np

from fcpca.errors import InvalidInputError, NumericDegeneracyWarning
from fcpca.validation import CovarianceInput, as_covariance_stack


@dataclass(frozen=True)
class VarianceDecomposition:
    lambda_: np.ndarray             # (M, P)
    explained_variance: np.ndarray  # (M, P), percent
    total_variance: np.ndarray      # (M,), trace of each covariance

    @property
    def cumulative_explained_variance(self) -> np.ndarray:
        return np.cumsum(self.explained_variance, axis=1)


def _as_loadings(loadings: np.ndarray, P: int) -> np.ndarray:
    W = np.asarray(loadings, dtype=np.float64)
    if W.ndim != 2 or W.shape[0] != P:
        raise InvalidInputError([
            f"loadings shape {W.shape} does not match covariances with P = {P}"
        ])
    return W


def group_variances(loadings: np.ndarray, covariances: CovarianceInput) -> np.ndarray:
    """Diagonal of W^T Σ_m W for every group, shape (M, n_components)."""
    S = as_covariance_stack(covariances)
    W = _as_loadings(loadings, S.shape[1])
    # (M, P, K): Σ_m W, then column-wise dot with W
    SW = S @ W
    return np.einsum('pk,mpk->mk', W, SW)


def explained_variance(lambda_: np.ndarray, covariances: CovarianceInput) -> np.ndarray:
    """
    Percent of each group's total variance carried by each component.

    Groups with zero total variance get NaN and a NumericDegeneracyWarning.
    """
    S = as_covariance_stack(covariances)
    lam = np.asarray(lambda_, dtype=np.float64)
    if lam.ndim != 2 or lam.shape[0] != S.shape[0]:
        raise InvalidInputError([
            f"lambda shape {lam.shape} does not match {S.shape[0]} groups"
        ])

    total = np.trace(S, axis1=1, axis2=2)
    zero = total <= 0
    if np.any(zero):
        warnings.warn(
            f"{int(zero.sum())} group(s) have zero total variance; "
            "explained variance set to NaN",
            NumericDegeneracyWarning,
            stacklevel=2,
        )

    with np.errstate(divide='ignore', invalid='ignore'):
        pct = 100.0 * lam / total[:, None]
    pct[zero, :] = np.nan
    return pct


def decompose(
    loadings: np.ndarray,
    covariances: CovarianceInput,
    decimals: Optional[int] = None,
) -> VarianceDecomposition:
    """
    Group variances and explained-variance percentages along the loadings.

    Parameters
    ----------
    loadings : np.ndarray
        (P, P) common loadings, columns are components.
    covariances : sequence of (P, P) arrays, or (M, P, P) array
        Group covariance matrices.
    decimals : int, optional
        Round lambda before computing percentages, as the classic
        FCPCA output does with 3 decimals.

    Returns
    -------
    VarianceDecomposition
    """
    S = as_covariance_stack(covariances)
    lam = group_variances(loadings, S)
    if decimals is not None:
        lam = np.round(lam, decimals)
    pct = explained_variance(lam, S)
    return VarianceDecomposition(
        lambda_=lam,
        explained_variance=pct,
        total_variance=np.trace(S, axis1=1, axis2=2),
    )


def order_components(
    lambda_: np.ndarray,
    weights: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Component order by descending weighted mean group variance.

    The engine imposes no column order; this is for presentation only.
    Returns the permutation to apply to the columns of W and lambda.
    """
    lam = np.asarray(lambda_, dtype=np.float64)
    if weights is None:
        weights = np.full(lam.shape[0], 1.0 / lam.shape[0])
    score = np.asarray(weights, dtype=np.float64) @ lam
    return np.argsort(score, kind='stable')[::-1]
