"""
Column orientation of loading matrices.

Rotations and eigenvectors are only defined up to sign (and, for tied
variances, order). Results are easier to compare when each column points
a fixed way: either by a sign convention, or by matching a reference
basis (e.g. the previous analysis of the same variables).

Method: for the convention, the largest-magnitude entry of each column is
made positive. For a reference, columns are matched by largest |dot|,
then flipped where the dot product is negative.
"""

from typing import Optional

import numpy as np


def enforce_sign_convention(loadings: np.ndarray) -> np.ndarray:
    """
    Flip columns so that each column's largest-magnitude entry is positive.

    Parameters
    ----------
    loadings : np.ndarray
        (P, K) loadings, components as columns.

    Returns
    -------
    np.ndarray
        Copy with consistent column signs.
    """
    corrected = np.array(loadings, dtype=np.float64, copy=True)
    if corrected.ndim == 1:
        if corrected[np.argmax(np.abs(corrected))] < 0:
            corrected *= -1
        return corrected

    rows = np.argmax(np.abs(corrected), axis=0)
    signs = np.sign(corrected[rows, np.arange(corrected.shape[1])])
    signs[signs == 0] = 1.0
    return corrected * signs


def align_to_reference(
    loadings: np.ndarray,
    reference: Optional[np.ndarray],
) -> np.ndarray:
    """
    Reorder and flip columns of loadings to best match a reference basis.

    Greedy matching on |loadings^T reference|, strongest pair first.
    Use ``alignment_permutation`` to permute lambda the same way.
    Shape mismatch or no reference returns loadings unchanged.
    """
    if reference is None:
        return loadings
    if loadings.shape != reference.shape:
        return loadings

    perm = alignment_permutation(loadings, reference)
    aligned = np.array(loadings[:, perm], dtype=np.float64)
    dots = np.einsum('pk,pk->k', aligned, reference)
    aligned[:, dots < 0] *= -1
    return aligned


def alignment_permutation(loadings: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """perm such that loadings[:, perm[k]] best matches reference[:, k]."""
    overlap = np.abs(np.asarray(loadings).T @ np.asarray(reference))
    K = overlap.shape[1]
    perm = np.full(K, -1, dtype=np.int64)
    for _ in range(K):
        i, k = np.unravel_index(np.argmax(overlap), overlap.shape)
        perm[k] = i
        overlap[i, :] = -1.0
        overlap[:, k] = -1.0
    return perm
