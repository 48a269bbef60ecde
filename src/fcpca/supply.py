"""
Covariance supply: observations + group labels → per-group covariances.

Groups are ordered by their sorted unique labels. Each group is centered
by its own column means (optionally scaled to unit standard deviation,
ddof=1) and its covariance is X_m^T X_m / n_m.

Usage:
    from fcpca.supply import group_covariances, frame_covariances

    supplied = group_covariances(X, labels)
    supplied = frame_covariances(df, group_col="species")
    weights = supplied.weights("count")
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
import polars as pl

from fcpca.errors import InvalidInputError


@dataclass(frozen=True)
class GroupCovariances:
    """Group covariances and the centered data they came from."""
    covariances: np.ndarray     # (M, P, P)
    counts: np.ndarray          # (M,) rows per group
    labels: List[str]           # group labels, in covariance order
    variables: List[str]        # column names
    centered: np.ndarray        # (N, P) centered rows, concatenated in group order
    group_index: np.ndarray     # (N,) position of each centered row's group in labels

    @property
    def n_groups(self) -> int:
        return len(self.labels)

    @property
    def n_variables(self) -> int:
        return len(self.variables)

    def weights(self, kind: str = "count") -> np.ndarray:
        """Group weights: "count" (n_m), "fraction" (n_m / N) or "equal"."""
        counts = self.counts.astype(np.float64)
        if kind == "count":
            return counts
        if kind == "fraction":
            return counts / counts.sum()
        if kind == "equal":
            return np.full(len(counts), 1.0 / len(counts))
        raise ValueError(f"unknown weighting {kind!r}")


def _covariances_from_centered(
    centered: np.ndarray,
    group_index: np.ndarray,
    n_groups: int,
) -> np.ndarray:
    P = centered.shape[1]
    covs = np.empty((n_groups, P, P))
    for m in range(n_groups):
        Xm = centered[group_index == m]
        covs[m] = Xm.T @ Xm / Xm.shape[0]
    return covs


def _check_data(X: np.ndarray, n_labels: int) -> None:
    errors = []
    if X.ndim != 2:
        errors.append(f"data must be 2-D (rows × variables), got {X.ndim}-D")
    else:
        if X.shape[0] != n_labels:
            errors.append(f"{X.shape[0]} rows but {n_labels} group labels")
        if X.shape[1] < 2:
            errors.append(f"need at least 2 variables, got {X.shape[1]}")
        if X.shape[0] == 0:
            errors.append("no observations")
        elif not np.all(np.isfinite(X)):
            errors.append("data contains missing or non-finite values")
    if errors:
        raise InvalidInputError(errors)


def group_covariances(
    data: np.ndarray,
    groups: Sequence,
    scale: bool = False,
    variables: Optional[Sequence[str]] = None,
) -> GroupCovariances:
    """
    Per-group covariance matrices from a numeric matrix.

    Parameters
    ----------
    data : np.ndarray
        (N, P) observations.
    groups : sequence
        Length-N group labels.
    scale : bool
        Divide each group's centered columns by their standard deviation.
        Constant columns are left unscaled.
    variables : sequence of str, optional
        Column names; V1..VP when omitted.

    Returns
    -------
    GroupCovariances
    """
    try:
        X = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError):
        raise InvalidInputError(["data must be numeric"])
    g = np.asarray(groups)
    _check_data(X, g.shape[0])

    P = X.shape[1]
    if variables is None:
        variables = [f"V{k + 1}" for k in range(P)]
    elif len(variables) != P:
        raise InvalidInputError([f"{len(variables)} variable names for {P} columns"])

    levels, inverse = np.unique(g, return_inverse=True)
    inverse = inverse.reshape(-1)
    M = len(levels)

    blocks = []
    counts = np.zeros(M, dtype=np.int64)
    for m in range(M):
        Xm = X[inverse == m]
        Xm = Xm - Xm.mean(axis=0)
        if scale:
            sd = Xm.std(axis=0, ddof=1) if Xm.shape[0] > 1 else np.ones(P)
            sd[~(sd > 0)] = 1.0
            Xm = Xm / sd
        blocks.append(Xm)
        counts[m] = Xm.shape[0]

    centered = np.vstack(blocks)
    group_index = np.repeat(np.arange(M), counts)

    return GroupCovariances(
        covariances=_covariances_from_centered(centered, group_index, M),
        counts=counts,
        labels=[str(level) for level in levels],
        variables=list(variables),
        centered=centered,
        group_index=group_index,
    )


def frame_covariances(
    df: pl.DataFrame,
    group_col: str,
    columns: Optional[Sequence[str]] = None,
    scale: bool = False,
) -> GroupCovariances:
    """
    Per-group covariance matrices from a polars DataFrame.

    Parameters
    ----------
    df : pl.DataFrame
        One row per observation.
    group_col : str
        Column holding the group label.
    columns : sequence of str, optional
        Variables to analyse. Defaults to every numeric column except group_col.
    scale : bool
        Scale to unit standard deviation within each group.
    """
    if group_col not in df.columns:
        raise InvalidInputError([f"group column {group_col!r} not in data"])

    if columns is None:
        columns = [
            c for c, dtype in df.schema.items()
            if c != group_col and dtype.is_numeric()
        ]
    else:
        missing = [c for c in columns if c not in df.columns]
        if missing:
            raise InvalidInputError([f"columns not in data: {missing}"])
        columns = list(columns)

    if len(columns) < 2:
        raise InvalidInputError([f"need at least 2 numeric variables, got {len(columns)}"])

    frame = df.select(
        pl.col(group_col).alias("__key"),
        pl.col(group_col).cast(pl.String).alias("__group"),
        *[pl.col(c).cast(pl.Float64) for c in columns],
    )
    if frame.select(pl.any_horizontal(pl.col(columns).is_null())).to_series().any():
        raise InvalidInputError(["data contains missing values"])

    centered_exprs = []
    for c in columns:
        expr = pl.col(c) - pl.col(c).mean().over("__group")
        if scale:
            sd = pl.col(c).std(ddof=1).over("__group")
            expr = expr / pl.when(sd.is_null() | (sd == 0)).then(1.0).otherwise(sd)
        centered_exprs.append(expr.alias(c))

    # Order groups by their original values, so numeric labels sort numerically
    frame = frame.with_columns(centered_exprs).sort("__key", maintain_order=True)

    labels = frame["__group"].unique(maintain_order=True).to_list()
    X = frame.select(columns).to_numpy().astype(np.float64)
    _check_data(X, frame.height)

    codes = {label: m for m, label in enumerate(labels)}
    group_index = np.array([codes[g] for g in frame["__group"].to_list()], dtype=np.int64)
    counts = np.bincount(group_index, minlength=len(labels))

    return GroupCovariances(
        covariances=_covariances_from_centered(X, group_index, len(labels)),
        counts=counts,
        labels=[str(label) for label in labels],
        variables=columns,
        centered=X,
        group_index=group_index,
    )
