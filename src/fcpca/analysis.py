"""
Flury's Common Principal Component Analysis.

One call from raw grouped observations to labelled results:
supply covariances → rotation engine → variance decomposition.

Usage:
    import polars as pl
    from fcpca import fcpca

    df = pl.read_csv("iris.csv")
    res = fcpca(df, group_col="Species")
    print(res.summary())
    res.lambda_frame()           # variance of each group along each Dim
    res.explained_variance_frame()

References:
    B. N. Flury (1984). Common principal components in k groups.
    Journal of the American Statistical Association, 79, 892-898.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import polars as pl

from fcpca.config import CPCConfig, DEFAULT_CONFIG
from fcpca.decompose import decompose, group_variances, order_components
from fcpca.errors import InvalidInputError
from fcpca.orientation import align_to_reference, enforce_sign_convention
from fcpca.rotation import SolveResult, solve
from fcpca.supply import GroupCovariances, frame_covariances, group_covariances


@dataclass(frozen=True)
class FCPCAResult:
    """Common loadings, group variances and explained variance, with labels."""
    loadings: np.ndarray            # (P, P) variables × Dim
    lambda_: np.ndarray             # (M, P) groups × Dim
    explained_variance: np.ndarray  # (M, P) percent
    variables: List[str]
    labels: List[str]
    counts: np.ndarray
    solve: SolveResult
    covariances: np.ndarray
    scores: np.ndarray              # (N, P) centered data @ loadings
    group_index: np.ndarray         # (N,)

    @property
    def dims(self) -> List[str]:
        return [f"Dim{k + 1}" for k in range(self.loadings.shape[1])]

    @property
    def converged(self) -> bool:
        return self.solve.converged

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _table(self, key_name: str, keys: Sequence[str], values: np.ndarray) -> pl.DataFrame:
        data: Dict[str, Any] = {key_name: list(keys)}
        for k, dim in enumerate(self.dims):
            data[dim] = values[:, k].tolist()
        return pl.DataFrame(data)

    def loadings_frame(self) -> pl.DataFrame:
        return self._table("variable", self.variables, self.loadings)

    def lambda_frame(self) -> pl.DataFrame:
        return self._table("group", self.labels, self.lambda_)

    def explained_variance_frame(self) -> pl.DataFrame:
        return self._table("group", self.labels, self.explained_variance)

    def scores_frame(self) -> pl.DataFrame:
        groups = [self.labels[m] for m in self.group_index]
        return self._table("group", groups, self.scores)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> str:
        """Human-readable summary."""
        s = self.solve
        if s.converged:
            status = f"converged after {s.n_sweeps} sweeps"
        elif s.cancelled:
            status = f"cancelled after {s.n_sweeps} sweeps"
        else:
            status = f"NOT converged in {s.max_iterations} sweeps (max |theta| = {s.max_angle:.2e})"

        lines = [
            "",
            "Common Principal Component Analysis",
            "-" * 43,
            f"Groups: {len(self.labels)}  Variables: {len(self.variables)}  "
            f"Observations: {int(self.counts.sum()):,}",
            f"Rotation: {status}",
        ]
        if s.degenerate_pairs:
            lines.append(f"Degenerate pair rotations skipped: {s.degenerate_pairs}")
        lines.extend([
            "",
            "$lambda             variance for each group",
            "$loadings_common    common loadings",
            "$exp_var            percent of group variance per dimension",
            "$scores             centered data projected on common loadings",
            "",
        ])
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to serializable dict."""
        s = self.solve
        return {
            'variables': self.variables,
            'groups': self.labels,
            'counts': self.counts.tolist(),
            'dims': self.dims,
            'loadings_common': self.loadings.tolist(),
            'lambda': self.lambda_.tolist(),
            'exp_var': self.explained_variance.tolist(),
            'converged': s.converged,
            'n_sweeps': s.n_sweeps,
            'max_angle': s.max_angle,
            'max_iterations': s.max_iterations,
            'degenerate_pairs': s.degenerate_pairs,
        }

    def flatten(self) -> List[Dict[str, Any]]:
        """One scalar row per group, for tabular export."""
        rows = []
        for m, label in enumerate(self.labels):
            row: Dict[str, Any] = {'group': label, 'n': int(self.counts[m])}
            cum = 0.0
            for k in range(self.lambda_.shape[1]):
                row[f'lambda_{k}'] = float(self.lambda_[m, k])
                pct = float(self.explained_variance[m, k])
                row[f'exp_var_{k}'] = pct
                cum += pct if np.isfinite(pct) else 0.0
                row[f'cumulative_exp_var_{k}'] = cum
            rows.append(row)
        return rows

    def write(self, output_dir: Union[str, Path], fmt: str = "csv") -> Dict[str, Path]:
        """Write loadings, lambda, exp_var and scores tables. Returns the paths."""
        if fmt not in ("csv", "parquet"):
            raise ValueError(f"unknown output format {fmt!r}")
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        tables = {
            'loadings': self.loadings_frame(),
            'lambda': self.lambda_frame(),
            'exp_var': self.explained_variance_frame(),
            'scores': self.scores_frame(),
        }
        paths = {}
        for name, frame in tables.items():
            path = output_dir / f"{name}.{fmt}"
            if fmt == "csv":
                frame.write_csv(path)
            else:
                frame.write_parquet(path)
            paths[name] = path
        return paths


def analyse(
    supplied: GroupCovariances,
    config: CPCConfig = DEFAULT_CONFIG,
    reference: Optional[np.ndarray] = None,
) -> FCPCAResult:
    """
    Run the rotation engine and decomposition on already-supplied covariances.

    The engine's column order and signs are arbitrary. Presentation order
    is applied here: alignment to ``reference`` when given, otherwise the
    optional variance sort, then the sign convention.
    """
    weights = supplied.weights(config.weighting)
    solved = solve(supplied.covariances, weights, **config.engine_kwargs())

    W = solved.loadings
    if reference is not None:
        W = align_to_reference(W, np.asarray(reference, dtype=np.float64))
    else:
        if config.sort_components:
            order = order_components(group_variances(W, supplied.covariances), solved.weights)
            W = W[:, order]
        if config.orient:
            W = enforce_sign_convention(W)

    parts = decompose(W, supplied.covariances, decimals=config.lambda_decimals)

    return FCPCAResult(
        loadings=W,
        lambda_=parts.lambda_,
        explained_variance=parts.explained_variance,
        variables=supplied.variables,
        labels=supplied.labels,
        counts=supplied.counts,
        solve=solved,
        covariances=supplied.covariances,
        scores=supplied.centered @ W,
        group_index=supplied.group_index,
    )


def fcpca(
    data: Union[np.ndarray, pl.DataFrame],
    groups: Optional[Sequence] = None,
    *,
    group_col: Optional[str] = None,
    columns: Optional[Sequence[str]] = None,
    config: Optional[CPCConfig] = None,
    reference: Optional[np.ndarray] = None,
    **overrides: Any,
) -> FCPCAResult:
    """
    Common principal component analysis of grouped observations.

    Parameters
    ----------
    data : np.ndarray or pl.DataFrame
        (N, P) observations. A DataFrame may carry the group column.
    groups : sequence, optional
        Length-N group labels. Required for numpy input.
    group_col : str, optional
        Group column of a DataFrame.
    columns : sequence of str, optional
        Variables to analyse (DataFrame input). Default: all numeric columns.
    config : CPCConfig, optional
        Engine and analysis settings.
    reference : np.ndarray, optional
        (P, P) loadings to align columns and signs to, e.g. an earlier run.
    **overrides
        Individual CPCConfig fields, e.g. ``max_iterations=50, scale=True``.

    Returns
    -------
    FCPCAResult
    """
    config = config or DEFAULT_CONFIG
    if overrides:
        config = CPCConfig.model_validate({**config.model_dump(), **overrides})

    if isinstance(data, pl.DataFrame):
        if group_col is not None:
            supplied = frame_covariances(data, group_col, columns=columns, scale=config.scale)
        elif groups is not None:
            cols = list(columns) if columns is not None else [
                c for c, dtype in data.schema.items() if dtype.is_numeric()
            ]
            supplied = group_covariances(
                data.select(cols).to_numpy(), groups, scale=config.scale, variables=cols
            )
        else:
            raise InvalidInputError(["either group_col or groups is required"])
    else:
        if groups is None:
            raise InvalidInputError(["groups are required for array input"])
        supplied = group_covariances(data, groups, scale=config.scale, variables=columns)

    return analyse(supplied, config, reference=reference)
