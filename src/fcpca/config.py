"""
CPC Analysis Configuration

Pydantic model for every tunable of the rotation engine and the
surrounding analysis. Defaults reproduce the classic FCPCA behaviour
(15 sweeps, identity start, unscaled data).

Usage:
    from fcpca.config import CPCConfig

    config = CPCConfig(max_iterations=50, init="pooled")
    config.to_yaml("cpc.yaml")
    config = CPCConfig.from_yaml("cpc.yaml")
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional, Union
from pathlib import Path
import json


class CPCConfig(BaseModel):
    """Rotation engine and analysis settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Rotation engine
    max_iterations: int = Field(15, ge=1, description="Sweep budget")
    tolerance: float = Field(
        1e-6, gt=0, description="Convergence threshold on the largest |angle| in a sweep (radians)"
    )
    init: Literal["identity", "pooled"] = Field(
        "identity", description="Starting loadings: identity or pooled-covariance eigenvectors"
    )
    reorthonormalize_every: int = Field(
        5, ge=1, description="Sweeps between QR re-orthonormalisation of the loadings"
    )
    degeneracy_tol: float = Field(
        1e-12, ge=0, description="Relative threshold below which a pair's criterion is flat"
    )
    symmetry_tol: float = Field(
        1e-8, ge=0, description="Relative tolerance for the input symmetry check"
    )

    # Covariance supply
    scale: bool = Field(False, description="Scale variables to unit variance within groups")
    weighting: Literal["count", "fraction", "equal"] = Field(
        "count", description="Group weights: sample counts, fractions of N, or equal"
    )

    # Reporting
    orient: bool = Field(True, description="Flip loadings so each column's largest entry is positive")
    sort_components: bool = Field(
        False, description="Order Dims by descending weighted mean group variance"
    )
    lambda_decimals: Optional[int] = Field(
        None, ge=0, description="Round group variances to this many decimals (classic output uses 3)"
    )

    def engine_kwargs(self) -> dict:
        """Keyword arguments accepted by ``fcpca.rotation.solve``."""
        return {
            'max_iterations': self.max_iterations,
            'tolerance': self.tolerance,
            'init': self.init,
            'reorthonormalize_every': self.reorthonormalize_every,
            'degeneracy_tol': self.degeneracy_tol,
            'symmetry_tol': self.symmetry_tol,
        }

    def to_json(self, path: Union[str, Path]) -> None:
        """Write config to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.model_dump(), f, indent=2)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "CPCConfig":
        """Load config from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.model_validate(data)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Write config to YAML file."""
        import yaml
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CPCConfig":
        """Load config from YAML file. An empty file gives the defaults."""
        import yaml
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "CPC config:",
            f"  Max iterations: {self.max_iterations}",
            f"  Tolerance: {self.tolerance:g}",
            f"  Init: {self.init}",
            f"  Re-orthonormalise every: {self.reorthonormalize_every} sweeps",
            f"  Degeneracy tolerance: {self.degeneracy_tol:g}",
            f"  Symmetry tolerance: {self.symmetry_tol:g}",
            f"  Scale: {self.scale}",
            f"  Weighting: {self.weighting}",
            f"  Orient: {self.orient}",
            f"  Sort components: {self.sort_components}",
            f"  Lambda decimals: {self.lambda_decimals}",
        ]
        return "\n".join(lines)


DEFAULT_CONFIG = CPCConfig()
