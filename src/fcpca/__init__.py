"""
Common Principal Component Analysis (Flury's CPC model).

Estimates one orthogonal basis shared by several groups' covariance
matrices, and each group's variance along it.

Input: M group covariance matrices (P × P) and group weights,
or raw observations with group labels.
Output: common loadings W, group variances lambda, percent explained.

Core:
    fcpca.rotation   Pairwise Givens sweeps → common loadings
    fcpca.decompose  Group variances and explained variance along W

Around it:
    fcpca.supply     Grouped observations → centered covariances
    fcpca.analysis   One-call analysis with labelled tables
    fcpca.orientation Column signs and reference alignment
    fcpca.config     Settings (pydantic, YAML/JSON)
    fcpca.cli        Command line
"""

from fcpca.analysis import FCPCAResult, analyse, fcpca
from fcpca.config import CPCConfig, DEFAULT_CONFIG
from fcpca.decompose import VarianceDecomposition, decompose, order_components
from fcpca.errors import (
    FCPCAError,
    InvalidInputError,
    NonConvergenceWarning,
    NumericDegeneracyWarning,
)
from fcpca.orientation import align_to_reference, enforce_sign_convention
from fcpca.rotation import SolveResult, pair_angle, pooled_covariance, reorthonormalize, solve
from fcpca.supply import GroupCovariances, frame_covariances, group_covariances

__version__ = "0.1.0"

__all__ = [
    'fcpca',
    'analyse',
    'FCPCAResult',
    'CPCConfig',
    'DEFAULT_CONFIG',
    'solve',
    'SolveResult',
    'pair_angle',
    'pooled_covariance',
    'reorthonormalize',
    'decompose',
    'VarianceDecomposition',
    'order_components',
    'enforce_sign_convention',
    'align_to_reference',
    'group_covariances',
    'frame_covariances',
    'GroupCovariances',
    'FCPCAError',
    'InvalidInputError',
    'NonConvergenceWarning',
    'NumericDegeneracyWarning',
]
