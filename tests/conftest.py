"""Shared fixtures for fcpca tests."""

import numpy as np
import pytest


def random_orthogonal(P: int, seed: int) -> np.ndarray:
    rng = np.random.RandomState(seed)
    Q, R = np.linalg.qr(rng.randn(P, P))
    return Q * np.sign(np.diag(R))


@pytest.fixture
def common_basis():
    """4 variables, shared orthogonal basis."""
    return random_orthogonal(4, seed=7)


@pytest.fixture
def exact_cpc(common_basis):
    """3 groups that share common_basis exactly, with well separated variances."""
    variances = np.array([
        [9.0, 4.0, 1.0, 0.25],
        [1.0, 6.0, 3.0, 0.5],
        [2.0, 0.5, 7.0, 5.0],
    ])
    covs = [common_basis @ np.diag(d) @ common_basis.T for d in variances]
    return covs, variances


@pytest.fixture
def sample_covs():
    """Sample covariances of 3 groups of random data → no exact common basis."""
    np.random.seed(42)
    covs = []
    for n in (30, 45, 60):
        X = np.random.randn(n, 5) @ np.random.randn(5, 5)
        X = X - X.mean(axis=0)
        covs.append(X.T @ X / n)
    return covs, np.array([30.0, 45.0, 60.0])


@pytest.fixture
def same_basis():
    """Assert two orthogonal matrices have the same columns up to sign and order."""

    def check(W, V, atol=1e-6):
        overlap = np.abs(np.asarray(W).T @ np.asarray(V))
        assert np.allclose(overlap.max(axis=1), 1.0, atol=atol), f"overlap:\n{overlap}"
        assert np.allclose(overlap.max(axis=0), 1.0, atol=atol), f"overlap:\n{overlap}"
        assert len(set(overlap.argmax(axis=1))) == overlap.shape[0], f"not a permutation:\n{overlap}"
        return overlap.argmax(axis=1)

    return check
