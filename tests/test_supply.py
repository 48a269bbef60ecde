"""Tests for covariance supply from grouped observations."""
import numpy as np
import polars as pl
import pytest

from fcpca.errors import InvalidInputError
from fcpca.supply import frame_covariances, group_covariances


@pytest.fixture
def grouped_data():
    """3 variables, groups b (4 rows) and a (3 rows), interleaved."""
    np.random.seed(42)
    X = np.random.randn(7, 3) * [1.0, 2.0, 3.0] + [10.0, -5.0, 0.0]
    groups = np.array(["b", "a", "b", "a", "b", "a", "b"])
    return X, groups


def _expected_cov(X):
    Xc = X - X.mean(axis=0)
    return Xc.T @ Xc / X.shape[0]


class TestGroupCovariances:

    def test_levels_sorted(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups)
        assert supplied.labels == ["a", "b"]
        assert list(supplied.counts) == [3, 4]

    def test_biased_covariance_per_group(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups)
        assert np.allclose(supplied.covariances[0], _expected_cov(X[groups == "a"]))
        assert np.allclose(supplied.covariances[1], _expected_cov(X[groups == "b"]))

    def test_centered_within_groups(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups)
        for m in range(supplied.n_groups):
            block = supplied.centered[supplied.group_index == m]
            assert np.allclose(block.mean(axis=0), 0.0)

    def test_scaling_gives_unit_sample_variance(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups, scale=True)
        for m, n in enumerate(supplied.counts):
            # biased covariance of unit-sd (ddof=1) data has diagonal (n-1)/n
            assert np.allclose(np.diag(supplied.covariances[m]), (n - 1) / n)

    def test_constant_column_not_scaled(self):
        X = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]])
        supplied = group_covariances(X, ["g", "g", "g"], scale=True)
        assert np.all(np.isfinite(supplied.covariances))
        assert supplied.covariances[0, 1, 1] == 0.0

    def test_default_variable_names(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups)
        assert supplied.variables == ["V1", "V2", "V3"]
        assert supplied.n_variables == 3
        assert supplied.n_groups == 2

    def test_weights(self, grouped_data):
        X, groups = grouped_data
        supplied = group_covariances(X, groups)
        assert np.allclose(supplied.weights("count"), [3, 4])
        assert np.allclose(supplied.weights("fraction"), [3 / 7, 4 / 7])
        assert np.allclose(supplied.weights("equal"), [0.5, 0.5])
        with pytest.raises(ValueError):
            supplied.weights("sqrt")

    def test_length_mismatch(self, grouped_data):
        X, groups = grouped_data
        with pytest.raises(InvalidInputError, match="group labels"):
            group_covariances(X, groups[:-1])

    def test_missing_values_rejected(self, grouped_data):
        X, groups = grouped_data
        X = X.copy()
        X[2, 1] = np.nan
        with pytest.raises(InvalidInputError, match="non-finite"):
            group_covariances(X, groups)

    def test_single_variable_rejected(self):
        with pytest.raises(InvalidInputError, match="at least 2"):
            group_covariances(np.ones((4, 1)), [1, 1, 2, 2])


class TestFrameCovariances:

    def test_matches_array_path(self, grouped_data):
        X, groups = grouped_data
        df = pl.DataFrame({
            "site": groups.tolist(),
            "x": X[:, 0], "y": X[:, 1], "z": X[:, 2],
        })
        from_frame = frame_covariances(df, "site")
        from_array = group_covariances(X, groups)
        assert from_frame.labels == from_array.labels
        assert from_frame.variables == ["x", "y", "z"]
        assert np.allclose(from_frame.covariances, from_array.covariances)
        assert list(from_frame.counts) == [3, 4]

    def test_scaled_matches_array_path(self, grouped_data):
        X, groups = grouped_data
        df = pl.DataFrame({"site": groups.tolist(), "x": X[:, 0], "y": X[:, 1], "z": X[:, 2]})
        assert np.allclose(
            frame_covariances(df, "site", scale=True).covariances,
            group_covariances(X, groups, scale=True).covariances,
        )

    def test_non_numeric_columns_skipped(self, grouped_data):
        X, groups = grouped_data
        df = pl.DataFrame({
            "site": groups.tolist(),
            "note": ["n"] * 7,
            "x": X[:, 0], "y": X[:, 1],
        })
        assert frame_covariances(df, "site").variables == ["x", "y"]

    def test_explicit_columns(self, grouped_data):
        X, groups = grouped_data
        df = pl.DataFrame({"site": groups.tolist(), "x": X[:, 0], "y": X[:, 1], "z": X[:, 2]})
        supplied = frame_covariances(df, "site", columns=["z", "x"])
        assert supplied.variables == ["z", "x"]
        assert np.allclose(
            supplied.covariances[0], _expected_cov(X[groups == "a"][:, [2, 0]])
        )

    def test_integer_group_labels(self):
        df = pl.DataFrame({"g": [2, 1, 2, 1], "x": [1.0, 2.0, 3.0, 5.0], "y": [0.0, 1.0, 1.0, 0.0]})
        supplied = frame_covariances(df, "g")
        assert supplied.labels == ["1", "2"]

    def test_numeric_labels_sorted_numerically(self):
        np.random.seed(42)
        X = np.random.randn(60, 3)
        g = [2] * 20 + [10] * 20 + [1] * 20
        from_frame = frame_covariances(
            pl.DataFrame({"g": g, "a": X[:, 0], "b": X[:, 1], "c": X[:, 2]}), "g"
        )
        from_array = group_covariances(X, np.array(g))
        assert from_frame.labels == ["1", "2", "10"]
        assert from_array.labels == from_frame.labels
        assert np.allclose(from_frame.covariances, from_array.covariances)
        assert list(from_frame.counts) == [20, 20, 20]

    def test_missing_group_column(self):
        df = pl.DataFrame({"x": [1.0, 2.0], "y": [3.0, 4.0]})
        with pytest.raises(InvalidInputError, match="group column"):
            frame_covariances(df, "site")

    def test_missing_columns(self):
        df = pl.DataFrame({"g": ["a", "a"], "x": [1.0, 2.0], "y": [3.0, 4.0]})
        with pytest.raises(InvalidInputError, match="not in data"):
            frame_covariances(df, "g", columns=["x", "w"])

    def test_nulls_rejected(self):
        df = pl.DataFrame({"g": ["a", "a", "b"], "x": [1.0, None, 2.0], "y": [3.0, 4.0, 5.0]})
        with pytest.raises(InvalidInputError, match="missing"):
            frame_covariances(df, "g")
