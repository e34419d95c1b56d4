"""
Test the CPU backend: pivoted QR with rank detection and least squares on
a design matrix that already holds its intercept column.
"""

import pytest
import numpy as np
from pystepwise._backends import (
    get_backend,
    list_available_backends,
    print_backend_info,
    CPUBackendFP64,
)
from pystepwise.exceptions import FitError


def _design(n, p, seed=42):
    rng = np.random.RandomState(seed)
    X = np.column_stack([np.ones(n), rng.randn(n, p)])
    return X, rng


class TestBackendSelection:
    """Test backend listing and selection."""

    def test_list_backends(self):
        backends = list_available_backends()
        assert isinstance(backends, list)
        assert 'cpu' in backends

    def test_print_backend_info(self, capsys):
        print_backend_info()
        captured = capsys.readouterr()
        assert 'Backend Status' in captured.out
        assert 'CPU' in captured.out

    def test_auto_is_cpu(self):
        assert get_backend('auto').name == 'cpu_fp64'

    def test_instance_passes_through(self):
        backend = CPUBackendFP64()
        assert get_backend(backend) is backend

    def test_invalid_backend_name(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            get_backend('cuda')


class TestCPUBackend:
    """Test CPU backend (always available)."""

    def test_cpu_backend_creation(self):
        backend = get_backend('cpu')
        assert backend.name == 'cpu_fp64'
        assert backend.precision == 'fp64'

    def test_cpu_device_info(self):
        info = get_backend('cpu').get_device_info()
        assert info['backend'] == 'cpu'
        assert info['precision'] == 'fp64'

    def test_simple_regression(self):
        backend = get_backend('cpu')
        n, p = 100, 3
        X, rng = _design(n, p)
        beta_true = np.array([0.5, 1.0, 2.0, -1.5])
        y = X @ beta_true + 0.1 * rng.randn(n)

        result = backend.fit_linear_model(X, y)

        # No column is added: the intercept is part of X
        assert result.coef.shape == (p + 1,)
        assert result.residuals.shape == (n,)
        assert result.rank == p + 1
        assert result.df_residual == n - p - 1
        np.testing.assert_allclose(result.coef, beta_true, atol=0.1)
        np.testing.assert_allclose(result.fitted_values + result.residuals, y)

    def test_matches_lstsq(self):
        X, rng = _design(60, 4, seed=1)
        y = rng.randn(60)
        result = get_backend('cpu').fit_linear_model(X, y)
        expected = np.linalg.lstsq(X, y, rcond=None)[0]
        np.testing.assert_allclose(result.coef, expected, rtol=1e-10, atol=1e-12)

    def test_weighted_regression(self):
        X, rng = _design(50, 2)
        y = rng.randn(50)
        w = rng.uniform(0.5, 1.5, 50)

        result = get_backend('cpu').fit_linear_model(X, y, weights=w)

        sw = np.sqrt(w)
        expected = np.linalg.lstsq(X * sw[:, None], y * sw, rcond=None)[0]
        np.testing.assert_allclose(result.coef, expected, rtol=1e-10)

    def test_zero_weights_drop_rows(self):
        X, rng = _design(40, 2)
        y = rng.randn(40)
        w = np.ones(40)
        w[:10] = 0.0

        result = get_backend('cpu').fit_linear_model(X, y, weights=w)

        expected = np.linalg.lstsq(X[10:], y[10:], rcond=None)[0]
        np.testing.assert_allclose(result.coef, expected, rtol=1e-10)
        assert result.df_residual == 30 - 3

    def test_all_zero_weights(self):
        X, rng = _design(10, 1)
        with pytest.raises(FitError, match="weights"):
            get_backend('cpu').fit_linear_model(X, rng.randn(10), weights=np.zeros(10))

    def test_with_offset(self):
        X, rng = _design(50, 2)
        offset = rng.randn(50)
        y = X @ np.array([1.0, 2.0, 3.0]) + offset

        result = get_backend('cpu').fit_linear_model(X, y, offset=offset)

        np.testing.assert_allclose(result.coef, [1.0, 2.0, 3.0], atol=1e-10)
        np.testing.assert_allclose(result.residuals, 0.0, atol=1e-10)

    def test_rank_deficient(self):
        X, rng = _design(30, 2)
        X = np.column_stack([X, X[:, 1] + X[:, 2]])
        y = rng.randn(30)

        result = get_backend('cpu').fit_linear_model(X, y)

        assert result.rank == 3
        assert np.sum(np.isnan(result.coef)) == 1
        with pytest.raises(FitError, match="Singular"):
            get_backend('cpu').fit_linear_model(X, y, singular_ok=False)


class TestQR:
    """Test pivoted QR with rank detection."""

    def test_reconstruction(self):
        X, _ = _design(20, 3)
        decomp = get_backend('cpu').qr_with_pivoting(X)
        np.testing.assert_allclose(decomp.Q @ decomp.R, X[:, decomp.pivot], atol=1e-12)
        assert decomp.rank == 4
        assert decomp.basis.shape == (20, 4)

    def test_rank_of_collinear_columns(self):
        X, _ = _design(20, 2)
        X = np.column_stack([X, 2 * X[:, 1]])
        assert get_backend('cpu').qr_with_pivoting(X).rank == 3

    def test_empty_design(self):
        decomp = get_backend('cpu').qr_with_pivoting(np.zeros((5, 0)))
        assert decomp.rank == 0
        assert decomp.basis.shape == (5, 0)
