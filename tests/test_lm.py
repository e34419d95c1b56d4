"""
Test LinearModel: estimates and inference on a terms matrix, data handling,
term edits and diagnostics.
"""

import pytest
import numpy as np
import pandas as pd
from scipy import stats

from pystepwise import LinearModel, lm
from pystepwise._core.terms import design_matrix


@pytest.fixture
def data():
    rng = np.random.RandomState(42)
    n = 60
    df = pd.DataFrame({
        'a': rng.randn(n),
        'b': rng.uniform(0, 2, n),
    })
    df['y'] = 1.0 + 2.0 * df['a'] - 0.5 * df['b'] + 0.8 * df['a'] * df['b'] + 0.3 * rng.randn(n)
    return df


class TestEstimates:
    """Test coefficients and inference against direct computation."""

    def test_matches_least_squares(self, data):
        model = lm('y', ['a', 'b'], data=data, terms='interactions')
        X = np.column_stack([np.ones(len(data)), data['a'], data['b'], data['a'] * data['b']])
        expected = np.linalg.lstsq(X, data['y'].values, rcond=None)[0]

        np.testing.assert_allclose(model.coefficients, expected, rtol=1e-10)
        assert list(model.coef.index) == ['(Intercept)', 'a', 'b', 'a:b']

    def test_inference(self, data):
        model = lm('y', ['a', 'b'], data=data)
        X = model.design_r
        y = data['y'].values
        n, p = X.shape

        resid = y - X @ model.coefficients
        sse = np.sum(resid ** 2)
        mse = sse / (n - p)
        se = np.sqrt(np.diag(mse * np.linalg.inv(X.T @ X)))

        assert model.sse == pytest.approx(sse)
        assert model.dfe == n - p
        assert model.mse == pytest.approx(mse)
        assert model.dispersion == pytest.approx(mse)
        assert model.deviance == pytest.approx(sse)
        np.testing.assert_allclose(model.std_errors, se, rtol=1e-10)
        np.testing.assert_allclose(
            model.pvalues, 2 * stats.t.sf(np.abs(model.coefficients / se), n - p), rtol=1e-8
        )

    def test_r_squared(self, data):
        model = lm('y', ['a', 'b'], data=data)
        y = data['y'].values
        sst = np.sum((y - y.mean()) ** 2)
        assert model.r_squared == pytest.approx(1 - model.sse / sst)
        assert model.adj_r_squared == pytest.approx(
            1 - (1 - model.r_squared) * (len(y) - 1) / model.dfe
        )

    def test_information_criteria(self, data):
        model = lm('y', ['a', 'b'], data=data)
        n, k = model.n_obs, model.n_estimated_coefficients
        loglik = -n / 2 * (np.log(2 * np.pi) + np.log(model.sse / n) + 1)

        assert model.log_likelihood == pytest.approx(loglik)
        assert model.aic == pytest.approx(-2 * loglik + 2 * k)
        assert model.bic == pytest.approx(-2 * loglik + k * np.log(n))
        assert model.aicc == pytest.approx(model.aic + 2 * k * (k + 1) / (n - k - 1))
        assert model.caic == pytest.approx(-2 * loglik + k * (np.log(n) + 1))
        assert list(model.model_criterion.index) == ['AIC', 'AICc', 'BIC', 'CAIC']

    def test_conf_int(self, data):
        model = lm('y', ['a', 'b'], data=data)
        ci = model.conf_int()
        assert list(ci.columns) == ['lower', 'upper']
        assert np.all(ci['lower'] < model.coefficients)
        assert np.all(ci['upper'] > model.coefficients)

    def test_weighted(self, data):
        w = np.linspace(0.5, 2.0, len(data))
        model = lm('y', ['a', 'b'], data=data, weights=w)
        X = model.design_r
        sw = np.sqrt(w)
        expected = np.linalg.lstsq(X * sw[:, None], data['y'].values * sw, rcond=None)[0]
        np.testing.assert_allclose(model.coefficients, expected, rtol=1e-10)

    def test_aliased_term(self, data):
        X = np.column_stack([data['a'], 2 * data['a']])
        model = LinearModel(data['y'].values, X)
        assert model.rank == 2
        assert np.isnan(model.coefficients).sum() == 1
        assert model.n_estimated_coefficients == 2
        assert model.n_coefficients == 3


class TestData:
    """Test input forms and observation handling."""

    def test_array_input_names(self, data):
        model = lm(data['y'].values, data[['a', 'b']].values)
        assert model.var_names == ['x1', 'x2']
        assert model.formula == 'y ~ 1 + x1 + x2'

    def test_dataframe_predictors(self, data):
        model = lm(data['y'].values, data[['a', 'b']])
        assert model.var_names == ['a', 'b']

    def test_var_names(self, data):
        model = lm(data['y'].values, data[['a', 'b']].values, var_names=['p', 'q'])
        assert model.term_names == ['(Intercept)', 'p', 'q']

    def test_var_names_length(self, data):
        with pytest.raises(ValueError, match="var_names"):
            lm(data['y'].values, data[['a', 'b']].values, var_names=['p'])

    def test_string_needs_data(self):
        with pytest.raises(ValueError, match="Must provide data"):
            lm('y', ['a'])

    def test_missing_rows_excluded(self, data):
        df = data.copy()
        df.loc[3, 'y'] = np.nan
        df.loc[7, 'a'] = np.nan
        model = lm('y', ['a', 'b'], data=df)
        assert model.n_obs == len(df) - 2
        assert not model.included[3] and not model.included[7]

    def test_exclude(self, data):
        full = lm('y', ['a', 'b'], data=data)
        model = lm('y', ['a', 'b'], data=data, exclude=[0, 1, 2])
        assert model.n_obs == full.n_obs - 3
        subset = lm('y', ['a', 'b'], data=data.iloc[3:].reset_index(drop=True))
        np.testing.assert_allclose(model.coefficients, subset.coefficients)

    def test_infinite_values_rejected(self, data):
        y = data['y'].values.copy()
        y[0] = np.inf
        with pytest.raises(ValueError, match="NaN or Inf"):
            lm(y, data[['a', 'b']].values)

    def test_predict(self, data):
        model = lm('y', ['a', 'b'], data=data, terms='interactions')
        new = pd.DataFrame({'a': [0.0, 1.0], 'b': [1.0, 2.0]})
        expected = design_matrix(new[['a', 'b']].values, model.terms) @ model.coefficients
        np.testing.assert_allclose(model.predict(new), expected)
        np.testing.assert_allclose(model.predict(new.values), expected)


class TestTerms:
    """Test term edits."""

    def test_terms_by_name(self, data):
        model = lm('y', ['a', 'b'], data=data, terms='a + a:b')
        assert model.term_names == ['a', 'a:b']
        assert not model.has_intercept

    def test_add_terms(self, data):
        model = lm('y', ['a', 'b'], data=data)
        bigger = model.add_terms('a:b')
        assert bigger.term_names == ['(Intercept)', 'a', 'b', 'a:b']
        assert model.term_names == ['(Intercept)', 'a', 'b']
        assert bigger.sse < model.sse

    def test_remove_terms(self, data):
        model = lm('y', ['a', 'b'], data=data, terms='quadratic')
        smaller = model.remove_terms(['a^2', 'b^2'])
        assert smaller.term_names == ['(Intercept)', 'a', 'b', 'a:b']
        assert smaller.dfe == model.dfe + 2

    def test_remove_missing_term(self, data):
        model = lm('y', ['a', 'b'], data=data)
        with pytest.raises(ValueError, match="Terms not in the model: a:b"):
            model.remove_terms('a:b')

    def test_refit_keeps_data(self, data):
        model = lm('y', ['a', 'b'], data=data)
        refit = model.refit(np.array([[0, 0], [1, 0]]))
        assert refit.term_names == ['(Intercept)', 'a']
        assert refit.n_obs == model.n_obs
        assert refit.steps is None


class TestDiagnostics:
    """Test leverage and Cook's distance."""

    def test_leverage(self, data):
        model = lm('y', ['a', 'b'], data=data)
        diag = model.diagnostics()
        X = model.design_r
        H = X @ np.linalg.inv(X.T @ X) @ X.T
        np.testing.assert_allclose(diag['Leverage'], np.diag(H), atol=1e-12)
        assert diag['Leverage'].sum() == pytest.approx(model.rank)

    def test_hat_matrix_gives_fitted_values(self, data):
        w = np.linspace(0.5, 2.0, len(data))
        model = lm('y', ['a', 'b'], data=data, weights=w)
        H = model.hat_matrix()
        np.testing.assert_allclose(H @ model.y_r, model.fitted_values, atol=1e-10)
        np.testing.assert_allclose(H @ H, H, atol=1e-10)
        np.testing.assert_allclose(np.diag(H), model.diagnostics()['Leverage'])

    def test_cooks_distance(self, data):
        model = lm('y', ['a', 'b'], data=data)
        diag = model.diagnostics()
        h = diag['Leverage'].values
        r = model.residuals
        expected = r ** 2 / (model.rank * model.mse) * h / (1 - h) ** 2
        np.testing.assert_allclose(diag['CooksDistance'], expected, rtol=1e-10)


class TestOutput:
    """Test printed output."""

    def test_summary(self, data, capsys):
        lm('y', ['a', 'b'], data=data).summary()
        out = capsys.readouterr().out
        assert 'LINEAR REGRESSION RESULTS' in out
        assert 'Model: y ~ 1 + a + b' in out
        assert 'Multiple R-squared' in out
        assert 'Backend: cpu_fp64' in out

    def test_repr(self, data):
        assert repr(lm('y', ['a'], data=data)).startswith('LinearModel(y ~ 1 + a, n=60')
