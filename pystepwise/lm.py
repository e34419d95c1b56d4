"""
Linear regression on a terms matrix, with R-style output.

This is the user-facing API for least-squares models and stepwise
selection of their terms.
"""

import numpy as np
import pandas as pd
from typing import Optional, Union, List
from scipy import stats

from .terms_regression import TermsRegression


class LinearModel(TermsRegression):
    """
    Fit linear regression model (like R's lm()) on a set of terms.

    The terms matrix has one row per term and one column per predictor;
    entries are exponents, so the row [1, 1, 0] is the interaction x1:x2 and
    an all-zero row is the intercept.

    Examples
    --------
    >>> import pandas as pd
    >>> from pystepwise import lm, stepwiselm
    >>>
    >>> data = pd.read_csv('cars.csv')
    >>>
    >>> # Main effects of three predictors
    >>> model = lm(y='mpg', X=['wt', 'hp', 'cyl'], data=data)
    >>> model.summary()
    >>>
    >>> # Let stepwise regression choose among main effects and interactions
    >>> model = stepwiselm(y='mpg', X=['wt', 'hp', 'cyl'], data=data)
    >>> model.steps.history.to_frame()
    """

    default_criterion = 'sse'

    def __init__(
        self,
        y: Union[str, np.ndarray],
        X: Union[List[str], np.ndarray, pd.DataFrame],
        data: Optional[pd.DataFrame] = None,
        terms='linear',
        weights: Optional[Union[str, np.ndarray]] = None,
        exclude=None,
        intercept: bool = True,
        var_names: Optional[List[str]] = None,
        backend: str = 'auto',
    ):
        """
        Fit linear regression model.

        Parameters
        ----------
        y : str or array
            Response variable (outcome)
        X : list of str, DataFrame or array
            Predictor variables
        data : DataFrame, optional
            Dataset containing y and X variables
        terms : str, list of str or array
            Model alias, term names or terms matrix (default 'linear')
        weights : str or array, optional
            Observation weights
        exclude : array, optional
            Observations to leave out (boolean mask or indices)
        intercept : bool
            Include an intercept when `terms` is an alias
        var_names : list of str, optional
            Predictor names when X is an array
        backend : str
            Computational backend: 'auto', 'cpu'

        Examples
        --------
        >>> model = lm(y='mpg', X=['wt', 'hp'], data=mtcars, terms='wt + hp + wt:hp')
        >>> model = lm(y=y_array, X=X_matrix, terms='quadratic')
        """
        super().__init__(
            y, X, data=data, terms=terms, weights=weights, exclude=exclude,
            intercept=intercept, var_names=var_names, backend=backend
        )
        self._fit()

    def _fit(self):
        w = self.w_r
        self._backend_result = self.backend.fit_linear_model(
            self.design_r,
            self.y_r,
            weights=None if np.all(w == 1) else w
        )
        self._compute_statistics()

    def _compute_statistics(self):
        """Compute standard errors, t-stats, p-values, etc."""
        result = self._backend_result

        # Extract from backend
        self.coefficients = result.coef
        self.residuals = result.residuals
        self.fitted_values = result.fitted_values
        self.rank = result.rank
        self.dfe = result.df_residual

        # Residual sum of squares
        self.sse = float(np.sum(self.w_r * self.residuals ** 2))
        self.mse = self.sse / self.dfe if self.dfe > 0 else np.nan
        self.sigma = np.sqrt(self.mse)

        # Var(β) = σ² (X'WX)⁻¹
        self.vcov = self._coef_covariance(result.qr_R, result.qr_pivot, self.rank, self.mse)

        self.std_errors = np.sqrt(np.diag(self.vcov))
        with np.errstate(divide='ignore', invalid='ignore'):
            self.t_values = self.coefficients / self.std_errors
        self.pvalues = 2 * stats.t.sf(np.abs(self.t_values), self.dfe)

        # F-statistic against the constant model
        p = self.rank - 1 if self.has_intercept else self.rank
        ssr = self.sst - self.sse
        if p > 0 and self.dfe > 0 and self.has_intercept:
            self.f_statistic = (ssr / p) / self.mse
            self.f_pvalue = stats.f.sf(self.f_statistic, p, self.dfe)
        else:
            self.f_statistic = np.nan
            self.f_pvalue = np.nan

    @property
    def deviance(self) -> float:
        return self.sse

    @property
    def dispersion(self) -> float:
        return self.mse

    @property
    def log_likelihood(self) -> float:
        """
        Gaussian log-likelihood at the ML variance estimate SSE/n.

        With weights, sum(log w)/2 is added.
        """
        n = self.n_obs
        w = self.w_r
        loglik = -(n / 2) * (np.log(2 * np.pi) + np.log(self.sse / n) + 1)
        if not np.all(w == 1):
            loglik += 0.5 * np.sum(np.log(w[w > 0]))
        return float(loglik)

    def predict(self, newdata: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """
        Predict response for new data.

        Parameters
        ----------
        newdata : DataFrame or array
            New predictor values
            - If DataFrame: must have columns matching self.var_names
            - If array: must have one column per predictor

        Returns
        -------
        array
            Predicted values
        """
        X_new = self._new_design(newdata)

        # Predict (handling NaN coefficients for aliased terms)
        valid = ~np.isnan(self.coefficients)
        return X_new[:, valid] @ self.coefficients[valid]

    def summary(self):
        """
        Print summary of regression results (like R's summary.lm).
        """
        print()
        print("=" * 80)
        print("LINEAR REGRESSION RESULTS")
        print("=" * 80)
        print()

        print(f"Model: {self.formula}")
        print(f"Number of observations: {self.n_obs}")
        print(f"Degrees of freedom: {self.dfe} (residual), {self.rank - 1} (model)")
        print()

        print("Residuals:")
        residual_summary = pd.Series(self.residuals).describe()
        print(f"  Min:    {residual_summary['min']:>10.4f}")
        print(f"  1Q:     {residual_summary['25%']:>10.4f}")
        print(f"  Median: {residual_summary['50%']:>10.4f}")
        print(f"  3Q:     {residual_summary['75%']:>10.4f}")
        print(f"  Max:    {residual_summary['max']:>10.4f}")
        print()

        _print_coefficients(self, 't value', 'Pr(>|t|)')

        print(f"Residual standard error: {self.sigma:.4f} on {self.dfe} degrees of freedom")
        print(f"Multiple R-squared:      {self.r_squared:.4f}")
        print(f"Adjusted R-squared:      {self.adj_r_squared:.4f}")

        if not np.isnan(self.f_statistic):
            f_pval_str = f"{self.f_pvalue:.4e}" if self.f_pvalue >= 2.2e-16 else "< 2.2e-16"
            print(f"F-statistic:             {self.f_statistic:.2f} on {self.rank - 1} "
                  f"and {self.dfe} DF, p-value: {f_pval_str}")

        print()
        print(f"Backend: {self.backend.name}")
        print("=" * 80)
        print()

    def __repr__(self):
        return f"LinearModel({self.formula}, n={self.n_obs}, R²={self.r_squared:.3f})"


def _significance(p: float) -> str:
    if p < 0.001:
        return ' ***'
    if p < 0.01:
        return ' **'
    if p < 0.05:
        return ' *'
    if p < 0.1:
        return ' .'
    return ''


def _print_coefficients(model, stat_label: str, p_label: str):
    """Coefficient table shared by the linear and generalized linear summaries."""
    print("Coefficients:")
    print("-" * 80)
    print(f"{'Term':<20} {'Estimate':>12} {'Std. Error':>12} {stat_label:>10} {p_label:>12}")
    print("-" * 80)

    for i, name in enumerate(model.term_names):
        p = model.pvalues[i]
        if np.isnan(model.coefficients[i]):
            print(f"{name:<20} {'NA':>12} {'NA':>12} {'NA':>10} {'NA':>12} (aliased)")
            continue
        if np.isnan(p):
            p_str, sig = 'NA', ''
        else:
            p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"
            sig = _significance(p)

        print(f"{name:<20} {model.coefficients[i]:>12.4f} {model.std_errors[i]:>12.4f} "
              f"{model.t_values[i]:>10.3f} {p_str:>12}{sig}")

    print("-" * 80)
    print("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
    print()


def lm(y, X, data=None, **kwargs):
    """
    Fit linear regression model (convenience function).

    Parameters
    ----------
    y : str or array
        Response variable
    X : list of str or array
        Predictor variables
    data : DataFrame, optional
        Dataset
    **kwargs
        Additional arguments passed to LinearModel

    Returns
    -------
    LinearModel
        Fitted model object

    Examples
    --------
    >>> model = lm(y='mpg', X=['wt', 'hp'], data=mtcars)
    >>> model.summary()
    >>> model.coef
    >>> model.conf_int()
    """
    return LinearModel(y=y, X=X, data=data, **kwargs)


def stepwiselm(
    y,
    X,
    data=None,
    start='constant',
    lower='constant',
    upper='interactions',
    criterion='sse',
    penter: Optional[float] = None,
    premove: Optional[float] = None,
    nsteps=np.inf,
    verbose: int = 1,
    observer=None,
    **kwargs
):
    """
    Fit a linear model by stepwise regression.

    Starts from the `start` terms and adds or removes terms between `lower`
    and `upper` until no step improves the criterion.

    Parameters
    ----------
    y, X, data
        As for `lm`
    start : str, list of str or array
        Initial terms (default 'constant')
    lower, upper : str, list of str or array
        Smallest and largest allowed models
    criterion : str, callable or tuple
        'sse' (F test, default), 'aic', 'bic', 'rsquared', 'adjrsquared',
        or a custom criterion
    penter, premove : float, optional
        Thresholds for adding and removing terms
    nsteps : int or numpy.inf
        Maximum number of steps
    verbose : int
        0 silent, 1 report each step, 2 also report every candidate
    observer : callable, optional
        Receives progress events
    **kwargs
        Additional arguments passed to LinearModel

    Returns
    -------
    LinearModel
        Final model; ``model.steps.history`` records each step

    Examples
    --------
    >>> model = stepwiselm(y='mpg', X=['wt', 'hp', 'cyl'], data=mtcars,
    ...                    upper='quadratic', criterion='bic')
    """
    model = LinearModel(y=y, X=X, data=data, terms=start, **kwargs)
    return model.step(
        lower=lower, upper=upper, criterion=criterion, penter=penter,
        premove=premove, nsteps=nsteps, verbose=verbose, observer=observer
    )
