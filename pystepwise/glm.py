"""
Generalized linear model API.

Main user-facing interface for GLMs on a terms matrix: normal, binomial,
Poisson, Gamma and inverse Gaussian responses, fitted by IRLS.
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Union
from scipy import stats

from ._core.families import Family, get_family
from ._core.glm_solver import fit_glm
from .lm import _print_coefficients
from .terms_regression import TermsRegression

RESIDUAL_TYPES = ('Raw', 'LinearPredictor', 'Pearson', 'Anscombe', 'Deviance')


class GeneralizedLinearModel(TermsRegression):
    """
    Generalized linear model via IRLS.

    Examples
    --------
    >>> from pystepwise import glm, stepwiseglm
    >>>
    >>> # Poisson counts on two predictors
    >>> model = glm(y='visits', X=['age', 'income'], data=data,
    ...             distribution='poisson')
    >>> model.summary()
    >>>
    >>> # Binomial proportions, choosing terms by deviance tests
    >>> model = stepwiseglm(y=prop, X=X, distribution='binomial',
    ...                     binomial_size=trials, upper='quadratic')
    """

    default_criterion = 'deviance'

    def __init__(
        self,
        y: Union[str, np.ndarray],
        X: Union[List[str], np.ndarray, pd.DataFrame],
        data: Optional[pd.DataFrame] = None,
        terms='linear',
        distribution: Union[str, Family] = 'normal',
        link=None,
        binomial_size=None,
        offset=None,
        dispersion_estimated: Optional[bool] = None,
        weights: Optional[Union[str, np.ndarray]] = None,
        exclude=None,
        intercept: bool = True,
        var_names: Optional[List[str]] = None,
        backend: str = 'auto',
        maxit: int = 25,
        epsilon: float = 1e-8,
    ):
        """
        Fit generalized linear model.

        Parameters
        ----------
        y, X, data, terms, weights, exclude, intercept, var_names, backend
            As for LinearModel
        distribution : str or Family
            'normal' (default), 'binomial', 'poisson', 'gamma' or
            'inverse gaussian'
        link : str, float or Link, optional
            Link function instead of the canonical one: 'identity', 'log',
            'logit', 'probit', 'comploglog', 'loglog', 'reciprocal' or a
            power exponent p (η = μ^p)
        binomial_size : str, int or array, optional
            Number of trials for the binomial distribution (default 1);
            y is then the proportion of successes
        offset : str or array, optional
            Offset added to the linear predictor
        dispersion_estimated : bool, optional
            Estimate the dispersion parameter. Defaults to False for binomial
            and Poisson and True otherwise.
        maxit : int
            Maximum IRLS iterations
        epsilon : float
            IRLS convergence tolerance
        """
        super().__init__(
            y, X, data=data, terms=terms, weights=weights, exclude=exclude,
            intercept=intercept, var_names=var_names, backend=backend
        )
        self.family = get_family(distribution, link)
        if dispersion_estimated is None:
            dispersion_estimated = self.family.estimates_dispersion
        self.dispersion_estimated = bool(dispersion_estimated)
        self.maxit = maxit
        self.epsilon = epsilon

        self._size = self._row_values(binomial_size, data, 'binomial_size', default=1.0)
        self._offset = self._row_values(offset, data, 'offset', default=0.0)
        self.included &= np.isfinite(self._size) & np.isfinite(self._offset)

        y_r = self.y_r
        if self.family.name == 'binomial':
            if np.any(self._size[self.included] <= 0):
                raise ValueError("binomial_size must be positive")
            if np.any((y_r < 0) | (y_r > 1)):
                raise ValueError("Binomial response must be a proportion between 0 and 1")
        elif self.family.name == 'poisson' and np.any(y_r < 0):
            raise ValueError("Poisson response must be non-negative")
        elif self.family.name in ('gamma', 'inverse gaussian') and np.any(y_r <= 0):
            raise ValueError(f"{self.family.name.capitalize()} response must be positive")

        self._fit()

    @property
    def distribution(self) -> str:
        return self.family.name

    @property
    def link(self) -> str:
        return self.family.link.name

    @property
    def binomial_size(self) -> np.ndarray:
        return self._size[self.included]

    @property
    def offset(self) -> np.ndarray:
        return self._offset[self.included]

    def _prior_weights(self) -> np.ndarray:
        """Observation weights, times the number of trials for binomial."""
        if self.family.name == 'binomial':
            return self.w_r * self.binomial_size
        return self.w_r

    def _fit(self):
        wt = self._prior_weights()
        offset = self.offset
        result = fit_glm(
            self.design_r,
            self.y_r,
            self.family,
            weights=wt,
            offset=offset if np.any(offset != 0) else None,
            maxit=self.maxit,
            epsilon=self.epsilon,
            backend=self.backend,
        )
        self._glm_result = result
        self._null_deviance = None
        self._compute_statistics()

    def _compute_statistics(self):
        """Compute dispersion, standard errors, z/t-stats and p-values."""
        result = self._glm_result
        wt = self._prior_weights()

        self.coefficients = result.coef
        self.residuals = result.residuals
        self.fitted_values = result.fitted_values
        self.linear_predictors = result.linear_predictors
        self.rank = result.rank
        self.dfe = result.df_residual
        self.deviance = result.deviance
        self.converged = result.converged
        self.iterations = result.iterations

        self.sse = float(np.sum(self.w_r * self.residuals ** 2))

        # Dispersion: Pearson chi-square / dfe, or fixed at 1
        if self.dispersion_estimated:
            pearson = np.sum(wt * self.residuals ** 2 / self.family.variance(self.fitted_values))
            self.dispersion = float(pearson / self.dfe) if self.dfe > 0 else np.nan
        else:
            self.dispersion = 1.0

        decomp = self._weighted_qr(result.working_weights)
        self.vcov = self._coef_covariance(decomp.R, decomp.pivot, decomp.rank, self.dispersion)

        self.std_errors = np.sqrt(np.diag(self.vcov))
        with np.errstate(divide='ignore', invalid='ignore'):
            self.t_values = self.coefficients / self.std_errors
        if self.dispersion_estimated:
            self.pvalues = 2 * stats.t.sf(np.abs(self.t_values), self.dfe)
        else:
            self.pvalues = 2 * stats.norm.sf(np.abs(self.t_values))

    def _dispersion_flag(self) -> Optional[bool]:
        return self.dispersion_estimated

    def _critical_value(self, alpha: float) -> float:
        if self.dispersion_estimated:
            return super()._critical_value(alpha)
        return stats.norm.ppf(1 - alpha / 2)

    @property
    def log_likelihood(self) -> float:
        """
        Log-likelihood at the fitted means.

        The normal scale is the ML estimate SSE/n; Gamma and inverse
        Gaussian use the dispersion.
        """
        if self.family.name == 'normal':
            scale = self.sse / self.n_obs
        elif self.family.estimates_dispersion:
            scale = self.dispersion
        else:
            scale = 1.0
        return self.family.log_likelihood(
            self.y_r, self.fitted_values, self.w_r, scale, self.binomial_size
        )

    def get_residuals(self, kind: Optional[str] = None):
        """
        Residuals of the observations in the fit.

        Parameters
        ----------
        kind : str, optional
            - 'Raw': y - μ (in counts for binomial)
            - 'LinearPredictor': (y - μ) dη/dμ, on the working-response scale
            - 'Pearson': (y - μ) / sqrt(V(μ))
            - 'Anscombe': residuals on a variance-stabilizing scale
            - 'Deviance': signed square root of each deviance contribution
            Case-insensitive. If omitted, all five as a DataFrame.

        Returns
        -------
        array or DataFrame
        """
        if kind is None:
            return pd.DataFrame({
                name: self.get_residuals(name) for name in RESIDUAL_TYPES
            }, index=np.flatnonzero(self.included))

        y = self.y_r
        mu = self.fitted_values
        size = self.binomial_size if self.family.name == 'binomial' else np.ones_like(y)

        key = str(kind).lower()
        if key == 'raw':
            return (y - mu) * size
        if key == 'linearpredictor':
            return (y - mu) / self.family.mu_eta(self.linear_predictors)
        if key == 'pearson':
            return (y - mu) / (np.sqrt(self.family.variance(mu) / size) + (y == mu))
        if key == 'anscombe':
            return self.family.anscombe(y, mu, size)
        if key == 'deviance':
            dev = self.family.dev_resids(y, mu, size)
            return np.sign(y - mu) * np.sqrt(np.maximum(dev, 0))
        raise ValueError(
            f"Unknown residual type: '{kind}'\n"
            f"Valid options: {', '.join(repr(k) for k in RESIDUAL_TYPES)}"
        )

    def _diagnostic_weights(self) -> np.ndarray:
        """Prior weights times the IRLS weights at the fitted means."""
        mu_eta = self.family.mu_eta(self.linear_predictors)
        return self._prior_weights() * mu_eta ** 2 / self.family.variance(self.fitted_values)

    def _diagnostic_residuals(self) -> np.ndarray:
        return self.get_residuals('linearpredictor')

    @property
    def null_deviance(self) -> float:
        """Deviance of the intercept-only model."""
        if self._null_deviance is None:
            n = self.n_obs
            offset = self.offset
            null = fit_glm(
                np.ones((n, 1)), self.y_r, self.family,
                weights=self._prior_weights(),
                offset=offset if np.any(offset != 0) else None,
                maxit=self.maxit, epsilon=self.epsilon, backend=self.backend,
            )
            self._null_deviance = null.deviance
        return self._null_deviance

    def predict(self, newdata, offset=None) -> np.ndarray:
        """
        Predicted mean response for new data.

        Parameters
        ----------
        newdata : DataFrame or array
            New predictor values
        offset : array, optional
            Offset for the new observations

        Returns
        -------
        array
            Predicted means (response scale)
        """
        X_new = self._new_design(newdata)
        valid = ~np.isnan(self.coefficients)
        eta = X_new[:, valid] @ self.coefficients[valid]
        if offset is not None:
            eta = eta + np.asarray(offset, dtype=np.float64)
        return self.family.linkinv(eta)

    def summary(self):
        """Print summary of GLM results (like R's summary.glm)."""
        stat_label = 't value' if self.dispersion_estimated else 'z value'
        p_label = 'Pr(>|t|)' if self.dispersion_estimated else 'Pr(>|z|)'

        print()
        print("=" * 80)
        print("GENERALIZED LINEAR MODEL RESULTS")
        print("=" * 80)
        print()
        print(f"Model: {self.formula}")
        print(f"Distribution: {self.family.name}")
        print(f"Link: {self.family.link.name}")
        print(f"Number of observations: {self.n_obs}")
        print()

        _print_coefficients(self, stat_label, p_label)

        disp = f"{self.dispersion:.4f}" if self.dispersion_estimated else "1 (fixed)"
        print(f"Dispersion parameter:    {disp}")
        print(f"Null deviance:           {self.null_deviance:.4f} on {self.n_obs - 1} degrees of freedom")
        print(f"Residual deviance:       {self.deviance:.4f} on {self.dfe} degrees of freedom")
        print(f"AIC: {self.aic:.4f}")
        print()
        status = "converged" if self.converged else "did not converge"
        print(f"IRLS {status} after {self.iterations} iterations")
        print(f"Backend: {self.backend.name}")
        print("=" * 80)
        print()

    def __repr__(self):
        return (f"GeneralizedLinearModel({self.formula}, distribution='{self.family.name}', "
                f"n={self.n_obs}, deviance={self.deviance:.4g})")


def glm(y, X, data=None, distribution='normal', **kwargs):
    """
    Fit generalized linear model (convenience function).

    Parameters
    ----------
    y : str or array
        Response variable
    X : list of str or array
        Predictor variables
    data : DataFrame, optional
        Dataset
    distribution : str
        'normal', 'binomial', 'poisson', 'gamma' or 'inverse gaussian'
    **kwargs
        Additional arguments passed to GeneralizedLinearModel

    Returns
    -------
    GeneralizedLinearModel
    """
    return GeneralizedLinearModel(y=y, X=X, data=data, distribution=distribution, **kwargs)


def stepwiseglm(
    y,
    X,
    data=None,
    distribution='normal',
    start='constant',
    lower='constant',
    upper='interactions',
    criterion='deviance',
    penter: Optional[float] = None,
    premove: Optional[float] = None,
    nsteps=np.inf,
    verbose: int = 1,
    observer=None,
    **kwargs
):
    """
    Fit a generalized linear model by stepwise regression.

    The default criterion 'deviance' uses an F test on the change in
    deviance when the dispersion is estimated and a chi-square test
    otherwise. See `stepwiselm` for the other arguments.

    Returns
    -------
    GeneralizedLinearModel
        Final model; ``model.steps.history`` records each step
    """
    model = GeneralizedLinearModel(
        y=y, X=X, data=data, terms=start, distribution=distribution, **kwargs
    )
    return model.step(
        lower=lower, upper=upper, criterion=criterion, penter=penter,
        premove=premove, nsteps=nsteps, verbose=verbose, observer=observer
    )
