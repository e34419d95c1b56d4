"""
Base class for regression models defined by a terms matrix.

Handles the data (arrays or a pandas DataFrame), the observations that take
part in the fit, the design matrix built from the terms, and the operations
that change the terms: add_terms, remove_terms and stepwise `step`.
"""

import copy
import numpy as np
import pandas as pd
from abc import ABC, abstractmethod
from typing import List, Optional, Union
from scipy import stats

from ._backends import get_backend
from ._core.qr import qr_decomposition_with_pivoting
from ._core.terms import (
    design_matrix, is_member, resolve_terms, sort_terms, term_order, terms_to_names
)
from ._utils import check_array, check_vector
from .exceptions import StepwiseConfigError
from .stepwise import StepwiseState, check_nsteps, linear_predictor, make_observer


class TermsRegression(ABC):
    """
    Regression model whose design matrix is built from a terms matrix.

    Subclasses implement `_fit`, which fills in coefficients and fit
    statistics for the current terms, and `log_likelihood`.
    """

    # Criterion used by `step` when none is given and no earlier session exists
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
        backend='auto',
    ):
        """
        Parameters
        ----------
        y : str or array
            Response variable
            - If string: column name in data
            - If array: numeric values
        X : list of str, DataFrame or array
            Predictor variables
            - If list of strings: column names in data
            - If DataFrame: its columns
            - If array: numeric matrix (n x v)
        data : DataFrame, optional
            Dataset containing y and X variables
        terms : str, list of str or array
            Model alias ('constant', 'linear', 'interactions',
            'purequadratic', 'quadratic'), term names, or a terms matrix
            with one column per predictor
        weights : str or array, optional
            Observation weights
        exclude : array of bool or int, optional
            Observations to leave out of the fit
        intercept : bool
            Include the intercept when `terms` is an alias
        var_names : list of str, optional
            Predictor names when X is an array
        backend : str
            Computational backend: 'auto', 'cpu'
        """
        # Parse inputs
        if isinstance(y, str):
            if data is None:
                raise ValueError("Must provide data when y is a string")
            y_values = data[y].values
            self.response_name = y
        else:
            y_values = np.asarray(y)
            self.response_name = 'y'

        if isinstance(X, list) and len(X) > 0 and all(isinstance(x, str) for x in X):
            if data is None:
                raise ValueError("Must provide data when X is list of strings")
            X_values = data[X].values
            names = list(X)
        elif isinstance(X, pd.DataFrame):
            X_values = X.values
            names = [str(c) for c in X.columns]
        else:
            X_values = np.asarray(X)
            if X_values.ndim == 1:
                X_values = X_values.reshape(-1, 1)
            names = [f'x{i + 1}' for i in range(X_values.shape[1])]

        if var_names is not None:
            if len(var_names) != X_values.shape[1]:
                raise ValueError(
                    f"var_names has {len(var_names)} names for "
                    f"{X_values.shape[1]} predictor columns"
                )
            names = list(var_names)

        self._X = check_array(X_values, name='X', allow_nan=True)
        self._y = check_vector(y_values, name='y', allow_nan=True)
        if self._X.shape[0] != self._y.shape[0]:
            raise ValueError(
                f"X has {self._X.shape[0]} rows but y has {self._y.shape[0]}"
            )
        self.var_names = names

        self._w = self._row_values(weights, data, 'weights', default=1.0)
        if np.any(self._w < 0):
            raise ValueError("weights must be non-negative")

        # Observations in the fit: no missing values, not excluded
        included = (np.all(np.isfinite(self._X), axis=1)
                    & np.isfinite(self._y)
                    & np.isfinite(self._w))
        if exclude is not None:
            exclude = np.asarray(exclude)
            mask = np.zeros(len(self._y), dtype=bool)
            mask[exclude] = True
            included &= ~mask
        self.included = included

        self.terms = resolve_terms(terms, self.var_names, intercept=intercept)
        self.backend = get_backend(backend)
        self.steps = None

    def _row_values(self, value, data, name, default):
        """One value per observation, from a column name, an array or a default."""
        n = len(self._y)
        if value is None:
            return np.full(n, default, dtype=np.float64)
        if isinstance(value, str):
            if data is None:
                raise ValueError(f"Must provide data when {name} is a string")
            value = data[value].values
        value = np.asarray(value, dtype=np.float64)
        if value.ndim == 0:
            value = np.full(n, float(value))
        if value.shape != (n,):
            raise ValueError(f"{name} must have one value per observation ({n})")
        return value

    # ------------------------------------------------------------------
    # Fitting

    @abstractmethod
    def _fit(self):
        """Fit the model for the current terms."""
        pass

    @property
    @abstractmethod
    def log_likelihood(self) -> float:
        """Log-likelihood at the fitted coefficients."""
        pass

    def refit(self, terms: np.ndarray) -> "TermsRegression":
        """
        Same data, new terms: return a freshly fitted copy.

        The term matrix is used in the order given.
        """
        model = copy.copy(self)
        model.terms = np.asarray(terms, dtype=np.int64).reshape(-1, len(self.var_names))
        model.steps = None
        model._fit()
        return model

    def _coef_covariance(self, R: np.ndarray, pivot: np.ndarray, rank: int,
                         scale: float) -> np.ndarray:
        """
        scale * (X'WX)^-1 from the pivoted QR of the weighted design.
        Aliased coefficients get NaN rows and columns.
        """
        p = self.n_coefficients
        vcov = np.full((p, p), np.nan)
        if rank == 0:
            return vcov

        R_inv = np.linalg.inv(R[:rank, :rank])
        XtX_inv = R_inv @ R_inv.T

        # Reorder based on pivot
        pivot = pivot[:rank]
        vcov[np.ix_(pivot, pivot)] = XtX_inv * scale
        return vcov

    def _weighted_qr(self, weights: np.ndarray):
        """Pivoted QR of sqrt(weights) * design (observations in the fit)."""
        good = weights > 0
        Xw = self.design_r[good] * np.sqrt(weights[good])[:, np.newaxis]
        return qr_decomposition_with_pivoting(Xw, backend=self.backend)

    # ------------------------------------------------------------------
    # Data views

    @property
    def n_obs(self) -> int:
        """Number of observations used in the fit."""
        return int(np.sum(self.included))

    @property
    def design(self) -> np.ndarray:
        """Design matrix for all observations (one column per term)."""
        return design_matrix(self._X, self.terms)

    @property
    def design_r(self) -> np.ndarray:
        """Design matrix for the observations used in the fit."""
        return design_matrix(self._X[self.included], self.terms)

    def candidate_design(self, term: np.ndarray) -> np.ndarray:
        """Design column(s) of `term` for the observations used in the fit."""
        return design_matrix(self._X[self.included], np.atleast_2d(term))

    @property
    def y_r(self) -> np.ndarray:
        return self._y[self.included]

    @property
    def w_r(self) -> np.ndarray:
        return self._w[self.included]

    @property
    def term_names(self) -> List[str]:
        return terms_to_names(self.terms, self.var_names)

    @property
    def has_intercept(self) -> bool:
        return bool(np.any(term_order(self.terms) == 0))

    @property
    def formula(self) -> str:
        return f"{self.response_name} ~ {linear_predictor(self.terms, self.var_names)}"

    # ------------------------------------------------------------------
    # Statistics shared by all models

    @property
    def coef(self) -> pd.Series:
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coefficients, index=self.term_names)

    @property
    def n_coefficients(self) -> int:
        return self.terms.shape[0]

    @property
    def n_estimated_coefficients(self) -> int:
        return int(self.rank)

    @property
    def sst(self) -> float:
        y = self.y_r
        w = self.w_r
        ybar = np.sum(w * y) / np.sum(w)
        return float(np.sum(w * (y - ybar) ** 2))

    @property
    def r_squared(self) -> float:
        sst = self.sst
        return 1 - self.sse / sst if sst > 0 else 0.0

    @property
    def adj_r_squared(self) -> float:
        if self.dfe <= 0:
            return np.nan
        return 1 - (1 - self.r_squared) * (self.n_obs - 1) / self.dfe

    @property
    def aic(self) -> float:
        return -2 * self.log_likelihood + 2 * self.n_estimated_coefficients

    @property
    def bic(self) -> float:
        return -2 * self.log_likelihood + self.n_estimated_coefficients * np.log(self.n_obs)

    @property
    def aicc(self) -> float:
        k = self.n_estimated_coefficients
        n = self.n_obs
        if n - k - 1 <= 0:
            return np.inf
        return self.aic + 2 * k * (k + 1) / (n - k - 1)

    @property
    def caic(self) -> float:
        k = self.n_estimated_coefficients
        return -2 * self.log_likelihood + k * (np.log(self.n_obs) + 1)

    @property
    def model_criterion(self) -> pd.Series:
        """AIC, AICc, BIC and CAIC."""
        return pd.Series({'AIC': self.aic, 'AICc': self.aicc,
                          'BIC': self.bic, 'CAIC': self.caic})

    def coef_table(self) -> pd.DataFrame:
        """Estimates, standard errors, test statistics and p-values."""
        return pd.DataFrame({
            'Estimate': self.coefficients,
            'SE': self.std_errors,
            'tStat': self.t_values,
            'pValue': self.pvalues,
        }, index=self.term_names)

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Confidence intervals for coefficients.

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        crit = self._critical_value(alpha)
        return pd.DataFrame({
            'lower': self.coefficients - crit * self.std_errors,
            'upper': self.coefficients + crit * self.std_errors,
        }, index=self.term_names)

    # ------------------------------------------------------------------
    # Diagnostics

    def _diagnostic_weights(self) -> np.ndarray:
        """Weights W of the final least-squares fit."""
        return self.w_r

    def _diagnostic_residuals(self) -> np.ndarray:
        """Residuals on the scale of the final least-squares fit."""
        return self.residuals

    def _hat_factor(self):
        """A with H = A A' W, from the pivoted QR of sqrt(W) X."""
        w = self._diagnostic_weights()
        decomp = self._weighted_qr(w)
        rank = decomp.rank
        if rank == 0:
            return np.zeros((self.n_obs, 0)), w
        X = self.design_r[:, decomp.pivot[:rank]]
        A = X @ np.linalg.inv(decomp.R[:rank, :rank])
        return A, w

    def hat_matrix(self) -> np.ndarray:
        """
        Hat matrix H (n x n) of the observations in the fit.

        Fitted values are H @ y; for generalized linear models this holds
        on the working-response scale of the last IRLS step.
        """
        A, w = self._hat_factor()
        return (A @ A.T) * w[np.newaxis, :]

    def diagnostics(self) -> pd.DataFrame:
        """
        Leverage and Cook's distance of each observation in the fit.

        Leverage is the diagonal of `hat_matrix`. Cook's distance is
        w r² h / (1 - h)² / (p φ), with r the residual of the final
        least-squares fit, p the number of estimated coefficients and φ
        the dispersion.

        Returns
        -------
        DataFrame
            Columns 'Leverage' and 'CooksDistance', indexed by observation
        """
        A, w = self._hat_factor()
        leverage = w * np.sum(A ** 2, axis=1)

        r = self._diagnostic_residuals()
        with np.errstate(divide='ignore', invalid='ignore'):
            cooks = (w * r ** 2 * leverage / (1 - leverage) ** 2
                     / (self.rank * self.dispersion))

        return pd.DataFrame({
            'Leverage': leverage,
            'CooksDistance': cooks,
        }, index=np.flatnonzero(self.included))

    def _new_design(self, newdata) -> np.ndarray:
        """Design matrix of the current terms for new predictor values."""
        if isinstance(newdata, pd.DataFrame):
            X_new = newdata[self.var_names].values
        else:
            X_new = np.asarray(newdata, dtype=np.float64)
            if X_new.ndim == 1:
                X_new = X_new.reshape(-1, len(self.var_names))
        if X_new.shape[1] != len(self.var_names):
            raise ValueError(
                f"newdata has {X_new.shape[1]} columns, expected {len(self.var_names)}"
            )
        return design_matrix(X_new, self.terms)

    def _critical_value(self, alpha: float) -> float:
        return stats.t.ppf(1 - alpha / 2, self.dfe) if self.dfe > 0 else np.nan

    # ------------------------------------------------------------------
    # Changing the terms

    def _resolve(self, spec, name):
        try:
            return resolve_terms(spec, self.var_names, intercept=self.has_intercept, name=name)
        except ValueError as exc:
            raise StepwiseConfigError(f"Malformed {name}: {exc}") from exc

    def add_terms(self, terms) -> "TermsRegression":
        """
        Add terms and return the refitted model.

        Parameters
        ----------
        terms : str, list of str or array
            Term names (``'x1:x2'``), a model alias, or a terms matrix
        """
        new = resolve_terms(terms, self.var_names, intercept=True)
        merged, _ = sort_terms(np.vstack([self.terms, new]))
        return self.refit(merged)

    def remove_terms(self, terms) -> "TermsRegression":
        """Remove terms (names or a terms matrix) and return the refitted model."""
        drop = resolve_terms(terms, self.var_names, intercept=True)
        missing = ~is_member(drop, self.terms)
        if np.any(missing):
            names = ', '.join(terms_to_names(drop[missing], self.var_names))
            raise ValueError(f"Terms not in the model: {names}")
        return self.refit(self.terms[~is_member(self.terms, drop)])

    def _dispersion_flag(self) -> Optional[bool]:
        """Whether the model estimates a dispersion (None: no such notion)."""
        return None

    def step(
        self,
        lower=None,
        upper=None,
        criterion=None,
        penter: Optional[float] = None,
        premove: Optional[float] = None,
        nsteps=1,
        verbose: int = 1,
        observer=None,
    ) -> "TermsRegression":
        """
        Add or remove terms by stepwise regression.

        Each step first tries to add the term that most improves the
        criterion; if none qualifies, it tries to remove the term whose
        removal is most acceptable. Stops after `nsteps` steps or when a step
        changes nothing. Repeated calls continue the same session: bounds,
        criterion and thresholds default to those of the previous call and
        the history is extended.

        Parameters
        ----------
        lower : str, list of str or array, optional
            Terms that must remain in the model (default 'constant')
        upper : str, list of str or array, optional
            Terms available to the model (default 'interactions')
        criterion : str, callable or tuple, optional
            'sse', 'aic', 'bic', 'rsquared', 'adjrsquared' (and 'deviance'
            for generalized linear models), a function of the fitted model,
            or a tuple (add_test, remove_test, report)
        penter, premove : float, optional
            Thresholds for adding and removing terms
        nsteps : int or numpy.inf
            Maximum number of steps
        verbose : int
            0 silent, 1 report each step, 2 also report every candidate
        observer : callable, optional
            Receives progress events

        Returns
        -------
        Model after the last step; ``model.steps.history`` lists every step.

        Examples
        --------
        >>> model = lm(y, X, terms='constant')
        >>> model = model.step(upper='quadratic', nsteps=np.inf, verbose=0)
        >>> model.steps.history.to_frame()
        """
        notify = make_observer(verbose, observer)
        nsteps = check_nsteps(nsteps)

        previous = self.steps
        if previous is None:
            lower = 'constant' if lower is None else lower
            upper = 'interactions' if upper is None else upper
            criterion = self.default_criterion if criterion is None else criterion
        if lower is not None:
            lower = self._resolve(lower, 'lower')
        if upper is not None:
            upper = self._resolve(upper, 'upper')

        start = copy.copy(self)
        start.steps = None
        state = StepwiseState.start(
            start, lower, upper, criterion, penter, premove,
            previous=previous, dispersion_estimated=self._dispersion_flag()
        )
        return state.run(nsteps, notify)

    def __repr__(self):
        return f"{type(self).__name__}({self.formula}, n={self.n_obs})"
