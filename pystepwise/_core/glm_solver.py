"""
Generalized linear model solver via IRLS.

Follows R's glm.fit(): iteratively reweighted least squares on the working
response, with each weighted least-squares step delegated to the backend.
"""

import warnings
import numpy as np
from typing import Optional
from dataclasses import dataclass

from .families import Family
from .lm_solver import fit_linear_model
from ..exceptions import FitError


@dataclass
class GLMResult:
    """Results from GLM fitting."""
    coef: np.ndarray          # Coefficients (NaN for aliased columns)
    residuals: np.ndarray     # Residuals (response scale)
    fitted_values: np.ndarray # Fitted values (μ)
    linear_predictors: np.ndarray  # Linear predictors (η)
    working_weights: np.ndarray    # Final IRLS weights

    rank: int                 # Rank
    df_residual: int          # Residual df

    deviance: float           # Deviance
    converged: bool           # Converged?
    iterations: int           # IRLS iterations


def fit_glm(
    X: np.ndarray,
    y: np.ndarray,
    family: Family,
    weights: Optional[np.ndarray] = None,
    offset: Optional[np.ndarray] = None,
    maxit: int = 25,
    epsilon: float = 1e-8,
    singular_ok: bool = True,
    backend=None,
) -> GLMResult:
    """
    Fit generalized linear model.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Design matrix, one column per model term
    y : ndarray, shape (n,)
        Response vector (proportions for the binomial family)
    family : Family
        GLM family
    weights : ndarray, shape (n,), optional
        Prior weights (for the binomial family, include the number of trials)
    offset : ndarray, shape (n,), optional
        Offset added to the linear predictor
    maxit : int, default=25
        Maximum IRLS iterations
    epsilon : float, default=1e-8
        Convergence tolerance
    singular_ok : bool, default=True
        If False, raise FitError on singular fit

    Returns
    -------
    result : GLMResult
        Fitted model results

    Notes
    -----
    Uses R's convergence criterion:
        |dev - dev_old| / (0.1 + |dev|) < epsilon
    """
    n = len(y)
    wt = np.ones(n) if weights is None else np.asarray(weights, dtype=np.float64)
    off = np.zeros(n) if offset is None else np.asarray(offset, dtype=np.float64)

    mu = family.mustart(y, wt)
    eta = family.linkfun(mu)
    dev_old = np.sum(family.dev_resids(y, mu, wt))

    converged = False
    coef = np.full(X.shape[1], np.nan)
    rank = 0
    w = wt

    for iteration in range(1, maxit + 1):
        mu_eta_val = family.mu_eta(eta)
        var_mu = family.variance(mu)
        if np.any(~np.isfinite(var_mu)) or np.any(var_mu == 0):
            raise FitError(f"{family.name}: variance function is zero or non-finite")

        z = (eta - off) + (y - mu) / mu_eta_val
        w = wt * mu_eta_val ** 2 / var_mu

        result = fit_linear_model(
            X, z, weights=w, singular_ok=singular_ok, backend=backend
        )
        coef = result.coef
        rank = result.rank

        valid = ~np.isnan(coef)
        eta = X[:, valid] @ coef[valid] + off
        mu = family.linkinv(eta)
        if not family.validmu(mu):
            raise FitError(f"{family.name}: fitted means are not valid")

        dev = np.sum(family.dev_resids(y, mu, wt))
        if not np.isfinite(dev):
            raise FitError(f"{family.name}: deviance is not finite after {iteration} iterations")

        if abs(dev - dev_old) / (abs(dev) + 0.1) < epsilon:
            converged = True
            break
        dev_old = dev

    if not converged:
        warnings.warn(
            f"IRLS did not converge in {maxit} iterations ({family.name} family)",
            RuntimeWarning
        )

    return GLMResult(
        coef=coef,
        residuals=y - mu,
        fitted_values=mu,
        linear_predictors=eta,
        working_weights=w,
        rank=rank,
        df_residual=int(np.sum(wt > 0)) - rank,
        deviance=float(dev),
        converged=converged,
        iterations=iteration,
    )


__all__ = ["GLMResult", "fit_glm"]
