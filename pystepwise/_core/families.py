"""
GLM family definitions.

Defines link functions, variance functions, deviance residuals, Anscombe
residuals and log-likelihoods for the distributions supported by
GeneralizedLinearModel. Each family has a canonical link; any other link
can be chosen instead.
"""

import numpy as np
from abc import ABC, abstractmethod
from scipy import stats
from scipy.special import beta, betainc, xlogy

EPS = np.finfo(np.float64).eps


# ----------------------------------------------------------------------
# Links

class Link(ABC):
    """Link function η = g(μ), its inverse and dμ/dη."""

    name = None

    @abstractmethod
    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        """Link function: η = g(μ)"""
        pass

    @abstractmethod
    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        """Inverse link: μ = g⁻¹(η)"""
        pass

    @abstractmethod
    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        """Derivative: dμ/dη"""
        pass

    def __repr__(self):
        return f"{type(self).__name__}()"


class IdentityLink(Link):
    name = "identity"

    def linkfun(self, mu):
        return mu

    def linkinv(self, eta):
        return eta

    def mu_eta(self, eta):
        return np.ones_like(eta)


class LogLink(Link):
    name = "log"

    def linkfun(self, mu):
        return np.log(mu)

    def linkinv(self, eta):
        return np.maximum(np.exp(eta), EPS)

    def mu_eta(self, eta):
        return np.maximum(np.exp(eta), EPS)


class LogitLink(Link):
    """
    Logit link, thresholded at ±30 to prevent overflow (as in R's binomial()).
    """

    name = "logit"

    # Thresholds from R
    THRESH = 30.0
    MTHRESH = -30.0

    def linkfun(self, mu):
        return np.log(mu / (1 - mu))

    def linkinv(self, eta):
        mu = np.empty_like(eta)
        mu[eta < self.MTHRESH] = EPS
        mu[eta > self.THRESH] = 1 - EPS
        mask = (eta >= self.MTHRESH) & (eta <= self.THRESH)
        mu[mask] = 1.0 / (1.0 + np.exp(-eta[mask]))
        return mu

    def mu_eta(self, eta):
        d = np.empty_like(eta)
        outside = (eta < self.MTHRESH) | (eta > self.THRESH)
        d[outside] = EPS
        inside = ~outside
        exp_eta = np.exp(eta[inside])
        d[inside] = exp_eta / (1.0 + exp_eta) ** 2
        return d


class ProbitLink(Link):
    name = "probit"

    def linkfun(self, mu):
        return stats.norm.ppf(mu)

    def linkinv(self, eta):
        thresh = -stats.norm.ppf(EPS)
        return stats.norm.cdf(np.clip(eta, -thresh, thresh))

    def mu_eta(self, eta):
        return np.maximum(stats.norm.pdf(eta), EPS)


class CLogLogLink(Link):
    """Complementary log-log: η = log(-log(1 - μ))."""

    name = "comploglog"

    def linkfun(self, mu):
        return np.log(-np.log1p(-mu))

    def linkinv(self, eta):
        return np.clip(-np.expm1(-np.exp(eta)), EPS, 1 - EPS)

    def mu_eta(self, eta):
        eta = np.minimum(eta, 700.0)
        return np.maximum(np.exp(eta) * np.exp(-np.exp(eta)), EPS)


class LogLogLink(Link):
    """Log-log: η = log(-log(μ)); μ decreases in η."""

    name = "loglog"

    def linkfun(self, mu):
        return np.log(-np.log(mu))

    def linkinv(self, eta):
        return np.clip(np.exp(-np.exp(eta)), EPS, 1 - EPS)

    def mu_eta(self, eta):
        eta = np.minimum(eta, 700.0)
        return np.minimum(-np.exp(eta) * np.exp(-np.exp(eta)), -EPS)


class PowerLink(Link):
    """Power link η = μ^p (p = -1 is 'reciprocal')."""

    def __init__(self, power: float):
        if power == 0 or not np.isfinite(power):
            raise ValueError(f"Power link exponent must be finite and non-zero, got {power!r}")
        self.power = float(power)

    @property
    def name(self) -> str:
        return "reciprocal" if self.power == -1 else f"power({self.power:g})"

    def linkfun(self, mu):
        return mu ** self.power

    def linkinv(self, eta):
        return eta ** (1 / self.power)

    def mu_eta(self, eta):
        return eta ** (1 / self.power - 1) / self.power

    def __repr__(self):
        return f"PowerLink({self.power:g})"


LINKS = {
    'identity': IdentityLink,
    'log': LogLink,
    'logit': LogitLink,
    'probit': ProbitLink,
    'comploglog': CLogLogLink,
    'loglog': LogLogLink,
    'reciprocal': lambda: PowerLink(-1),
}


def get_link(link) -> Link:
    """
    Link instance for a name, a power exponent, or a Link (returned as is).

    An exponent of 1 is the identity link and 0 is the log link.
    """
    if isinstance(link, Link):
        return link
    if isinstance(link, (int, float, np.integer, np.floating)) and not isinstance(link, bool):
        if link == 1:
            return IdentityLink()
        if link == 0:
            return LogLink()
        return PowerLink(link)
    try:
        return LINKS[str(link).lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown link: '{link}'\n"
            f"Valid options: {', '.join(repr(k) for k in LINKS)} or a power exponent"
        )


# ----------------------------------------------------------------------
# Families

class Family(ABC):
    """Base class for GLM families."""

    # Dispersion is estimated from the data unless fixed at 1
    estimates_dispersion = True
    canonical_link = 'identity'

    def __init__(self, link=None):
        self.link = get_link(self.canonical_link if link is None else link)

    @property
    @abstractmethod
    def name(self) -> str:
        """Family name."""
        pass

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return self.link.linkfun(mu)

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return self.link.linkinv(eta)

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return self.link.mu_eta(eta)

    @abstractmethod
    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function: V(μ)"""
        pass

    @abstractmethod
    def dev_resids(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        wt: np.ndarray
    ) -> np.ndarray:
        """Deviance residuals (squared, weighted)."""
        pass

    @abstractmethod
    def anscombe(self, y: np.ndarray, mu: np.ndarray, size: np.ndarray) -> np.ndarray:
        """Anscombe residuals (`size` is the number of binomial trials)."""
        pass

    @abstractmethod
    def mustart(self, y: np.ndarray, wt: np.ndarray) -> np.ndarray:
        """Starting values for μ."""
        pass

    @abstractmethod
    def log_likelihood(
        self,
        y: np.ndarray,
        mu: np.ndarray,
        wt: np.ndarray,
        scale: float,
        size: np.ndarray
    ) -> float:
        """
        Log-likelihood at μ.

        `scale` is the ML variance for Gaussian and the dispersion for Gamma
        and inverse Gaussian; binomial and Poisson ignore it.
        """
        pass

    def validmu(self, mu: np.ndarray) -> bool:
        """Check if μ values are valid."""
        return bool(np.all(np.isfinite(mu)))

    def __repr__(self):
        return f"{type(self).__name__}(link='{self.link.name}')"


class Gaussian(Family):
    """Gaussian family, identity link by default."""

    @property
    def name(self) -> str:
        return "normal"

    def variance(self, mu):
        return np.ones_like(mu)

    def dev_resids(self, y, mu, wt):
        return wt * (y - mu) ** 2

    def anscombe(self, y, mu, size):
        return y - mu

    def mustart(self, y, wt):
        return y.astype(np.float64).copy()

    def log_likelihood(self, y, mu, wt, scale, size):
        return float(np.sum(wt * stats.norm.logpdf(y, loc=mu, scale=np.sqrt(scale))))


class Binomial(Family):
    """
    Binomial family, logit link by default.

    The response is the proportion of successes out of `size` trials.
    """

    estimates_dispersion = False
    canonical_link = 'logit'

    @property
    def name(self) -> str:
        return "binomial"

    def variance(self, mu):
        return mu * (1 - mu)

    def dev_resids(self, y, mu, wt):
        return 2 * wt * (xlogy(y, y / mu) + xlogy(1 - y, (1 - y) / (1 - mu)))

    def anscombe(self, y, mu, size):
        t = 2 / 3
        return (beta(t, t) * (betainc(t, t, y) - betainc(t, t, mu))
                / ((mu * (1 - mu)) ** (1 / 6) / np.sqrt(size)))

    def mustart(self, y, wt):
        # R: (weights * y + 0.5) / (weights + 1)
        return (wt * y + 0.5) / (wt + 1)

    def log_likelihood(self, y, mu, wt, scale, size):
        k = np.round(y * size)
        return float(np.sum(wt * stats.binom.logpmf(k, size, mu)))

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all((mu > 0) & (mu < 1)))


class Poisson(Family):
    """Poisson family, log link by default."""

    estimates_dispersion = False
    canonical_link = 'log'

    @property
    def name(self) -> str:
        return "poisson"

    def variance(self, mu):
        return mu

    def dev_resids(self, y, mu, wt):
        return 2 * wt * (xlogy(y, y / mu) - (y - mu))

    def anscombe(self, y, mu, size):
        return 1.5 * (y ** (2 / 3) - mu ** (2 / 3)) / mu ** (1 / 6)

    def mustart(self, y, wt):
        return y + 0.1

    def log_likelihood(self, y, mu, wt, scale, size):
        return float(np.sum(wt * stats.poisson.logpmf(y, mu)))

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all(mu > 0))


class Gamma(Family):
    """Gamma family, reciprocal link by default; shape is 1/dispersion."""

    canonical_link = 'reciprocal'

    @property
    def name(self) -> str:
        return "gamma"

    def variance(self, mu):
        return mu ** 2

    def dev_resids(self, y, mu, wt):
        return -2 * wt * (np.log(y / mu) - (y - mu) / mu)

    def anscombe(self, y, mu, size):
        return 3 * (y ** (1 / 3) - mu ** (1 / 3)) / mu ** (1 / 3)

    def mustart(self, y, wt):
        return y.astype(np.float64).copy()

    def log_likelihood(self, y, mu, wt, scale, size):
        return float(np.sum(wt * stats.gamma.logpdf(y, 1 / scale, scale=mu * scale)))

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all(mu > 0))


class InverseGaussian(Family):
    """Inverse Gaussian family, link η = μ^-2 by default; λ is 1/dispersion."""

    canonical_link = -2

    @property
    def name(self) -> str:
        return "inverse gaussian"

    def variance(self, mu):
        return mu ** 3

    def dev_resids(self, y, mu, wt):
        return wt * (y - mu) ** 2 / (y * mu ** 2)

    def anscombe(self, y, mu, size):
        return (np.log(y) - np.log(mu)) / mu

    def mustart(self, y, wt):
        return y.astype(np.float64).copy()

    def log_likelihood(self, y, mu, wt, scale, size):
        # scipy's invgauss(m, scale=s) has mean m*s and shape λ = s
        return float(np.sum(wt * stats.invgauss.logpdf(y, mu * scale, scale=1 / scale)))

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all(mu > 0))


FAMILIES = {
    'normal': Gaussian,
    'gaussian': Gaussian,
    'binomial': Binomial,
    'poisson': Poisson,
    'gamma': Gamma,
    'inverse gaussian': InverseGaussian,
    'inversegaussian': InverseGaussian,
}


def get_family(distribution, link=None) -> Family:
    """
    Family instance for a distribution name (or a Family, returned as is).

    `link` replaces the canonical link: a name ('identity', 'log', 'logit',
    'probit', 'comploglog', 'loglog', 'reciprocal'), a power exponent or a
    Link.
    """
    if isinstance(distribution, Family):
        return distribution if link is None else type(distribution)(link=link)
    try:
        family = FAMILIES[str(distribution).lower().replace('_', ' ')]
    except KeyError:
        raise ValueError(
            f"Unknown distribution: '{distribution}'\n"
            f"Valid options: 'normal', 'binomial', 'poisson', 'gamma', 'inverse gaussian'"
        )
    return family(link=link)


__all__ = [
    "Link", "IdentityLink", "LogLink", "LogitLink", "ProbitLink", "CLogLogLink",
    "LogLogLink", "PowerLink", "get_link",
    "Family", "Gaussian", "Binomial", "Poisson", "Gamma", "InverseGaussian",
    "get_family",
]
