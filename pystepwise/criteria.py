"""
Criteria for stepwise term selection.

A criterion decides whether adding or removing one term is worthwhile. Each
one pairs an add test and a remove test with the thresholds they are compared
against. Tests are called as ``test(proposed, current)`` and return a
`CandidateScore` whose ``score`` follows one convention for every criterion:

- add:    smaller is better; the best candidate is added when
          ``score < add_threshold``
- remove: larger is more removable; the best candidate is removed when
          ``score > remove_threshold`` or the score is NaN

Criteria are resolved once, before the search starts, by `resolve_criterion`.

Criterion     penter   premove   compared against
-----------   ------   -------   ----------------------------------
'sse'         0.05   < 0.10      p-value of the F test on SSE
'deviance'    0.05   < 0.10      p-value of the F or chi-square test
'aic'         0      < 0.01      change in AIC
'bic'         0      < 0.01      change in BIC
'rsquared'    0.1    > 0.05      increase in R-squared
'adjrsquared' 0      > -0.05     increase in adjusted R-squared
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Union
from scipy import stats

from .exceptions import StepwiseConfigError


class CriterionKind(Enum):
    """Built-in criterion families."""
    SSE = "sse"
    DEVIANCE_F = "deviance_f"
    DEVIANCE_CHI2 = "deviance_chi2"
    AIC = "aic"
    BIC = "bic"
    RSQUARED = "rsquared"
    ADJRSQUARED = "adjrsquared"
    CUSTOM = "custom"


@dataclass(frozen=True)
class PValueReport:
    """Values reported by a significance test."""
    statistic: float
    p_value: float
    deviance: Optional[float] = None

    def values(self) -> tuple:
        if self.deviance is None:
            return (self.statistic, self.p_value)
        return (self.deviance, self.statistic, self.p_value)


@dataclass(frozen=True)
class CriterionReport:
    """Value of a model criterion (AIC, R-squared, ...) for the resulting model."""
    value: float

    def values(self) -> tuple:
        return (self.value,)


Report = Union[PValueReport, CriterionReport]


@dataclass(frozen=True)
class CandidateScore:
    """Result of one add or remove test."""
    score: float       # compared against the threshold
    reported: float    # shown to the user (p-value or change in criterion)
    report: Report


# ----------------------------------------------------------------------
# Tests

def _nested_df(fit1, fit0) -> int:
    return 0 if fit0 is None else fit0.dfe - fit1.dfe


def f_test(fit1, fit0) -> Tuple[float, float]:
    """
    F test of the larger model `fit1` against the nested model `fit0`.

    F = ((SSE0 - SSE1) / ddf) / (SSE1 / DFE1). Without a smaller model, or
    when the models have the same error degrees of freedom, F and p are NaN.
    """
    df_numer = _nested_df(fit1, fit0)
    df_denom = fit1.dfe
    if df_numer <= 0 or df_denom <= 0:
        return np.nan, np.nan

    sse1 = np.float64(fit1.sse)
    sse0 = np.float64(fit0.sse)
    with np.errstate(divide='ignore', invalid='ignore'):
        F = ((sse0 - sse1) / df_numer) / (sse1 / df_denom)
    p = stats.f.sf(F, df_numer, df_denom)
    return float(F), float(p)


def deviance_f_test(fit1, fit0) -> Tuple[float, float]:
    """F test on the deviance, scaled by the larger model's dispersion."""
    df_numer = _nested_df(fit1, fit0)
    df_denom = fit1.dfe
    if df_numer <= 0 or df_denom <= 0:
        return np.nan, np.nan

    drop = max(0.0, fit0.deviance - fit1.deviance)
    with np.errstate(divide='ignore', invalid='ignore'):
        F = (np.float64(drop) / df_numer) / np.float64(fit1.dispersion)
    p = stats.f.sf(F, df_numer, df_denom)
    return float(F), float(p)


def chi2_test(fit1, fit0) -> Tuple[float, float]:
    """
    Likelihood-ratio chi-square test (dispersion fixed at 1).

    The statistic is max(0, Dev0 - Dev1) on DFE0 - DFE1 degrees of freedom.
    The models are not nested when the degrees of freedom do not change, and
    the statistic is then NaN.
    """
    df = _nested_df(fit1, fit0)
    if df <= 0:
        return np.nan, np.nan

    x2 = max(0.0, fit0.deviance - fit1.deviance)
    return float(x2), float(stats.chi2.sf(x2, df))


def generic_test(proposed, current, critfun: Callable, decreasing: bool) -> CandidateScore:
    """
    Compare raw criterion values of two models.

    `decreasing` means a lower score is reported as better: the score is
    the change in the criterion, otherwise its negation.
    """
    new = float(critfun(proposed))
    old = new if current is None else float(critfun(current))
    change = new - old
    score = change if decreasing else -change
    return CandidateScore(score=score, reported=change, report=CriterionReport(new))


def _sse_add(proposed, current):
    F, p = f_test(proposed, current)
    return CandidateScore(p, p, PValueReport(F, p))


def _sse_remove(proposed, current):
    F, p = f_test(current, proposed)
    return CandidateScore(p, p, PValueReport(F, p))


def _deviance_tests(test):
    def add(proposed, current):
        stat, p = test(proposed, current)
        return CandidateScore(p, p, PValueReport(stat, p, deviance=float(proposed.deviance)))

    def remove(proposed, current):
        stat, p = test(current, proposed)
        return CandidateScore(p, p, PValueReport(stat, p, deviance=float(proposed.deviance)))

    return add, remove


# ----------------------------------------------------------------------
# Criterion objects

@dataclass(frozen=True)
class Criterion:
    """
    A resolved stepwise criterion.

    ``add_threshold`` and ``remove_threshold`` are in the score convention of
    the tests; ``penter`` and ``premove`` are the values the user sees.
    """
    kind: CriterionKind
    name: str
    add_test: Callable[[Any, Any], CandidateScore]
    remove_test: Callable[[Any, Any], CandidateScore]
    penter: float
    premove: float
    add_threshold: float
    remove_threshold: float
    smaller_is_better: bool
    reported_names: Tuple[str, ...]
    test_name: str
    source: Any = None

    def accepts_add(self, score: float) -> bool:
        return bool(score < self.add_threshold)

    def accepts_remove(self, score: float) -> bool:
        return bool(np.isnan(score) or score > self.remove_threshold)

    def with_thresholds(self, penter=None, premove=None) -> "Criterion":
        """Same criterion with some thresholds replaced (validated again)."""
        if penter is None and premove is None:
            return self
        penter = self.penter if penter is None else penter
        premove = self.premove if premove is None else premove
        if self.kind is CriterionKind.CUSTOM:
            if isinstance(self.source, tuple):
                return _from_functions(self.source, penter, premove)
            return custom_criterion(self.source, penter, premove, self.smaller_is_better)
        return _builtin(self.kind, penter, premove)


# penter, premove, smaller_is_better
DEFAULT_THRESHOLDS = {
    CriterionKind.SSE: (0.05, 0.10, True),
    CriterionKind.DEVIANCE_F: (0.05, 0.10, True),
    CriterionKind.DEVIANCE_CHI2: (0.05, 0.10, True),
    CriterionKind.AIC: (0.0, 0.01, True),
    CriterionKind.BIC: (0.0, 0.01, True),
    CriterionKind.RSQUARED: (0.1, 0.05, False),
    CriterionKind.ADJRSQUARED: (0.0, -0.05, False),
}

CRITERION_NAMES = (
    'sse', 'aic', 'bic', 'rsquared', 'adjrsquared',
    'deviance', 'deviance_f', 'deviance_chi2',
)


def check_thresholds(name: str, penter, premove, smaller_is_better: bool):
    """Raise StepwiseConfigError unless the thresholds suit the polarity."""
    for label, value in (('penter', penter), ('premove', premove)):
        if not isinstance(value, (int, float, np.integer, np.floating)) or not np.isfinite(value):
            raise StepwiseConfigError(
                f"{label} must be a finite number for criterion '{name}', got {value!r}"
            )
    if smaller_is_better and penter >= premove:
        raise StepwiseConfigError(
            f"penter ({penter:g}) must be smaller than premove ({premove:g}) "
            f"for criterion '{name}'"
        )
    if not smaller_is_better and penter <= premove:
        raise StepwiseConfigError(
            f"penter ({penter:g}) must be larger than premove ({premove:g}) "
            f"for criterion '{name}'"
        )


def _builtin(kind: CriterionKind, penter=None, premove=None) -> Criterion:
    default_enter, default_remove, smaller = DEFAULT_THRESHOLDS[kind]
    penter = default_enter if penter is None else penter
    premove = default_remove if premove is None else premove
    check_thresholds(kind.value, penter, premove, smaller)

    add_threshold, remove_threshold = penter, premove
    if kind is CriterionKind.SSE:
        add_test, remove_test = _sse_add, _sse_remove
        reported_names = ('FStat', 'pValue')
        test_name = 'pValue'
    elif kind is CriterionKind.DEVIANCE_F:
        add_test, remove_test = _deviance_tests(deviance_f_test)
        reported_names = ('Deviance', 'FStat', 'PValue')
        test_name = 'pValue'
    elif kind is CriterionKind.DEVIANCE_CHI2:
        add_test, remove_test = _deviance_tests(chi2_test)
        reported_names = ('Deviance', 'Chi2Stat', 'PValue')
        test_name = 'pValue'
    elif kind in (CriterionKind.AIC, CriterionKind.BIC):
        attr = kind.value
        critfun = lambda fit: getattr(fit, attr)
        add_test = lambda proposed, current: generic_test(proposed, current, critfun, True)
        remove_test = lambda proposed, current: generic_test(proposed, current, critfun, False)
        reported_names = (attr.upper(),)
        test_name = f"Change in {attr.upper()}"
    else:
        attr = 'r_squared' if kind is CriterionKind.RSQUARED else 'adj_r_squared'
        critfun = lambda fit: getattr(fit, attr)
        add_test = lambda proposed, current: generic_test(proposed, current, critfun, False)
        remove_test = lambda proposed, current: generic_test(proposed, current, critfun, True)
        label = 'Rsquared' if kind is CriterionKind.RSQUARED else 'AdjRsquared'
        reported_names = (label,)
        test_name = f"Change in {label}"
        # Larger is better: compare negated thresholds
        add_threshold, remove_threshold = -penter, -premove

    return Criterion(
        kind=kind,
        name=kind.value,
        add_test=add_test,
        remove_test=remove_test,
        penter=penter,
        premove=premove,
        add_threshold=add_threshold,
        remove_threshold=remove_threshold,
        smaller_is_better=smaller,
        reported_names=reported_names,
        test_name=test_name,
        source=kind.value,
    )


def custom_criterion(
    fun: Callable,
    penter: float,
    premove: float,
    smaller_is_better: bool = True
) -> Criterion:
    """
    Criterion from a model-scoring function ``fun(fit) -> float``.

    Parameters
    ----------
    fun : callable
        Model criterion, for example ``lambda fit: fit.aicc``
    penter : float
        Minimum improvement in `fun` for a term to be added
    premove : float
        For smaller-is-better criteria, a term is removed when removing it
        lowers `fun` by more than `premove`. For larger-is-better criteria,
        when it lowers `fun` by less than `premove`.
    smaller_is_better : bool
        Polarity of `fun`
    """
    if not callable(fun):
        raise StepwiseConfigError(f"Criterion function must be callable, got {fun!r}")
    if penter is None or premove is None:
        raise StepwiseConfigError(
            "A custom criterion needs both penter and premove thresholds"
        )
    name = getattr(fun, '__name__', 'custom')
    check_thresholds(name, penter, premove, smaller_is_better)

    if smaller_is_better:
        add_test = lambda proposed, current: generic_test(proposed, current, fun, True)
        remove_test = lambda proposed, current: generic_test(proposed, current, fun, False)
        add_threshold, remove_threshold = penter, premove
    else:
        add_test = lambda proposed, current: generic_test(proposed, current, fun, False)
        remove_test = lambda proposed, current: generic_test(proposed, current, fun, True)
        add_threshold, remove_threshold = -penter, -premove

    return Criterion(
        kind=CriterionKind.CUSTOM,
        name=name,
        add_test=add_test,
        remove_test=remove_test,
        penter=penter,
        premove=premove,
        add_threshold=add_threshold,
        remove_threshold=remove_threshold,
        smaller_is_better=smaller_is_better,
        reported_names=('ModelCriterion',),
        test_name='Change in ModelCriterion',
        source=fun,
    )


def _from_functions(functions: tuple, penter, premove) -> Criterion:
    """
    Criterion from ``(add_test, remove_test, report)``.

    ``add_test(proposed, current)`` and ``remove_test(proposed, current)``
    return scores already in the add/remove convention described in the
    module docstring; ``report(fit)`` gives the value recorded in the
    history.
    """
    add_fun, remove_fun, report_fun = functions
    if penter is None or premove is None:
        raise StepwiseConfigError(
            "A criterion given as (add_test, remove_test, report) needs both "
            "penter and premove thresholds"
        )
    check_thresholds('custom', penter, premove, True)

    def add_test(proposed, current):
        score = float(add_fun(proposed, current))
        return CandidateScore(score, score, CriterionReport(float(report_fun(proposed))))

    def remove_test(proposed, current):
        score = float(remove_fun(proposed, current))
        return CandidateScore(score, score, CriterionReport(float(report_fun(proposed))))

    return Criterion(
        kind=CriterionKind.CUSTOM,
        name='custom',
        add_test=add_test,
        remove_test=remove_test,
        penter=penter,
        premove=premove,
        add_threshold=penter,
        remove_threshold=premove,
        smaller_is_better=True,
        reported_names=('ModelCriterion',),
        test_name='ModelCriterion',
        source=tuple(functions),
    )


def resolve_criterion(
    criterion,
    penter: Optional[float] = None,
    premove: Optional[float] = None,
    dispersion_estimated: Optional[bool] = None
) -> Criterion:
    """
    Resolve a criterion specification into a `Criterion`.

    Parameters
    ----------
    criterion : str, callable, tuple or Criterion
        - one of 'sse', 'aic', 'bic', 'rsquared', 'adjrsquared', 'deviance',
          'deviance_f', 'deviance_chi2' (case-insensitive)
        - a function ``fit -> float`` where smaller is better
        - a tuple ``(add_test, remove_test, report)`` of functions
        - a `Criterion` (thresholds replaced if given)
    penter, premove : float, optional
        Thresholds; built-in criteria fall back to their defaults
    dispersion_estimated : bool, optional
        Chooses the F test (True) or chi-square test (False) for 'deviance'.
        None means the model has no dispersion parameter, and 'deviance' is
        then rejected.

    Raises
    ------
    StepwiseConfigError
        Unknown criterion or thresholds that do not suit it
    """
    if isinstance(criterion, Criterion):
        return criterion.with_thresholds(penter, premove)

    if isinstance(criterion, str):
        key = criterion.lower()
        if key == 'deviance':
            if dispersion_estimated is None:
                raise StepwiseConfigError(
                    "Criterion 'deviance' is only available for generalized linear models"
                )
            key = 'deviance_f' if dispersion_estimated else 'deviance_chi2'
        if key not in CRITERION_NAMES:
            raise StepwiseConfigError(
                f"Unknown criterion: '{criterion}'\n"
                f"Valid options: {', '.join(repr(c) for c in CRITERION_NAMES)}, "
                f"a function, or a tuple (add_test, remove_test, report)"
            )
        return _builtin(CriterionKind(key), penter, premove)

    if isinstance(criterion, tuple) and len(criterion) == 3 and all(callable(c) for c in criterion):
        return _from_functions(criterion, penter, premove)

    if callable(criterion):
        return custom_criterion(criterion, penter, premove)

    raise StepwiseConfigError(
        f"Bad stepwise criterion: {criterion!r}\n"
        f"Use a criterion name, a function, or a tuple (add_test, remove_test, report)"
    )


__all__ = [
    "CriterionKind",
    "Criterion",
    "PValueReport",
    "CriterionReport",
    "CandidateScore",
    "f_test",
    "deviance_f_test",
    "chi2_test",
    "generic_test",
    "check_thresholds",
    "custom_criterion",
    "resolve_criterion",
    "DEFAULT_THRESHOLDS",
    "CRITERION_NAMES",
]
