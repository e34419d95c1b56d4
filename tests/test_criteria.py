"""
Test stepwise criteria: significance tests, criterion-change tests,
thresholds and resolution of criterion arguments.
"""

import pytest
import numpy as np
from types import SimpleNamespace
from scipy import stats

from pystepwise.criteria import (
    CriterionKind,
    PValueReport,
    CriterionReport,
    chi2_test,
    deviance_f_test,
    f_test,
    generic_test,
    resolve_criterion,
)
from pystepwise.exceptions import StepwiseConfigError


def fit(**kwargs):
    return SimpleNamespace(**kwargs)


class TestSignificanceTests:
    """Test F and chi-square tests on nested fits."""

    def test_f_test(self):
        small = fit(sse=120.0, dfe=20)
        big = fit(sse=100.0, dfe=19)
        F, p = f_test(big, small)
        assert F == pytest.approx(20.0 / (100.0 / 19))
        assert p == pytest.approx(stats.f.sf(F, 1, 19))

    def test_f_test_without_smaller_model(self):
        F, p = f_test(fit(sse=1.0, dfe=5), None)
        assert np.isnan(F) and np.isnan(p)

    def test_f_test_same_df_is_nan(self):
        F, p = f_test(fit(sse=1.0, dfe=5), fit(sse=2.0, dfe=5))
        assert np.isnan(F) and np.isnan(p)

    def test_deviance_f_uses_dispersion(self):
        small = fit(deviance=50.0, dfe=30)
        big = fit(deviance=40.0, dfe=28, dispersion=2.0)
        F, p = deviance_f_test(big, small)
        assert F == pytest.approx((10.0 / 2) / 2.0)
        assert p == pytest.approx(stats.f.sf(F, 2, 28))

    def test_chi2(self):
        small = fit(deviance=30.0, dfe=10)
        big = fit(deviance=24.0, dfe=9)
        x2, p = chi2_test(big, small)
        assert x2 == pytest.approx(6.0)
        assert p == pytest.approx(stats.chi2.sf(6.0, 1))

    def test_chi2_not_nested(self):
        x2, p = chi2_test(fit(deviance=1.0, dfe=9), fit(deviance=3.0, dfe=9))
        assert np.isnan(x2) and np.isnan(p)

    def test_chi2_negative_drop_clipped(self):
        x2, p = chi2_test(fit(deviance=5.0, dfe=9), fit(deviance=4.0, dfe=10))
        assert x2 == 0.0
        assert p == pytest.approx(1.0)


class TestGenericTest:
    """Test criterion-change scoring."""

    def test_decreasing(self):
        outcome = generic_test(fit(aic=90.0), fit(aic=100.0), lambda f: f.aic, True)
        assert outcome.score == -10.0
        assert outcome.reported == -10.0
        assert outcome.report == CriterionReport(90.0)

    def test_increasing(self):
        outcome = generic_test(fit(r2=0.6), fit(r2=0.5), lambda f: f.r2, False)
        assert outcome.score == pytest.approx(-0.1)
        assert outcome.reported == pytest.approx(0.1)

    def test_start_has_no_change(self):
        outcome = generic_test(fit(aic=90.0), None, lambda f: f.aic, True)
        assert outcome.score == 0.0
        assert outcome.report.values() == (90.0,)


class TestResolveCriterion:
    """Test criterion names, defaults and threshold validation."""

    def test_sse_defaults(self):
        crit = resolve_criterion('sse')
        assert crit.kind is CriterionKind.SSE
        assert (crit.penter, crit.premove) == (0.05, 0.10)
        assert crit.reported_names == ('FStat', 'pValue')
        assert crit.accepts_add(0.01)
        assert not crit.accepts_add(0.05)
        assert crit.accepts_remove(0.2)
        assert crit.accepts_remove(np.nan)
        assert not crit.accepts_remove(0.10)

    def test_case_insensitive(self):
        assert resolve_criterion('BIC').kind is CriterionKind.BIC

    def test_deviance_by_dispersion(self):
        assert resolve_criterion('deviance', dispersion_estimated=True).kind \
            is CriterionKind.DEVIANCE_F
        crit = resolve_criterion('deviance', dispersion_estimated=False)
        assert crit.kind is CriterionKind.DEVIANCE_CHI2
        assert crit.reported_names == ('Deviance', 'Chi2Stat', 'PValue')

    def test_deviance_needs_glm(self):
        with pytest.raises(StepwiseConfigError, match="generalized linear"):
            resolve_criterion('deviance')

    def test_rsquared_thresholds_negated(self):
        crit = resolve_criterion('rsquared')
        assert (crit.penter, crit.premove) == (0.1, 0.05)
        # An increase of 0.15 is scored -0.15
        assert crit.accepts_add(-0.15)
        assert not crit.accepts_add(-0.05)
        # Removing costs 0.01 of R-squared: score -0.01
        assert crit.accepts_remove(-0.01)
        assert not crit.accepts_remove(-0.2)

    def test_aic_remove_needs_improvement(self):
        crit = resolve_criterion('aic')
        proposed, current = fit(aic=99.0), fit(aic=100.0)
        assert crit.accepts_remove(crit.remove_test(proposed, current).score)
        assert not crit.accepts_remove(crit.remove_test(current, proposed).score)

    def test_unknown_name(self):
        with pytest.raises(StepwiseConfigError, match="Unknown criterion"):
            resolve_criterion('mallows')

    def test_bad_object(self):
        with pytest.raises(StepwiseConfigError, match="Bad stepwise criterion"):
            resolve_criterion(42)

    @pytest.mark.parametrize("name, penter, premove", [
        ('sse', 0.1, 0.05),
        ('sse', 0.1, 0.1),
        ('aic', 0.02, 0.01),
    ])
    def test_inverted_smaller_is_better_thresholds(self, name, penter, premove):
        with pytest.raises(StepwiseConfigError, match="smaller than premove"):
            resolve_criterion(name, penter=penter, premove=premove)

    def test_inverted_rsquared_thresholds(self):
        with pytest.raises(StepwiseConfigError, match="larger than premove"):
            resolve_criterion('rsquared', penter=0.01, premove=0.05)

    def test_non_finite_threshold(self):
        with pytest.raises(StepwiseConfigError, match="finite number"):
            resolve_criterion('aic', penter=np.nan)

    def test_custom_function(self):
        crit = resolve_criterion(lambda f: f.aicc, penter=-1.0, premove=1.0)
        assert crit.kind is CriterionKind.CUSTOM
        assert crit.reported_names == ('ModelCriterion',)
        outcome = crit.add_test(fit(aicc=10.0), fit(aicc=12.0))
        assert crit.accepts_add(outcome.score)

    def test_custom_function_needs_thresholds(self):
        with pytest.raises(StepwiseConfigError, match="penter and premove"):
            resolve_criterion(lambda f: f.aicc)

    def test_tuple_of_functions(self):
        crit = resolve_criterion(
            (lambda p, c: 0.01, lambda p, c: 0.5, lambda f: 7.0),
            penter=0.05, premove=0.1
        )
        outcome = crit.add_test(None, None)
        assert outcome.score == 0.01
        assert outcome.report == CriterionReport(7.0)

    def test_replace_thresholds(self):
        crit = resolve_criterion('sse')
        relaxed = resolve_criterion(crit, penter=0.2, premove=0.3)
        assert (relaxed.penter, relaxed.premove) == (0.2, 0.3)
        assert resolve_criterion(crit) is crit


class TestReports:
    """Test the values recorded for each criterion."""

    def test_pvalue_report_order(self):
        assert PValueReport(2.0, 0.1).values() == (2.0, 0.1)
        assert PValueReport(2.0, 0.1, deviance=5.0).values() == (5.0, 2.0, 0.1)

    def test_sse_add_report(self):
        crit = resolve_criterion('sse')
        outcome = crit.add_test(fit(sse=100.0, dfe=19), fit(sse=120.0, dfe=20))
        assert outcome.score == outcome.report.p_value
        assert outcome.report.statistic > 0
