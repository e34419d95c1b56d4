"""
Stepwise term selection.

The search is greedy. Each step first tries every term that may be added
(see `candidates_to_add`), refits the model with it and scores the fit with
the criterion's add test; the best candidate is added if it beats the enter
threshold. Otherwise every term that may be removed is tried the same way
with the remove test. The search stops when a step changes nothing or the
step budget runs out.

The engine only needs a model object that can refit itself on a new term
matrix (`refit`) and expose the statistics the criterion reads. Progress is
reported to an optional observer, a callable receiving the event records
defined below.
"""

import warnings
import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional

import pandas as pd

from ._core.hierarchy import candidates_to_add, candidates_to_remove
from ._core.qr import design_basis, is_redundant
from ._core.terms import (
    INTERCEPT_NAME, check_terms, find_term, sort_terms, terms_to_names
)
from .criteria import Criterion, Report, resolve_criterion
from .exceptions import FitError, StepwiseConfigError


class Action(Enum):
    """Kind of history entry."""
    START = "Start"
    ADD = "Add"
    REMOVE = "Remove"


class StepStatus(Enum):
    """States of the search."""
    EVALUATING = "evaluating"
    COMMITTED_ADD = "committed_add"
    COMMITTED_REMOVE = "committed_remove"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class HistoryEntry:
    """One committed step (or the starting model)."""
    action: Action
    term_name: str
    terms: np.ndarray
    df: int              # number of estimated coefficients
    del_df: float        # change in error degrees of freedom (NaN at start)
    report: Report
    reported_names: tuple = ()


class History:
    """
    Append-only log of stepwise steps.

    ``len(history) - 1`` steps have been taken; entry 0 is the start.
    `reported_names` labels the values of the latest session; each entry
    keeps the labels of the criterion that produced it.
    """

    def __init__(self, reported_names=(), entries=()):
        self.reported_names = tuple(reported_names)
        self._entries: List[HistoryEntry] = list(entries)

    def append(self, entry: HistoryEntry):
        self._entries.append(entry)

    def copy(self, reported_names=None) -> "History":
        if reported_names is None:
            reported_names = self.reported_names
        return History(reported_names, self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __getitem__(self, i) -> HistoryEntry:
        return self._entries[i]

    def to_frame(self) -> pd.DataFrame:
        """
        History as a DataFrame (Action, TermName, Terms, DF, delDF, ...).

        Value columns are labelled per entry, so a session resumed with a
        different criterion adds its own columns; entries of the other
        criterion show NaN there.
        """
        rows = []
        for entry in self._entries:
            row = {
                'Action': entry.action.value,
                'TermName': entry.term_name,
                'Terms': entry.terms,
                'DF': entry.df,
                'delDF': entry.del_df,
            }
            values = entry.report.values()
            names = entry.reported_names or self.reported_names
            if len(names) != len(values):
                names = [f"Value{k + 1}" for k in range(len(values))]
            row.update(zip(names, values))
            rows.append(row)
        return pd.DataFrame(rows)

    def __repr__(self):
        return f"History({len(self)} entries)"


# ----------------------------------------------------------------------
# Events

@dataclass(frozen=True)
class CandidateEvaluated:
    action: Action
    term_name: str
    test_name: str
    reported: float


@dataclass(frozen=True)
class CandidateFailed:
    action: Action
    term_name: str
    error: Exception


@dataclass(frozen=True)
class NoCandidates:
    action: Action


@dataclass(frozen=True)
class StepCommitted:
    step: int
    entry: HistoryEntry
    reported_names: tuple


@dataclass(frozen=True)
class StepwiseFinished:
    steps_taken: int
    history_length: int


class VerboseObserver:
    """
    Print stepwise progress as it happens.

    level 1 prints each committed step, level 2 also prints every candidate
    evaluated.
    """

    def __init__(self, level: int = 1):
        self.level = level

    def __call__(self, event):
        if isinstance(event, StepCommitted) and self.level >= 1:
            vals = ', '.join(
                f"{name} = {value:.5g}"
                for name, value in zip(event.reported_names, event.entry.report.values())
            )
            verb = 'Adding' if event.entry.action is Action.ADD else 'Removing'
            print(f"{event.step}. {verb} {event.entry.term_name}, {vals}", flush=True)
        elif isinstance(event, CandidateEvaluated) and self.level >= 2:
            verb = 'adding' if event.action is Action.ADD else 'removing'
            print(f"   {event.test_name} for {verb} {event.term_name} is {event.reported:.5g}",
                  flush=True)
        elif isinstance(event, CandidateFailed) and self.level >= 2:
            verb = 'adding' if event.action is Action.ADD else 'removing'
            print(f"   Fit failed for {verb} {event.term_name}: {event.error}", flush=True)
        elif isinstance(event, NoCandidates) and self.level >= 2:
            what = 'add' if event.action is Action.ADD else 'remove'
            print(f"   No candidate terms to {what}", flush=True)
        elif isinstance(event, StepwiseFinished) and self.level >= 1:
            if event.history_length == 1:
                print("No terms to add to or remove from initial model.", flush=True)


def linear_predictor(terms, var_names) -> str:
    """Right-hand side of a model formula, e.g. ``1 + x1 + x1:x2``."""
    names = ['1' if name == INTERCEPT_NAME else name
             for name in terms_to_names(terms, var_names)]
    return ' + '.join(names) if names else '0'


def make_observer(verbose: int = 0, observer: Optional[Callable] = None) -> Optional[Callable]:
    """Combine a verbosity level and a user observer into one callable."""
    if verbose not in (0, 1, 2):
        raise StepwiseConfigError(f"verbose must be 0, 1 or 2, got {verbose!r}")
    observers = []
    if verbose:
        observers.append(VerboseObserver(verbose))
    if observer is not None:
        if not callable(observer):
            raise StepwiseConfigError(f"observer must be callable, got {observer!r}")
        observers.append(observer)
    if not observers:
        return None
    if len(observers) == 1:
        return observers[0]

    def notify(event):
        for obs in observers:
            obs(event)
    return notify


def check_nsteps(nsteps) -> float:
    """Validate a step budget (a non-negative integer or numpy.inf)."""
    if nsteps is None:
        return np.inf
    try:
        ok = nsteps >= 0 and (np.isinf(nsteps) or float(nsteps) == int(nsteps))
    except (TypeError, ValueError, OverflowError):
        ok = False
    if not ok:
        raise StepwiseConfigError(
            f"nsteps must be a non-negative integer or numpy.inf, got {nsteps!r}"
        )
    return nsteps


# ----------------------------------------------------------------------
# State and engine

class StepwiseState:
    """
    A stepwise session: bounds, criterion, current model and history.

    Create with `StepwiseState.start`, then call `run`. A session started
    from a model that already carries a state resumes it: bounds, criterion
    and thresholds default to the previous ones and the history is extended.
    """

    def __init__(self, start_terms, lower, upper, criterion: Criterion,
                 penter, premove, model, history: History):
        self.start_terms = start_terms
        self.lower = lower
        self.upper = upper
        self.criterion = criterion
        self.penter = penter
        self.premove = premove
        self.model = model
        self.terms = model.terms
        self.history = history
        self.status = StepStatus.EVALUATING

    @classmethod
    def start(
        cls,
        model,
        lower=None,
        upper=None,
        criterion=None,
        penter=None,
        premove=None,
        previous: Optional["StepwiseState"] = None,
        dispersion_estimated: Optional[bool] = None,
    ) -> "StepwiseState":
        """
        Validate a configuration and set up a session on `model`.

        `lower` and `upper` are term matrices over the model's variables.
        Nothing is fitted and nothing is mutated if validation fails.
        """
        n_vars = len(model.var_names)

        if previous is not None:
            lower = previous.lower if lower is None else lower
            upper = previous.upper if upper is None else upper
            if criterion is None:
                criterion = previous.criterion
                if penter is None and premove is None:
                    penter, premove = previous.penter, previous.premove
        if lower is None or upper is None or criterion is None:
            raise StepwiseConfigError("lower, upper and criterion are required")

        try:
            lower = sort_terms(check_terms(lower, n_vars, name='lower'))[0]
            upper = sort_terms(check_terms(upper, n_vars, name='upper'))[0]
        except ValueError as exc:
            raise StepwiseConfigError(f"Malformed bounds: {exc}") from exc

        resolved = resolve_criterion(
            criterion, penter, premove, dispersion_estimated=dispersion_estimated
        )

        if previous is not None:
            history = previous.history.copy(resolved.reported_names)
        else:
            start_score = resolved.add_test(model, None)
            history = History(resolved.reported_names)
            history.append(HistoryEntry(
                action=Action.START,
                term_name=linear_predictor(model.terms, model.var_names),
                terms=model.terms.copy(),
                df=model.n_estimated_coefficients,
                del_df=np.nan,
                report=start_score.report,
                reported_names=resolved.reported_names,
            ))

        return cls(
            start_terms=model.terms.copy(),
            lower=lower,
            upper=upper,
            criterion=resolved,
            penter=penter,
            premove=premove,
            model=model,
            history=history,
        )

    def _refit(self, action: Action, terms, name: str, notify):
        try:
            return self.model.refit(terms)
        except FitError as exc:
            warnings.warn(
                f"Fit failed while {'adding' if action is Action.ADD else 'removing'} "
                f"{name}; candidate skipped: {exc}",
                RuntimeWarning
            )
            if notify:
                notify(CandidateFailed(action, name, exc))
            return None

    def _commit(self, action: Action, name: str, terms, fit, report, notify):
        entry = HistoryEntry(
            action=action,
            term_name=name,
            terms=terms.copy(),
            df=fit.n_estimated_coefficients,
            del_df=self.model.dfe - fit.dfe,
            report=report,
            reported_names=self.criterion.reported_names,
        )
        self.history.append(entry)
        self.terms = terms
        self.model = fit
        if notify:
            notify(StepCommitted(len(self.history) - 1, entry, self.criterion.reported_names))

    def try_add(self, just_removed: Optional[int], notify=None) -> Optional[int]:
        """
        Evaluate every addable term and commit the best one if it qualifies.

        Returns the row of the added term in the new term matrix, or None.
        """
        crit = self.criterion
        var_names = self.model.var_names
        candidates = candidates_to_add(self.terms, self.upper, just_removed)
        if candidates.size == 0:
            if notify:
                notify(NoCandidates(Action.ADD))
            return None

        Q = design_basis(self.model.design_r)
        best = None
        best_score = np.inf
        for j in candidates:
            new_term = self.upper[j]
            terms_j, index = sort_terms(np.vstack([self.terms, new_term]))
            loc_j = int(np.argmax(index))
            name = terms_to_names(new_term[np.newaxis, :], var_names)[0]

            if is_redundant(Q, self.model.candidate_design(new_term)):
                continue
            fit_j = self._refit(Action.ADD, terms_j, name, notify)
            if fit_j is None:
                continue
            outcome = crit.add_test(fit_j, self.model)
            if notify:
                notify(CandidateEvaluated(Action.ADD, name, crit.test_name, outcome.reported))
            if outcome.score < best_score:
                best = (name, terms_j, loc_j, fit_j, outcome)
                best_score = outcome.score

        if best is None or not crit.accepts_add(best_score):
            return None

        name, terms_j, loc_j, fit_j, outcome = best
        self._commit(Action.ADD, name, terms_j, fit_j, outcome.report, notify)
        self.status = StepStatus.COMMITTED_ADD
        return loc_j

    def try_remove(self, just_added: Optional[int], notify=None) -> Optional[np.ndarray]:
        """
        Evaluate every removable term and commit the best one if it qualifies.

        A NaN score (non-nested comparison) is removed at once without
        evaluating the remaining candidates. Returns the removed term, or None.
        """
        crit = self.criterion
        var_names = self.model.var_names
        candidates = candidates_to_remove(self.terms, self.lower, just_added)
        if candidates.size == 0:
            if notify:
                notify(NoCandidates(Action.REMOVE))
            return None

        best = None
        best_score = -np.inf
        for j in candidates:
            terms_j = np.delete(self.terms, j, axis=0)
            name = terms_to_names(self.terms[j][np.newaxis, :], var_names)[0]
            fit_j = self._refit(Action.REMOVE, terms_j, name, notify)
            if fit_j is None:
                continue
            outcome = crit.remove_test(fit_j, self.model)
            if notify:
                notify(CandidateEvaluated(Action.REMOVE, name, crit.test_name, outcome.reported))
            if np.isnan(outcome.score) or outcome.score > best_score:
                best = (j, name, terms_j, fit_j, outcome)
                best_score = outcome.score
                if np.isnan(outcome.score):
                    break

        if best is None or not crit.accepts_remove(best_score):
            return None

        j, name, terms_j, fit_j, outcome = best
        removed = self.terms[j].copy()
        self._commit(Action.REMOVE, name, terms_j, fit_j, outcome.report, notify)
        self.status = StepStatus.COMMITTED_REMOVE
        return removed

    def run(self, nsteps=1, observer: Optional[Callable] = None):
        """
        Take up to `nsteps` steps and return the final model.

        Parameters
        ----------
        nsteps : int or numpy.inf
            Step budget
        observer : callable, optional
            Receives CandidateEvaluated, CandidateFailed, NoCandidates,
            StepCommitted and StepwiseFinished events

        Returns
        -------
        The final fitted model; its ``steps`` attribute is this state.
        """
        nsteps = check_nsteps(nsteps)
        notify = observer
        just_added = None
        just_removed = None
        taken = 0

        while nsteps > 0:
            nsteps -= 1
            self.status = StepStatus.EVALUATING

            loc = self.try_add(just_removed, notify)
            if loc is not None:
                just_added, just_removed = loc, None
            else:
                removed = self.try_remove(just_added, notify)
                if removed is None:
                    break
                just_added = None
                just_removed = find_term(self.upper, removed)
            taken += 1

        self.status = StepStatus.TERMINATED
        if notify:
            notify(StepwiseFinished(taken, len(self.history)))

        self.model.steps = self
        return self.model

    def __repr__(self):
        return (f"StepwiseState(criterion='{self.criterion.name}', "
                f"steps={len(self.history) - 1}, status={self.status.value})")


__all__ = [
    "Action",
    "StepStatus",
    "HistoryEntry",
    "History",
    "CandidateEvaluated",
    "CandidateFailed",
    "NoCandidates",
    "StepCommitted",
    "StepwiseFinished",
    "VerboseObserver",
    "make_observer",
    "check_nsteps",
    "linear_predictor",
    "StepwiseState",
]
