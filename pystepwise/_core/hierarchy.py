"""
Hierarchy constraints for stepwise term selection.

A term may only be offered for addition once none of its lower-order pieces
is still waiting to be added, and may only be offered for removal while no
other term in the model is built on top of it. Neither function requires the
term sets to be coherent: a piece missing from the upper bound altogether
never blocks a candidate.
"""

import numpy as np
from typing import Optional

from .terms import is_member, term_order


def _contains(big: np.ndarray, small: np.ndarray) -> np.ndarray:
    """Rows of `big` that contain `small` in every variable `small` uses."""
    return np.all((big - small) * (small > 0) >= 0, axis=1)


def candidates_to_add(
    current: np.ndarray,
    upper: np.ndarray,
    just_removed: Optional[int] = None
) -> np.ndarray:
    """
    Indices into `upper` of the terms that may be added to `current`.

    Parameters
    ----------
    current : ndarray, shape (n_current, n_vars)
        Terms in the model
    upper : ndarray, shape (n_upper, n_vars)
        Terms available to the model (assumed to contain `current`)
    just_removed : int, optional
        Row of `upper` removed in the previous step; never re-offered

    Returns
    -------
    ndarray of int
        Candidate rows of `upper`, in ascending order
    """
    upper = np.asarray(upper)
    candidates = ~is_member(upper, current)
    icandidates = np.flatnonzero(candidates)
    potential = upper[icandidates]

    if just_removed is not None:
        candidates[just_removed] = False

    # Intercept and linear terms can always be added. A higher-order term
    # waits while any of its pieces is itself still a potential candidate.
    # The intercept is not a piece of anything.
    order = term_order(potential)
    if order.size and order.max() > 1:
        higher = order > 1
        blocked = np.zeros(len(potential), dtype=bool)
        for i in np.argsort(order, kind='stable'):
            if order[i] == 0:
                continue
            within = _contains(potential, potential[i]) & higher
            within[i] = False
            blocked |= within
            if blocked[higher].all():
                break
        candidates[icandidates[blocked]] = False

    return np.flatnonzero(candidates)


def candidates_to_remove(
    current: np.ndarray,
    lower: np.ndarray,
    just_added: Optional[int] = None
) -> np.ndarray:
    """
    Indices into `current` of the terms that may be removed.

    Parameters
    ----------
    current : ndarray, shape (n_current, n_vars)
        Terms in the model
    lower : ndarray, shape (n_lower, n_vars)
        Terms that must stay in the model
    just_added : int, optional
        Row of `current` added in the previous step; never offered

    Returns
    -------
    ndarray of int
        Candidate rows of `current`, in ascending order
    """
    current = np.asarray(current)
    candidates = ~is_member(current, lower)

    if just_added is not None:
        candidates[just_added] = False

    # A term stays while another term of the model contains it
    blocked = np.zeros(len(current), dtype=bool)
    for i in np.argsort(-term_order(current), kind='stable'):
        pieces = _contains(current[i], current)
        pieces[i] = False
        blocked |= pieces
        if blocked[candidates].all():
            break
    candidates &= ~blocked

    return np.flatnonzero(candidates)


__all__ = ["candidates_to_add", "candidates_to_remove"]
