"""
Term matrices.

A model's terms are stored as a matrix of non-negative integer exponents:
one row per term, one column per predictor variable. The all-zero row is the
intercept, a single 1 is a linear term, several nonzero entries make an
interaction, and entries above 1 are powers.

    >>> terms = np.array([[0, 0], [1, 0], [0, 1], [1, 1]])
    >>> terms_to_names(terms, ['x1', 'x2'])
    ['(Intercept)', 'x1', 'x2', 'x1:x2']
"""

import numpy as np
from itertools import combinations
from typing import List, Optional, Sequence, Tuple, Union

INTERCEPT_NAME = '(Intercept)'

MODEL_ALIASES = ('constant', 'linear', 'interactions', 'purequadratic', 'quadratic')


def check_terms(terms, n_vars: int, name: str = 'terms') -> np.ndarray:
    """Validate a term matrix and return it as a 2-D int64 array."""
    terms = np.asarray(terms)
    if terms.size == 0:
        return np.zeros((0, n_vars), dtype=np.int64)
    if terms.ndim == 1:
        terms = terms.reshape(1, -1)
    if terms.ndim != 2:
        raise ValueError(f"{name} must be a 2-dimensional terms matrix")
    if terms.shape[0] > 0 and terms.shape[1] != n_vars:
        raise ValueError(
            f"{name} has {terms.shape[1]} columns, expected one per "
            f"predictor variable ({n_vars})"
        )
    if terms.size and not np.all(np.isfinite(terms)):
        raise ValueError(f"{name} contains NaN or Inf")
    if terms.size and (np.any(terms < 0) or np.any(terms != np.round(terms))):
        raise ValueError(f"{name} must contain non-negative integer exponents")
    return terms.astype(np.int64).reshape(-1, n_vars)


def term_order(terms: np.ndarray) -> np.ndarray:
    """Order of each term (sum of exponents)."""
    return np.asarray(terms).sum(axis=1)


def term_degree(terms: np.ndarray) -> np.ndarray:
    """Degree of each term (largest single exponent)."""
    terms = np.asarray(terms)
    if terms.shape[1] == 0:
        return np.zeros(terms.shape[0], dtype=terms.dtype)
    return terms.max(axis=1)


def sort_terms(terms: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sort the rows of a term matrix into canonical order.

    Duplicate rows are removed. The remaining rows are in nondecreasing term
    order; within equal order, in nondecreasing maximum power; within equal
    order and maximum power, by decreasing exponent of the first variable,
    then the second, and so on (so ``x1`` comes before ``x2``).

    Parameters
    ----------
    terms : ndarray, shape (n_terms, n_vars)

    Returns
    -------
    sorted_terms : ndarray
        Canonically ordered, duplicate-free terms
    index : ndarray
        ``sorted_terms == terms[index]``. A caller that appended a new term
        as the last row finds it at ``np.argmax(index)``.
    """
    terms = np.asarray(terms, dtype=np.int64)
    n_terms, n_vars = terms.shape
    if n_terms == 0:
        return terms.copy(), np.zeros(0, dtype=np.int64)

    _, first = np.unique(terms, axis=0, return_index=True)
    # Keep the last occurrence so an appended duplicate can still be located
    last = np.array([
        np.flatnonzero(np.all(terms == terms[i], axis=1))[-1] for i in first
    ], dtype=np.int64)
    unique_terms = terms[last]

    # np.lexsort uses the last key as the primary key
    keys = [-unique_terms[:, j] for j in reversed(range(n_vars))]
    keys.append(term_degree(unique_terms))
    keys.append(term_order(unique_terms))
    order = np.lexsort(keys)

    return unique_terms[order], last[order]


def is_member(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Boolean mask over the rows of `a` that also appear as rows of `b`."""
    a = np.asarray(a)
    b = np.asarray(b)
    if a.shape[0] == 0 or b.shape[0] == 0:
        return np.zeros(a.shape[0], dtype=bool)
    return np.any(np.all(a[:, np.newaxis, :] == b[np.newaxis, :, :], axis=2), axis=1)


def find_term(terms: np.ndarray, term: np.ndarray) -> Optional[int]:
    """Row index of `term` in `terms`, or None if absent."""
    hits = np.flatnonzero(np.all(np.asarray(terms) == np.asarray(term), axis=1))
    return int(hits[0]) if hits.size else None


def terms_to_names(terms: np.ndarray, var_names: Sequence[str]) -> List[str]:
    """Human-readable names for each row of a term matrix."""
    names = []
    for row in np.atleast_2d(terms):
        if not np.any(row):
            names.append(INTERCEPT_NAME)
            continue
        pieces = []
        for j in np.flatnonzero(row):
            if row[j] == 1:
                pieces.append(var_names[j])
            else:
                pieces.append(f"{var_names[j]}^{row[j]}")
        names.append(':'.join(pieces))
    return names


def terms_from_names(names: Sequence[str], var_names: Sequence[str]) -> np.ndarray:
    """
    Term matrix for a list of term names such as ``['x1', 'x1:x2', 'x2^2']``.

    Only the names produced by `terms_to_names` are understood; this is a
    lookup, not a formula parser.
    """
    var_names = list(var_names)
    terms = np.zeros((len(names), len(var_names)), dtype=np.int64)
    for i, name in enumerate(names):
        name = name.strip()
        if name in (INTERCEPT_NAME, '1', 'Intercept'):
            continue
        for piece in name.split(':'):
            var, _, power = piece.strip().partition('^')
            if var not in var_names:
                raise ValueError(
                    f"Unknown variable '{var}' in term '{name}'\n"
                    f"Known variables: {', '.join(var_names)}"
                )
            try:
                exponent = int(power) if power else 1
            except ValueError:
                raise ValueError(f"Bad exponent '{power}' in term '{name}'")
            if exponent < 1:
                raise ValueError(f"Bad exponent '{power}' in term '{name}'")
            terms[i, var_names.index(var)] += exponent
    return terms


def terms_from_alias(alias: str, n_vars: int, intercept: bool = True) -> np.ndarray:
    """
    Term matrix for a named model.

    Parameters
    ----------
    alias : str
        'constant'      - intercept only
        'linear'        - intercept and linear terms
        'interactions'  - linear plus all pairwise products
        'purequadratic' - linear plus all squares
        'quadratic'     - interactions plus all squares
    n_vars : int
        Number of predictor variables
    intercept : bool
        Include the intercept row
    """
    key = alias.lower()
    if key not in MODEL_ALIASES:
        raise ValueError(
            f"Unknown model alias: '{alias}'\n"
            f"Valid options: {', '.join(MODEL_ALIASES)}"
        )

    eye = np.eye(n_vars, dtype=np.int64)
    rows = [np.zeros((1, n_vars), dtype=np.int64)]
    if key != 'constant':
        rows.append(eye)
    if key in ('interactions', 'quadratic'):
        pairs = [eye[i] + eye[j] for i, j in combinations(range(n_vars), 2)]
        if pairs:
            rows.append(np.array(pairs))
    if key in ('purequadratic', 'quadratic'):
        rows.append(2 * eye)

    terms, _ = sort_terms(np.vstack(rows))
    if not intercept:
        terms = terms[term_order(terms) > 0]
    return terms


def resolve_terms(
    spec: Union[str, np.ndarray, Sequence[str]],
    var_names: Sequence[str],
    intercept: bool = True,
    name: str = 'terms'
) -> np.ndarray:
    """
    Turn a model alias, term names (a list, or one string joined with
    ``+`` such as ``'1 + x1 + x1:x2'``), or a term matrix into a sorted term
    matrix over `var_names`.
    """
    n_vars = len(var_names)
    if isinstance(spec, str):
        if spec.lower() in MODEL_ALIASES:
            terms = terms_from_alias(spec, n_vars, intercept=intercept)
        else:
            terms = terms_from_names(spec.split('+'), var_names)
    elif (isinstance(spec, (list, tuple))
          and len(spec) > 0
          and all(isinstance(s, str) for s in spec)):
        terms = terms_from_names(spec, var_names)
    else:
        terms = check_terms(spec, n_vars, name=name)
    return sort_terms(terms)[0]


def design_matrix(X: np.ndarray, terms: np.ndarray) -> np.ndarray:
    """
    Design matrix with one column per term.

    Each column is the product of the predictor columns raised to the term's
    exponents; the intercept term gives a column of ones.
    """
    X = np.asarray(X, dtype=np.float64)
    terms = np.atleast_2d(terms)
    n = X.shape[0]
    D = np.ones((n, terms.shape[0]), dtype=np.float64)
    for k, row in enumerate(terms):
        for j in np.flatnonzero(row):
            D[:, k] *= X[:, j] ** row[j]
    return D


__all__ = [
    "INTERCEPT_NAME",
    "MODEL_ALIASES",
    "check_terms",
    "term_order",
    "term_degree",
    "sort_terms",
    "is_member",
    "find_term",
    "terms_to_names",
    "terms_from_names",
    "terms_from_alias",
    "resolve_terms",
    "design_matrix",
]
