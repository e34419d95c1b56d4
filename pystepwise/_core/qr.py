"""
QR decomposition with column pivoting.

Backend-agnostic interface to QR factorization, plus the redundancy test the
stepwise search uses to skip candidate terms that cannot improve a fit.
"""

import numpy as np
from typing import Optional

from .._backends.base import QRDecomposition


def qr_decomposition_with_pivoting(
    X: np.ndarray,
    tol: Optional[float] = None,
    backend=None,
) -> QRDecomposition:
    """
    QR decomposition with column pivoting.

    Delegates to backend-specific implementation.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Matrix to decompose
    tol : float, optional
        Tolerance for rank determination
    backend : Backend, optional
        Computational backend

    Returns
    -------
    result : QRDecomposition
        QR decomposition with pivoting
    """
    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')

    return backend.qr_with_pivoting(X, tol=tol)


def design_basis(X: np.ndarray, backend=None) -> np.ndarray:
    """Orthonormal basis (n x rank) for the column space of X."""
    return qr_decomposition_with_pivoting(X, backend=backend).basis


def redundancy_tolerance(Q: np.ndarray) -> float:
    """eps^(3/4) * (number of basis columns) * sqrt(number of rows)."""
    eps = np.finfo(np.float64).eps
    return eps ** 0.75 * Q.shape[1] * np.sqrt(Q.shape[0])


def is_redundant(
    Q: np.ndarray,
    columns: np.ndarray,
    included_rows: Optional[np.ndarray] = None
) -> bool:
    """
    Test whether new design columns lie in the span of an existing design.

    The columns are projected onto the orthogonal complement of `Q`; they are
    redundant when the relative squared norm of what is left is below
    `redundancy_tolerance(Q)`. Columns that are entirely zero are redundant.

    Parameters
    ----------
    Q : ndarray, shape (n, k)
        Orthonormal basis of the current design (included rows only)
    columns : ndarray, shape (N,) or (N, m)
        Candidate design columns
    included_rows : ndarray of bool, shape (N,), optional
        Rows of `columns` that belong to the fit

    Returns
    -------
    bool
    """
    y = np.asarray(columns, dtype=np.float64)
    if y.ndim == 1:
        y = y[:, np.newaxis]
    if included_rows is not None:
        y = y[np.asarray(included_rows), :]

    total = np.sum(np.abs(y) ** 2)
    if total == 0:
        return True

    yfit = Q @ (Q.T @ y)
    ratio = np.sum(np.abs(y - yfit) ** 2) / total
    return bool(ratio < redundancy_tolerance(Q))


__all__ = [
    "QRDecomposition",
    "qr_decomposition_with_pivoting",
    "design_basis",
    "redundancy_tolerance",
    "is_redundant",
]
