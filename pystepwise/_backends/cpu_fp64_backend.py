"""
CPU backend using NumPy + SciPy.

Every model in the package fits through this backend.
"""

import numpy as np
from scipy.linalg import qr, solve_triangular
from typing import Optional

from .base import CPUBackend, LinearModelResult, QRDecomposition
from ..exceptions import FitError


class CPUBackendFP64(CPUBackend):
    """
    CPU backend using NumPy + SciPy.

    Always uses FP64 precision.
    """

    def __init__(self):
        self.name = "cpu_fp64"
        self.precision = "fp64"

    def qr_with_pivoting(
        self,
        X: np.ndarray,
        tol: Optional[float] = None
    ) -> QRDecomposition:
        """
        Economy-size QR with column pivoting (LAPACK geqp3).

        The rank is the number of diagonal entries of R whose magnitude
        exceeds `tol`. The default tolerance scales with the largest
        diagonal entry, like MATLAB's rank test.
        """
        X = np.asarray(X, dtype=np.float64)
        n, p = X.shape

        if p == 0:
            return QRDecomposition(
                Q=np.zeros((n, 0)),
                R=np.zeros((0, 0)),
                pivot=np.zeros(0, dtype=np.int64),
                rank=0,
                tol=0.0 if tol is None else tol
            )

        Q, R, P = qr(X, mode='economic', pivoting=True)

        R_diag = np.abs(np.diag(R))
        if tol is None:
            eps = np.finfo(np.float64).eps
            tol = max(n, p) * eps * (R_diag[0] if R_diag.size else 0.0)

        if R_diag.size == 0 or R_diag[0] == 0:
            rank = 0
        else:
            rank = int(np.sum(R_diag > tol))

        return QRDecomposition(
            Q=Q,
            R=R,
            pivot=P.astype(np.int64),
            rank=rank,
            tol=tol
        )

    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
        singular_ok: bool = True
    ) -> LinearModelResult:
        """
        Fit linear model using NumPy/LAPACK.

        Complete implementation - all computation stays in NumPy.
        """
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        n, p = X.shape

        # Adjust for offset
        y_work = y - offset if offset is not None else y.copy()
        X_work = X

        # Handle weights
        if weights is not None:
            good = weights > 0
            if not np.any(good):
                raise FitError("All weights are zero")

            w_sqrt = np.sqrt(weights[good])
            X_work = X_work[good, :] * w_sqrt[:, np.newaxis]
            y_work = y_work[good] * w_sqrt
            n_good = int(np.sum(good))
        else:
            n_good = n

        decomp = self.qr_with_pivoting(X_work, tol=tol)
        rank = decomp.rank

        if not singular_ok and rank < p:
            raise FitError(f"Singular fit: rank {rank} < {p} columns")

        # Initialize coefficients (with NaN for aliased)
        coef = np.full(p, np.nan, dtype=np.float64)

        if rank > 0:
            # Solve R b = Q'y on the leading rank x rank block
            qty = decomp.Q[:, :rank].T @ y_work
            coef_active = solve_triangular(
                decomp.R[:rank, :rank],
                qty,
                lower=False
            )
            coef[decomp.pivot[:rank]] = coef_active

        # Compute fitted values (handling NaN coefficients for aliased terms)
        valid_coef = ~np.isnan(coef)
        if np.any(valid_coef):
            fitted = X[:, valid_coef] @ coef[valid_coef]
        else:
            fitted = np.zeros(n, dtype=np.float64)

        # Adjust fitted values for offset
        if offset is not None:
            fitted = fitted + offset

        residuals = y - fitted

        return LinearModelResult(
            coef=coef,
            residuals=residuals,
            fitted_values=fitted,
            rank=rank,
            df_residual=n_good - rank,
            qr_R=decomp.R,
            qr_pivot=decomp.pivot,
            qr_tol=decomp.tol
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        import scipy
        return {
            'backend': 'cpu',
            'precision': 'fp64',
            'library': f'NumPy {np.__version__}, SciPy {scipy.__version__}',
        }
