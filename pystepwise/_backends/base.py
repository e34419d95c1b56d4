"""
Abstract base classes for backends.

Defines the interface all backends must implement.
"""

from abc import ABC, abstractmethod
import numpy as np
from typing import Optional
from dataclasses import dataclass


@dataclass
class QRDecomposition:
    """Result of QR decomposition with pivoting."""
    Q: np.ndarray            # Orthonormal factor (economy size)
    R: np.ndarray            # Upper triangular matrix R
    pivot: np.ndarray        # Pivot indices (0-indexed)
    rank: int                # Determined rank
    tol: float               # Tolerance used

    @property
    def basis(self) -> np.ndarray:
        """Orthonormal basis for the column space (first `rank` columns of Q)."""
        return self.Q[:, :self.rank]


@dataclass
class LinearModelResult:
    """Complete least-squares results for one design matrix."""
    coef: np.ndarray          # NaN for aliased columns
    residuals: np.ndarray
    fitted_values: np.ndarray
    rank: int
    df_residual: int
    qr_R: np.ndarray
    qr_pivot: np.ndarray
    qr_tol: float


class BackendBase(ABC):
    """Abstract base class for all backends."""

    @abstractmethod
    def qr_with_pivoting(
        self,
        X: np.ndarray,
        tol: Optional[float] = None
    ) -> QRDecomposition:
        """Economy QR decomposition with column pivoting and rank detection."""
        pass

    @abstractmethod
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
        Fit linear model - complete computation.

        Parameters
        ----------
        X : ndarray, shape (n, p)
            Design matrix. The intercept, if any, is already a column of X;
            it is one of the model terms.
        y : ndarray, shape (n,)
            Response vector
        weights : ndarray, optional
            Observation weights
        offset : ndarray, optional
            Offset term
        tol : float, optional
            Tolerance for rank determination
        singular_ok : bool
            Allow singular fits

        Returns
        -------
        LinearModelResult
            Complete regression results (all numpy arrays)
        """
        pass

    @abstractmethod
    def get_device_info(self) -> dict:
        """Get backend information."""
        pass


class CPUBackend(BackendBase):
    """CPU backend base class (always FP64)."""
    pass
