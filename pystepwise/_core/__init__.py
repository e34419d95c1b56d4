"""
Core algorithms (backend-agnostic).
"""

from .qr import qr_decomposition_with_pivoting, design_basis, is_redundant
from .lm_solver import fit_linear_model
from .glm_solver import fit_glm
from .terms import sort_terms, terms_to_names, terms_from_alias, design_matrix
from .hierarchy import candidates_to_add, candidates_to_remove

__all__ = [
    "qr_decomposition_with_pivoting",
    "design_basis",
    "is_redundant",
    "fit_linear_model",
    "fit_glm",
    "sort_terms",
    "terms_to_names",
    "terms_from_alias",
    "design_matrix",
    "candidates_to_add",
    "candidates_to_remove",
]
