"""
PyStepwise: stepwise term selection for linear and generalized linear models,
with R-compatible numerics.

Copyright (C) 2024 SGCX
Licensed under GPL-3.0
"""

__version__ = "1.0.0"

# Import main user-facing API
from .lm import lm, stepwiselm, LinearModel
from .glm import glm, stepwiseglm, GeneralizedLinearModel
from .stepwise import (
    Action,
    History,
    HistoryEntry,
    StepwiseState,
    VerboseObserver,
    CandidateEvaluated,
    CandidateFailed,
    NoCandidates,
    StepCommitted,
    StepwiseFinished,
)
from .criteria import Criterion, resolve_criterion
from .exceptions import StepwiseConfigError, FitError

# Import backend utilities (for advanced users)
from ._backends import get_backend, list_available_backends

__all__ = [
    'lm',
    'stepwiselm',
    'LinearModel',
    'glm',
    'stepwiseglm',
    'GeneralizedLinearModel',
    'Action',
    'History',
    'HistoryEntry',
    'StepwiseState',
    'VerboseObserver',
    'CandidateEvaluated',
    'CandidateFailed',
    'NoCandidates',
    'StepCommitted',
    'StepwiseFinished',
    'Criterion',
    'resolve_criterion',
    'StepwiseConfigError',
    'FitError',
    'get_backend',
    'list_available_backends',
]
