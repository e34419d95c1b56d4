"""
Exceptions raised by pystepwise.
"""


class StepwiseConfigError(ValueError):
    """
    Invalid stepwise configuration.

    Raised before any fitting starts: unknown criterion, thresholds in the
    wrong order, missing thresholds for a custom criterion, malformed bounds,
    bad step budget or verbosity.
    """
    pass


class FitError(RuntimeError):
    """
    A model could not be fitted to the data.

    Distinguishes a failed fit (singular design with ``singular_ok=False``,
    all weights zero, non-finite deviance) from a successful but poor one.
    """
    pass


__all__ = ["StepwiseConfigError", "FitError"]
