"""Exception hierarchy for the SMARKET model-selection pipeline.

Exports:
    - ``SmarketError``: Base class for all pipeline errors.
    - ``DataError``: Malformed input that cannot be recovered by imputation.
    - ``FitFailure``: A finalized workflow could not be fit.
    - ``ConfigurationError``: An invalid hyperparameter grid point.
    - ``PersistenceError``: The result store could not be read or written.
    - ``SelectionError``: Every configuration of a family failed to score.
"""

from __future__ import annotations


class SmarketError(Exception):
    """Base class for SMARKET errors."""


class DataError(SmarketError):
    """Raised when raw input is structurally unusable (missing columns, no labels)."""


class FitFailure(SmarketError):
    """Raised when a finalized workflow cannot be fit on the training partition.

    Grid cells never raise this; a failed cell is recorded as missing.

    Parameters
    ----------
    config_id : str
        Configuration whose fit failed.
    fold_id : str
        Stage identifier (``"tuned"`` or ``"final"``).
    reason : str
        Underlying error message.
    """

    def __init__(self, config_id: str, fold_id: str, reason: str) -> None:
        super().__init__(f"{config_id} failed on {fold_id}: {reason}")
        self.config_id = config_id
        self.fold_id = fold_id
        self.reason = reason


class ConfigurationError(SmarketError):
    """Raised for a hyperparameter configuration that cannot be trained."""


class PersistenceError(SmarketError):
    """Raised when the result store cannot be written or read."""


class SelectionError(SmarketError, ValueError):
    """Raised when no configuration of a family produced a valid selection metric."""
