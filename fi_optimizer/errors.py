# fi_optimizer/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class DataQualityWarning:
    """Non-fatal data issue. Collected on results, never raised."""

    field: str
    message: str
    isins: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return self.message


class OptimizerError(Exception):
    """Base class for engine errors."""


class OptimizationError(OptimizerError):
    """Unexpected failure inside the optimizer, wrapped for display."""

    DEFAULT_HINT = (
        "This is often caused by invalid data (e.g. text in a numeric column) "
        "in the bond master. Check the data-quality warnings and re-run."
    )

    def __init__(self, message: str, cause: Optional[BaseException] = None, hint: Optional[str] = None):
        self.cause = cause
        self.hint = hint or self.DEFAULT_HINT
        text = message
        if cause is not None:
            text = f"{message} Original error: {cause}"
        super().__init__(text)

    @property
    def user_message(self) -> str:
        return f"{self.args[0]} {self.hint}"


class UnsupportedModeError(OptimizerError):
    """Raised for optimization modes without a sizing algorithm."""

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(
            f"Optimization mode '{mode}' is not supported; only 'switch' mode "
            f"has a trade sizing algorithm."
        )
