"""
Exception classes for formula_enet.

Formula, variable and level problems are raised while the model matrix is
being built, before anything is handed to scikit-learn. Errors coming from
scikit-learn itself are never wrapped.
"""

from typing import Optional, Sequence


class FormulaEnetError(Exception):
    """Base class for all formula_enet errors."""


class FormulaParseError(FormulaEnetError, ValueError):
    """A formula could not be parsed into additive terms."""

    def __init__(self, formula: str, term: Optional[str] = None, reason: Optional[str] = None):
        self.formula = formula
        self.term = term
        self.reason = reason
        message = f"Cannot parse formula '{formula}'"
        if term:
            message += f": offending term '{term}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class MissingVariableError(FormulaEnetError, LookupError):
    """A variable named in the formula is not present in the data."""

    def __init__(self, variable: str, available: Optional[Sequence[str]] = None):
        self.variable = variable
        self.available = list(available) if available is not None else []
        message = f"Variable '{variable}' not found in data"
        if self.available:
            shown = ", ".join(map(str, self.available[:10]))
            more = "" if len(self.available) <= 10 else ", ..."
            message += f" (available: {shown}{more})"
        super().__init__(message)


class LevelMismatchError(FormulaEnetError, ValueError):
    """Categorical levels in the data do not match the recorded level set."""

    def __init__(self, variable: str, levels: Sequence, message: Optional[str] = None):
        self.variable = variable
        self.levels = list(levels)
        if message is None:
            message = (
                f"Factor '{variable}' has levels not seen when the model was fitted: "
                f"{self.levels}"
            )
        super().__init__(message)


class DesignMismatchError(FormulaEnetError, ValueError):
    """The model matrix built from new data does not match the fitted layout."""


class MissingValueError(FormulaEnetError, ValueError):
    """Missing values were found and na_action='fail'."""


class FamilyError(FormulaEnetError, ValueError):
    """Unsupported family, or a family/argument combination scikit-learn cannot fit."""


class VersionError(FormulaEnetError, RuntimeError):
    """A requested feature needs a newer scikit-learn."""

    def __init__(self, feature: str, required: str, found: str):
        self.feature = feature
        self.required = required
        self.found = found
        super().__init__(
            f"{feature} requires scikit-learn version {required} or higher "
            f"(installed: {found})"
        )
