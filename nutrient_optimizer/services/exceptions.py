"""
Exceptions raised by the nutrient optimizer.

Input problems found while solving are returned inside the optimization
result instead of being raised. These exceptions cover the paths that have
no result object to carry them: direct calculator calls, ion code parsing
and catalog loading.

Exception Hierarchy:
    NutrientOptimizerError (base)
    ├── InvalidInputError
    │   └── UnknownIonError
    └── CatalogLoadError
"""
from typing import Optional


class NutrientOptimizerError(Exception):
    """Base exception for all nutrient optimizer errors."""
    pass


class InvalidInputError(NutrientOptimizerError):
    """Malformed salt or target data.

    Raised when:
    - A salt has a non-positive molecular weight
    - An ion contribution is negative or not a number
    - A target range has min > max
    """
    pass


class UnknownIonError(InvalidInputError):
    """An ion code string does not match any known ion.

    Attributes:
        code: The unrecognized string
    """
    def __init__(self, code: str):
        super().__init__(f"Unknown ion code: {code!r}")
        self.code = code


class CatalogLoadError(NutrientOptimizerError):
    """The salt catalog or profile library could not be loaded.

    Attributes:
        source: File path or repository description that failed
    """
    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source
