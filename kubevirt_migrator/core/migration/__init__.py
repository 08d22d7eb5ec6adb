"""Migration workflow: feasibility check, init and cutover."""

from .checks import CHECK_NAMES, CheckResults, FeasibilityChecker, format_check_results  # noqa: F401
from .controller import MigrationController  # noqa: F401

__all__ = [
    "CHECK_NAMES",
    "CheckResults",
    "FeasibilityChecker",
    "MigrationController",
    "format_check_results",
]
