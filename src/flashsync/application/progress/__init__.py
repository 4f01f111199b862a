# Application Progress Package
from .aggregator import apply_pending, calculate_card_set_progress, create_progress_summary, fold
from .validator import ValidationResult, check

__all__ = [
    "fold",
    "apply_pending",
    "calculate_card_set_progress",
    "create_progress_summary",
    "check",
    "ValidationResult",
]
