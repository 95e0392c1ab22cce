"""Stage 1: Cleaning"""

from .cleaner import DescriptionCleaner, clean_description, normalize_amount

__all__ = ["DescriptionCleaner", "clean_description", "normalize_amount"]
