"""User interface components"""

from .progress import ProgressTracker, ConsoleProgress

__all__ = [
    "ProgressTracker",
    "ConsoleProgress",
]
