"""Staged, bounded-concurrency pipeline engine"""

from .stage import Stage
from .sink import BufferedSink

__all__ = [
    "Stage",
    "BufferedSink",
]
