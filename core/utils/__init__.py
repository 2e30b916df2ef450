"""
Core Utilities Package

Modules:
    - time: Millisecond timestamp helpers
"""

from core.utils.time import current_utc_timestamp, to_utc_datetime

__all__ = ["current_utc_timestamp", "to_utc_datetime"]
