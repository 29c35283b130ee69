"""
Shared enums for project metadata.
"""

from __future__ import annotations

from enum import Enum


class ProjectType(str, Enum):
    CLASSIFICATION = "classification"
    SENTIMENT = "sentiment"


class DataFormat(str, Enum):
    # One data row per non-blank line.
    TXT = "txt"
    # Header line followed by one data row per non-blank line.
    CSV = "csv"
