"""
Data Models Layer.

This package contains the pydantic models for configuration and remote API
resources, plus the plain dataclasses used for catalogue rows, progress
events and run statistics.
"""

from .config import AppConfig
from .events import (
    DownloadCompleted,
    DownloadFailed,
    DownloadProgress,
    DownloadStarted,
    SyncComplete,
    SyncProgress,
)
from .stats import SyncReport, SyncSummary

__all__ = [
    "AppConfig",
    "DownloadCompleted",
    "DownloadFailed",
    "DownloadProgress",
    "DownloadStarted",
    "SyncComplete",
    "SyncProgress",
    "SyncReport",
    "SyncSummary",
]
