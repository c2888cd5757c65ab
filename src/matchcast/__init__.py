"""
Matchcast - Multi-view live match player with automatic stream failover.

This package tracks the health of redundant stream endpoints, ranks them by
health and viewer preferences, and keeps several independent view slots
pointed at their best working stream.
"""

from .catalog import StreamedCatalog
from .config import Settings, load_settings
from .health import HealthRegistry
from .selector import StreamSelector
from .session import Session
from .types import (
    FailoverStatus,
    HealthRecord,
    HealthStatus,
    LayoutMode,
    Match,
    MatchSource,
    Stream,
    ViewSlot,
    endpoint_id,
)

__version__ = "0.1.0"
__all__ = [
    "FailoverStatus",
    "HealthRecord",
    "HealthRegistry",
    "HealthStatus",
    "LayoutMode",
    "Match",
    "MatchSource",
    "Session",
    "Settings",
    "Stream",
    "StreamSelector",
    "StreamedCatalog",
    "ViewSlot",
    "endpoint_id",
    "load_settings",
]
