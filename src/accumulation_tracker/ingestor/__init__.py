"""Data ingestion layer - Token discovery and cross-token whale monitoring."""

from accumulation_tracker.ingestor.bitquery import BitqueryClient, BitqueryError
from accumulation_tracker.ingestor.broad_monitor import (
    BroadMonitor,
    BroadMonitorSummary,
    TransferSide,
    classify_transfer,
)
from accumulation_tracker.ingestor.discovery import DiscoverySummary, TokenDiscovery
from accumulation_tracker.ingestor.models import LargeTransfer, LargeTransferSource

__all__ = [
    "BitqueryClient",
    "BitqueryError",
    "BroadMonitor",
    "BroadMonitorSummary",
    "DiscoverySummary",
    "LargeTransfer",
    "LargeTransferSource",
    "TokenDiscovery",
    "TransferSide",
    "classify_transfer",
]
