"""
DLQ scanning: failure categorization, entity scanning and adaptive scheduling
"""

from dlq_intel.scanner.categorizer import categorize
from dlq_intel.scanner.entity_scanner import EntityScanner, compute_body_hash
from dlq_intel.scanner.scheduler import NamespaceScanState, ScanMode, ScanScheduler, next_scan_mode

__all__ = [
    "categorize",
    "EntityScanner",
    "compute_body_hash",
    "NamespaceScanState",
    "ScanMode",
    "ScanScheduler",
    "next_scan_mode",
]
