"""
DLQ Intelligence & Auto-Replay
Scans dead-letter queues, classifies failures, and replays recoverable messages
"""

__version__ = "1.0.0"
