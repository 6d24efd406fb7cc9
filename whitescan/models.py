"""
Data model shared by the prober, the engine and the result consumers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class ScanStatus(Enum):
    """Lifecycle of a single probe result."""
    QUEUED = "Queued"
    SCANNING = "Scanning..."
    SUCCESS = "Success"
    FAILED = "Failed"
    TIMEOUT = "Timeout"


TERMINAL_STATUSES = {ScanStatus.SUCCESS, ScanStatus.FAILED, ScanStatus.TIMEOUT}


@dataclass
class ScanResult:
    """Outcome of one HTTP (or ping) attempt against a candidate"""
    ip_address: str
    port: int
    ping_time: timedelta = timedelta(0)
    latency: timedelta = timedelta(0)
    status: ScanStatus = ScanStatus.QUEUED
    error_message: Optional[str] = None
    scan_time: datetime = field(default_factory=datetime.now)
    number: int = 0

    @property
    def endpoint(self) -> str:
        return f"{self.ip_address}:{self.port}"

    @property
    def status_text(self) -> str:
        return self.status.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def ping_ms(self) -> float:
        return self.ping_time.total_seconds() * 1000

    @property
    def latency_ms(self) -> float:
        return self.latency.total_seconds() * 1000


@dataclass
class ScanProgress:
    """Snapshot handed to progress observers"""
    current_target: str
    completed: int
    total: int
    successful: int
    percentage: float
