"""
Result sinks: the deduplicated white list and the optional CSV result log.
"""

import csv
import logging
from pathlib import Path
from typing import Callable, List, Optional, Set, Union

from .models import ScanResult, ScanStatus

logger = logging.getLogger(__name__)

DEFAULT_WHITELIST = "white list.txt"
DEFAULT_RESULTS_CSV = "results.csv"
SAVE_EVERY = 10

# (message, ok) -> None; lets a front end show persistence outcomes
StatusCallback = Callable[[str, bool], None]


class WhiteList:
    """
    Accumulates addresses that answered HTTP and persists them.

    The file is rewritten wholesale on every save, sorted so repeated saves
    of the same set are byte-identical.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_WHITELIST, save_every: int = SAVE_EVERY,
                 on_status: Optional[StatusCallback] = None):
        self.path = Path(path)
        self.save_every = save_every
        self.on_status = on_status
        self.addresses: Set[str] = set()
        self.success_count = 0
        self.save_count = 0

    def reset(self) -> None:
        self.addresses.clear()
        self.success_count = 0
        self.save_count = 0

    def on_result(self, result: ScanResult) -> None:
        if result.status is not ScanStatus.SUCCESS:
            return
        self.addresses.add(result.ip_address)
        self.success_count += 1
        if self.success_count % self.save_every == 0:
            self.save()

    def on_scan_status(self, is_scanning: bool) -> None:
        # Each session builds its own list
        if is_scanning:
            self.reset()
        else:
            self.finish()

    def finish(self) -> bool:
        """Final save at session end; nothing to do without successes."""
        if not self.addresses:
            return False
        return self.save()

    def save(self) -> bool:
        lines = "".join(f"{ip}\n" for ip in sorted(self.addresses))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8', newline='\n') as f:
                f.write(lines)
        except OSError as e:
            logger.error("Error saving white list to %s: %s", self.path, e)
            self._notify(f"Error saving white list: {e}", False)
            return False

        self.save_count += 1
        logger.info("White list saved with %d unique IPs", len(self.addresses))
        self._notify(f"White list saved: {len(self.addresses)} unique IPs", True)
        return True

    def _notify(self, message: str, ok: bool) -> None:
        if self.on_status is not None:
            self.on_status(message, ok)

    def __len__(self) -> int:
        return len(self.addresses)

    def __contains__(self, address: str) -> bool:
        return address in self.addresses

    @staticmethod
    def load(path: Union[str, Path]) -> List[str]:
        """Read a saved white list for display; missing file -> []"""
        path = Path(path)
        if not path.is_file():
            return []
        with open(path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip()]


class ResultLog:
    """Every result of a session, written as CSV when the session ends."""

    HEADER = ["number", "ip_address", "port", "ping_ms", "latency_ms", "status", "error", "scan_time"]

    def __init__(self, path: Union[str, Path] = DEFAULT_RESULTS_CSV, enabled: bool = True):
        self.path = Path(path)
        self.enabled = enabled
        self.results: List[ScanResult] = []

    def reset(self) -> None:
        self.results.clear()

    def on_result(self, result: ScanResult) -> None:
        if self.enabled:
            self.results.append(result)

    def on_scan_status(self, is_scanning: bool) -> None:
        if is_scanning:
            self.reset()
        else:
            self.write()

    def write(self) -> Optional[Path]:
        if not self.enabled or not self.results:
            return None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", newline="", encoding="utf-8") as f:
                w = csv.writer(f)
                w.writerow(self.HEADER)
                for seq, r in enumerate(self.results, start=1):
                    w.writerow([
                        seq,
                        r.ip_address,
                        r.port,
                        f"{r.ping_ms:.0f}",
                        f"{r.latency_ms:.0f}",
                        r.status.name,
                        r.error_message or "",
                        r.scan_time.isoformat(timespec="seconds"),
                    ])
        except OSError as e:
            logger.error("Error writing results CSV to %s: %s", self.path, e)
            return None
        return self.path
