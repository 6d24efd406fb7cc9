import asyncio
import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from .candidates import CandidateSource
from .config import ScanConfig
from .models import ScanProgress, ScanResult, ScanStatus
from .prober import Prober

logger = logging.getLogger(__name__)

ResultListener = Callable[[ScanResult], None]
ProgressListener = Callable[[ScanProgress], None]
StatusListener = Callable[[bool], None]

# Builds the prober for one session; used as an async context manager
ProberFactory = Callable[[ScanConfig], Prober]

DEFAULT_PACING_DELAY = 0.05
PROGRESS_EVERY = 5
STOP_GRACE = 2.0


class EngineState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED_TO_START = "failed_to_start"


def default_prober_factory(config: ScanConfig) -> Prober:
    return Prober(concurrency=config.goroutines)


class ScanEngine:
    """
    Drives a scan session: loads candidates, fans them out to a bounded
    pool of workers, aggregates counters and notifies listeners.

    Counters and listener calls are serialised behind one asyncio lock, so
    listeners see events in the order the aggregator produced them.
    """

    def __init__(self, source: Optional[CandidateSource] = None,
                 prober_factory: Optional[ProberFactory] = None,
                 pacing_delay: float = DEFAULT_PACING_DELAY,
                 progress_every: int = PROGRESS_EVERY,
                 stop_grace: float = STOP_GRACE):
        self.source = source or CandidateSource()
        self.prober_factory = prober_factory or default_prober_factory
        self.pacing_delay = pacing_delay
        self.progress_every = max(1, progress_every)
        self.stop_grace = stop_grace

        self._result_listeners: List[ResultListener] = []
        self._progress_listeners: List[ProgressListener] = []
        self._status_listeners: List[StatusListener] = []

        self.state = EngineState.IDLE
        self._is_scanning = False
        self._total = 0
        self._completed = 0
        self._successful = 0
        self._percentage = 0.0
        self._cancel: Optional[asyncio.Event] = None
        self._finished: Optional[asyncio.Event] = None
        self._lock: Optional[asyncio.Lock] = None
        self._tasks: List[asyncio.Task] = []

    # -- listeners -------------------------------------------------------

    def subscribe(self, on_result: Optional[ResultListener] = None,
                  on_progress: Optional[ProgressListener] = None,
                  on_status: Optional[StatusListener] = None) -> None:
        if on_result:
            self._result_listeners.append(on_result)
        if on_progress:
            self._progress_listeners.append(on_progress)
        if on_status:
            self._status_listeners.append(on_status)

    def unsubscribe(self, on_result: Optional[ResultListener] = None,
                    on_progress: Optional[ProgressListener] = None,
                    on_status: Optional[StatusListener] = None) -> None:
        for listeners, fn in ((self._result_listeners, on_result),
                              (self._progress_listeners, on_progress),
                              (self._status_listeners, on_status)):
            if fn in listeners:
                listeners.remove(fn)

    def _notify(self, listeners, payload) -> None:
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener %r failed", listener)

    # -- read-only session state ----------------------------------------

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def total(self) -> int:
        return self._total

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def successful(self) -> int:
        return self._successful

    @property
    def percentage(self) -> float:
        return self._percentage

    @property
    def progress(self) -> float:
        """completed / total as a fraction, 0 when nothing is loaded"""
        return self._completed / self._total if self._total else 0.0

    # -- commands ---------------------------------------------------------

    def load_candidates(self, path) -> List[str]:
        return self.source.load(path)

    async def start_scan(self, config: ScanConfig, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """
        Run one session to completion.

        Args:
            config: A validated, already repaired configuration.
            cancel_event: Optional external stop signal linked to the
                session's own cancellation handle.

        Returns:
            True when every candidate was processed, False when the scan
            was already running, had nothing to scan or was cancelled.
        """
        if self._is_scanning:
            logger.warning("Scan already in progress")
            return False

        self._is_scanning = True
        self.state = EngineState.RUNNING
        self._total = 0
        self._completed = 0
        self._successful = 0
        self._percentage = 0.0
        self._cancel = asyncio.Event()
        self._finished = asyncio.Event()
        self._lock = asyncio.Lock()
        link_task = None
        if cancel_event is not None:
            if cancel_event.is_set():
                self._cancel.set()
            link_task = asyncio.create_task(self._link_cancel(cancel_event, self._cancel))

        self._notify(self._status_listeners, True)
        try:
            logger.info("Starting network scan...")
            candidates = self.load_candidates(config.iplist_path)[:config.scans]
            if not candidates:
                logger.warning("No IPs found to scan")
                self.state = EngineState.FAILED_TO_START
                return False

            self._total = len(candidates)
            logger.info("Loaded %d IPs to scan", self._total)

            start_time = time.time()
            await self._run(candidates, config, self._cancel)
            duration = time.time() - start_time

            if self._cancel.is_set():
                logger.info("Scan was cancelled after %d of %d", self._completed, self._total)
                self.state = EngineState.CANCELLED
                return False

            logger.info("Scan completed in %.2fs. Total: %d, Successful: %d",
                        duration, self._completed, self._successful)
            self.state = EngineState.COMPLETED
            return True
        except asyncio.CancelledError:
            self.state = EngineState.CANCELLED
            raise
        finally:
            if link_task is not None:
                link_task.cancel()
            self._tasks = []
            self._cancel = None
            self._is_scanning = False
            self._notify(self._status_listeners, False)
            self._finished.set()

    async def stop_scan(self) -> None:
        """
        Signal cancellation and wait for the session to wind down.
        Workers still blocked in a network call after `stop_grace` seconds
        are cancelled outright.
        """
        if not self._is_scanning or self._cancel is None:
            return
        logger.info("Stopping scan...")
        self._cancel.set()
        finished = self._finished
        try:
            await asyncio.wait_for(asyncio.shield(finished.wait()), self.stop_grace)
        except asyncio.TimeoutError:
            for task in self._tasks:
                task.cancel()
            await finished.wait()

    @staticmethod
    async def _link_cancel(external: asyncio.Event, internal: asyncio.Event) -> None:
        await external.wait()
        internal.set()

    # -- session internals ------------------------------------------------

    async def _run(self, candidates: List[str], config: ScanConfig, cancel: asyncio.Event) -> None:
        """
        Producer-consumer over a bounded queue; the number of consumers is
        the concurrency limit.
        """
        workers = max(1, min(config.goroutines, len(candidates)))
        queue = asyncio.Queue(maxsize=workers * 2)

        async with self.prober_factory(config) as prober:

            async def producer():
                for ip in candidates:
                    if cancel.is_set():
                        break
                    await queue.put(ip)
                # Sentinels to stop consumers
                for _ in range(workers):
                    await queue.put(None)

            async def consumer():
                while True:
                    ip = await queue.get()
                    try:
                        if ip is None:
                            break
                        if cancel.is_set():
                            continue
                        await self._scan_candidate(ip, config, prober, cancel)
                        await self._pace(cancel)
                    finally:
                        queue.task_done()

            self._tasks = [asyncio.create_task(producer())]
            self._tasks += [asyncio.create_task(consumer()) for _ in range(workers)]
            outcomes = await asyncio.gather(*self._tasks, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error("Scan worker crashed: %r", outcome)

    async def _scan_candidate(self, ip: str, config: ScanConfig, prober: Prober, cancel: asyncio.Event) -> None:
        succeeded = False
        try:
            async for result in prober.probe(ip, config, cancel):
                if result.status is ScanStatus.SUCCESS:
                    succeeded = True
                await self._emit_result(result, cancel)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Error scanning IP: %s", ip)
            await self._emit_result(ScanResult(
                ip_address=ip,
                port=config.ports[0],
                status=ScanStatus.FAILED,
                error_message=str(e) or e.__class__.__name__,
            ), cancel)

        await self._complete(ip, succeeded, cancel)

    async def _emit_result(self, result: ScanResult, cancel: asyncio.Event) -> None:
        async with self._lock:
            if cancel.is_set():
                return
            self._notify(self._result_listeners, result)

    async def _complete(self, ip: str, succeeded: bool, cancel: asyncio.Event) -> None:
        async with self._lock:
            # Counters freeze once a stop is requested
            if cancel.is_set():
                return
            self._completed += 1
            if succeeded:
                self._successful += 1
            self._percentage = self._completed / self._total * 100 if self._total else 0.0
            if self._completed % self.progress_every == 0:
                self._notify(self._progress_listeners, ScanProgress(
                    current_target=ip,
                    completed=self._completed,
                    total=self._total,
                    successful=self._successful,
                    percentage=self._percentage,
                ))

    async def _pace(self, cancel: asyncio.Event) -> None:
        if self.pacing_delay <= 0 or cancel.is_set():
            return
        try:
            await asyncio.wait_for(cancel.wait(), self.pacing_delay)
        except asyncio.TimeoutError:
            pass
