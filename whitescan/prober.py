"""
Per-candidate probing: one ICMP echo followed by an HTTP GET per port.

Results are yielded as they happen so the engine can report each attempt
(a refused port 80 shows up before a successful port 443).
"""

import asyncio
import contextlib
import logging
import math
import platform
import re
import shutil
import subprocess
import time
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import aiohttp

from .config import ScanConfig
from .models import ScanResult, ScanStatus

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0
USER_AGENT = "WhiteScan/1.0"

# Async callable: (address, timeout_ms) -> round trip in ms, or None when no reply
Pinger = Callable[[str, int], Awaitable[Optional[float]]]

_LATENCY_RE = re.compile(r"time[=<]\s*([0-9]+(?:\.[0-9]+)?)\s*([a-z]+)")


def ping_command(timeout_ms: int) -> Optional[List[str]]:
    ping_path = shutil.which("ping")
    if not ping_path:
        return None
    system_name = platform.system().lower()
    if system_name == "windows":
        return [ping_path, "-n", "1", "-w", str(timeout_ms)]
    if system_name == "darwin":
        return [ping_path, "-n", "-c", "1", "-W", str(timeout_ms)]
    # iputils takes whole seconds
    return [ping_path, "-n", "-c", "1", "-W", str(max(1, math.ceil(timeout_ms / 1000)))]


def parse_ping_latency(output_text: str) -> Optional[float]:
    """Extract the round trip in milliseconds from ping output."""
    match = _LATENCY_RE.search(output_text.lower())
    if not match:
        return None
    value = float(match.group(1))
    unit = match.group(2)
    if unit == "s":
        return value * 1000.0
    if unit == "us":
        return value / 1000.0
    return value


async def system_ping(address: str, timeout_ms: int) -> Optional[float]:
    """
    Send one echo request with the platform `ping` binary.
    Unprivileged processes cannot open raw ICMP sockets, the binary can.
    """
    command = ping_command(timeout_ms)
    if command is None:
        logger.warning("Ping failed for %s: no ping binary on PATH", address)
        return None

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            address,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        logger.warning("Ping failed for %s: %s", address, e)
        return None

    started = time.perf_counter()
    try:
        # Allow for process start-up on top of the echo timeout
        stdout_data, _ = await asyncio.wait_for(process.communicate(), timeout_ms / 1000 + 1.0)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        with contextlib.suppress(Exception):
            await process.wait()
        return None

    if process.returncode != 0:
        return None

    latency = parse_ping_latency((stdout_data or b"").decode("utf-8", errors="ignore"))
    if latency is None:
        # Replied but the output format is unknown; fall back to wall time
        latency = (time.perf_counter() - started) * 1000
    return latency


class Prober:
    """
    Runs the ping + HTTP sequence against a single candidate.

    The aiohttp session is shared by every worker of a scan session. Pass
    one in, or use the prober as an async context manager to own one.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, pinger: Optional[Pinger] = None,
                 http_timeout: float = DEFAULT_HTTP_TIMEOUT, concurrency: int = 10):
        self.session = session
        self.pinger = pinger or system_ping
        self.http_timeout = http_timeout
        self.concurrency = concurrency
        self._owns_session = False

    async def __aenter__(self):
        if self.session is None:
            connector = aiohttp.TCPConnector(
                limit=self.concurrency * 2,
                force_close=True,
            )
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.http_timeout),
                headers={'User-Agent': USER_AGENT},
            )
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._owns_session = False

    async def ping(self, address: str, max_ping: int) -> timedelta:
        """Round trip time, or max_ping + 1 ms when the host did not answer."""
        try:
            rtt = await self.pinger(address, max_ping)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Ping failed for %s: %s", address, e)
            rtt = None
        if rtt is None:
            return timedelta(milliseconds=max_ping + 1)
        return timedelta(milliseconds=rtt)

    async def fetch(self, url: str, hostname: str) -> float:
        """GET `url` and return the elapsed seconds. Any status code counts."""
        started = time.perf_counter()
        async with self.session.get(url, headers={'Host': hostname}, allow_redirects=False) as response:
            logger.debug("%s -> HTTP %s", url, response.status)
        return time.perf_counter() - started

    async def probe(self, address: str, config: ScanConfig,
                    cancel: Optional[asyncio.Event] = None) -> AsyncIterator[ScanResult]:
        """
        Yield one result per attempt for `address`.

        A ping slower than max_ping yields a single TIMEOUT and no HTTP
        attempt. Ports are tried in order until the first response.
        """
        if self.session is None:
            raise RuntimeError("Prober has no HTTP session; use 'async with Prober()'")

        ping_time = timedelta(0)
        if config.ping:
            ping_time = await self.ping(address, config.max_ping)
            if ping_time > timedelta(milliseconds=config.max_ping):
                yield ScanResult(
                    ip_address=address,
                    port=config.ports[0],
                    ping_time=ping_time,
                    status=ScanStatus.TIMEOUT,
                    error_message="Ping timeout",
                )
                return

        for port in config.ports:
            if cancel is not None and cancel.is_set():
                return

            result = ScanResult(
                ip_address=address,
                port=port,
                ping_time=ping_time,
                status=ScanStatus.SCANNING,
                scan_time=datetime.now(),
            )
            url = f"http://{address}:{port}{config.path}" if ':' not in address else f"http://[{address}]:{port}{config.path}"

            try:
                elapsed = await self.fetch(url, config.hostname)
            except asyncio.TimeoutError:
                result.status = ScanStatus.TIMEOUT
                result.error_message = "Request timeout"
            except asyncio.CancelledError:
                raise
            except (aiohttp.ClientError, OSError) as e:
                result.status = ScanStatus.FAILED
                result.error_message = str(e) or e.__class__.__name__
            except Exception as e:
                logger.debug("Unexpected error probing %s", url, exc_info=True)
                result.status = ScanStatus.FAILED
                result.error_message = str(e) or e.__class__.__name__
            else:
                result.status = ScanStatus.SUCCESS
                result.latency = timedelta(seconds=elapsed)

            # The request finished after a stop; drop it
            if cancel is not None and cancel.is_set():
                return

            yield result
            if result.status is ScanStatus.SUCCESS:
                return
