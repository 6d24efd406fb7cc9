"""
Unit tests for the per-candidate prober.
Run with: pytest tests/test_prober.py -v
"""
import asyncio
from datetime import timedelta

import aiohttp
import pytest

from whitescan.config import ScanConfig
from whitescan.models import ScanStatus
from whitescan.prober import Prober, parse_ping_latency, ping_command


class ScriptedProber(Prober):
    """Prober whose HTTP layer answers from a port -> outcome map"""

    def __init__(self, outcomes, pinger=None):
        super().__init__(session=object(), pinger=pinger)
        self.outcomes = outcomes
        self.fetched = []

    async def fetch(self, url, hostname):
        self.fetched.append(url)
        port = int(url.split(":")[-1].split("/")[0])
        outcome = self.outcomes[port]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


async def collect(prober, address, config, cancel=None):
    return [r async for r in prober.probe(address, config, cancel)]


def make_pinger(rtt):
    calls = []

    async def pinger(address, timeout_ms):
        calls.append((address, timeout_ms))
        return rtt

    pinger.calls = calls
    return pinger


class TestPortSequence:
    """Test first-success-wins port iteration"""

    @pytest.mark.asyncio
    async def test_failed_then_success(self):
        """Refused port 80 is reported, port 443 success ends the probe"""
        prober = ScriptedProber({
            80: aiohttp.ClientConnectionError("Connection refused"),
            443: 0.042,
        })
        config = ScanConfig(ports=[80, 443], ping=False)
        results = await collect(prober, "10.0.0.1", config)

        assert [r.status for r in results] == [ScanStatus.FAILED, ScanStatus.SUCCESS]
        assert results[0].port == 80
        assert "Connection refused" in results[0].error_message
        assert results[1].port == 443
        assert results[1].latency == timedelta(milliseconds=42)

    @pytest.mark.asyncio
    async def test_first_success_stops(self):
        """Ports after the first success are never tried"""
        prober = ScriptedProber({80: 0.01, 443: 0.01, 8080: 0.01})
        config = ScanConfig(ports=[80, 443, 8080], ping=False)
        results = await collect(prober, "10.0.0.2", config)

        assert len(results) == 1
        assert results[0].status == ScanStatus.SUCCESS
        assert len(prober.fetched) == 1

    @pytest.mark.asyncio
    async def test_request_timeout(self):
        """A timed out request is TIMEOUT and the next port is tried"""
        prober = ScriptedProber({80: asyncio.TimeoutError(), 443: 0.02})
        config = ScanConfig(ports=[80, 443], ping=False)
        results = await collect(prober, "10.0.0.3", config)

        assert results[0].status == ScanStatus.TIMEOUT
        assert results[0].error_message == "Request timeout"
        assert results[1].status == ScanStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_all_ports_fail(self):
        """Every attempted port produces an observable event"""
        prober = ScriptedProber({
            80: aiohttp.ClientConnectionError("refused"),
            443: OSError("unreachable"),
        })
        config = ScanConfig(ports=[80, 443], ping=False)
        results = await collect(prober, "10.0.0.4", config)

        assert [r.status for r in results] == [ScanStatus.FAILED, ScanStatus.FAILED]
        assert [r.port for r in results] == [80, 443]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_failed(self):
        """Non-network exceptions still become FAILED results"""
        prober = ScriptedProber({80: ValueError("bad url")})
        config = ScanConfig(ports=[80], ping=False)
        results = await collect(prober, "10.0.0.5", config)

        assert results[0].status == ScanStatus.FAILED
        assert results[0].error_message == "bad url"

    @pytest.mark.asyncio
    async def test_cancel_before_ports(self):
        """A signalled cancellation prevents any HTTP call"""
        prober = ScriptedProber({80: 0.01})
        cancel = asyncio.Event()
        cancel.set()
        results = await collect(prober, "10.0.0.6", ScanConfig(ports=[80], ping=False), cancel)

        assert results == []
        assert prober.fetched == []

    @pytest.mark.asyncio
    async def test_url_uses_configured_path(self):
        """URL is built from address, port and path"""
        prober = ScriptedProber({8080: 0.01})
        config = ScanConfig(ports=[8080], ping=False, path="/cdn-cgi/trace")
        await collect(prober, "1.2.3.4", config)
        assert prober.fetched == ["http://1.2.3.4:8080/cdn-cgi/trace"]

    @pytest.mark.asyncio
    async def test_ipv6_url_is_bracketed(self):
        """IPv6 literals are wrapped in brackets"""
        prober = ScriptedProber({80: 0.01})
        await collect(prober, "2606:4700::1", ScanConfig(ports=[80], ping=False))
        assert prober.fetched == ["http://[2606:4700::1]:80/"]


class TestPing:
    """Test ping gating of the HTTP checks"""

    @pytest.mark.asyncio
    async def test_slow_ping_skips_http(self):
        """500ms reply with MaxPing=300 gives one TIMEOUT and no HTTP"""
        pinger = make_pinger(500.0)
        prober = ScriptedProber({80: 0.01, 443: 0.01}, pinger=pinger)
        config = ScanConfig(ports=[80, 443], ping=True, max_ping=300)
        results = await collect(prober, "10.0.0.7", config)

        assert len(results) == 1
        assert results[0].status == ScanStatus.TIMEOUT
        assert results[0].error_message == "Ping timeout"
        assert results[0].ping_time == timedelta(milliseconds=500)
        assert prober.fetched == []
        assert pinger.calls == [("10.0.0.7", 300)]

    @pytest.mark.asyncio
    async def test_no_reply_uses_sentinel(self):
        """No reply records MaxPing + 1 and skips HTTP"""
        prober = ScriptedProber({80: 0.01}, pinger=make_pinger(None))
        config = ScanConfig(ports=[80], ping=True, max_ping=300)
        results = await collect(prober, "10.0.0.8", config)

        assert results[0].status == ScanStatus.TIMEOUT
        assert results[0].ping_time == timedelta(milliseconds=301)
        assert prober.fetched == []

    @pytest.mark.asyncio
    async def test_pinger_error_uses_sentinel(self):
        """A crashing pinger is treated as no reply"""
        async def broken(address, timeout_ms):
            raise OSError("permission denied")

        prober = ScriptedProber({80: 0.01}, pinger=broken)
        results = await collect(prober, "10.0.0.9", ScanConfig(ports=[80], ping=True, max_ping=200))
        assert results[0].error_message == "Ping timeout"
        assert results[0].ping_time == timedelta(milliseconds=201)

    @pytest.mark.asyncio
    async def test_fast_ping_continues(self):
        """Ping within MaxPing carries its RTT into the HTTP result"""
        prober = ScriptedProber({80: 0.05}, pinger=make_pinger(25.0))
        results = await collect(prober, "10.0.0.10", ScanConfig(ports=[80], ping=True, max_ping=300))

        assert results[0].status == ScanStatus.SUCCESS
        assert results[0].ping_time == timedelta(milliseconds=25)


class TestPingHelpers:
    """Test ping command construction and output parsing"""

    def test_parse_linux_output(self):
        out = "64 bytes from 1.1.1.1: icmp_seq=1 ttl=57 time=12.4 ms"
        assert parse_ping_latency(out) == pytest.approx(12.4)

    def test_parse_windows_output(self):
        out = "Reply from 1.1.1.1: bytes=32 time<1ms TTL=57"
        assert parse_ping_latency(out) == pytest.approx(1.0)

    def test_parse_no_reply(self):
        assert parse_ping_latency("Request timed out.") is None

    def test_command_includes_single_echo(self, monkeypatch):
        monkeypatch.setattr("whitescan.prober.shutil.which", lambda name: "/bin/ping")
        monkeypatch.setattr("whitescan.prober.platform.system", lambda: "Linux")
        assert ping_command(300) == ["/bin/ping", "-n", "-c", "1", "-W", "1"]

    def test_command_missing_binary(self, monkeypatch):
        monkeypatch.setattr("whitescan.prober.shutil.which", lambda name: None)
        assert ping_command(300) is None


class TestSession:
    """Test HTTP session ownership"""

    @pytest.mark.asyncio
    async def test_probe_without_session_raises(self):
        prober = Prober()
        with pytest.raises(RuntimeError):
            await collect(prober, "10.0.0.1", ScanConfig(ping=False))

    @pytest.mark.asyncio
    async def test_context_manager_owns_session(self):
        async with Prober() as prober:
            assert isinstance(prober.session, aiohttp.ClientSession)
        assert prober.session is None
