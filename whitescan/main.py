import argparse
import asyncio
import logging
import signal
import sys
import time
from pathlib import Path

from pydantic import ValidationError
from rich.logging import RichHandler

from .config import ConfigurationService, ScanConfig
from .engine import ScanEngine
from .exceptions import WhiteScanError
from .models import ScanProgress, ScanResult
from .ui import ScannerUI, console
from .utils import parse_ports
from .whitelist import DEFAULT_RESULTS_CSV, DEFAULT_WHITELIST, ResultLog, WhiteList
from .window import ResultWindow


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # aiohttp is chatty about every refused connection at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WhiteScan - find responsive edge IPs and build a white list")
    parser.add_argument("-c", "--config", default="config.json", help="Configuration file (Default: config.json)")
    parser.add_argument("-i", "--iplist", help="Candidate IP list file")
    parser.add_argument("-p", "--ports", help="Ports to try in order (e.g. 80,443,8080-8082)")
    parser.add_argument("-n", "--scans", type=int, help="Maximum number of IPs to scan")
    parser.add_argument("-g", "--goroutines", type=int, help="Concurrent workers")
    parser.add_argument("--hostname", help="Host header sent with each request")
    parser.add_argument("--path", help="Request path (Default: /)")
    parser.add_argument("--no-ping", action="store_true", help="Skip the ICMP check")
    parser.add_argument("--max-ping", type=int, help="Ping timeout in milliseconds")
    parser.add_argument("-o", "--whitelist", default=DEFAULT_WHITELIST, help="White list output file")
    parser.add_argument("--no-csv", action="store_true", help="Do not write results.csv")
    parser.add_argument("--strict-config", action="store_true",
                        help="Fail on an unreadable config file instead of repairing it")
    parser.add_argument("--save-config", action="store_true", help="Write the effective configuration back")
    parser.add_argument("--show-whitelist", action="store_true", help="Print the saved white list and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def apply_overrides(config: ScanConfig, args) -> ScanConfig:
    """Merge CLI flags into the loaded config and re-run validation."""
    overrides = {}
    if args.iplist:
        overrides['iplist_path'] = args.iplist
    if args.ports:
        overrides['ports'] = parse_ports(args.ports)
    if args.scans is not None:
        overrides['scans'] = args.scans
    if args.goroutines is not None:
        overrides['goroutines'] = args.goroutines
    if args.hostname:
        overrides['hostname'] = args.hostname
    if args.path:
        overrides['path'] = args.path
    if args.no_ping:
        overrides['ping'] = False
    if args.max_ping is not None:
        overrides['max_ping'] = args.max_ping
    if args.no_csv:
        overrides['csv'] = False
    if not overrides:
        return config
    return ScanConfig.model_validate({**config.model_dump(), **overrides})


async def run_scan(config: ScanConfig, engine: ScanEngine, ui: ScannerUI,
                   whitelist: WhiteList, result_log: ResultLog, window: ResultWindow) -> bool:
    ui.display_start(config)
    loop = asyncio.get_running_loop()
    stopping = []

    def request_stop():
        if not stopping:
            ui.show_message("Stopping scan...", style="yellow")
            stopping.append(asyncio.ensure_future(engine.stop_scan()))

    try:
        loop.add_signal_handler(signal.SIGINT, request_stop)
    except (NotImplementedError, RuntimeError):
        # Windows event loops; KeyboardInterrupt is handled in main()
        pass

    start_time = time.time()
    try:
        with ui.create_progress() as progress:
            # The engine reads the list itself; the bar gets its size from the first event
            task_id = progress.add_task("[cyan]Loading IP list...", total=None)
            sized = []

            def on_result(result: ScanResult):
                window.add(result)
                if not sized:
                    sized.append(engine.total)
                    progress.update(task_id, total=engine.total,
                                    description=f"[cyan]Scanning {engine.total} IPs...")

            def on_progress(p: ScanProgress):
                progress.update(task_id, completed=p.completed, total=p.total,
                                description=f"[cyan]{p.current_target}[/cyan] ok {p.successful}")

            def on_status(is_scanning: bool):
                if not is_scanning:
                    progress.update(task_id, completed=engine.completed, total=engine.total or None)

            engine.subscribe(on_result=on_result, on_progress=on_progress, on_status=on_status)
            engine.subscribe(on_result=whitelist.on_result, on_status=whitelist.on_scan_status)
            engine.subscribe(on_result=result_log.on_result, on_status=result_log.on_scan_status)
            try:
                finished = await engine.start_scan(config)
            finally:
                engine.unsubscribe(on_result=on_result, on_progress=on_progress, on_status=on_status)
                engine.unsubscribe(on_result=whitelist.on_result, on_status=whitelist.on_scan_status)
                engine.unsubscribe(on_result=result_log.on_result, on_status=result_log.on_scan_status)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        for pending in stopping:
            await pending

    if engine.total == 0:
        ui.show_message("No IP addresses loaded")
        return False

    ui.display_results(window, config.max_latency)
    ui.display_summary(time.time() - start_time, engine.completed, engine.total,
                       engine.successful, cancelled=not finished)
    if whitelist.save_count:
        ui.show_saved(whitelist.path)
    if result_log.enabled and result_log.results and result_log.path.exists():
        ui.show_saved(result_log.path)
    return finished


def main():
    # 1. CLI Argument Parsing
    args = build_parser().parse_args()
    setup_logging(args.verbose)
    ui = ScannerUI()

    try:
        # 2. Configuration (repaired by the service, then CLI overrides)
        service = ConfigurationService(args.config)
        config = apply_overrides(service.load_configuration(repair=not args.strict_config), args)

        if args.save_config:
            if service.save_configuration(config):
                ui.show_status(f"Configuration saved to {service.config_path}")
            else:
                ui.show_status(f"Error saving configuration to {service.config_path}", ok=False)

        if args.show_whitelist:
            ui.display_whitelist(WhiteList.load(args.whitelist), args.whitelist)
            return 0

        ui.display_welcome()

        # 3. Wire the engine to its consumers
        results_csv = Path(args.whitelist).with_name(DEFAULT_RESULTS_CSV)
        whitelist = WhiteList(args.whitelist, on_status=lambda msg, ok: None if ok else ui.show_status(msg, ok))
        result_log = ResultLog(results_csv, enabled=config.csv)
        engine = ScanEngine()

        # 4. Run
        finished = asyncio.run(run_scan(config, engine, ui, whitelist, result_log, ResultWindow()))
        return 0 if finished else 1

    except ValidationError as e:
        ui.console.print(f"[bold red]Invalid option:[/bold red] {e}")
        return 2
    except KeyboardInterrupt:
        ui.console.print("\n[yellow]Scan interrupted by user.[/yellow]")
        return 130
    except WhiteScanError as e:
        ui.console.print(f"\n[bold red]Fatal Error:[/bold red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
