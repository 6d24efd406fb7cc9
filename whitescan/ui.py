from typing import Iterable, List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, TimeElapsedColumn, TimeRemainingColumn

from .config import ScanConfig
from .models import ScanResult, ScanStatus
from .utils import format_ms

console = Console()

STATUS_STYLES = {
    ScanStatus.SUCCESS: "green",
    ScanStatus.FAILED: "red",
    ScanStatus.TIMEOUT: "yellow",
    ScanStatus.SCANNING: "cyan",
    ScanStatus.QUEUED: "dim",
}


class ScannerUI:
    def __init__(self):
        self.console = console

    def display_welcome(self):
        self.console.rule("[bold cyan]WHITESCAN - Edge IP White List Scanner[/bold cyan]")

    def display_start(self, config: ScanConfig):
        ping = f"ping <= {config.max_ping}ms" if config.ping else "ping off"
        ports = ", ".join(str(p) for p in config.ports)
        self.console.print(Panel.fit(
            f"[bold green]Scanning up to {config.scans} IPs from {config.iplist_path}[/bold green] "
            f"for [bold]{config.hostname}{config.path}[/bold]\n"
            f"[dim]ports {ports} | {ping} | {config.goroutines} workers[/dim]",
            border_style="blue"))

    def create_progress(self):
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=self.console
        )

    def display_results(self, results: Iterable[ScanResult], max_latency: int):
        """
        Displays the recent results in a Rich table.
        Successful endpoints slower than max_latency are shown in yellow.
        """
        table = Table(title="Recent Results", show_header=True, header_style="bold magenta")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Endpoint", style="cyan")
        table.add_column("Ping", justify="right")
        table.add_column("Latency", justify="right")
        table.add_column("Status")
        table.add_column("Error", style="white")

        for res in results:
            latency = format_ms(res.latency) if res.status is ScanStatus.SUCCESS else "-"
            if res.status is ScanStatus.SUCCESS and res.latency_ms > max_latency:
                latency = f"[yellow]{latency}[/yellow]"
            style = STATUS_STYLES.get(res.status, "white")
            table.add_row(
                str(res.number),
                res.endpoint,
                format_ms(res.ping_time) if res.ping_time else "-",
                latency,
                f"[{style}]{res.status_text}[/{style}]",
                (res.error_message or "")[:50],
            )

        self.console.print(table)

    def display_summary(self, duration: float, completed: int, total: int, successful: int, cancelled: bool):
        verb = "stopped" if cancelled else "completed"
        self.console.print(f"\n[bold]Scan {verb} in {duration:.2f} seconds.[/bold]")
        self.console.print(f"[bold]Scanned: {completed}/{total}[/bold]  "
                           f"[green]Success: {successful}[/green]  "
                           f"[red]Failed: {completed - successful}[/red]")

    def display_whitelist(self, addresses: List[str], path):
        if not addresses:
            self.show_message(f"White list is empty or missing: {path}", style="yellow")
            return
        table = Table(title=f"White List ({len(addresses)} IPs)", show_header=True, header_style="bold magenta")
        table.add_column("#", style="dim", justify="right")
        table.add_column("IP Address", style="green")
        for i, ip in enumerate(addresses, start=1):
            table.add_row(str(i), ip)
        self.console.print(table)

    def show_message(self, msg, style="bold red"):
        self.console.print(f"[{style}]{msg}[/{style}]")

    def show_status(self, msg, ok=True):
        self.show_message(msg, style="dim" if ok else "bold red")

    def show_saved(self, filename):
        self.console.print(f"[dim]Results saved to {filename}[/dim]")
