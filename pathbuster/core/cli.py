import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import aiofiles
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from pathbuster import __version__
from pathbuster.core.config import DEFAULT_CONFIG_PATH, ScanConfig, ensure_default_config, load_config
from pathbuster.core.engine import create_scanner
from pathbuster.core.errors import ConfigError
from pathbuster.core.http import HttpClient

logger = logging.getLogger("pathbuster")

console = Console()

BANNER = f"""[bold cyan]
                 __  __    __               __
    ____  ____ _/ /_/ /_  / /_  __  _______/ /____  _____
   / __ \\/ __ `/ __/ __ \\/ __ \\/ / / / ___/ __/ _ \\/ ___/
  / /_/ / /_/ / /_/ / / / /_/ / /_/ (__  ) /_/  __/ /
 / .___/\\__,_/\\__/_/ /_/_.___/\\__,_/____/\\__/\\___/_/
/_/[/][dim]        path normalization scanner v{__version__}[/]
"""

STATUS_COLORS = {2: "green", 3: "cyan", 4: "yellow", 5: "red"}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="pathbuster",
        description="Pathbuster - path normalization scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-u", "--url", action="append", dest="urls", help="Target URL (can be used multiple times)")
    parser.add_argument("-i", "--input-file", help="File with one target URL per line")
    parser.add_argument("-p", "--payloads", help="Traversal payloads file")
    parser.add_argument("-w", "--wordlist", help="Wordlist file")
    parser.add_argument("--path", help="Brute force a single path instead of a wordlist")
    parser.add_argument("-o", "--output", help="Write matches to this JSON file")
    parser.add_argument("--config", help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--write-config", action="store_true", help="Write a default config file and exit")

    perf = parser.add_argument_group("performance")
    perf.add_argument("--rate", type=int, help="Requests per second (default: 1000)")
    perf.add_argument("--burst", type=int, help="Token bucket burst size (default: rate)")
    perf.add_argument("--concurrency", type=int, help="Max in-flight requests (default: 1000)")
    perf.add_argument("--workers", type=int, help="Brute force workers per target (default: 10)")
    perf.add_argument("--timeout", type=float, help="Request timeout in seconds (default: 10)")
    perf.add_argument("--brute-queue-concurrency", type=int, help="Targets scanned at once, 0 = all (default: 0)")

    http = parser.add_argument_group("http")
    http.add_argument("--proxy", help="Proxy URL (e.g., http://127.0.0.1:8080)")
    http.add_argument("-H", "--header", action="append", dest="header_list", help="Custom header (can be used multiple times)")
    http.add_argument("--user-agent", help="User-Agent header")
    http.add_argument("-m", "--methods", help="Comma separated HTTP methods (default: GET)")
    http.add_argument("--follow-redirects", action="store_true", default=None, help="Follow redirects")

    match = parser.add_argument_group("matching")
    match.add_argument("--drop-after-fail", help="Drop a target after 5 consecutive responses with one of these statuses (default: 302,301)")
    match.add_argument("--validate-status", help="Status codes confirming a traversal depth (default: 404)")
    match.add_argument("--fingerprint-status", help="Status codes marking a traversal depth (default: 400,500)")
    match.add_argument("--wordlist-status", help="Status codes reported as hits, empty = any (default: 200)")
    match.add_argument("--response-diff-threshold", help="MIN-MAX body distance from the baseline (default: 5-1000)")
    match.add_argument("--filter-status", help="Exclude statuses, stage prefixed (e.g. V:404,F:500)")
    match.add_argument("--filter-size", help="Exclude body sizes, stage prefixed")
    match.add_argument("--filter-words", help="Exclude word counts, stage prefixed")
    match.add_argument("--filter-lines", help="Exclude line counts, stage prefixed")
    match.add_argument("--filter-regex", action="append", help="Exclude responses matching regex (e.g. V:<regex>), repeatable")

    trav = parser.add_argument_group("traversal")
    trav.add_argument("--start-depth", type=int, help="First traversal depth (default: 0)")
    trav.add_argument("--max-depth", type=int, help="Last traversal depth (default: 5)")
    trav.add_argument("--traversal-strategy", choices=["greedy", "quick"], help="Depth search strategy (default: greedy)")
    trav.add_argument("--ignore-trailing-slash", action="store_true", default=None, help="Strip the trailing slash of target URLs")
    trav.add_argument("--skip-validation", action="store_true", default=None, help="Brute force at the fingerprint depth without validating it")
    trav.add_argument("--skip-brute", action="store_true", default=None, help="Stop after validation")

    brute = parser.add_argument_group("bruteforce")
    brute.add_argument("--auto-collab", action="store_true", default=None, help="Learn and suppress each target's default negative response")
    brute.add_argument("--signature-deviation", type=int, help="Size/words/lines tolerance when comparing to learned negatives (default: 0)")
    brute.add_argument("--disable-show-all", action="store_true", default=None, help="Only report wordlist status hits")

    parser.add_argument("--no-banner", action="store_true", help="Hide banner")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors")
    return parser.parse_args(argv)


def parse_headers(header_list):
    headers = {}
    if header_list:
        for h in header_list:
            if ":" in h:
                key, value = h.split(":", 1)
                headers[key.strip()] = value.strip()
    return headers


def setup_logging(verbose=False, quiet=False):
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_config(args) -> ScanConfig:
    if args.config:
        config = load_config(args.config)
    else:
        config = load_config(DEFAULT_CONFIG_PATH, allow_missing=True)

    overrides = {
        key: value for key, value in vars(args).items()
        if key not in ("config", "write_config", "no_banner", "verbose", "quiet", "header_list")
    }
    headers = parse_headers(args.header_list)
    if headers:
        overrides["headers"] = {**config.headers, **headers}
    return config.merge(overrides)


def format_match(match) -> str:
    color = STATUS_COLORS.get(match.status // 100, "white")
    flag = "[bold green]+[/]" if match.matched else "[dim]-[/]"
    score = f" diff={match.diff_score:.0f}" if match.diff_score is not None else ""
    return (
        f"{flag} [{color}]{match.status}[/] [bold]{match.stage:<11}[/] {match.method} {match.url} "
        f"[dim]size={match.signature.size} words={match.signature.words} lines={match.signature.lines}{score}[/]"
    )


def show_config(config: ScanConfig, targets: int):
    console.print(Panel(
        f"[bold]Target(s):[/] {targets}\n"
        f"[bold]Strategy:[/] {config.traversal_strategy} (depth {config.start_depth}-{config.max_depth})\n"
        f"[bold]Rate:[/] {config.rate}/s  [bold]Concurrency:[/] {config.concurrency}  [bold]Workers:[/] {config.workers}\n"
        f"[bold]Methods:[/] {','.join(config.method_list)}\n"
        f"[bold]Brute:[/] {'skipped' if config.skip_brute else 'enabled'}"
        f"{'  [bold]Noise filter:[/] on' if config.auto_collab else ''}",
        title="Scan Configuration",
        border_style="cyan",
    ))


def show_summary(result):
    summary = result.summary()
    table = Table(title="Scan Summary", box=box.ROUNDED, border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Targets", str(summary["targets"]))
    table.add_row("Confirmed", str(summary["confirmed"]))
    table.add_row("Dropped", f"[yellow]{summary['dropped']}[/]" if summary["dropped"] else "0")
    table.add_row("Errors", f"[red]{summary['errors']}[/]" if summary["errors"] else "0")
    table.add_row("Matches", str(summary["matches"]))
    table.add_row("Hits", f"[bold green]{summary['hits']}[/]")
    table.add_row("Elapsed", f"{summary['elapsed']:.1f}s")
    console.print(table)


async def save_json(filename, matches):
    filepath = Path(filename)
    async with aiofiles.open(filepath, "w", encoding="utf-8") as f:
        await f.write(json.dumps([m.to_dict() for m in matches], indent=2))
    return str(filepath)


async def watch_progress(scanner, progress, task):
    while True:
        stats = scanner.progress
        progress.update(
            task,
            total=max(stats.total, 1),
            completed=stats.done,
            description=f"[cyan]Scanning[/] {stats.targets_done}/{stats.targets_total} targets, ETA {stats.stats()['eta_formatted']}",
        )
        await asyncio.sleep(0.25)


async def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.quiet)

    if not args.no_banner:
        console.print(BANNER)

    if args.write_config:
        path = ensure_default_config(args.config or DEFAULT_CONFIG_PATH)
        console.print(f"[green]Config written:[/] {path}")
        return 0

    try:
        config = build_config(args)
        scanner = await create_scanner(config, on_match=lambda m: console.print(format_match(m)))
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 1

    show_config(config, len(scanner.targets))

    loop = asyncio.get_running_loop()
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, scanner.stop)
    except (NotImplementedError, RuntimeError):
        handles_sigint = False
        logger.debug("signal handlers unavailable, Ctrl-C will abort immediately")

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    task = progress.add_task("[cyan]Scanning...", total=None)

    async with HttpClient(config) as client:
        scanner.client = client
        with progress:
            watcher = asyncio.create_task(watch_progress(scanner, progress, task))
            try:
                result = await scanner.run()
            finally:
                watcher.cancel()
                await asyncio.gather(watcher, return_exceptions=True)
                if handles_sigint:
                    loop.remove_signal_handler(signal.SIGINT)

    show_summary(result)

    if config.output:
        saved = await save_json(config.output, result.matches)
        console.print(f"\n[bold green]Matches saved:[/] {saved}")

    if result.stopped:
        console.print("[yellow]Scan interrupted.[/]")
    return 0


def run():
    sys.exit(asyncio.run(main()))
