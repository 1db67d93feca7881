#!/usr/bin/env python3
"""
LP PnL Monitor - Main Entry Point
Position lifecycle and PnL tracking for concentrated-liquidity DEXes

Version: 1.0.0
"""

import argparse
import logging
import sys

from rich import box
from rich.align import Align
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import load_config, validate_config
from .constants import CONFIG_FILE, VERSION
from .exceptions import ConfigError
from .position_monitor import LPMonitor, checkpoint_key

console = Console()


def setup_logging(debug=False, log_file=None):
    """Rich console logging, plus an optional plain-text log file"""
    level = logging.DEBUG if debug else logging.INFO
    handlers = [RichHandler(console=console, rich_tracebacks=True, show_path=debug)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=handlers, force=True)
    # web3/urllib3 are chatty at DEBUG
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_startup_banner():
    banner_text = Text()
    banner_text.append("LP PNL MONITOR\n", style="bold cyan")
    banner_text.append("Position lifecycle & PnL accounting\n", style="bright_white")
    banner_text.append(f"v{VERSION}", style="italic")

    console.print(Panel(Align.center(banner_text), box=box.DOUBLE_EDGE, style="blue", padding=(1, 2)))


def show_instances(instances, db):
    table = Table(title="Monitored Instances", box=box.SIMPLE)
    table.add_column("DEX", style="cyan")
    table.add_column("Position manager", style="white")
    table.add_column("Owners", justify="right")
    table.add_column("Checkpoint", justify="right")
    for instance in instances:
        checkpoint = db.get_param(checkpoint_key(instance["chain"], instance["dex_type"])) or "-"
        table.add_row(instance["pool_name"], instance["position_manager"],
                      str(len(instance["owners"])), checkpoint)
    console.print(table)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Track LP positions and compute PnL snapshots")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to the JSON config file")
    parser.add_argument("--once", action="store_true", help="Run a single cycle per instance and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    """Returns a process exit code"""
    args = parse_args(argv)
    # load_config warnings go through the rich handler
    setup_logging(args.debug)
    print_startup_banner()

    try:
        console.print(f"[cyan]Loading configuration from {args.config}...[/cyan]")
        config = load_config(args.config)
        if config is None:
            return 1
        setup_logging(args.debug or config["logging"].get("debug", False), config["logging"].get("log_file"))
        instances = validate_config(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        return 1

    monitor = LPMonitor(config, instances)
    show_instances(instances, monitor.db)

    try:
        if args.once:
            return 0 if monitor.run_once() else 1
        monitor.run_forever()
    except KeyboardInterrupt:
        console.print("\n[yellow]Monitoring stopped by user[/yellow]")
    finally:
        monitor.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
