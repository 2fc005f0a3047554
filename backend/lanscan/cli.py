"""Command line entry point: run one scan and print the devices."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

from . import __version__
from .core.config import settings
from .core.errors import PermissionDeniedError, ScanError
from .core.logging import setup_logging
from .scanner.environment import NetifacesEnvironment
from .scanner.models import Device
from .scanner.network_scanner import NetworkScanner
from .scanner.permission import StaticPermissionGate

logger = logging.getLogger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command line argument parser.
    
    Returns:
        argparse.ArgumentParser: Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="lanscan",
        description="Discover devices on the local IPv4 subnet (ICMP sweep + mDNS)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m lanscan                       # Scan the default-route interface
  python -m lanscan --interface eth0      # Scan a specific interface
  python -m lanscan --json                # Print the result as JSON
  python -m lanscan --grace 3             # Wait 3s for late mDNS answers
        """
    )
    
    parser.add_argument(
        "--interface", "-i",
        type=str,
        default=settings.NETWORK_INTERFACE,
        help="Network interface to scan. Defaults to the interface of the default route"
    )
    
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.PROBE_WORKERS,
        help="Number of hosts probed concurrently"
    )
    
    parser.add_argument(
        "--grace",
        type=float,
        default=settings.DISCOVERY_GRACE_PERIOD,
        help="Seconds to keep collecting mDNS services after the last host was probed"
    )
    
    parser.add_argument(
        "--skip-permission-probe",
        action="store_true",
        help="Do not publish the mDNS probe service before scanning"
    )
    
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print devices as JSON instead of a table"
    )
    
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging output"
    )
    
    parser.add_argument(
        "--version",
        action="version",
        version=f"lanscan {__version__}"
    )
    
    return parser


def format_table(devices: List[Device]) -> str:
    """Render devices as a fixed-width text table."""
    headers = ("HOST", "TYPE", "NAME", "MAC", "MODEL")
    rows = [
        (d.host, d.type.value, d.name, d.mac_address or "-", d.model or "-")
        for d in devices
    ]
    widths = [
        max(len(str(row[i])) for row in rows + [headers])
        for i in range(len(headers))
    ]
    lines = ["  ".join(h.ljust(w) for h, w in zip(headers, widths))]
    for row in rows:
        lines.append("  ".join(str(v).ljust(w) for v, w in zip(row, widths)))
    return "\n".join(lines)


def _print_progress(completed: int, total: int) -> None:
    sys.stderr.write(f"\rProbing hosts: {completed}/{total}")
    if completed == total:
        sys.stderr.write("\n")
    sys.stderr.flush()


async def run_scan(args: argparse.Namespace) -> List[Device]:
    scanner = NetworkScanner(
        environment=NetifacesEnvironment(args.interface),
        permission_gate=StaticPermissionGate(True) if args.skip_permission_probe else None,
        workers=args.workers,
        grace_period=args.grace,
    )
    try:
        return await scanner.scan(on_progress=_print_progress)
    finally:
        await scanner.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.
    
    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)
    
    setup_logging("DEBUG" if args.verbose else None)
    
    try:
        devices = asyncio.run(run_scan(args))
    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user")
        return 130
    except PermissionDeniedError as e:
        logger.error(f"{e}: local network access is not available")
        return 2
    except ScanError as e:
        logger.error(f"Scan failed: {e}")
        return 1
    
    if args.json:
        print(json.dumps([asdict(d) for d in devices], indent=2, default=str))
    else:
        print(format_table(devices))
    
    return 0
