"""Command-line entry point for the reactor burn controller"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import SafetyConfig
from .controller import ReactorController
from .device import BridgeReactor
from .simulation import SimulatedReactor

DEFAULT_ERROR_LOG = "reactor_error.log"


def setup_logging(log_file: Optional[str] = DEFAULT_ERROR_LOG, verbose: bool = False):
    """Console log for everything, append-only file for warnings and errors"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.WARNING)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="burn-control",
        description="Closed-loop burn/recover controller for a reactor with two flux gates",
    )
    parser.add_argument("--config", help="JSON file with safety configuration overrides")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--bridge", help="Bridge command used to reach the reactor")
    source.add_argument(
        "--simulate", action="store_true", help="Run against the simulated reactor"
    )
    parser.add_argument(
        "--bridge-timeout", type=float, default=5.0, help="Seconds per bridge call"
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_ERROR_LOG,
        help="Append-only error log (empty string disables it)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file or None, args.verbose)
    logger = logging.getLogger("burn_control")

    try:
        config = SafetyConfig.load(args.config) if args.config else SafetyConfig()
    except (OSError, ValueError) as e:
        logger.error("Failed to load config from %s: %s", args.config, e)
        return 2

    if args.simulate:
        device = SimulatedReactor()
    else:
        device = BridgeReactor(args.bridge, timeout=args.bridge_timeout)

    controller = ReactorController(device, config)
    controller.run()
    return 1 if controller.shutdown_executed else 0


if __name__ == "__main__":
    sys.exit(main())
