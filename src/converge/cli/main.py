"""
Main CLI entrypoint for converge.

Usage:
    converge --version
    converge --help
    converge run site.yml -i inventory.yml [--facts facts.yml] [--check]
"""

import argparse
import logging
import platform
import sys
from pathlib import Path
from typing import Optional

from converge import __version__
from converge.engine.config import RunnerConfig, load_config
from converge.engine.errors import ExitCode, ParseError


def get_version_string() -> str:
    """Generate a detailed version string."""
    python_version = platform.python_version()
    os_info = f"{platform.system()} {platform.release()}"
    return (
        f"converge {__version__}\n"
        f"  python: {python_version}\n"
        f"  platform: {os_info}"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for converge."""
    parser = argparse.ArgumentParser(
        prog="converge",
        description="Converge hosts to the state described by a play file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  converge run site.yml -i inventory.yml
  converge run site.yml -i hosts.ini --facts facts.yml --check
  converge run deploy.yml -i inventory.yml --limit web --forks 10 -v
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=get_version_string(),
    )

    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run a play file against an inventory")

    run.add_argument(
        "playbook",
        help="Play file to run",
    )

    run.add_argument(
        "-i", "--inventory",
        dest="inventory",
        required=True,
        help="Inventory file (YAML, JSON or INI)",
    )

    run.add_argument(
        "--facts",
        dest="facts",
        default=None,
        help="Fact file (YAML or JSON) mapping host -> facts",
    )

    run.add_argument(
        "-l", "--limit",
        dest="limit",
        default=None,
        help="Limit to specific hosts/groups",
    )

    run.add_argument(
        "-C", "--check",
        action="store_true",
        default=None,
        help="Run in check mode (report what would change)",
    )

    run.add_argument(
        "-f", "--forks",
        dest="forks",
        type=int,
        default=None,
        help="Number of hosts processed concurrently (default: 5)",
    )

    run.add_argument(
        "--timeout",
        dest="timeout",
        type=float,
        default=None,
        help="Per-task timeout in seconds (default: 300)",
    )

    run.add_argument(
        "--play-timeout",
        dest="play_timeout",
        type=float,
        default=None,
        help="Cancel remaining tasks after this many seconds per play",
    )

    run.add_argument(
        "--continue-on-error",
        dest="continue_on_error",
        action="store_true",
        help="Keep running a host's tasks after one fails",
    )

    run.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Config file (default: ./converge.yml if present)",
    )

    run.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    run.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)",
    )

    return parser


def configure_logging(verbosity: int) -> None:
    """-v shows engine progress, -vv everything."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_config(parsed: argparse.Namespace) -> RunnerConfig:
    """Config file and environment, then command-line overrides."""
    config = load_config(Path(parsed.config) if parsed.config else None)
    return config.merge(
        forks=parsed.forks,
        task_timeout=parsed.timeout,
        play_timeout=parsed.play_timeout,
        check_mode=parsed.check,
        fail_stop=False if parsed.continue_on_error else None,
    )


def main(args: Optional[list] = None) -> int:
    """Main entrypoint for converge CLI."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command != "run":
        parser.print_help()
        return ExitCode.SUCCESS

    configure_logging(parsed.verbose)

    try:
        config = build_config(parsed)
    except ParseError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return ExitCode.PARSE_ERROR
    except ValueError as e:
        print(f"Invalid option: {e}", file=sys.stderr)
        return ExitCode.PARSE_ERROR

    from converge.engine.runner import PlaybookRunner

    runner = PlaybookRunner(
        inventory_source=parsed.inventory,
        playbook_path=parsed.playbook,
        config=config,
        facts_source=parsed.facts,
        limit=parsed.limit,
        json_output=parsed.json,
    )

    return runner.run()


if __name__ == "__main__":
    sys.exit(main())
