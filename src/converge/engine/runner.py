"""
Converge Playbook Runner

High-level runner that coordinates config, inventory, facts, play parsing,
the play runner and output.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Union

from converge.connections.base import ConnectionFactory
from converge.engine.config import RunnerConfig
from converge.engine.display import Display
from converge.engine.errors import ConvergeError, ExitCode, ParseError, UnknownGroupError
from converge.engine.facts import FactSource, load_facts
from converge.engine.inventory import Inventory
from converge.engine.playbook import PlaybookParser
from converge.engine.results import PlaybookReport
from converge.engine.scheduler import PlayRunner
from converge.modules.base import ModuleRegistry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PlaybookRunner:
    """
    Run every play of a play file against an inventory.

    Coordinates:
    - Inventory and fact loading
    - Play parsing (all plays are parsed before any runs)
    - The PlayRunner, one play after another
    - Output formatting (console or JSON)
    """

    def __init__(
        self,
        inventory_source: PathLike,
        playbook_path: PathLike,
        config: Optional[RunnerConfig] = None,
        facts_source: Optional[PathLike] = None,
        limit: Optional[str] = None,
        json_output: bool = False,
        registry: Optional[ModuleRegistry] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        display: Optional[Display] = None,
    ):
        self.inventory_source = inventory_source
        self.playbook_path = playbook_path
        self.config = config or RunnerConfig()
        self.facts_source = facts_source
        self.limit = limit
        self.json_output = json_output
        self.display = display or Display(enabled=not json_output)
        self.play_runner = PlayRunner(self.config, registry, connection_factory)

    def run(self) -> int:
        """
        Run the play file synchronously.

        Returns:
            Exit code (0=converged, 2=host failures, 3=parse error,
            4=unknown group, 130=interrupted)
        """
        try:
            report = asyncio.run(self.run_async())
        except ParseError as e:
            return self._fail("parse_error", f"Parse error: {e}", ExitCode.PARSE_ERROR)
        except UnknownGroupError as e:
            return self._fail("unknown_group", str(e), ExitCode.UNKNOWN_GROUP)
        except ConvergeError as e:
            return self._fail("error", f"Error: {e}", e.exit_code)
        except KeyboardInterrupt:
            return self._fail("interrupted", "Execution interrupted", ExitCode.KEYBOARD_INTERRUPT)

        if self.json_output:
            print(report.to_json())
        return report.exit_code

    def _fail(self, error_type: str, message: str, exit_code: int) -> int:
        if self.json_output:
            error_obj = {
                "error": True,
                "error_type": error_type,
                "message": message,
                "exit_code": int(exit_code),
            }
            print(json.dumps(error_obj, indent=2))
        else:
            self.display.error(message)
        return int(exit_code)

    async def run_async(self) -> PlaybookReport:
        """Load everything, then run each play in order."""
        inventory = Inventory.load(self.inventory_source)
        facts = load_facts(self.facts_source) if self.facts_source else FactSource()
        plays = PlaybookParser(self.playbook_path).parse()

        # Resolve every play's targets up front so a bad selector aborts
        # before any host is touched
        for play in plays:
            self.play_runner.resolve_hosts(play, inventory, self.limit)

        logger.info(
            "Running %d play(s) from %s (forks=%d, check=%s)",
            len(plays), self.playbook_path, self.config.forks, self.config.check_mode,
        )
        self.display.header(f"PLAYBOOK: {self.playbook_path}")

        report = PlaybookReport(playbook_path=str(self.playbook_path))
        for play in plays:
            self.display.play(play.name)
            play_report = await self.play_runner.converge(
                play, inventory, facts, self.limit, on_result=self.display.result
            )
            if not play_report.hosts:
                self.display.warning(f"No hosts matched for play '{play.name}'")
            self.display.failures(play_report)
            report.add_play_report(play_report)

        self.display.recap(report.get_final_stats())
        return report


def run_playbook(
    inventory_source: PathLike,
    playbook_path: PathLike,
    config: Optional[RunnerConfig] = None,
    facts_source: Optional[PathLike] = None,
    limit: Optional[str] = None,
) -> PlaybookReport:
    """Run a play file quietly and return its report."""
    runner = PlaybookRunner(
        inventory_source,
        playbook_path,
        config=config,
        facts_source=facts_source,
        limit=limit,
        display=Display(enabled=False),
    )
    return asyncio.run(runner.run_async())

