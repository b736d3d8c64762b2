"""
Small CLI to run a workflow JSON file (linear or graph) on this desktop.

Usage:
    python run_script.py workflow.json --mappings mappings.json
    python run_script.py flow.json --yes --verbose

Exit codes: 0 completed, 1 error or stopped, 2 bad input.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from autoflow import (
    AutomationError,
    DesktopActionPort,
    GraphWorkflowRunner,
    LinearWorkflowExecutor,
    MappingRegistry,
    RunState,
    UsageError,
    ValidationError,
    Workflow,
    WorkflowGraph,
)
from autoflow.engine import RunnerBase
from autoflow.status import LogEntry, StatusSnapshot
from hotkey_manager import HotkeyManager
from settings_manager import SettingsManager

logger = logging.getLogger("run_script")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a desktop automation workflow")
    parser.add_argument("workflow", help="Workflow JSON file (linear steps or node graph)")
    parser.add_argument("--mappings", help="Mapping points / templates JSON file")
    parser.add_argument("--settings", help="Settings JSON file (default: settings.json next to this script)")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the safety confirmation")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def load_json(path: Path) -> Dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def is_graph_document(data: Dict[str, Any]) -> bool:
    return "nodes" in data


def confirm(workflow_name: str) -> bool:
    answer = input(f'Run "{workflow_name}"? It will take control of mouse and keyboard. [y/N] ')
    return answer.strip().lower() in ("y", "yes")


class LogPrinter:
    """Status subscriber that prints every log line once."""

    def __init__(self) -> None:
        self._last: Optional[LogEntry] = None
        self.lines: List[str] = []

    def __call__(self, snapshot: StatusSnapshot) -> None:
        if not snapshot.logs or snapshot.logs[-1] is self._last:
            return
        new_entries = snapshot.logs
        if self._last is not None:
            for index in range(len(snapshot.logs) - 1, -1, -1):
                if snapshot.logs[index] is self._last:
                    new_entries = snapshot.logs[index + 1:]
                    break
        for entry in new_entries:
            line = str(entry)
            self.lines.append(line)
            print(line, flush=True)
        self._last = snapshot.logs[-1]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings_manager = SettingsManager(Path(args.settings) if args.settings else None)
    settings = settings_manager.load()
    config = settings.automation

    workflow_path = Path(args.workflow)
    if not workflow_path.exists():
        print(f"File not found: {workflow_path}")
        return EXIT_BAD_INPUT

    mappings_path = Path(args.mappings) if args.mappings else settings_manager.resolve_mapping_file(settings)
    try:
        data = load_json(workflow_path)
        graph_mode = is_graph_document(data)
        workflow = WorkflowGraph.from_dict(data) if graph_mode else Workflow.from_dict(data)

        port = DesktopActionPort()
        registry = MappingRegistry(port, config)
        if mappings_path is not None:
            registry.load(load_json(mappings_path), base_dir=str(mappings_path.resolve().parent))
    except (OSError, ValueError, AutomationError) as exc:
        print(f"Cannot load workflow: {exc}")
        logger.debug("Workflow load failed", exc_info=True)
        return EXIT_BAD_INPUT

    if config.safety_mode and not args.yes and not confirm(workflow.name):
        print("Aborted.")
        return EXIT_FAILED

    runner: RunnerBase
    if graph_mode:
        runner = GraphWorkflowRunner(port, registry, config=config)
    else:
        runner = LinearWorkflowExecutor(port, registry, config=config)
    runner.subscribe(LogPrinter())

    with HotkeyManager(runner, settings.pause_hotkey, settings.stop_hotkey):
        try:
            runner.start(workflow)
            while runner.is_running():
                runner.join(timeout=0.2)
        except (ValidationError, UsageError):
            return EXIT_BAD_INPUT
        except KeyboardInterrupt:
            runner.stop()
            runner.join()

    return EXIT_OK if runner.get_state() == RunState.COMPLETED else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
