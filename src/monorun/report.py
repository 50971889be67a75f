# report.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import List, Optional

from .model import RunReport, TaskOutcome


class RunReporter:
    """Collects one TaskOutcome per completed package, in completion order."""

    def __init__(self) -> None:
        self._outcomes: List[TaskOutcome] = []
        self._lock = threading.Lock()

    def record(self, outcome: TaskOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    @property
    def outcomes(self) -> List[TaskOutcome]:
        with self._lock:
            return list(self._outcomes)

    def build(self, task: str, scope: Optional[str]) -> RunReport:
        return RunReport(task=task, scope=scope, workspaces=self.outcomes)


def write_report(path: str, report: RunReport) -> None:
    """Write the report as pretty JSON. "-" means stdout."""
    text = json.dumps(report.to_dict(), indent=2)
    if path == "-":
        print(text)
        return

    target = Path(path)
    if str(target.parent) not in ("", "."):
        target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
