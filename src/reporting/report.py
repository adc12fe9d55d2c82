"""Apply run reporting."""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from stack_opr.applier import ApplyResult
from stack_opr.planner import ChangeSet


@dataclass
class RunReport:
    """Collects one plan/apply run and writes JSON + markdown reports."""
    stack: str
    report_dir: Path
    command: str = 'apply'
    changeset: Optional[ChangeSet] = None
    result: Optional[ApplyResult] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def finish(self, result: ApplyResult, write: bool = True) -> list[Path]:
        """Finalize report; write files when write is True.

        Returns:
            Paths of the written report files
        """
        self.finished_at = datetime.now()
        self.result = result
        if not write:
            return []
        self.report_dir.mkdir(parents=True, exist_ok=True)
        return [self._write_json(), self._write_markdown()]

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        data = {
            'stack': self.stack,
            'command': self.command,
            'success': self.success,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration, 1),
        }
        if self.changeset is not None:
            data['plan'] = self.changeset.to_dict()
        if self.result is not None:
            data['result'] = self.result.to_dict()
        return data

    def summary_lines(self) -> list[str]:
        """Operator summary: succeeded / failed / rolled back / manual intervention."""
        r = self.result or ApplyResult()
        lines = [f"Succeeded ({len(r.succeeded)}): {', '.join(r.succeeded) or '-'}"]
        if r.failed:
            lines.append(f"Failed: {r.failed}: {r.error}")
        if r.cancelled:
            lines.append("Cancelled by operator")
        if r.skipped:
            lines.append(f"Not started ({len(r.skipped)}): {', '.join(r.skipped)}")
        if r.rolled_back:
            lines.append(f"Rolled back ({len(r.rolled_back)}): {', '.join(r.rolled_back)}")
        if r.unresolved:
            lines.append(f"Manual intervention required ({len(r.unresolved)}):")
            lines.extend(f"  {e.identity}: {e.cause}" for e in r.unresolved)
        return lines

    def _write_json(self) -> Path:
        filename = self._report_filename('json')
        with open(filename, 'w', encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return filename

    def _write_markdown(self) -> Path:
        status = 'PASSED' if self.success else 'FAILED'
        r = self.result or ApplyResult()

        lines = [
            f"# {self.command} {self.stack}",
            "",
            f"**Status**: {status}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Resources",
            "",
            "| Resource | Status | Attempts | Duration | Message |",
            "|----------|--------|----------|----------|---------|",
        ]

        for identity, action in sorted(r.results.items()):
            status_emoji = '✅' if action.success else '❌'
            if identity in r.rolled_back:
                status_emoji = '↩️'
            lines.append(
                f"| {identity} | {status_emoji} | {action.attempts} | {action.duration:.1f}s | {action.message} |"
            )
        for identity in r.skipped:
            lines.append(f"| {identity} | ⏭️ | 0 | - | not started |")

        lines.extend(["", "## Summary", ""])
        lines.extend(f"- {line}" for line in self.summary_lines())
        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])

        filename = self._report_filename('md')
        with open(filename, 'w', encoding="utf-8") as f:
            f.write('\n'.join(lines))
        return filename

    def _report_filename(self, ext: str) -> Path:
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        return self.report_dir / f"{timestamp}.{self.stack}.{self.command}.{status}.{ext}"
