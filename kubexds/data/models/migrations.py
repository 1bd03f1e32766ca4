"""
Migration value types: parsed statements and per-file results.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List


@dataclass(frozen=True)
class SQLStatement:
    """A single statement cut from a script, with its 1-based source line."""

    text: str
    line: int


@dataclass(frozen=True)
class StatementError:
    """A statement that failed. ``line`` is 0 when the script itself was unreadable."""

    statement: str
    error: str
    line: int


@dataclass
class MigrationResult:
    """Per-file execution report.

    Invariants: succeeded + failed == total and failed == len(errors), except
    for an unreadable file which carries one line-0 error and zero counts.
    """

    file_name: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[StatementError] = field(default_factory=list)
    duration: float = 0.0

    @property
    def read_failed(self) -> bool:
        return self.total == 0 and any(e.line == 0 for e in self.errors)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.read_failed

    def record_success(self) -> None:
        self.total += 1
        self.succeeded += 1

    def record_failure(self, statement: str, error: str, line: int) -> None:
        self.total += 1
        self.failed += 1
        self.errors.append(StatementError(statement=statement, error=error, line=line))

    def to_dict(self) -> Dict[str, Any]:
        """Summary without statement text, safe for user-visible output."""
        return {
            "file_name": self.file_name,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [{"line": e.line, "error": e.error} for e in self.errors],
            "duration_seconds": round(self.duration, 3),
        }


def summarize(results: Iterable[MigrationResult]) -> Dict[str, int]:
    """Aggregate statement counts across files."""
    summary = {"files": 0, "total": 0, "succeeded": 0, "failed": 0, "unreadable": 0}
    for result in results:
        summary["files"] += 1
        summary["total"] += result.total
        summary["succeeded"] += result.succeeded
        summary["failed"] += result.failed
        if result.read_failed:
            summary["unreadable"] += 1
    return summary
