"""
Migration runner with statement-level isolation.

Each script is read from the script tree, split into statements and executed
one statement at a time in autocommit mode. A failing statement is recorded in
the file's ``MigrationResult`` and the runner moves on to the next one; no
transaction spans a file and nothing is rolled back.
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional, Sequence

import structlog

from ..data.models.migrations import (
    MigrationResult,
    SQLStatement,
    StatementError,
    summarize,
)
from ..drivers.base import SQLDriver
from ..errors import StatementFailed
from .assets import AssetTree, default_assets
from .tokenizer import split_statements, strip_meta_commands

logger = structlog.get_logger()

DEFAULT_STATEMENT_TIMEOUT = 30.0
# Per-file errors echoed to the log; the rest stay in the result.
LOGGED_ERRORS_PER_FILE = 3

EXPECTED_EXTENSIONS = ("uuid-ossp", "pgcrypto", "pg_trgm")

_COUNT_TABLES_SQL = (
    "SELECT COUNT(*) FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
)
_COUNT_EXTENSIONS_SQL = "SELECT COUNT(*) FROM pg_extension WHERE extname IN ({})".format(
    ", ".join(f"'{name}'" for name in EXPECTED_EXTENSIONS)
)


def describe_error(exc: BaseException) -> str:
    """One-line error message without the statement text.

    SQLAlchemy wraps driver errors and appends the SQL; the wrapped ``orig``
    exception carries only the server message.
    """
    cause = getattr(exc, "orig", None) or exc
    message = str(cause).strip() or type(cause).__name__
    return message.splitlines()[0]


async def schema_exists(driver: SQLDriver) -> bool:
    """True if the default schema already holds tables or the expected extensions.

    At least two of the expected extensions count as an existing schema even
    when no table has been created yet.
    """
    tables = int(await driver.scalar(_COUNT_TABLES_SQL) or 0)
    if tables > 0:
        return True
    extensions = int(await driver.scalar(_COUNT_EXTENSIONS_SQL) or 0)
    return extensions >= 2


class MigrationRunner:
    """Runs an ordered list of scripts against one relational database."""

    def __init__(
        self,
        driver: Optional[SQLDriver],
        assets: Optional[AssetTree] = None,
        statement_timeout: float = DEFAULT_STATEMENT_TIMEOUT,
        service: Optional[str] = None,
        dry_run: bool = False,
    ):
        """Initialize the runner.

        Args:
            driver: Connected SQL driver. May be None only for a dry run.
            assets: Script tree; the packaged tree when omitted.
            statement_timeout: Seconds allowed for each statement.
            service: Service name used in log records and errors.
            dry_run: Tokenize and count statements without executing them.
        """
        if driver is None and not dry_run:
            raise ValueError("a driver is required unless dry_run is set")
        self.driver = driver
        self.assets = assets or default_assets()
        self.statement_timeout = statement_timeout
        self.service = service
        self.dry_run = dry_run
        self.logger = logger.bind(service=service, dry_run=dry_run)

    async def run(self, scripts: Sequence[str]) -> List[MigrationResult]:
        """Run ``scripts`` in order and return one result per file.

        Statement failures never raise here; callers inspect the results.
        """
        self.logger.info("migrations_start", files=len(scripts))
        results = []
        for name in scripts:
            result = await self.run_file(name)
            results.append(result)
            self._log_file_summary(result)

        totals = summarize(results)
        if totals["failed"] or totals["unreadable"]:
            self.logger.warning("migrations_partial", **totals)
        else:
            self.logger.info("migrations_complete", **totals)
        return results

    async def run_file(self, name: str) -> MigrationResult:
        """Run a single script from the tree."""
        started = time.monotonic()
        result = MigrationResult(file_name=name)

        try:
            content = await asyncio.to_thread(self.assets.read_file, name)
            script = strip_meta_commands(content.decode("utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            result.errors.append(_read_error(name, e))
            result.duration = time.monotonic() - started
            return result

        statements = split_statements(script)
        self.logger.debug("migration_file_start", file=name, statements=len(statements))

        for index, statement in enumerate(statements, start=1):
            if self.dry_run:
                self.logger.debug(
                    "statement_simulated", file=name, index=index, line=statement.line,
                    sql=statement.text,
                )
                result.record_success()
                continue

            error = await self._execute(statement)
            if error is None:
                result.record_success()
                self.logger.debug("statement_ok", file=name, index=index, line=statement.line)
            else:
                result.record_failure(statement.text, error, statement.line)
                self.logger.debug(
                    "statement_failed", file=name, index=index, line=statement.line,
                    error=error, sql=statement.text,
                )

        result.duration = time.monotonic() - started
        return result

    async def _execute(self, statement: SQLStatement) -> Optional[str]:
        """Execute one statement; return an error message or None on success.

        A statement that outlives ``statement_timeout`` is reported as failed,
        but the call is still awaited to the end before the next statement
        starts. Drivers that block in a worker thread keep running there after
        the wait is abandoned, so statements of a file never overlap.
        """
        call = asyncio.ensure_future(self.driver.execute(statement.text))
        try:
            done, _ = await asyncio.wait({call}, timeout=self.statement_timeout)
            if not done:
                self.logger.warning(
                    "statement_timeout", line=statement.line,
                    timeout_seconds=self.statement_timeout,
                )
                await asyncio.wait({call})
        except asyncio.CancelledError:
            call.cancel()
            raise

        if call.cancelled():
            return "statement was cancelled"
        error = call.exception()
        if not done:
            self.logger.debug(
                "statement_finished_after_timeout", line=statement.line,
                error=describe_error(error) if error is not None else None,
            )
            return f"statement timed out after {self.statement_timeout:g}s"
        if error is not None:
            return describe_error(error)
        return None

    def _log_file_summary(self, result: MigrationResult) -> None:
        fields = dict(
            file=result.file_name,
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
            duration_seconds=round(result.duration, 3),
        )
        if result.read_failed:
            self.logger.error(
                "migration_file_unreadable", file=result.file_name,
                error=result.errors[0].error,
            )
            return
        if result.ok:
            self.logger.info("migration_file_ok", **fields)
            return

        self.logger.warning("migration_file_partial", **fields)
        for err in result.errors[:LOGGED_ERRORS_PER_FILE]:
            failure = StatementFailed(err.error, result.file_name, err.line, self.service)
            self.logger.error("migration_statement_error", error=str(failure))
        hidden = len(result.errors) - LOGGED_ERRORS_PER_FILE
        if hidden > 0:
            self.logger.warning("migration_more_errors", file=result.file_name, count=hidden)


def _read_error(name: str, exc: BaseException) -> StatementError:
    return StatementError(statement="", error=f"failed to read {name}: {exc}", line=0)
