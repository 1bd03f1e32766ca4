"""
PostgreSQL-aware statement splitter.

Splits a multi-statement script on top-level ``;`` while respecting single
quoted literals, double quoted identifiers, ``--`` line comments, ``/* */``
block comments and dollar-quoted blocks (``$$`` or ``$tag$``). It is not a SQL
parser: it only needs to know where statements end.

Precedence at each position outside of any quoted region:

1. ``--`` opens a line comment, closed by the next newline.
2. ``/*`` opens a block comment, closed by the next ``*/`` (no nesting).
3. ``$tag$`` opens a dollar-quoted block closed only by the same ``$tag$``.
4. ``'`` opens a literal; ``''`` inside it is an escaped quote.
5. ``"`` opens an identifier; ``""`` inside it is an escaped quote.
6. ``;`` ends the statement. Newlines right after it are consumed.
"""

import re
from typing import List, Optional, Union

from ..data.models.migrations import SQLStatement

_DOLLAR_TAG_RE = re.compile(r"\$[A-Za-z0-9_]*\$")
# Run of characters that can never open a region or end a statement.
_PLAIN_RE = re.compile(r"[^-/$'\";]+")


class _StatementSplitter:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.line = 1
        self.buffer: List[str] = []
        self.start_line: Optional[int] = None
        self.statements: List[SQLStatement] = []

    def split(self) -> List[SQLStatement]:
        text = self.text
        end = len(text)
        while self.pos < end:
            ch = text[self.pos]
            nxt = text[self.pos + 1] if self.pos + 1 < end else ""

            if ch == "-" and nxt == "-":
                self._take_through("\n", skip=2)
            elif ch == "/" and nxt == "*":
                self._take_through("*/", skip=2)
            elif ch == "$" and self._take_dollar_block():
                pass
            elif ch == "'" or ch == '"':
                self._take_quoted(ch)
            elif ch == ";":
                self._take(1)
                self._flush()
                self._skip_newlines()
            else:
                plain = _PLAIN_RE.match(text, self.pos)
                self._take(plain.end() - self.pos if plain else 1)

        self._flush()
        return self.statements

    def _take(self, count: int) -> None:
        """Move ``count`` characters into the current statement."""
        chunk = self.text[self.pos:self.pos + count]
        if self.start_line is None:
            stripped = chunk.lstrip()
            if stripped:
                lead = len(chunk) - len(stripped)
                self.start_line = self.line + chunk.count("\n", 0, lead)
        self.buffer.append(chunk)
        self.line += chunk.count("\n")
        self.pos += count

    def _take_through(self, terminator: str, skip: int = 0) -> None:
        """Take ``skip`` opener characters, then everything through ``terminator``.

        An unterminated region runs to the end of the input.
        """
        found = self.text.find(terminator, self.pos + skip)
        if found == -1:
            self._take(len(self.text) - self.pos)
        else:
            self._take(found + len(terminator) - self.pos)

    def _take_dollar_block(self) -> bool:
        match = _DOLLAR_TAG_RE.match(self.text, self.pos)
        if match is None:
            return False
        tag = match.group(0)
        self._take_through(tag, skip=len(tag))
        return True

    def _take_quoted(self, quote: str) -> None:
        text = self.text
        cursor = self.pos + 1
        while True:
            found = text.find(quote, cursor)
            if found == -1:
                self._take(len(text) - self.pos)
                return
            if text.startswith(quote, found + 1):
                cursor = found + 2
                continue
            self._take(found + 1 - self.pos)
            return

    def _skip_newlines(self) -> None:
        text = self.text
        while self.pos < len(text) and text[self.pos] in "\r\n":
            if text[self.pos] == "\n":
                self.line += 1
            self.pos += 1

    def _flush(self) -> None:
        statement = "".join(self.buffer).strip()
        if statement and statement != ";":
            self.statements.append(
                SQLStatement(text=statement, line=self.start_line or self.line)
            )
        self.buffer = []
        self.start_line = None


def split_statements(script: Union[str, bytes]) -> List[SQLStatement]:
    """Split ``script`` into non-empty statements in source order.

    Each statement keeps the ``;`` that closed it. Trailing text without a
    terminator is returned as a final statement.
    """
    if isinstance(script, bytes):
        script = script.decode("utf-8")
    return _StatementSplitter(script).split()


def strip_meta_commands(script: str) -> str:
    """Blank out psql meta-command lines (``\\set``, ``\\echo``...).

    The lines are emptied rather than removed so reported line numbers still
    match the original file.
    """
    lines = script.split("\n")
    return "\n".join("" if line.lstrip().startswith("\\") else line for line in lines)
