"""Tests for the PostgreSQL-aware statement splitter."""

import re

import pytest

from kubexds.migrations.tokenizer import split_statements, strip_meta_commands


def _texts(script):
    return [s.text for s in split_statements(script)]


class TestSplitting:
    """Top-level semicolons end statements; everything else is preserved."""

    def test_simple_statements(self):
        assert _texts("SELECT 1;\nSELECT 2;\n") == ["SELECT 1;", "SELECT 2;"]

    def test_do_block_with_inner_semicolons(self):
        statements = _texts("DO $$ BEGIN PERFORM 1; END $$; SELECT 1;")
        assert statements == ["DO $$ BEGIN PERFORM 1; END $$;", "SELECT 1;"]

    def test_trailing_text_without_terminator(self):
        statements = split_statements("SELECT 1;\nSELECT 2")
        assert [s.text for s in statements] == ["SELECT 1;", "SELECT 2"]
        assert statements[1].line == 2

    def test_empty_statements_dropped(self):
        statements = split_statements(";;  ;\nSELECT 1;")
        assert [s.text for s in statements] == ["SELECT 1;"]
        assert statements[0].line == 2

    def test_empty_input(self):
        assert split_statements("") == []
        assert split_statements("   \n\n") == []

    def test_bytes_input(self):
        assert _texts(b"SELECT 'caf\xc3\xa9';") == ["SELECT 'café';"]

    def test_no_characters_lost(self):
        script = (
            "CREATE TABLE t (id int, note text DEFAULT 'a;b');\n"
            "-- comment; here\n"
            "INSERT INTO t VALUES (1, $q$x;y$q$);\n"
            "/* block; */ SELECT \"odd;name\" FROM t;\n"
        )
        joined = "".join(_texts(script))
        assert re.sub(r"\s", "", joined) == re.sub(r"\s", "", script)


class TestDollarQuoting:
    """Dollar-quoted bodies are opaque until the matching tag."""

    @pytest.mark.parametrize("tag", ["", "t", "fn_body", "A1"])
    def test_body_kept_whole(self, tag):
        body = "BEGIN; SELECT 'x'; -- not a comment\n /* nor this */ $other$ ; END;"
        script = f"${tag}${body}${tag}$;"
        assert _texts(script) == [script]

    def test_nested_different_tag(self):
        script = "CREATE FUNCTION f() RETURNS void AS $outer$ SELECT $inner$;$inner$; $outer$ LANGUAGE sql;"
        assert _texts(script) == [script]

    def test_dollar_parameter_is_not_a_tag(self):
        assert _texts("PREPARE p AS SELECT $1; EXECUTE p(1);") == [
            "PREPARE p AS SELECT $1;",
            "EXECUTE p(1);",
        ]

    def test_unclosed_dollar_block_runs_to_end(self):
        statements = _texts("SELECT 1; DO $body$ BEGIN; SELECT 2;")
        assert statements == ["SELECT 1;", "DO $body$ BEGIN; SELECT 2;"]


class TestQuotesAndComments:
    """Quotes and comments hide semicolons and other openers."""

    def test_literal_hides_openers(self):
        script = "SELECT '--x; /* y */ $t$' AS a; SELECT 2;"
        assert _texts(script) == ["SELECT '--x; /* y */ $t$' AS a;", "SELECT 2;"]

    def test_doubled_single_quote(self):
        assert _texts("INSERT INTO t VALUES ('it''s; fine');") == [
            "INSERT INTO t VALUES ('it''s; fine');"
        ]

    def test_doubled_double_quote(self):
        script = 'SELECT "we""ird;id" FROM t; SELECT 2;'
        assert _texts(script) == ['SELECT "we""ird;id" FROM t;', "SELECT 2;"]

    def test_line_comment_hides_semicolon(self):
        script = "SELECT 1 -- first; still a comment\n;\nSELECT 2;"
        assert _texts(script) == ["SELECT 1 -- first; still a comment\n;", "SELECT 2;"]

    def test_block_comment_hides_semicolon(self):
        assert _texts("/* a; b */ SELECT 1;") == ["/* a; b */ SELECT 1;"]

    def test_comment_opener_inside_dollar_block(self):
        assert _texts("$$ /* $$; SELECT 1;") == ["$$ /* $$;", "SELECT 1;"]

    def test_single_dash_and_slash(self):
        assert _texts("SELECT 4 - 2 / 1; SELECT 2;") == ["SELECT 4 - 2 / 1;", "SELECT 2;"]


class TestLineTracking:
    """Each statement reports the line of its first non-blank character."""

    def test_lines_after_blank_lines(self):
        statements = split_statements("\n\nSELECT 1;\n\n\nSELECT 2;")
        assert [s.line for s in statements] == [3, 6]

    def test_leading_comment_belongs_to_statement(self):
        statements = split_statements("SELECT 1;\n-- about two\nSELECT\n  2;\n")
        assert statements[1].text.startswith("-- about two")
        assert statements[1].line == 2

    def test_multiline_statement_counts_inner_newlines(self):
        script = "CREATE FUNCTION f() AS $$\nBEGIN\n  RETURN;\nEND;\n$$;\nSELECT 1;"
        statements = split_statements(script)
        assert [s.line for s in statements] == [1, 6]

    def test_crlf_line_endings(self):
        statements = split_statements("SELECT 1;\r\nSELECT 2;\r\n\r\nSELECT 3;")
        assert [s.line for s in statements] == [1, 2, 4]


class TestMetaCommands:
    """psql meta-commands are blanked, keeping line numbers stable."""

    def test_meta_lines_blanked(self):
        script = "\\set ON_ERROR_STOP on\nSELECT 1;\n  \\echo hi\nSELECT 2;"
        stripped = strip_meta_commands(script)
        assert stripped.count("\n") == script.count("\n")
        statements = split_statements(stripped)
        assert [s.text for s in statements] == ["SELECT 1;", "SELECT 2;"]
        assert [s.line for s in statements] == [2, 4]

    def test_backslash_inside_statement_untouched(self):
        script = "SELECT E'a\\nb';"
        assert strip_meta_commands(script) == script
