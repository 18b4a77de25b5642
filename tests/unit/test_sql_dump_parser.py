"""Tests for the SQL dump parser."""

from decimal import Decimal

import pytest

from columnar_export.ingestion.schema_detector import ColumnSpec, ColumnType
from columnar_export.ingestion.sql_dump_parser import (
    DumpParseError,
    iter_statements,
    iter_value_tuples,
    parse_create_table,
    parse_insert,
    split_top_level,
    unquote_identifier,
)


class TestIterStatements:
    """Tests for iter_statements."""

    def test_splits_on_semicolons(self):
        statements = list(iter_statements(["SELECT 1; SELECT 2;\n", "SELECT 3"]))
        assert statements == ["SELECT 1", "SELECT 2", "SELECT 3"]

    def test_semicolon_inside_literal_is_data(self):
        statements = list(iter_statements(["INSERT INTO t VALUES ('a;b');\n"]))
        assert statements == ["INSERT INTO t VALUES ('a;b')"]

    def test_statement_spanning_lines(self):
        lines = ["INSERT INTO t VALUES\n", "(1,'x'),\n", "(2,'y');\n"]
        statements = list(iter_statements(lines))
        assert len(statements) == 1
        assert "(2,'y')" in statements[0]

    def test_literal_spanning_lines(self):
        lines = ["INSERT INTO t VALUES ('line one\n", "line two; still quoted');\n"]
        statements = list(iter_statements(lines))
        assert statements == ["INSERT INTO t VALUES ('line one\nline two; still quoted')"]

    def test_comments_are_removed(self):
        lines = [
            "-- header comment; with semicolon\n",
            "# hash comment;\n",
            "/*!40101 SET NAMES utf8 */;\n",
            "/* block\n",
            "comment; */ SELECT 1;\n",
        ]
        assert list(iter_statements(lines)) == ["SELECT 1"]

    def test_comment_markers_inside_literal_are_data(self):
        statements = list(iter_statements(["INSERT INTO t VALUES ('-- not # a /* comment');"]))
        assert statements == ["INSERT INTO t VALUES ('-- not # a /* comment')"]

    def test_double_dash_without_space_is_not_a_comment(self):
        assert list(iter_statements(["SELECT 1--1;"])) == ["SELECT 1--1"]

    def test_escaped_quote_does_not_close_literal(self):
        statements = list(iter_statements(["INSERT INTO t VALUES ('it\\'s; fine');"]))
        assert statements == ["INSERT INTO t VALUES ('it\\'s; fine')"]

    def test_unterminated_literal_raises(self):
        with pytest.raises(DumpParseError, match="inside a quoted literal"):
            list(iter_statements(["INSERT INTO t VALUES ('open"]))


class TestSplitTopLevel:
    """Tests for split_top_level."""

    def test_ignores_nested_and_quoted_commas(self):
        text = "`a` int, `b` decimal(10,2), `c` enum('x,y','z')"
        assert split_top_level(text) == ["`a` int", "`b` decimal(10,2)", "`c` enum('x,y','z')"]


class TestUnquoteIdentifier:
    """Tests for unquote_identifier."""

    @pytest.mark.parametrize(
        "raw, expected",
        [("`orders`", "orders"), ('"orders"', "orders"), ("shop.orders", "orders"), ("`shop`.`order items`", "order items")],
    )
    def test_unquotes_last_part(self, raw, expected):
        assert unquote_identifier(raw) == expected


class TestParseCreateTable:
    """Tests for parse_create_table."""

    def test_parses_columns_and_types(self):
        statement = (
            "CREATE TABLE IF NOT EXISTS `shop`.`items` (\n"
            "  `id` int(11) NOT NULL,\n"
            "  `price` decimal(10,2) DEFAULT NULL,\n"
            "  `label` varchar(20),\n"
            "  `shape` geometry,\n"
            "  PRIMARY KEY (`id`),\n"
            "  KEY `idx_label` (`label`),\n"
            "  CONSTRAINT `fk` FOREIGN KEY (`id`) REFERENCES other (`id`)\n"
            ") ENGINE=InnoDB"
        )
        definition = parse_create_table(statement)

        assert definition.name == "items"
        assert definition.columns == ("id", "price", "label", "shape")
        assert definition.hints == (
            ColumnSpec("id", ColumnType.INTEGER),
            ColumnSpec("price", ColumnType.DECIMAL, 10, 2),
            ColumnSpec("label", ColumnType.STRING),
        )

    def test_other_statements_return_none(self):
        assert parse_create_table("CREATE INDEX idx ON t (a)") is None
        assert parse_create_table("DROP TABLE t") is None


class TestParseInsert:
    """Tests for parse_insert."""

    def test_insert_without_column_list(self):
        insert = parse_insert("INSERT INTO t VALUES (1,'a,b'),(2,'c')")

        assert insert.table == "t"
        assert insert.columns is None
        assert list(insert.rows()) == [(1, "a,b"), (2, "c")]

    def test_insert_with_column_list_and_modifiers(self):
        insert = parse_insert("INSERT IGNORE INTO `db`.`t` (`a`, `b`) VALUES (1, NULL)")

        assert insert.table == "t"
        assert insert.columns == ("a", "b")
        assert list(insert.rows()) == [(1, None)]

    def test_replace_statement(self):
        insert = parse_insert("REPLACE INTO t VALUES (7)")
        assert insert.table == "t"
        assert list(insert.rows()) == [(7,)]

    def test_non_insert_returns_none(self):
        assert parse_insert("INSERT INTO t SELECT * FROM u") is None
        assert parse_insert("LOCK TABLES t WRITE") is None


class TestIterValueTuples:
    """Tests for iter_value_tuples."""

    def test_literal_types(self):
        rows = list(iter_value_tuples("(1, -2.50, 'x', NULL, TRUE, false, 1e3)"))
        assert rows == [(1, Decimal("-2.50"), "x", None, True, False, Decimal("1e3"))]

    def test_quoted_null_is_text(self):
        assert list(iter_value_tuples("('NULL', \"null\")")) == [("NULL", "null")]

    def test_escapes_and_doubled_quotes(self):
        rows = list(iter_value_tuples(r"('it\'s', 'tab\there', 'back\\slash', 'O''Hara', 'new\nline')"))
        assert rows == [("it's", "tab\there", "back\\slash", "O'Hara", "new\nline")]

    def test_parentheses_inside_literal(self):
        assert list(iter_value_tuples("('(a), b', 2)")) == [("(a), b", 2)]

    def test_introducer_and_hex_literals(self):
        rows = list(iter_value_tuples("(_utf8mb4'café', _binary 'raw', X'0AFF')"))
        assert rows == [("café", "raw", "0AFF")]

    def test_empty_tuple(self):
        assert list(iter_value_tuples("()")) == [()]

    def test_stops_at_trailing_clause(self):
        rows = list(iter_value_tuples("(1),(2) ON DUPLICATE KEY UPDATE a = VALUES(a)"))
        assert rows == [(1,), (2,)]

    def test_function_call_raises(self):
        with pytest.raises(DumpParseError, match="Expressions are not supported"):
            list(iter_value_tuples("(1, NOW())"))

    def test_unterminated_tuple_raises(self):
        with pytest.raises(DumpParseError):
            list(iter_value_tuples("(1, 'a'"))

    def test_missing_paren_raises(self):
        with pytest.raises(DumpParseError, match="Expected '\\('"):
            list(iter_value_tuples("1, 2"))
