"""Streaming parser for SQL dump files.

The parser works one statement at a time and never loads the whole dump.
Its quoting contract:

* Statements end at ``;`` outside of quotes and comments.
* ``-- `` (dash dash followed by whitespace), ``#`` and ``/* ... */`` are
  comments outside of quotes. MySQL conditional comments (``/*!40101 ... */``)
  are dropped like any other block comment.
* String literals are delimited by ``'`` or ``"``. Inside them a backslash
  escapes the next character (``\\n \\t \\r \\0 \\b \\Z \\\\ \\' \\"``; any
  other escaped character stands for itself) and a doubled delimiter (``''``)
  stands for one delimiter. Commas, parentheses and semicolons inside a
  literal are data.
* Identifiers may be quoted with backticks or double quotes and may be
  qualified (``db.table``); the last part is the table name.
* In ``VALUES`` lists, unquoted ``NULL`` is ``None``, ``TRUE``/``FALSE`` are
  booleans, integer literals become ``int`` and other numeric literals become
  ``Decimal``. Quoted literals are always strings, so ``'NULL'`` is the text
  NULL. Charset introducers such as ``_utf8mb4'...'`` and ``_binary'...'``
  are skipped; hex literals ``X'..'`` are returned as their hex text.

Expressions and function calls inside ``VALUES`` are not supported and raise
:class:`DumpParseError`.
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional, Tuple

from .schema_detector import ColumnSpec, map_declared_type


class DumpParseError(ValueError):
    """Raised when a statement in the dump cannot be tokenized."""


_IDENT = r'(?:`[^`]+`|"[^"]+"|[\w$]+)'
_QUALIFIED_IDENT = rf"{_IDENT}(?:\s*\.\s*{_IDENT})*"

_CREATE_TABLE_RE = re.compile(
    rf"^CREATE\s+(?:TEMPORARY\s+|UNLOGGED\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?({_QUALIFIED_IDENT})\s*\(",
    re.IGNORECASE,
)
_INSERT_RE = re.compile(
    rf"^(?:INSERT|REPLACE)(?:\s+(?:LOW_PRIORITY|DELAYED|HIGH_PRIORITY|IGNORE))*\s+INTO\s+"
    rf"({_QUALIFIED_IDENT})\s*(?:\(([^)]*)\))?\s*VALUES\s*",
    re.IGNORECASE,
)
_IDENT_PART_RE = re.compile(r'`([^`]+)`|"([^"]+)"|([\w$]+)')

_OUTSIDE_RE = re.compile(r"['\"`;#]|--|/\*")
_QUOTED_SPECIAL = {
    "'": re.compile(r"[\\']"),
    '"': re.compile(r'[\\"]'),
    "`": re.compile(r"`"),
}
_BARE_RE = re.compile(r"[^,()\s]+")
_INTRODUCER_RE = re.compile(r"_[A-Za-z0-9]+\s*(?=['\"])")
_HEX_RE = re.compile(r"[xX]'([0-9A-Fa-f]*)'")
_INT_LITERAL_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_LITERAL_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

_ESCAPES = {
    "0": "\0",
    "b": "\b",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "Z": "\x1a",
    "%": "\\%",
    "_": "\\_",
}

_CONSTRAINT_WORDS = {
    "PRIMARY", "KEY", "UNIQUE", "CONSTRAINT", "INDEX", "FULLTEXT", "SPATIAL",
    "FOREIGN", "CHECK", "EXCLUDE", "LIKE", "PERIOD",
}


@dataclass(frozen=True)
class TableDefinition:
    """Columns declared by a ``CREATE TABLE`` statement."""

    name: str
    columns: Tuple[str, ...]
    hints: Tuple[ColumnSpec, ...]


@dataclass(frozen=True)
class InsertStatement:
    """Header of an ``INSERT ... VALUES`` statement.

    ``values_offset`` is the position in ``statement`` where the first value
    tuple starts.
    """

    table: str
    columns: Optional[Tuple[str, ...]]
    statement: str
    values_offset: int

    def rows(self) -> Iterator[tuple]:
        return iter_value_tuples(self.statement, self.values_offset)


def unquote_identifier(name: str) -> str:
    """Return the unquoted last part of a possibly qualified identifier."""
    parts = [a or b or c for a, b, c in _IDENT_PART_RE.findall(name)]
    if not parts:
        return name.strip()
    return parts[-1]


def iter_statements(lines: Iterable[str]) -> Iterator[str]:
    """Split a stream of dump text into statements.

    Args:
        lines: Text chunks, typically the lines of an open file.

    Yields:
        Each statement with comments removed and without its terminating
        semicolon. Empty statements are skipped.
    """
    buf: List[str] = []
    quote: Optional[str] = None
    in_comment = False

    for line in lines:
        pos = 0
        n = len(line)
        while pos < n:
            if in_comment:
                end = line.find("*/", pos)
                if end < 0:
                    pos = n
                else:
                    pos = end + 2
                    in_comment = False
                continue

            if quote is not None:
                special = _QUOTED_SPECIAL[quote]
                i = pos
                closed = False
                while i < n:
                    m = special.search(line, i)
                    if m is None:
                        i = n
                        break
                    if m.group() == "\\":
                        i = m.start() + 2
                        continue
                    i = m.end()
                    closed = True
                    break
                buf.append(line[pos:min(i, n)])
                pos = min(i, n)
                if closed:
                    quote = None
                continue

            m = _OUTSIDE_RE.search(line, pos)
            if m is None:
                buf.append(line[pos:])
                break
            buf.append(line[pos:m.start()])
            token = m.group()
            pos = m.end()
            if token in ("'", '"', "`"):
                quote = token
                buf.append(token)
            elif token == ";":
                statement = "".join(buf).strip()
                buf = []
                if statement:
                    yield statement
            elif token == "#":
                buf.append("\n")
                pos = n
            elif token == "--":
                following = line[pos:pos + 1]
                if following == "" or following.isspace():
                    buf.append("\n")
                    pos = n
                else:
                    buf.append(token)
            else:
                buf.append(" ")
                in_comment = True

    if quote is not None:
        raise DumpParseError("Dump ends inside a quoted literal")
    statement = "".join(buf).strip()
    if statement:
        yield statement


def split_top_level(text: str, separator: str = ",") -> List[str]:
    """Split on ``separator`` outside of parentheses and quotes."""
    items: List[str] = []
    depth = 0
    quote: Optional[str] = None
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if quote is not None:
            if ch == "\\" and quote != "`":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == separator and depth == 0:
            items.append(text[start:i])
            start = i + 1
        i += 1
    items.append(text[start:])
    return [item.strip() for item in items if item.strip()]


def _matching_paren(text: str, open_index: int) -> int:
    """Return the index of the parenthesis closing ``text[open_index]``."""
    depth = 0
    quote: Optional[str] = None
    i = open_index
    n = len(text)
    while i < n:
        ch = text[i]
        if quote is not None:
            if ch == "\\" and quote != "`":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise DumpParseError("Unbalanced parentheses in CREATE TABLE")


def parse_create_table(statement: str) -> Optional[TableDefinition]:
    """Parse a ``CREATE TABLE`` statement.

    Returns:
        The table definition, or None if the statement is not a table
        definition.

    Raises:
        DumpParseError: If the column list is malformed.
    """
    match = _CREATE_TABLE_RE.match(statement)
    if not match:
        return None

    name = unquote_identifier(match.group(1))
    open_index = match.end() - 1
    body = statement[open_index + 1:_matching_paren(statement, open_index)]

    columns: List[str] = []
    hints: List[ColumnSpec] = []
    for item in split_top_level(body):
        first_word = item.split(None, 1)[0].upper()
        if first_word in _CONSTRAINT_WORDS:
            continue
        ident = _IDENT_PART_RE.match(item)
        if not ident:
            continue
        column = ident.group(1) or ident.group(2) or ident.group(3)
        columns.append(column)
        spec = map_declared_type(column, item[ident.end():])
        if spec is not None:
            hints.append(spec)

    return TableDefinition(name=name, columns=tuple(columns), hints=tuple(hints))


def parse_insert(statement: str) -> Optional[InsertStatement]:
    """Parse the header of an ``INSERT``/``REPLACE ... VALUES`` statement.

    Returns:
        The parsed statement, or None if it is not a VALUES insert.
    """
    match = _INSERT_RE.match(statement)
    if not match:
        return None
    columns = None
    if match.group(2) is not None:
        columns = tuple(unquote_identifier(c) for c in match.group(2).split(",") if c.strip())
    return InsertStatement(
        table=unquote_identifier(match.group(1)),
        columns=columns,
        statement=statement,
        values_offset=match.end(),
    )


def _skip_whitespace(text: str, i: int) -> int:
    n = len(text)
    while i < n and text[i].isspace():
        i += 1
    return i


def _read_quoted(text: str, i: int, quote: str) -> Tuple[str, int]:
    """Read a literal whose opening quote is at ``i - 1``."""
    special = _QUOTED_SPECIAL[quote]
    out: List[str] = []
    n = len(text)
    while True:
        m = special.search(text, i)
        if m is None:
            raise DumpParseError("Unterminated string literal")
        j = m.start()
        out.append(text[i:j])
        if m.group() == "\\":
            if j + 1 >= n:
                raise DumpParseError("Unterminated string literal")
            escaped = text[j + 1]
            out.append(_ESCAPES.get(escaped, escaped))
            i = j + 2
        elif j + 1 < n and text[j + 1] == quote:
            out.append(quote)
            i = j + 2
        else:
            return "".join(out), j + 1


def _bare_value(token: str):
    upper = token.upper()
    if upper == "NULL":
        return None
    if upper == "TRUE":
        return True
    if upper == "FALSE":
        return False
    if _INT_LITERAL_RE.match(token):
        return int(token)
    if _NUMBER_LITERAL_RE.match(token):
        return Decimal(token)
    return token


def _read_value(text: str, i: int):
    ch = text[i]
    if ch in ("'", '"'):
        return _read_quoted(text, i + 1, ch)

    hex_match = _HEX_RE.match(text, i)
    if hex_match:
        return hex_match.group(1), hex_match.end()

    introducer = _INTRODUCER_RE.match(text, i)
    if introducer:
        j = introducer.end()
        return _read_quoted(text, j + 1, text[j])

    bare = _BARE_RE.match(text, i)
    if not bare:
        raise DumpParseError(f"Unexpected {ch!r} at offset {i}")
    end = _skip_whitespace(text, bare.end())
    if end < len(text) and text[end] == "(":
        raise DumpParseError(f"Expressions are not supported in VALUES: {bare.group()}(...)")
    return _bare_value(bare.group()), bare.end()


def iter_value_tuples(text: str, start: int = 0) -> Iterator[tuple]:
    """Tokenize a ``VALUES`` list into row tuples.

    Args:
        text: Statement text.
        start: Offset of the first ``(``.

    Yields:
        One tuple of Python values per row.

    Raises:
        DumpParseError: If the list is malformed.
    """
    n = len(text)
    i = start
    while True:
        i = _skip_whitespace(text, i)
        if i >= n:
            return
        if text[i] != "(":
            raise DumpParseError(f"Expected '(' at offset {i}, found {text[i]!r}")
        i += 1

        row = []
        while True:
            i = _skip_whitespace(text, i)
            if i >= n:
                raise DumpParseError("Unterminated value tuple")
            if text[i] == ")" and not row:
                i += 1
                break
            value, i = _read_value(text, i)
            row.append(value)
            i = _skip_whitespace(text, i)
            if i >= n:
                raise DumpParseError("Unterminated value tuple")
            if text[i] == ",":
                i += 1
                continue
            if text[i] == ")":
                i += 1
                break
            raise DumpParseError(f"Unexpected {text[i]!r} at offset {i}")
        yield tuple(row)

        i = _skip_whitespace(text, i)
        if i < n and text[i] == ",":
            i += 1
            continue
        # End of the list, or a trailing clause such as ON DUPLICATE KEY UPDATE.
        return
