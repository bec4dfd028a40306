# polydb — multi-backend database abstraction layer
# Copyright (C) 2024-2026 Dr Horst Herb
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""SQL dialect conversion as pure functions without I/O.

Application code (and the query builder) writes MySQL-flavoured SQL:
backtick-quoted identifiers, ``LIMIT start, count``, ``NOW()`` and friends,
``?`` placeholders, and the ``#__`` table-prefix token.  :func:`convert`
rewrites such a statement for the target backend::

    sql, params = convert("SELECT * FROM `#__t` WHERE `a`=?", [1], "sqlite", prefix="app")
    # 'SELECT * FROM "app_t" WHERE "a"=?', [1]

Conversion is lexical and best-effort.  String literals are never touched,
parameters are returned unchanged, and constructs that have no rewrite rule
pass through as-is (they fail at execution time like any other bad query).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator, Sequence
from typing import Any

logger = logging.getLogger(__name__)

MYSQL = "mysql"
SQLITE = "sqlite"
POSTGRESQL = "postgresql"

DIALECTS = (MYSQL, SQLITE, POSTGRESQL)

_ALIASES = {
    "mysql": MYSQL,
    "mariadb": MYSQL,
    "mysqli": MYSQL,
    "sqlite": SQLITE,
    "sqlite3": SQLITE,
    "postgresql": POSTGRESQL,
    "postgres": POSTGRESQL,
    "pgsql": POSTGRESQL,
    "psql": POSTGRESQL,
}

PREFIX_TOKEN = "#__"


def normalize_dialect(name: str) -> str:
    """Return the canonical dialect name for *name* (case-insensitive).

    Raises :class:`ValueError` for an unknown dialect.
    """
    key = (name or "").strip().lower()
    if key not in _ALIASES:
        raise ValueError(
            f"Unknown database dialect {name!r}. Available: {list(DIALECTS)}"
        )
    return _ALIASES[key]


def replace_prefix(sql: str, prefix: str) -> str:
    """Substitute the ``#__`` token with ``"<prefix>_"`` (or nothing)."""
    return sql.replace(PREFIX_TOKEN, f"{prefix}_" if prefix else "")


# ---------------------------------------------------------------------------
# Literal masking
# ---------------------------------------------------------------------------

_SINGLE_QUOTED = r"'(?:[^'\\]|\\.|'')*'"
_DOUBLE_QUOTED = r'"(?:[^"\\]|\\.|"")*"'
_BACKTICKED = r"`[^`]*`"

# In MySQL-flavoured SQL double quotes delimit strings; in ANSI SQL
# they delimit identifiers.
_ANSI_LITERALS = re.compile(_SINGLE_QUOTED, re.S)
_QUOTED_ANYTHING = re.compile(f"{_SINGLE_QUOTED}|{_DOUBLE_QUOTED}|{_BACKTICKED}", re.S)

_MASK = "\x00{}\x00"
_MASK_RE = re.compile("\x00(\\d+)\x00")


def _mask(sql: str, pattern: re.Pattern[str]) -> tuple[str, list[str]]:
    """Replace every literal matched by *pattern* with a numbered token."""
    literals: list[str] = []

    def _stash(match: re.Match[str]) -> str:
        literals.append(match.group(0))
        return _MASK.format(len(literals) - 1)

    return pattern.sub(_stash, sql), literals


def _unmask(sql: str, literals: list[str]) -> str:
    return _MASK_RE.sub(lambda m: literals[int(m.group(1))], sql)


def _literal_value(token: str, literals: list[str]) -> str | None:
    """Return the unquoted text of a masked string literal, or ``None``."""
    match = _MASK_RE.fullmatch(token.strip())
    if match is None:
        return None
    literal = literals[int(match.group(1))]
    if literal.startswith("`"):
        return None
    return literal[1:-1]


# ---------------------------------------------------------------------------
# Function-call rewriting
# ---------------------------------------------------------------------------


def _split_args(text: str) -> list[str]:
    """Split a call's argument text on top-level commas."""
    args, depth, current = [], 0, []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    args.append("".join(current).strip())
    return args


def _rewrite_calls(
    sql: str,
    name: str,
    rewrite: Callable[[list[str]], str | None],
) -> str:
    """Replace every ``name(args)`` call with ``rewrite(args)``.

    Parentheses are matched properly so nested calls survive.  When
    *rewrite* returns ``None`` the call is left untouched.
    """
    pattern = re.compile(rf"\b{name}\s*\(", re.I)
    out, pos = [], 0
    while True:
        match = pattern.search(sql, pos)
        if match is None:
            break
        depth, end = 1, match.end()
        while end < len(sql) and depth:
            if sql[end] == "(":
                depth += 1
            elif sql[end] == ")":
                depth -= 1
            end += 1
        if depth:
            break  # unbalanced: leave the rest alone
        inner = sql[match.end():end - 1]
        # Rewrite nested occurrences first.
        inner = _rewrite_calls(inner, name, rewrite)
        replacement = rewrite(_split_args(inner))
        out.append(sql[pos:match.start()])
        out.append(replacement if replacement is not None else f"{sql[match.start():match.end()]}{inner})")
        pos = end
    out.append(sql[pos:])
    return "".join(out)


# MySQL DATE_FORMAT specifiers → target equivalents.
_SQLITE_DATE_FORMAT = {"%i": "%M", "%s": "%S"}
_POSTGRES_DATE_FORMAT = {
    "%Y": "YYYY",
    "%y": "YY",
    "%m": "MM",
    "%d": "DD",
    "%H": "HH24",
    "%i": "MI",
    "%s": "SS",
}


def _translate_format(fmt: str, table: dict[str, str]) -> str:
    return re.sub(r"%[A-Za-z]", lambda m: table.get(m.group(0), m.group(0)), fmt)


def _date_format_rewriter(
    literals: list[str], target: str,
) -> Callable[[list[str]], str | None]:
    def _rewrite(args: list[str]) -> str | None:
        if len(args) != 2:
            return None
        fmt = _literal_value(args[1], literals)
        if fmt is None:
            return None
        if target == SQLITE:
            literals.append(f"'{_translate_format(fmt, _SQLITE_DATE_FORMAT)}'")
            return f"strftime({_MASK.format(len(literals) - 1)}, {args[0]})"
        literals.append(f"'{_translate_format(fmt, _POSTGRES_DATE_FORMAT)}'")
        return f"TO_CHAR({args[0]}, {_MASK.format(len(literals) - 1)})"

    return _rewrite


def _concat_to_pipes(args: list[str]) -> str:
    return "(" + " || ".join(args) + ")"


# ---------------------------------------------------------------------------
# Per-dialect substitution tables (applied to masked SQL, in order)
# ---------------------------------------------------------------------------

_SUBSTITUTIONS: dict[str, list[tuple[re.Pattern[str], str]]] = {
    SQLITE: [
        (re.compile(r"\bNOW\(\s*\)", re.I), "datetime('now')"),
        (re.compile(r"\bCURDATE\(\s*\)", re.I), "date('now')"),
        (re.compile(r"\bRAND\(\s*\)", re.I), "RANDOM()"),
        (re.compile(r"\bSUBSTRING\s*\(", re.I), "SUBSTR("),
        (re.compile(r"\bAUTO_INCREMENT\b", re.I), "AUTOINCREMENT"),
        (re.compile(r"\bTRUE\b", re.I), "1"),
        (re.compile(r"\bFALSE\b", re.I), "0"),
    ],
    POSTGRESQL: [
        (re.compile(r"\bNOW\(\s*\)", re.I), "CURRENT_TIMESTAMP"),
        (re.compile(r"\bCURDATE\(\s*\)", re.I), "CURRENT_DATE"),
        (re.compile(r"\bRAND\(\s*\)", re.I), "RANDOM()"),
        (re.compile(r"\bIFNULL\s*\(", re.I), "COALESCE("),
        (re.compile(r"\b(?:INT|INTEGER)\b((?:\s+NOT\s+NULL)?)\s+AUTO_INCREMENT\b", re.I), r"SERIAL\1"),
    ],
}

_LIMIT_COMMA = re.compile(r"\bLIMIT\s+(\d+)\s*,\s*(\d+)", re.I)
_LIMIT_OFFSET = re.compile(r"\bLIMIT\s+(\d+)\s+OFFSET\s+(\d+)", re.I)
_BACKTICK_IDENT = re.compile(r"`([^`]*)`")
_DOUBLE_QUOTED_IDENT = re.compile(r'"((?:[^"]|"")*)"')
_NUMBERED_PLACEHOLDER = re.compile(r"\$\d+\b")


def _to_generic(sql: str, source: str) -> str:
    """Bring ANSI-style SQL (SQLite/PostgreSQL) back to the generic form."""
    masked, literals = _mask(sql, _ANSI_LITERALS)
    masked = _DOUBLE_QUOTED_IDENT.sub(lambda m: "`" + m.group(1).replace('""', '"') + "`", masked)
    masked = _LIMIT_OFFSET.sub(r"LIMIT \2,\1", masked)
    if source == POSTGRESQL:
        masked = _NUMBERED_PLACEHOLDER.sub("?", masked)
    return _unmask(masked, literals)


def _double_quote(match: re.Match[str]) -> str:
    return '"' + match.group(1).replace('"', '""') + '"'


def _from_generic(sql: str, target: str) -> str:
    # Identifiers stay masked through the substitutions so a column named
    # `true` or `now` keeps its name.
    masked, literals = _mask(sql, _QUOTED_ANYTHING)

    masked = _rewrite_calls(masked, "DATE_FORMAT", _date_format_rewriter(literals, target))
    masked = _rewrite_calls(masked, "CONCAT", _concat_to_pipes)
    for pattern, replacement in _SUBSTITUTIONS[target]:
        masked = pattern.sub(replacement, masked)
    if target == POSTGRESQL:
        masked = _LIMIT_COMMA.sub(r"LIMIT \2 OFFSET \1", masked)

    literals = [_BACKTICK_IDENT.sub(_double_quote, lit) if lit.startswith("`") else lit
                for lit in literals]
    return _unmask(masked, literals)


class DialectConverter:
    """Rewrites SQL written in *source* dialect for *target*.

    Args:
        target: Backend the SQL will run on.
        source: Dialect the SQL is written in (``"mysql"`` for everything the
            query builder and schema engine produce).
    """

    def __init__(self, target: str, source: str = MYSQL) -> None:
        self.target = normalize_dialect(target)
        self.source = normalize_dialect(source)

    def convert(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        prefix: str | None = None,
    ) -> tuple[str, list[Any]]:
        """Return ``(converted_sql, params)``.

        *prefix* replaces the ``#__`` token; ``None`` leaves the token in
        place for the connection to substitute later.
        """
        params = list(params) if params is not None else []
        if prefix is not None:
            sql = replace_prefix(sql, prefix)

        if self.source == self.target:
            return sql, params

        converted = sql
        try:
            if self.source != MYSQL:
                converted = _to_generic(converted, self.source)
            if self.target != MYSQL:
                converted = _from_generic(converted, self.target)
        except (re.error, IndexError):
            logger.warning("Dialect conversion failed, passing SQL through: %s", sql)
            converted = sql
        return converted, params


def convert(
    sql: str,
    params: Sequence[Any] | None,
    target: str,
    prefix: str | None = None,
    source: str = MYSQL,
) -> tuple[str, list[Any]]:
    """Functional shortcut for :meth:`DialectConverter.convert`."""
    return DialectConverter(target, source).convert(sql, params, prefix)


def split_quoted(sql: str) -> Iterator[tuple[bool, str]]:
    """Yield ``(is_quoted, chunk)`` pieces of *sql*.

    Quoted chunks are string literals and quoted identifiers; everything
    else is plain SQL text.
    """
    pos = 0
    for match in _QUOTED_ANYTHING.finditer(sql):
        if match.start() > pos:
            yield False, sql[pos:match.start()]
        yield True, match.group(0)
        pos = match.end()
    if pos < len(sql):
        yield False, sql[pos:]


def format_paramstyle(sql: str) -> str:
    """Adapt ``?`` placeholders for "format"-paramstyle drivers.

    PyMySQL and psycopg2 expect ``%s`` and treat a bare ``%`` as a format
    character, so every literal ``%`` is doubled.  Placeholders inside
    quoted strings or identifiers are left alone.
    """
    out = []
    for quoted, chunk in split_quoted(sql):
        chunk = chunk.replace("%", "%%")
        out.append(chunk if quoted else chunk.replace("?", "%s"))
    return "".join(out)


def split_statements(sql: str) -> list[str]:
    """Split a multi-statement script on ``;`` outside quoted text."""
    statements, current = [], []
    for quoted, chunk in split_quoted(sql):
        if quoted:
            current.append(chunk)
            continue
        pieces = chunk.split(";")
        current.append(pieces[0])
        for piece in pieces[1:]:
            statements.append("".join(current))
            current = [piece]
    statements.append("".join(current))
    return [s.strip() for s in statements if s.strip()]
