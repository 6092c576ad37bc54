"""
SQL Reference Extraction

Cheap, tolerant extraction of the tables and qualified columns a SQL
statement touches. This is a best-effort signal for schema learning, not a
SQL front end: it matches literal identifiers after FROM/JOIN and
`table.column` pairs in the SELECT list, ON conditions and WHERE clause.
analyze() never raises; malformed input yields an empty result. parse() is
the strict variant and raises ReferenceExtractionError.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import sqlparse

from ..utils import ErrorContext, ReferenceExtractionError, get_logger

logger = get_logger(__name__)


SQL_RESERVED_WORDS = {
    'SELECT', 'FROM', 'WHERE', 'AND', 'OR', 'NOT', 'IN', 'IS', 'NULL',
    'JOIN', 'LEFT', 'RIGHT', 'INNER', 'OUTER', 'FULL', 'CROSS', 'ON',
    'GROUP', 'BY', 'HAVING', 'ORDER', 'ASC', 'DESC', 'LIMIT', 'OFFSET',
    'INSERT', 'INTO', 'VALUES', 'UPDATE', 'SET', 'DELETE', 'TRUNCATE',
    'CREATE', 'ALTER', 'DROP', 'TABLE', 'INDEX', 'VIEW', 'DATABASE',
    'UNION', 'ALL', 'INTERSECT', 'EXCEPT', 'DISTINCT', 'NATURAL', 'USING',
    'CASE', 'WHEN', 'THEN', 'ELSE', 'END', 'AS', 'LATERAL', 'WINDOW',
    'LIKE', 'BETWEEN', 'EXISTS', 'ANY', 'SOME', 'FETCH', 'FOR', 'WITH',
    'TRUE', 'FALSE', 'RETURNING', 'QUALIFY',
}

# Identifier: bare, "double-quoted", `backticked` or [bracketed]
_IDENT = r'(?:"[^"]+"|`[^`]+`|\[[^\]]+\]|[A-Za-z_][\w$]*)'
_DOTTED = rf'{_IDENT}(?:\.{_IDENT})*'

# The alias is captured in a lookahead so "FROM a JOIN b" still sees "JOIN b"
_TABLE_PATTERN = re.compile(
    rf'\b(?:from|join)\s+({_DOTTED})(?=(?:\s+(?:as\s+)?({_IDENT}))?)',
    re.IGNORECASE,
)
_QUALIFIED_PATTERN = re.compile(rf'(?<![\w.$"`\]])({_IDENT}(?:\.{_IDENT})+)')
_IDENT_PATTERN = re.compile(_IDENT)

_SELECT_LIST = re.compile(r'\bselect\s+(.*?)\s+from\b', re.IGNORECASE)
_WHERE_CLAUSE = re.compile(
    r'\bwhere\s+(.*?)(?=\b(?:order\s+by|group\s+by|having|limit|union)\b|\)|$)',
    re.IGNORECASE,
)
_ON_CLAUSE = re.compile(
    r'\bon\s+(.*?)(?=\b(?:where|join|left|right|inner|outer|full|cross|group|order|limit|union)\b|$)',
    re.IGNORECASE,
)
_BOOLEAN_SPLIT = re.compile(r'\b(?:and|or)\b', re.IGNORECASE)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")


def _unquote(identifier: str) -> str:
    if len(identifier) >= 2 and identifier[0] in '"`[':
        return identifier[1:-1]
    return identifier


def _is_reserved(identifier: str) -> bool:
    return identifier.upper() in SQL_RESERVED_WORDS


@dataclass
class SQLReferences:
    """Tables and qualified columns referenced by one statement"""
    tables: Dict[str, List[str]] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)

    def _key(self, name: str) -> Optional[str]:
        lower = name.lower()
        for existing in self.tables:
            if existing.lower() == lower:
                return existing
        return None

    def add_table(self, name: str) -> str:
        key = self._key(name)
        if key is None:
            self.tables[name] = []
            key = name
        return key

    def add_column(self, table: str, column: str) -> None:
        key = self.add_table(table)
        if column.lower() not in (c.lower() for c in self.tables[key]):
            self.tables[key].append(column)

    def resolve(self, qualifier: str) -> str:
        """Resolve an alias or table qualifier to a table name"""
        table = self.aliases.get(qualifier.lower())
        if table:
            return table
        return self._key(qualifier) or qualifier

    @property
    def table_names(self) -> List[str]:
        return list(self.tables)

    def is_empty(self) -> bool:
        return not self.tables


class ReferenceExtractor:
    """
    Heuristic table/column reference extractor

    Aliases declared as `FROM users u` or `JOIN orders AS o` are resolved
    for qualified references; anything else is matched literally.
    """

    def parse(self, sql: str) -> SQLReferences:
        """Extract references, raising ReferenceExtractionError on failure"""
        try:
            return self._analyze(sql)
        except Exception as e:
            raise ReferenceExtractionError(
                f"Failed to extract tables and columns from SQL: {e}",
                sql_query=sql if isinstance(sql, str) else None,
                context=ErrorContext(operation="extract_references"),
                original_error=e,
            ) from e

    def analyze(self, sql: str) -> SQLReferences:
        """Extract references; returns an empty result on any failure"""
        try:
            return self.parse(sql)
        except ReferenceExtractionError as e:
            logger.warning(e.message)
            return SQLReferences()

    def extract(self, sql: str) -> Dict[str, List[str]]:
        return self.analyze(sql).tables

    def normalize(self, sql: str) -> str:
        """Strip comments and string literals, collapse whitespace"""
        text = sqlparse.format(sql, strip_comments=True)
        text = _STRING_LITERAL.sub("''", text)
        return re.sub(r'\s+', ' ', text).strip()

    def _analyze(self, sql: str) -> SQLReferences:
        refs = SQLReferences()
        if not sql or not sql.strip():
            return refs

        text = self.normalize(sql)

        for match in _TABLE_PATTERN.finditer(text):
            parts = _IDENT_PATTERN.findall(match.group(1))
            if not parts:
                continue
            name = _unquote(parts[-1])
            if _is_reserved(name) or self._is_function_argument(text, match.end(1)):
                continue

            table = refs.add_table(name)
            alias = match.group(2)
            if alias and not _is_reserved(alias):
                refs.aliases[_unquote(alias).lower()] = table

        segments: List[str] = []
        segments.extend(m.group(1) for m in _SELECT_LIST.finditer(text))
        segments.extend(m.group(1) for m in _ON_CLAUSE.finditer(text))
        for where in _WHERE_CLAUSE.finditer(text):
            segments.extend(_BOOLEAN_SPLIT.split(where.group(1)))

        for segment in segments:
            for match in _QUALIFIED_PATTERN.finditer(segment):
                parts = [_unquote(p) for p in _IDENT_PATTERN.findall(match.group(1))]
                if len(parts) < 2:
                    continue
                qualifier, column = parts[-2], parts[-1]
                if _is_reserved(column):
                    continue
                refs.add_column(refs.resolve(qualifier), column)

        return refs

    @staticmethod
    def _is_function_argument(text: str, end: int) -> bool:
        # EXTRACT(YEAR FROM created_at): the "table" is closed by a paren
        rest = text[end:].lstrip()
        return rest.startswith(")")


_default_extractor = ReferenceExtractor()


def extract_references(sql: str) -> Dict[str, List[str]]:
    """Map each referenced table name to the qualified columns seen for it"""
    return _default_extractor.extract(sql)
