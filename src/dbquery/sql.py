"""
Named parameter parsing for SQL text.

`:name` placeholders are rewritten into the driver's positional marker in a
single tokenization pass:

    SQL text → Tokenize → Split at placeholders → Render positional SQL
                (once)        (one pass)           (per expansion)

Quoted strings, double-quoted identifiers, `--` and `/* */` comments and
PostgreSQL `::` casts are skipped, so text that merely looks like a
placeholder is left alone.

Main entry points:
- `parse_sql(sql, placeholder)` - parse once, cached per (sql, placeholder)
- `ParsedStatement.expand(counts)` - widen array parameters into N slots
"""
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto
from types import MappingProxyType

from dbquery.cache import cached

__all__ = [
    'ParsedStatement',
    'Token',
    'TokenType',
    'parse_sql',
    'tokenize_sql',
]


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENTIFIER = auto()
    COMMENT = auto()
    CAST = auto()
    NAMED_PH = auto()           # :name


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int
    name: str | None = None


# Unterminated literals and comments run to the end of the text
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*(?:'|\Z))
    |(?P<ident>"(?:[^"]|"")*(?:"|\Z))
    |(?P<line_comment>--[^\n]*)
    |(?P<block_comment>/\*.*?(?:\*/|\Z))
    |(?P<cast>::)
    |(?P<named>:(?P<pname>[A-Za-z_][A-Za-z0-9_]*))
""", re.VERBOSE | re.DOTALL)

_TOKEN_TYPES = {
    'string': TokenType.STRING_LITERAL,
    'ident': TokenType.QUOTED_IDENTIFIER,
    'line_comment': TokenType.COMMENT,
    'block_comment': TokenType.COMMENT,
    'cast': TokenType.CAST,
    'named': TokenType.NAMED_PH,
}


def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Args:
        sql: SQL query string

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start], last_end, start))

        tokens.append(Token(
            type=_TOKEN_TYPES[match.lastgroup if match.lastgroup != 'pname' else 'named'],
            text=match.group(0),
            start=start,
            end=end,
            name=match.group('pname'),
        ))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:], last_end, len(sql)))

    return tokens


@dataclass(frozen=True, slots=True)
class ParsedStatement:
    """Immutable result of parsing named SQL.

    `chunks` holds the SQL text between placeholders (one more than `names`),
    `names` the parameter name bound at each positional slot, and `param_map`
    the ordered 1-based slots of every name.
    """
    sql: str
    param_map: Mapping[str, tuple[int, ...]]
    names: tuple[str, ...]
    chunks: tuple[str, ...]
    placeholder: str

    @property
    def param_count(self) -> int:
        return len(self.names)

    def positions(self, name: str) -> tuple[int, ...]:
        return self.param_map[name]

    def expand(self, counts: Mapping[str, int]) -> 'ParsedStatement':
        """Rewrite each slot of the named parameters into N consecutive slots.

        Every later slot is renumbered. A count below one still reserves a
        single slot so that `IN (:ids)` stays valid for an empty list.

        Args:
            counts: Slot count per parameter name

        Returns
            New ParsedStatement with renumbered positions
        """
        if not counts:
            return self

        chunks = [self.chunks[0]]
        names = []
        for name, chunk in zip(self.names, self.chunks[1:]):
            width = max(counts.get(name, 1), 1)
            names.extend([name] * width)
            chunks.extend([', '] * (width - 1))
            chunks.append(chunk)

        return _build(tuple(chunks), tuple(names), self.placeholder)


def _build(chunks: tuple[str, ...], names: tuple[str, ...], placeholder: str) -> ParsedStatement:
    param_map: dict[str, list[int]] = {}
    for position, name in enumerate(names, 1):
        param_map.setdefault(name, []).append(position)

    parts = [chunks[0]]
    for chunk in chunks[1:]:
        parts.append(placeholder)
        parts.append(chunk)

    return ParsedStatement(
        sql=''.join(parts),
        param_map=MappingProxyType({k: tuple(v) for k, v in param_map.items()}),
        names=names,
        chunks=chunks,
        placeholder=placeholder,
    )


@cached('parsed_sql', maxsize=512)
def parse_sql(sql: str, placeholder: str = '?') -> ParsedStatement:
    """Rewrite `:name` placeholders into positional markers.

    With the `%s` marker every literal percent sign is doubled so that
    pyformat drivers leave it untouched.

    Args:
        sql: SQL text with named parameters
        placeholder: Positional marker of the target driver ('?' or '%s')

    Returns
        ParsedStatement with the rewritten text and name to slots map
    """
    escape_percent = placeholder == '%s'
    chunks = []
    names = []
    current = []

    for token in tokenize_sql(sql):
        if token.type == TokenType.NAMED_PH:
            chunks.append(''.join(current))
            names.append(token.name)
            current = []
            continue
        text = token.text
        if escape_percent:
            text = text.replace('%', '%%')
        current.append(text)

    chunks.append(''.join(current))
    return _build(tuple(chunks), tuple(names), placeholder)
