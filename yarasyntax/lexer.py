"""
lexer.py — Lexical classifier for YARA rule source
==================================================

Turns raw rule text into significant tokens.  Comments and whitespace
(including form-feed, byte-order mark, zero-width space and word joiner)
are trivia and never reach the parser.

The lexer is cursor driven: ``Lexer.next_token()`` produces one token from
the current position, so a caller that stops early never sees lexical
errors that lie further down the file.

Usage::

    from yarasyntax.lexer import tokenize

    for tok in tokenize('rule a { condition: 5KB < filesize }'):
        print(tok)

Context sensitivity is limited to one case: a ``{`` that directly follows
``=`` opens a byte pattern, which is returned whole as a single
``BYTE_PATTERN`` token and parsed later by :mod:`yarasyntax.hexgrammar`.
Everywhere else ``{`` is plain punctuation.
"""

from __future__ import annotations

import bisect
import enum
import logging
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterator, List, Tuple

from .errors import (
    InvalidCharacterError,
    InvalidEscapeError,
    InvalidNumberError,
    SourceSpan,
    UnterminatedBytePatternError,
    UnterminatedCommentError,
    UnterminatedRegexError,
    UnterminatedStringError,
)

logger = logging.getLogger(__name__)


# ===================================================================
#  PART 1 — TOKEN TYPES
# ===================================================================

class TokType(enum.Enum):
    """Lexical token types for rule source."""
    LBRACE = "{"
    RBRACE = "}"
    LBRACKET = "["
    RBRACKET = "]"
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    COLON = ":"
    EQUAL = "="             # meta / pattern assignment
    DOT = "."               # module member access
    DOTDOT = ".."           # range separator
    MINUS = "-"
    PLUS = "+"
    STAR = "*"              # multiplication / set wildcard
    BACKSLASH = "\\"        # integer division
    PERCENT = "%"
    SHL = "<<"
    SHR = ">>"
    AMP = "&"
    CARET = "^"
    PIPE = "|"
    TILDE = "~"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    STRING_IDENTIFIER = "string_identifier"   # $name or $
    STRING_COUNT = "string_count"             # #name or #
    STRING_OFFSET = "string_offset"           # @name or @
    STRING_LENGTH = "string_length"           # !name or !
    INTEGER = "integer"                       # decimal, optional KB/MB/GB
    HEX_INTEGER = "integer_hexadecimal"
    FLOAT = "float_literal"
    STRING = "string"                         # single or double quoted
    REGEX = "regular_expression"
    BYTE_PATTERN = "hex_string"
    EOF = "EOF"


@dataclass(frozen=True, slots=True)
class Token:
    """A lexical token.

    ``text`` is the exact lexeme; ``value`` is its decoded payload (the
    scaled integer, the unescaped string, the pattern name without its
    sigil, ``(body, flags)`` for a regex, the raw body for a byte pattern).
    ``escapes`` lists ``(offset, sequence)`` for each escape in a quoted
    string so the parser can apply the stricter text-pattern escape set.
    """
    type: TokType
    text: str
    value: Any
    span: SourceSpan
    escapes: Tuple[Tuple[int, str], ...] = ()

    @property
    def start(self) -> int:
        return self.span.offset

    @property
    def end(self) -> int:
        return self.span.end_offset

    def is_keyword(self, *words: str) -> bool:
        return self.type is TokType.KEYWORD and self.text in words

    def describe(self) -> str:
        """Short human-readable form used in error messages."""
        if self.type is TokType.EOF:
            return "<eof>"
        if len(self.text) > 24:
            return self.text[:21] + "..."
        return self.text

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.text!r}, @{self.span.offset})"


# ===================================================================
#  PART 2 — STATIC TABLES
# ===================================================================

#: Eight fixed-width integer readers, signed/unsigned, little/big endian.
READ_FUNCTIONS: FrozenSet[str] = frozenset({
    "int8", "int16", "int32",
    "uint8", "uint16", "uint32",
    "int8be", "int16be", "int32be",
    "uint8be", "uint16be", "uint32be",
})

#: Pattern modifier vocabulary.  No compatibility rules live here.
STRING_MODIFIERS: FrozenSet[str] = frozenset({
    "nocase", "ascii", "wide", "fullword", "private",
    "base64", "base64wide", "xor",
})

#: String relational operators (equality level, string operands).
STRING_OPERATORS: FrozenSet[str] = frozenset({
    "contains", "icontains", "startswith", "istartswith",
    "endswith", "iendswith", "iequals", "matches",
})

#: Reserved words.  An identifier whose text is in this set is a keyword.
KEYWORDS: FrozenSet[str] = frozenset({
    "all", "and", "any", "at", "condition", "defined", "false",
    "filesize", "for", "global", "import", "in", "include", "meta",
    "none", "not", "of", "or", "rule", "strings", "them", "true",
}) | READ_FUNCTIONS | STRING_MODIFIERS | STRING_OPERATORS

#: Size suffixes on decimal integers and their multipliers.
SIZE_UNITS = {"KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}

# Two-character operators (order matters: check these before single-char)
_TWO_CHAR_OPS = {
    "..": TokType.DOTDOT,
    "<<": TokType.SHL,
    ">>": TokType.SHR,
    "<=": TokType.LE,
    ">=": TokType.GE,
    "==": TokType.EQ,
    "!=": TokType.NE,
}

# Single-character operators
_ONE_CHAR_OPS = {
    "{": TokType.LBRACE,
    "}": TokType.RBRACE,
    "[": TokType.LBRACKET,
    "]": TokType.RBRACKET,
    "(": TokType.LPAREN,
    ")": TokType.RPAREN,
    ",": TokType.COMMA,
    ":": TokType.COLON,
    "=": TokType.EQUAL,
    ".": TokType.DOT,
    "-": TokType.MINUS,
    "+": TokType.PLUS,
    "*": TokType.STAR,
    "\\": TokType.BACKSLASH,
    "%": TokType.PERCENT,
    "&": TokType.AMP,
    "^": TokType.CARET,
    "|": TokType.PIPE,
    "~": TokType.TILDE,
    "<": TokType.LT,
    ">": TokType.GT,
}

# Pattern-reference sigils
_SIGILS = {
    "#": TokType.STRING_COUNT,
    "@": TokType.STRING_OFFSET,
    "!": TokType.STRING_LENGTH,
}

_EXTRA_WHITESPACE = frozenset("\ufeff\u2060\u200b")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t"}


def _is_ident_start(ch: str) -> bool:
    return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")


def _is_ident_char(ch: str) -> bool:
    return _is_ident_start(ch) or ("0" <= ch <= "9")


def _is_space(ch: str) -> bool:
    return ch.isspace() or ch in _EXTRA_WHITESPACE


# ===================================================================
#  PART 3 — LEXER
# ===================================================================

class Lexer:
    """Cursor-driven tokenizer over one source unit.

    Parameters
    ----------
    text : str
        The complete source text.
    filename : str
        Name recorded in every span (diagnostics only).
    """

    def __init__(self, text: str, filename: str = "<string>"):
        self.text = text
        self.filename = filename
        self._pos = 0
        self._prev = TokType.EOF
        self._line_starts: List[int] = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)

    # ---- positions -----------------------------------------------------

    def position(self, offset: int) -> Tuple[int, int]:
        """1-based ``(line, column)`` of *offset*."""
        index = bisect.bisect_right(self._line_starts, offset) - 1
        return index + 1, offset - self._line_starts[index] + 1

    def span(self, start: int, end: int) -> SourceSpan:
        line, column = self.position(start)
        end_line, end_column = self.position(end)
        return SourceSpan(
            file=self.filename,
            offset=start,
            end_offset=end,
            line=line,
            column=column,
            end_line=end_line,
            end_column=end_column,
        )

    # ---- public API ----------------------------------------------------

    def next_token(self) -> Token:
        """Produce the next significant token, or ``EOF`` at end of input.

        Raises
        ------
        LexicalError
            On an unrecognised character or an unterminated literal or
            comment.  The lexer does not resynchronise.
        """
        self._skip_trivia()
        tok = self._scan()
        self._prev = tok.type
        return tok

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.type is TokType.EOF:
                return

    # ---- trivia --------------------------------------------------------

    def _skip_trivia(self) -> None:
        text, n = self.text, len(self.text)
        while self._pos < n:
            ch = text[self._pos]
            if _is_space(ch):
                self._pos += 1
            elif text.startswith("//", self._pos):
                end = text.find("\n", self._pos)
                self._pos = n if end < 0 else end
            elif text.startswith("/*", self._pos):
                end = text.find("*/", self._pos + 2)
                if end < 0:
                    raise UnterminatedCommentError(
                        span=self.span(self._pos, self._pos + 2))
                self._pos = end + 2
            else:
                return

    # ---- dispatch ------------------------------------------------------

    def _scan(self) -> Token:
        text, n, i = self.text, len(self.text), self._pos
        if i >= n:
            return Token(TokType.EOF, "", None, self.span(n, n))

        ch = text[i]

        if ch == "{" and self._prev is TokType.EQUAL:
            return self._scan_byte_pattern()
        if ch in ('"', "'"):
            return self._scan_string()
        if ch == "/":
            return self._scan_regex()
        if "0" <= ch <= "9":
            return self._scan_number()
        if ch == "$":
            end = self._ident_run(i + 1, allow_digit_start=True)
            return self._make(TokType.STRING_IDENTIFIER, i, end, text[i + 1:end])
        if ch in _SIGILS and not text.startswith("!=", i):
            end = self._ident_run(i + 1, allow_digit_start=False)
            return self._make(_SIGILS[ch], i, end, text[i + 1:end])
        if _is_ident_start(ch):
            end = self._ident_run(i, allow_digit_start=False)
            word = text[i:end]
            kind = TokType.KEYWORD if word in KEYWORDS else TokType.IDENTIFIER
            return self._make(kind, i, end, word)

        two = text[i:i + 2]
        if two in _TWO_CHAR_OPS:
            return self._make(_TWO_CHAR_OPS[two], i, i + 2, two)
        if ch in _ONE_CHAR_OPS:
            return self._make(_ONE_CHAR_OPS[ch], i, i + 1, ch)

        raise InvalidCharacterError(ch, span=self.span(i, i + 1))

    def _make(self, kind: TokType, start: int, end: int, value: Any,
              escapes: Tuple[Tuple[int, str], ...] = ()) -> Token:
        self._pos = end
        return Token(kind, self.text[start:end], value,
                     self.span(start, end), escapes)

    def _ident_run(self, i: int, allow_digit_start: bool) -> int:
        text, n = self.text, len(self.text)
        if i < n and not allow_digit_start and not _is_ident_start(text[i]):
            return i
        while i < n and _is_ident_char(text[i]):
            i += 1
        return i

    # ---- literals ------------------------------------------------------

    def _scan_number(self) -> Token:
        text, n, start = self.text, len(self.text), self._pos

        if text.startswith("0x", start):
            i = start + 2
            while i < n and text[i] in _HEX_DIGITS:
                i += 1
            if i == start + 2:
                raise InvalidNumberError(text[start:start + 2],
                                         span=self.span(start, start + 2))
            return self._make(TokType.HEX_INTEGER, start, i, int(text[start + 2:i], 16))

        i = start
        while i < n and text[i].isdigit() and text[i].isascii():
            i += 1

        # float: digits '.' digits   (no exponent form)
        if i + 1 < n and text[i] == "." and text[i + 1].isdigit() and text[i + 1].isascii():
            j = i + 1
            while j < n and text[j].isdigit() and text[j].isascii():
                j += 1
            return self._make(TokType.FLOAT, start, j, float(text[start:j]))

        value = int(text[start:i])
        unit = text[i:i + 2]
        if unit in SIZE_UNITS and not (i + 2 < n and _is_ident_char(text[i + 2])):
            return self._make(TokType.INTEGER, start, i + 2, value * SIZE_UNITS[unit])
        return self._make(TokType.INTEGER, start, i, value)

    def _scan_string(self) -> Token:
        text, n, start = self.text, len(self.text), self._pos
        quote = text[start]
        i = start + 1
        parts: List[str] = []
        escapes: List[Tuple[int, str]] = []

        while True:
            if i >= n or text[i] == "\n":
                raise UnterminatedStringError(
                    span=self.span(start, start + 1), quote_char=quote)
            ch = text[i]
            if ch == quote:
                i += 1
                break
            if ch != "\\":
                parts.append(ch)
                i += 1
                continue

            decoded, length = self._decode_escape(i)
            escapes.append((i, text[i:i + length]))
            parts.append(decoded)
            i += length

        return self._make(TokType.STRING, start, i, "".join(parts), tuple(escapes))

    def _decode_escape(self, i: int) -> Tuple[str, int]:
        """Decode the escape at *i* (pointing at the backslash).

        Returns the decoded text and the length of the escape lexeme.
        """
        text, n = self.text, len(self.text)
        if i + 1 >= n or text[i + 1] == "\n":
            raise UnterminatedStringError(span=self.span(i, i + 1))
        ch = text[i + 1]

        widths = {"x": 2, "u": 4, "U": 8}
        if ch in widths:
            digits = text[i + 2:i + 2 + widths[ch]]
            if len(digits) != widths[ch] or any(d not in _HEX_DIGITS for d in digits):
                raise InvalidEscapeError(text[i:i + 2 + len(digits)],
                                         span=self.span(i, i + 2))
            code_point = int(digits, 16)
            if code_point > 0x10FFFF:
                raise InvalidEscapeError(text[i:i + 2 + len(digits)],
                                         span=self.span(i, i + 2 + len(digits)))
            return chr(code_point), 2 + widths[ch]

        if ch.isdigit() and i + 2 < n and text[i + 2].isdigit():
            # \NN or \NNN: kept literally
            j = i + 3
            if j < n and text[j].isdigit():
                j += 1
            return text[i + 1:j], j - i

        return _SIMPLE_ESCAPES.get(ch, ch), 2

    def _scan_regex(self) -> Token:
        text, n, start = self.text, len(self.text), self._pos
        i = start + 1
        body: List[str] = []

        while True:
            if i >= n or text[i] == "\n":
                raise UnterminatedRegexError(span=self.span(start, start + 1))
            ch = text[i]
            if ch == "/":
                break
            if ch == "\\":
                if i + 1 >= n or text[i + 1] == "\n":
                    raise UnterminatedRegexError(span=self.span(start, start + 1))
                body.append(text[i:i + 2])
                i += 2
                continue
            body.append(ch)
            i += 1

        if i == start + 1:
            # "//" is a comment and never reaches here; "/" "/" with nothing
            # between them cannot be a regex either.
            raise UnterminatedRegexError(span=self.span(start, start + 1))

        i += 1
        flags_start = i
        while i < n and text[i] in "is":
            i += 1
        flags = text[flags_start:i]
        if flags not in ("", "i", "s", "is", "si"):
            raise InvalidCharacterError(flags, span=self.span(flags_start, i))

        return self._make(TokType.REGEX, start, i, ("".join(body), flags))

    def _scan_byte_pattern(self) -> Token:
        text, n, start = self.text, len(self.text), self._pos
        i = start + 1
        while True:
            if i >= n:
                raise UnterminatedBytePatternError(span=self.span(start, start + 1))
            if text[i] == "}":
                break
            if text.startswith("//", i):
                end = text.find("\n", i)
                i = n if end < 0 else end
            elif text.startswith("/*", i):
                end = text.find("*/", i + 2)
                if end < 0:
                    raise UnterminatedCommentError(span=self.span(i, i + 2))
                i = end + 2
            else:
                i += 1
        return self._make(TokType.BYTE_PATTERN, start, i + 1, text[start + 1:i])


def tokenize(text: str, filename: str = "<string>") -> Iterator[Token]:
    """Lazily tokenize *text*.

    Yields every significant token in order and finishes with one ``EOF``
    token.  Trivia (whitespace and comments) is dropped, so joining the
    ``text`` of the yielded tokens with single spaces reproduces the
    source's token stream.
    """
    logger.debug("tokenize %s (%d chars)", filename, len(text))
    return iter(Lexer(text, filename))
