# yarasyntax/errors.py
"""
Error Types and Reporting for the YARA rule-language front end

This module provides the error handling infrastructure for the lexer, the
byte-pattern sub-grammar and the rule/expression parser.  Every error is
fatal to the parse that raised it: the engine never recovers and never
returns a partial tree.

Architecture Overview:
─────────────────────
┌─────────────────────────────────────────────────────────────────────────────┐
│                          Error Hierarchy                                     │
├─────────────────────────────────────────────────────────────────────────────┤
│  RuleSyntaxError (base)                                                     │
│  ├── LexicalError          - Tokenization failures                          │
│  │   ├── InvalidCharacterError                                              │
│  │   ├── UnterminatedStringError / UnterminatedRegexError                   │
│  │   ├── UnterminatedCommentError / UnterminatedBytePatternError            │
│  │   └── InvalidEscapeError / InvalidNumberError                            │
│  ├── SyntacticError        - Token sequence matches no production           │
│  │   ├── UnexpectedTokenError / UnexpectedEOFError / MissingTokenError      │
│  │   └── InvalidBytePatternError / NestingTooDeepError                      │
│  └── InternalError         - Grammar defects (should never happen)          │
│      └── GrammarConflictError                                               │
└─────────────────────────────────────────────────────────────────────────────┘

Error Codes:
────────────
Each error has a unique code following the pattern YARA-XXXX where XXXX is
a 4-digit number in ranges:
  - 0001-0999: Lexical errors
  - 1000-1999: Syntax errors
  - 9000-9999: Internal errors

Example Usage:
──────────────
    from yarasyntax import parse
    from yarasyntax.errors import RuleSyntaxError

    try:
        parse(source, filename="rules.yar")
    except RuleSyntaxError as exc:
        print(exc.to_gcc_format())
        resync_at = exc.span.offset
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto, unique
from typing import Any, Dict, List, Optional, Sequence


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ErrorPhase(Enum):
    """Front-end phase where the error occurred."""

    LEXICAL = "lexical"        # Tokenization
    SYNTAX = "syntax"          # Parsing
    INTERNAL = "internal"      # Grammar construction


@unique
class ErrorCategory(Enum):
    """
    Fine-grained error categories for filtering and statistics.
    """

    # Lexical categories
    INVALID_CHARACTER = auto()
    UNTERMINATED_STRING = auto()
    UNTERMINATED_COMMENT = auto()
    UNTERMINATED_REGEX = auto()
    UNTERMINATED_BYTE_PATTERN = auto()
    INVALID_ESCAPE = auto()
    INVALID_NUMBER = auto()

    # Syntax categories
    UNEXPECTED_TOKEN = auto()
    MISSING_TOKEN = auto()
    UNEXPECTED_EOF = auto()
    INVALID_EXPRESSION = auto()
    INVALID_PATTERN = auto()
    NESTING_TOO_DEEP = auto()

    # Internal categories
    GRAMMAR_CONFLICT = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Structured error code.

    Codes follow the pattern ``YARA-NNNN``; the number range encodes the
    phase (see module docstring).
    """

    __slots__ = ("prefix", "number", "category", "phase")

    def __init__(
        self,
        prefix: str,
        number: int,
        category: ErrorCategory,
        phase: ErrorPhase,
    ) -> None:
        self.prefix = prefix
        self.number = number
        self.category = category
        self.phase = phase

    @property
    def code(self) -> str:
        """Get the full error code string."""
        return f"{self.prefix}-{self.number:04d}"

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"ErrorCode({self.code!r}, {self.category.name})"

    def __hash__(self) -> int:
        return hash((self.prefix, self.number))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ErrorCode):
            return self.prefix == other.prefix and self.number == other.number
        if isinstance(other, str):
            return self.code == other
        return False


class ErrorCodes:
    """Predefined error codes."""

    # ═══════════════════════════════════════════════════════════════════════════
    # LEXICAL ERRORS (0001-0999)
    # ═══════════════════════════════════════════════════════════════════════════

    INVALID_CHARACTER = ErrorCode(
        "YARA", 1, ErrorCategory.INVALID_CHARACTER, ErrorPhase.LEXICAL
    )
    UNTERMINATED_STRING = ErrorCode(
        "YARA", 2, ErrorCategory.UNTERMINATED_STRING, ErrorPhase.LEXICAL
    )
    UNTERMINATED_COMMENT = ErrorCode(
        "YARA", 3, ErrorCategory.UNTERMINATED_COMMENT, ErrorPhase.LEXICAL
    )
    INVALID_ESCAPE_SEQUENCE = ErrorCode(
        "YARA", 4, ErrorCategory.INVALID_ESCAPE, ErrorPhase.LEXICAL
    )
    INVALID_NUMBER_LITERAL = ErrorCode(
        "YARA", 5, ErrorCategory.INVALID_NUMBER, ErrorPhase.LEXICAL
    )
    UNTERMINATED_REGEX = ErrorCode(
        "YARA", 6, ErrorCategory.UNTERMINATED_REGEX, ErrorPhase.LEXICAL
    )
    UNTERMINATED_BYTE_PATTERN = ErrorCode(
        "YARA", 7, ErrorCategory.UNTERMINATED_BYTE_PATTERN, ErrorPhase.LEXICAL
    )

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNTAX ERRORS (1000-1999)
    # ═══════════════════════════════════════════════════════════════════════════

    UNEXPECTED_TOKEN = ErrorCode(
        "YARA", 1000, ErrorCategory.UNEXPECTED_TOKEN, ErrorPhase.SYNTAX
    )
    MISSING_TOKEN = ErrorCode(
        "YARA", 1001, ErrorCategory.MISSING_TOKEN, ErrorPhase.SYNTAX
    )
    UNEXPECTED_EOF = ErrorCode(
        "YARA", 1002, ErrorCategory.UNEXPECTED_EOF, ErrorPhase.SYNTAX
    )
    INVALID_EXPRESSION = ErrorCode(
        "YARA", 1003, ErrorCategory.INVALID_EXPRESSION, ErrorPhase.SYNTAX
    )
    INVALID_BYTE_PATTERN = ErrorCode(
        "YARA", 1004, ErrorCategory.INVALID_PATTERN, ErrorPhase.SYNTAX
    )
    NESTING_TOO_DEEP = ErrorCode(
        "YARA", 1005, ErrorCategory.NESTING_TOO_DEEP, ErrorPhase.SYNTAX
    )

    # ═══════════════════════════════════════════════════════════════════════════
    # INTERNAL ERRORS (9000-9999)
    # ═══════════════════════════════════════════════════════════════════════════

    INTERNAL_ERROR = ErrorCode(
        "YARA", 9000, ErrorCategory.GRAMMAR_CONFLICT, ErrorPhase.INTERNAL
    )
    GRAMMAR_CONFLICT = ErrorCode(
        "YARA", 9001, ErrorCategory.GRAMMAR_CONFLICT, ErrorPhase.INTERNAL
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE LOCATION TYPES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class SourceSpan:
    """
    A span of source text with start and end positions.

    Offsets are 0-based character indices into the parsed text; lines and
    columns are 1-based.  ``end_offset`` is exclusive, so
    ``text[span.offset:span.end_offset]`` is exactly the spanned source.
    """

    file: str = ""
    offset: int = 0
    end_offset: int = 0
    line: int = 0
    column: int = 0
    end_line: int = 0
    end_column: int = 0

    @classmethod
    def merge(cls, first: "SourceSpan", last: "SourceSpan") -> "SourceSpan":
        """Span from the start of *first* to the end of *last*."""
        return cls(
            file=first.file or last.file,
            offset=first.offset,
            end_offset=last.end_offset,
            line=first.line,
            column=first.column,
            end_line=last.end_line,
            end_column=last.end_column,
        )

    def __str__(self) -> str:
        if not self.file and self.line == 0:
            return "<unknown location>"

        parts = []
        if self.file:
            parts.append(self.file)
        if self.line > 0:
            parts.append(str(self.line))
            if self.column > 0:
                parts.append(str(self.column))

        return ":".join(parts)


#: Sentinel for nodes built outside a parse (no source position).
NO_SPAN = SourceSpan()


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR MESSAGE FORMATTING
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ErrorMessage:
    """
    A complete error message with all context.

    This is the internal representation of an error before it is printed
    or serialised.
    """

    code: ErrorCode
    message: str
    span: SourceSpan = field(default_factory=SourceSpan)
    hint: str = ""
    source_line: str = ""  # The actual source line, if available

    def with_hint(self, hint: str) -> "ErrorMessage":
        """Add a hint to this error message."""
        self.hint = hint
        return self

    def with_source(self, line: str) -> "ErrorMessage":
        """Add the source line for display."""
        self.source_line = line
        return self

    def to_gcc_format(self) -> str:
        """Format as a GCC-style error message."""
        main = f"{self.span}: error: {self.message} [{self.code}]"

        lines = [main]

        # Add source line with caret if available
        if self.source_line:
            lines.append(f"    {self.source_line}")
            if self.span.column > 0:
                caret_pos = self.span.column - 1
                if self.span.end_line == self.span.line:
                    caret_len = max(1, self.span.end_column - self.span.column)
                else:
                    caret_len = 1
                lines.append(f"    {' ' * caret_pos}{'^' * caret_len}")

        if self.hint:
            lines.append(f"hint: {self.hint}")

        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code.code,
            "message": self.message,
            "location": {
                "file": self.span.file,
                "offset": self.span.offset,
                "line": self.span.line,
                "column": self.span.column,
                "end_offset": self.span.end_offset,
                "end_line": self.span.end_line,
                "end_column": self.span.end_column,
            },
            "phase": self.code.phase.value,
            "category": self.code.category.name,
            "hint": self.hint,
        }

    def __str__(self) -> str:
        return self.to_gcc_format()


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTION CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class RuleSyntaxError(Exception):
    """
    Base exception for all rule-language front-end errors.

    This exception carries structured error information that can be
    pretty-printed or serialised.  ``span.offset`` is the position callers
    use as a resynchronisation hint.
    """

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        hint: str = "",
    ) -> None:
        super().__init__(message)
        self.error_message = ErrorMessage(
            code=code or ErrorCodes.INTERNAL_ERROR,
            message=message,
            span=span if span is not None else SourceSpan(),
            hint=hint,
        )

    @property
    def code(self) -> ErrorCode:
        return self.error_message.code

    @property
    def span(self) -> SourceSpan:
        return self.error_message.span

    @property
    def message(self) -> str:
        return self.error_message.message

    @property
    def offset(self) -> int:
        return self.error_message.span.offset

    def with_hint(self, hint: str) -> "RuleSyntaxError":
        """Add a hint to this error."""
        self.error_message.with_hint(hint)
        return self

    def with_source(self, text: str) -> "RuleSyntaxError":
        """Attach the offending source line, taken from the full *text*."""
        offset = min(self.span.offset, len(text))
        start = text.rfind("\n", 0, offset) + 1
        end = text.find("\n", offset)
        if end < 0:
            end = len(text)
        self.error_message.with_source(text[start:end].rstrip("\r"))
        return self

    def to_json(self) -> Dict[str, Any]:
        return self.error_message.to_json()

    def to_gcc_format(self) -> str:
        """Format as a GCC-style error message."""
        return self.error_message.to_gcc_format()

    def __str__(self) -> str:
        return self.to_gcc_format()


# ───────────────────────────────────────────────────────────────────────────────
# LEXICAL ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class LexicalError(RuleSyntaxError):
    """Error during tokenization/lexical analysis."""

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=message,
            code=code or ErrorCodes.INVALID_CHARACTER,
            span=span,
            **kwargs,
        )


class InvalidCharacterError(LexicalError):
    """Character that starts no token."""

    def __init__(
        self,
        char: str,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        if len(char) == 1 and not char.isprintable():
            char_desc = f"U+{ord(char):04X}"
        else:
            char_desc = repr(char)

        super().__init__(
            message=f"Invalid character {char_desc}",
            code=ErrorCodes.INVALID_CHARACTER,
            span=span,
            **kwargs,
        )


class UnterminatedStringError(LexicalError):
    """String literal not properly closed."""

    def __init__(
        self,
        span: Optional[SourceSpan] = None,
        quote_char: str = '"',
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=f"Unterminated string literal (missing closing {quote_char})",
            code=ErrorCodes.UNTERMINATED_STRING,
            span=span,
            hint="Add the closing quote character",
            **kwargs,
        )


class UnterminatedCommentError(LexicalError):
    """Block comment not properly closed."""

    def __init__(
        self,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message="Unterminated block comment (missing closing */)",
            code=ErrorCodes.UNTERMINATED_COMMENT,
            span=span,
            hint="Add */ to close the comment",
            **kwargs,
        )


class UnterminatedRegexError(LexicalError):
    """Regular expression without its closing slash on the same line."""

    def __init__(
        self,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message="Unterminated regular expression (missing closing /)",
            code=ErrorCodes.UNTERMINATED_REGEX,
            span=span,
            hint="Escape slashes inside the expression as \\/",
            **kwargs,
        )


class UnterminatedBytePatternError(LexicalError):
    """Byte pattern ``{ ...`` without its closing brace."""

    def __init__(
        self,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message="Unterminated byte pattern (missing closing })",
            code=ErrorCodes.UNTERMINATED_BYTE_PATTERN,
            span=span,
            **kwargs,
        )


class InvalidEscapeError(LexicalError):
    """Escape sequence outside the set allowed in its literal."""

    def __init__(
        self,
        sequence: str,
        span: Optional[SourceSpan] = None,
        context: str = "string literal",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=f"Invalid escape sequence {sequence!r} in {context}",
            code=ErrorCodes.INVALID_ESCAPE_SEQUENCE,
            span=span,
            **kwargs,
        )


class InvalidNumberError(LexicalError):
    """Malformed numeric literal (e.g. ``0x`` without digits)."""

    def __init__(
        self,
        text: str,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=f"Invalid number literal {text!r}",
            code=ErrorCodes.INVALID_NUMBER_LITERAL,
            span=span,
            **kwargs,
        )


# ───────────────────────────────────────────────────────────────────────────────
# SYNTAX ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class SyntacticError(RuleSyntaxError):
    """Token sequence that matches no production."""

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        span: Optional[SourceSpan] = None,
        expected: Optional[Sequence[str]] = None,
        got: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=message,
            code=code or ErrorCodes.UNEXPECTED_TOKEN,
            span=span,
            **kwargs,
        )
        self.expected = list(expected) if expected else []
        self.got = got

        # Auto-generate hint if expected tokens provided
        if self.expected and not self.error_message.hint:
            if len(self.expected) == 1:
                self.error_message.hint = f"Expected {self.expected[0]}"
            elif len(self.expected) <= 3:
                self.error_message.hint = f"Expected one of: {', '.join(self.expected)}"
            else:
                self.error_message.hint = f"Expected one of: {', '.join(self.expected[:3])}, ..."


class UnexpectedTokenError(SyntacticError):
    """Unexpected token encountered during parsing."""

    def __init__(
        self,
        got: str,
        expected: Optional[Sequence[str]] = None,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        expected_msg = ""
        if expected:
            if len(expected) == 1:
                expected_msg = f", expected {expected[0]}"
            else:
                expected_msg = f", expected one of: {', '.join(expected[:5])}"

        super().__init__(
            message=f"Unexpected token {got!r}{expected_msg}",
            code=ErrorCodes.UNEXPECTED_TOKEN,
            span=span,
            expected=expected,
            got=got,
            **kwargs,
        )


class MissingTokenError(SyntacticError):
    """Required token is missing."""

    def __init__(
        self,
        expected: str,
        span: Optional[SourceSpan] = None,
        context: str = "",
        got: str = "",
        **kwargs: Any,
    ) -> None:
        ctx_msg = f" {context}" if context else ""
        super().__init__(
            message=f"Missing {expected!r}{ctx_msg}",
            code=ErrorCodes.MISSING_TOKEN,
            span=span,
            expected=[expected],
            got=got,
            hint=f"Add {expected!r} here",
            **kwargs,
        )


class UnexpectedEOFError(SyntacticError):
    """Unexpected end of file."""

    def __init__(
        self,
        expected: Optional[Sequence[str]] = None,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        msg = "Unexpected end of file"
        if expected:
            msg += f", expected {expected[0]}" if len(expected) == 1 else f", expected one of: {', '.join(expected)}"

        super().__init__(
            message=msg,
            code=ErrorCodes.UNEXPECTED_EOF,
            span=span,
            expected=expected,
            got="<eof>",
            **kwargs,
        )


class InvalidBytePatternError(SyntacticError):
    """Byte pattern body that the byte-pattern grammar rejects."""

    def __init__(
        self,
        message: str,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=f"Invalid byte pattern: {message}",
            code=ErrorCodes.INVALID_BYTE_PATTERN,
            span=span,
            **kwargs,
        )


class NestingTooDeepError(SyntacticError):
    """Expression nesting beyond ``ParseOptions.max_nesting``."""

    def __init__(
        self,
        limit: int,
        span: Optional[SourceSpan] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message=f"Expression nesting exceeds the limit of {limit}",
            code=ErrorCodes.NESTING_TOO_DEEP,
            span=span,
            **kwargs,
        )


# ───────────────────────────────────────────────────────────────────────────────
# INTERNAL ERRORS
# ───────────────────────────────────────────────────────────────────────────────

class InternalError(RuleSyntaxError):
    """Defect in the front end itself, never caused by user input."""

    def __init__(self, message: str, code: Optional[ErrorCode] = None, **kwargs: Any) -> None:
        super().__init__(
            message=message,
            code=code or ErrorCodes.INTERNAL_ERROR,
            **kwargs,
        )


class GrammarConflictError(InternalError):
    """Two productions remain equally valid for one decision point."""

    def __init__(self, productions: Sequence[str], context: str = "", **kwargs: Any) -> None:
        where = f" in {context}" if context else ""
        super().__init__(
            message=f"Unresolved grammar conflict between {', '.join(productions)}{where}",
            code=ErrorCodes.GRAMMAR_CONFLICT,
            **kwargs,
        )
        self.productions = tuple(productions)


__all__: List[str] = [
    "ErrorPhase",
    "ErrorCategory",
    "ErrorCode",
    "ErrorCodes",
    "E",
    "SourceSpan",
    "NO_SPAN",
    "ErrorMessage",
    "RuleSyntaxError",
    "LexicalError",
    "InvalidCharacterError",
    "UnterminatedStringError",
    "UnterminatedCommentError",
    "UnterminatedRegexError",
    "UnterminatedBytePatternError",
    "InvalidEscapeError",
    "InvalidNumberError",
    "SyntacticError",
    "UnexpectedTokenError",
    "MissingTokenError",
    "UnexpectedEOFError",
    "InvalidBytePatternError",
    "NestingTooDeepError",
    "InternalError",
    "GrammarConflictError",
]
