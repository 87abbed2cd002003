"""
hexgrammar.py — Byte-pattern sub-language
=========================================

The body of a ``{ ... }`` pattern is a small language of its own: byte
positions (``4D``, ``?A``, ``~00``), jumps (``[2-4]``) and alternative
groups (``( 62 | 63 64 )``).  The lexer hands the raw body over as one
token; this module parses it with a Parsimonious PEG and builds the
``HexString`` node.

Structural rules carried by the grammar:

* the body starts with a byte or an alternative;
* every jump is followed by a byte or an alternative, so there are no
  leading, trailing or back-to-back jumps;
* alternatives hold byte runs only (no jumps, no nesting);
* ``//`` and ``/* */`` comments may appear between elements.

Usage::

    from yarasyntax.hexgrammar import parse_byte_pattern

    pattern = parse_byte_pattern("4D 5A [2-4] (00 | FF)")
    pattern.to_source()          # '{ 4D 5A [2-4] (00|FF) }'

Depends on:
    - parsimonious (PEG parser)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from .ast import HexAlternative, HexByte, HexJump, HexSequence, HexString
from .errors import InvalidBytePatternError, RuleSyntaxError, SourceSpan

logger = logging.getLogger(__name__)

SpanFactory = Callable[[int, int], SourceSpan]


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — BYTE PATTERN GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

HEX_GRAMMAR = Grammar(r'''
    # ─────────────────────────────────────────────────────────────
    # Body
    # ─────────────────────────────────────────────────────────────

    hex_body            = _ hex_token (_ hex_step)* _
    hex_step            = jump_step / hex_token
    jump_step           = hex_jump _ hex_token
    hex_token           = hex_alternative / hex_byte

    # ─────────────────────────────────────────────────────────────
    # Elements
    # ─────────────────────────────────────────────────────────────

    hex_alternative     = "(" _ hex_seq (_ "|" _ hex_seq)* _ ")"
    hex_seq             = hex_byte (_ hex_byte)*
    hex_byte            = ~r"~?[0-9A-Fa-f?]{2}"

    hex_jump            = "[" _ jump_bounds _ "]"
    jump_bounds         = jump_range / jump_exact
    jump_range          = jump_number? _ "-" _ jump_number?
    jump_exact          = ~r"[0-9]+"
    jump_number         = ~r"[0-9]+"

    # ─────────────────────────────────────────────────────────────
    # Trivia
    # ─────────────────────────────────────────────────────────────

    _                   = (whitespace / comment)*
    whitespace          = ~r"\s+"
    comment             = ~r"//[^\n]*" / ~r"/\*.*?\*/"s
''')


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — TREE BUILDER (Parse Tree → HexString)
# ═══════════════════════════════════════════════════════════════════

class BytePatternBuilder(NodeVisitor):
    """Transforms the Parsimonious parse tree of a body into syntax nodes.

    ``base`` is the absolute offset of the body's first character in the
    enclosing source; ``make_span`` turns absolute offsets into spans.
    """

    unwrapped_exceptions = (RuleSyntaxError,)

    def __init__(self, base: int = 0, make_span: Optional[SpanFactory] = None):
        self.base = base
        self.make_span = make_span or _plain_span

    def _span(self, node: Node) -> SourceSpan:
        return self.make_span(self.base + node.start, self.base + node.end)

    def generic_visit(self, node, visited_children):
        """Default: keep only what the visit_* methods produced."""
        return self._flatten(visited_children)

    @staticmethod
    def _flatten(items: Any) -> List[Any]:
        result: List[Any] = []
        if isinstance(items, list):
            for item in items:
                result.extend(BytePatternBuilder._flatten(item))
        elif items is not None:
            result.append(items)
        return result

    # ─────────────────────────────────────────────────────────────
    # Body
    # ─────────────────────────────────────────────────────────────

    def visit_hex_body(self, node, visited_children):
        return tuple(self._flatten(visited_children))

    # ─────────────────────────────────────────────────────────────
    # Elements
    # ─────────────────────────────────────────────────────────────

    def visit_hex_byte(self, node, visited_children):
        text = node.text
        negated = text.startswith("~")
        if negated:
            text = text[1:]
        high, low = (None if ch == "?" else int(ch, 16) for ch in text)
        return HexByte(high=high, low=low, negated=negated, span=self._span(node))

    def visit_hex_seq(self, node, visited_children):
        return HexSequence(bytes=tuple(self._flatten(visited_children)),
                           span=self._span(node))

    def visit_hex_alternative(self, node, visited_children):
        return HexAlternative(alternatives=tuple(self._flatten(visited_children)),
                              span=self._span(node))

    def visit_hex_jump(self, node, visited_children):
        low, high, ranged = self._flatten(visited_children)[0]
        return HexJump(low=low, high=high, ranged=ranged, span=self._span(node))

    def visit_jump_range(self, node, visited_children):
        low, _, _, _, high = visited_children
        return (_first(low), _first(high), True)

    def visit_jump_exact(self, node, visited_children):
        value = int(node.text)
        return (value, value, False)

    def visit_jump_number(self, node, visited_children):
        return int(node.text)


def _first(items: Any) -> Optional[int]:
    flat = BytePatternBuilder._flatten(items)
    return flat[0] if flat else None


def _plain_span(start: int, end: int) -> SourceSpan:
    return SourceSpan(offset=start, end_offset=end)


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def _is_blank(body: str) -> bool:
    try:
        HEX_GRAMMAR["_"].parse(body)
    except ParseError:
        return False
    return True


def parse_byte_pattern(
    body: str,
    base: int = 0,
    make_span: Optional[SpanFactory] = None,
    outer: Optional[Tuple[int, int]] = None,
) -> HexString:
    """Parse the text between ``{`` and ``}`` into a ``HexString``.

    Parameters
    ----------
    body : str
        Raw body text, braces excluded.
    base : int
        Absolute offset of ``body[0]`` in the enclosing source.
    make_span : callable, optional
        ``(start, end) -> SourceSpan`` over absolute offsets.
    outer : (int, int), optional
        Absolute offsets of the whole ``{ ... }`` token; defaults to the
        body widened by one character on each side.

    Raises
    ------
    InvalidBytePatternError
        If the body is empty or violates the element rules.  The error
        offset points at the first character the grammar could not use.
    """
    make_span = make_span or _plain_span
    if outer is None:
        outer = (max(base - 1, 0), base + len(body) + 1)

    if _is_blank(body):
        raise InvalidBytePatternError("empty byte pattern",
                                      span=make_span(outer[0], outer[1]))

    try:
        tree = HEX_GRAMMAR.parse(body)
    except ParseError as e:
        pos = min(max(e.pos, 0), len(body))
        while pos < len(body) and body[pos].isspace():
            pos += 1
        snippet = body[pos:pos + 12].split("\n", 1)[0].rstrip()
        what = repr(snippet) if snippet else "end of pattern"
        logger.debug("byte pattern rejected at body offset %d: %s", pos, e)
        raise InvalidBytePatternError(
            f"unexpected {what}",
            span=make_span(base + pos, base + pos + len(snippet)),
        ) from None

    elements = BytePatternBuilder(base, make_span).visit(tree)
    return HexString(elements=elements, span=make_span(outer[0], outer[1]))
