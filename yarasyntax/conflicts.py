"""
conflicts.py — Precedence and conflict declarations
===================================================

The condition grammar has two overlapping expression productions: the
general expression and the strictly numeric expression used by offsets,
ranges, quantifiers, arithmetic and comparisons.  An identifier, a
``filesize`` or a parenthesized arithmetic form belongs to both.  This
module is the static table that decides, at each point where both can
apply, which one the parser commits to.

The parser consults three things here:

``BINARY_OPERATORS``
    Binding power, associativity and operand productions of every binary
    operator.

``admits(production, node)``
    Whether an already-built subtree may stand where *production* is
    required.  Dispatch is an enum-keyed table, one predicate per
    production.

``resolve_parenthesized(inner)``
    The declared resolution of the ``_expression`` /
    ``parenthesized_numeric_expression`` conflict: a parenthesized
    subtree is numeric exactly when its content is.

The tables are validated once at import time; an inconsistency is a
defect of this module and raises ``GrammarConflictError``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from .ast import (
    BinaryExpression,
    Node,
    ParenthesizedExpression,
    ParenthesizedNumericExpression,
    UnaryExpression,
)
from .errors import GrammarConflictError, SourceSpan

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — PRECEDENCE LEVELS AND PRODUCTIONS
# ═══════════════════════════════════════════════════════════════════

class Prec(enum.IntEnum):
    """Binding power, higher binds tighter."""
    PRIMARY = 13
    UNARY = 12
    MULTIPLICATIVE = 11
    ADDITIVE = 10
    BIT_SHIFT = 9
    BIT_AND = 8
    BIT_XOR = 7
    BIT_OR = 6
    COMPARATIVE = 5
    EQUALITY = 4
    NOT_DEFINED = 3
    AND = 2
    OR = 1


class Production(enum.Enum):
    """Grammar productions that take part in a declared conflict."""
    EXPRESSION = "_expression"
    NUMERIC_EXPRESSION = "_numeric_expression"
    STRING_EXPRESSION = "string_expression"
    REGULAR_EXPRESSION = "regular_expression"
    PARENTHESIZED_EXPRESSION = "parenthesized_expression"
    PARENTHESIZED_NUMERIC_EXPRESSION = "parenthesized_numeric_expression"
    BINARY_EXPRESSION = "binary_expression"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS.get(self, self.value)


_DESCRIPTIONS: Dict[Production, str] = {
    Production.EXPRESSION: "expression",
    Production.NUMERIC_EXPRESSION: "numeric expression",
    Production.STRING_EXPRESSION: "string expression",
    Production.REGULAR_EXPRESSION: "regular expression",
}


#: Pairs of productions the grammar knowingly lets overlap.
CONFLICTS: Tuple[Tuple[Production, Production], ...] = (
    (Production.EXPRESSION, Production.NUMERIC_EXPRESSION),
    (Production.EXPRESSION, Production.PARENTHESIZED_NUMERIC_EXPRESSION),
)


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — BINARY OPERATOR TABLE
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class OperatorInfo:
    prec: Prec
    left: Production
    right: Production
    numeric_result: bool = False
    left_assoc: bool = True


_NUM = Production.NUMERIC_EXPRESSION
_STR = Production.STRING_EXPRESSION
_ANY = Production.EXPRESSION


def _arith(prec: Prec) -> OperatorInfo:
    return OperatorInfo(prec, _NUM, _NUM, numeric_result=True)


BINARY_OPERATORS: Dict[str, OperatorInfo] = {
    "*": _arith(Prec.MULTIPLICATIVE),
    "\\": _arith(Prec.MULTIPLICATIVE),
    "%": _arith(Prec.MULTIPLICATIVE),
    "+": _arith(Prec.ADDITIVE),
    "-": _arith(Prec.ADDITIVE),
    "<<": _arith(Prec.BIT_SHIFT),
    ">>": _arith(Prec.BIT_SHIFT),
    "&": _arith(Prec.BIT_AND),
    "^": _arith(Prec.BIT_XOR),
    "|": _arith(Prec.BIT_OR),
    "<": OperatorInfo(Prec.COMPARATIVE, _NUM, _NUM),
    "<=": OperatorInfo(Prec.COMPARATIVE, _NUM, _NUM),
    ">": OperatorInfo(Prec.COMPARATIVE, _NUM, _NUM),
    ">=": OperatorInfo(Prec.COMPARATIVE, _NUM, _NUM),
    "==": OperatorInfo(Prec.EQUALITY, _ANY, _ANY),
    "!=": OperatorInfo(Prec.EQUALITY, _ANY, _ANY),
    "contains": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "icontains": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "startswith": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "istartswith": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "endswith": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "iendswith": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "iequals": OperatorInfo(Prec.EQUALITY, _STR, _STR),
    "matches": OperatorInfo(Prec.EQUALITY, _STR, Production.REGULAR_EXPRESSION),
    "and": OperatorInfo(Prec.AND, _ANY, _ANY),
    "or": OperatorInfo(Prec.OR, _ANY, _ANY),
}

#: Operators of the numeric sub-grammar (arithmetic and bitwise).
NUMERIC_OPERATORS: FrozenSet[str] = frozenset(
    op for op, info in BINARY_OPERATORS.items() if info.numeric_result
)

#: Prefix operators and the level their operand is parsed at.
UNARY_OPERATORS: Dict[str, Prec] = {
    "not": Prec.UNARY,
    "-": Prec.UNARY,
    "~": Prec.UNARY,
    "not defined": Prec.NOT_DEFINED,
}


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — PRODUCTION MEMBERSHIP
# ═══════════════════════════════════════════════════════════════════

#: Node kinds that are numeric expressions by themselves.
NUMERIC_KINDS: FrozenSet[str] = frozenset({
    "integer_decimal_positive", "integer_zero", "integer_hexadecimal",
    "float_literal", "read_function_call", "module_var_or_func",
    "identifier", "string_count", "string_offset", "string_length",
    "filesize_keyword", "parenthesized_numeric_expression",
})

STRING_KINDS: FrozenSet[str] = frozenset({
    "string_literal", "string_identifier", "module_var_or_func",
    "read_function_call",
})


def _is_numeric(node: Node) -> bool:
    if node.kind in NUMERIC_KINDS:
        return True
    if isinstance(node, BinaryExpression):
        return node.operator in NUMERIC_OPERATORS
    if isinstance(node, UnaryExpression):
        return node.operator in ("-", "~") and _is_numeric(node.operand)
    return False


_ADMITS: Dict[Production, Callable[[Node], bool]] = {
    Production.EXPRESSION: lambda node: True,
    Production.NUMERIC_EXPRESSION: _is_numeric,
    Production.STRING_EXPRESSION: lambda node: node.kind in STRING_KINDS,
    Production.REGULAR_EXPRESSION: lambda node: node.kind == "regular_expression",
    Production.PARENTHESIZED_NUMERIC_EXPRESSION:
        lambda node: isinstance(node, ParenthesizedNumericExpression),
    Production.PARENTHESIZED_EXPRESSION:
        lambda node: isinstance(node, ParenthesizedExpression),
}


def admits(production: Production, node: Node) -> bool:
    """Can *node* stand where *production* is required?"""
    try:
        check = _ADMITS[production]
    except KeyError:
        raise GrammarConflictError([production.value], "admits") from None
    return check(node)


def resolve_parenthesized(inner: Node, span: Optional[SourceSpan] = None) -> Node:
    """Wrap *inner* in the parenthesized production the conflict table picks.

    ``( numeric )`` resolves to ``parenthesized_numeric_expression`` so it
    stays usable as an arithmetic operand; anything else is a plain
    ``parenthesized_expression``.
    """
    kwargs = {} if span is None else {"span": span}
    if _is_numeric(inner):
        return ParenthesizedNumericExpression(expression=inner, **kwargs)
    return ParenthesizedExpression(expression=inner, **kwargs)


# ═══════════════════════════════════════════════════════════════════
#  PART 4 — TABLE CONSISTENCY
# ═══════════════════════════════════════════════════════════════════

def check_tables() -> None:
    """Validate the declarations above.

    Raises
    ------
    GrammarConflictError
        If an operator result category disagrees with its operands, a
        conflicting production has no membership predicate, or an
        operator level is outside the binary range.
    """
    for op, info in BINARY_OPERATORS.items():
        if not Prec.OR <= info.prec <= Prec.MULTIPLICATIVE:
            raise GrammarConflictError([op], f"operator level {info.prec.name}")
        if info.numeric_result and (info.left, info.right) != (_NUM, _NUM):
            raise GrammarConflictError([op, _NUM.value], "numeric operator operands")
        if not info.left_assoc:
            raise GrammarConflictError([op], "associativity")

    by_level: Dict[Prec, bool] = {}
    for op, info in BINARY_OPERATORS.items():
        if by_level.setdefault(info.prec, info.numeric_result) != info.numeric_result:
            raise GrammarConflictError([op, info.prec.name], "mixed result category")

    for pair in CONFLICTS:
        for production in pair:
            if production not in _ADMITS:
                raise GrammarConflictError([p.value for p in pair], "conflicts")

    if UNARY_OPERATORS["not defined"] >= Prec.EQUALITY or UNARY_OPERATORS["not"] <= Prec.MULTIPLICATIVE:
        raise GrammarConflictError(["unary_expression"], "unary levels")

    logger.debug("conflict tables: %d binary operators, %d conflicts",
                 len(BINARY_OPERATORS), len(CONFLICTS))


check_tables()
