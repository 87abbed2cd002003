"""yarasyntax/ast.py – Syntax tree for YARA rule source.

The parser produces a tree of these nodes; consumers (semantic
validators, matching engines, outline/highlight tooling) walk or query it
without re-reading the text.

Design invariants
-----------------
* Every node is a frozen dataclass (immutable after construction).
* Nodes that carry children use tuples, never lists, to preserve
  immutability through nesting.
* Every node records its source span (``SourceSpan``); slicing the parsed
  text with ``span.offset:span.end_offset`` yields exactly the node's
  source.  Spans are excluded from equality so trees built from
  differently formatted text compare equal.
* Dataclass field order is source order, so ``children()`` yields
  children left to right.
* ``kind`` names follow the tree-sitter grammar node names
  (``rule_definition``, ``of_expression`` ...).  ``FIELDS`` lists the
  named fields (``name``, ``body``, ``left`` ...) that appear labelled in
  :func:`dump` output and answer ``child_by_field_name``.

Module layout
-------------
§1  Node base & S-expression rendering
§2  Declarations – imports, includes, rules, sections
§3  Patterns – text, byte, regex, modifiers
§4  Expressions – literals, references, access chains, quantifiers,
    operators
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import (
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

import sexpdata
from sexpdata import Symbol

from .errors import NO_SPAN, SourceSpan

# ════════════════════════════════════════════════════════════════════════
# §1  Node base & S-expression rendering
# ════════════════════════════════════════════════════════════════════════


def _span_field() -> Any:
    return field(default=NO_SPAN, repr=False, compare=False)


class Node:
    """Common behaviour of every syntax tree node."""

    __slots__ = ()

    kind: ClassVar[str] = "node"
    FIELDS: ClassVar[Tuple[str, ...]] = ()

    span: SourceSpan

    # --- structure --------------------------------------------------

    def fields(self) -> Dict[str, Any]:
        """Field name → value, in source order (span excluded)."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)  # type: ignore[arg-type]
            if f.name != "span"
        }

    def children(self) -> Tuple["Node", ...]:
        """Direct child nodes, left to right."""
        out: List[Node] = []
        for value in self.fields().values():
            _collect_nodes(value, out)
        return tuple(out)

    def child_by_field_name(self, name: str) -> Optional["Node"]:
        """The child stored in the named field *name*, if any."""
        if name not in self.FIELDS:
            return None
        value = getattr(self, name, None)
        return value if isinstance(value, Node) else None

    def walk(self) -> Iterator["Node"]:
        """Pre-order traversal starting at (and including) this node."""
        stack: List[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children()))

    def find_all(self, kind: str) -> List["Node"]:
        """All descendants (including self) whose ``kind`` is *kind*."""
        return [n for n in self.walk() if n.kind == kind]

    def source_text(self, source: str) -> str:
        """The exact source text this node was parsed from."""
        return source[self.span.offset:self.span.end_offset]

    # --- visitors ---------------------------------------------------

    def accept(self, visitor: Any) -> Any:
        method = getattr(visitor, f"visit_{self.kind}", visitor.generic_visit)
        return method(self)

    # --- S-expressions ----------------------------------------------

    def to_sexp(self) -> List[Any]:
        """Nested ``sexpdata`` structure in tree-sitter corpus form."""
        out: List[Any] = [Symbol(self.kind)]
        for name, value in self.fields().items():
            nodes: List[Node] = []
            _collect_nodes(value, nodes)
            for child in nodes:
                if name in self.FIELDS:
                    out.append(Symbol(f"{name}:"))
                out.append(child.to_sexp())
        return out


def _collect_nodes(value: Any, out: List[Node]) -> None:
    if isinstance(value, Node):
        out.append(value)
    elif isinstance(value, tuple):
        for item in value:
            _collect_nodes(item, out)


def dump(node: Node) -> str:
    """Render *node* as an S-expression, e.g.
    ``(source_file (rule_definition name: (identifier) body: (rule_body ...)))``.
    """
    return sexpdata.dumps(node.to_sexp())


# ════════════════════════════════════════════════════════════════════════
# §4 (leaves first)  Expressions – literals and names
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IntegerLiteral(Node):
    """Integer literal; ``value`` already includes the size unit scale."""

    value: int
    text: str
    unit: Optional[str] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class DecimalInteger(IntegerLiteral):
    """Positive decimal integer, leading zeros allowed (``007``, ``5KB``)."""

    kind = "integer_decimal_positive"


@dataclass(frozen=True, slots=True)
class ZeroInteger(IntegerLiteral):
    """A run of zeros, optionally with a size unit (``0``, ``00KB``)."""

    kind = "integer_zero"


@dataclass(frozen=True, slots=True)
class HexInteger(IntegerLiteral):
    kind = "integer_hexadecimal"


@dataclass(frozen=True, slots=True)
class FloatLiteral(Node):
    kind = "float_literal"

    value: float
    text: str
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class BooleanLiteral(Node):
    kind = "boolean_literal"

    value: bool
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringLiteral(Node):
    """Quoted string.  ``value`` is unescaped, ``text`` is the lexeme."""

    kind = "string_literal"

    value: str
    text: str
    span: SourceSpan = _span_field()

    @property
    def quote(self) -> str:
        return self.text[:1]


@dataclass(frozen=True, slots=True)
class Identifier(Node):
    kind = "identifier"

    name: str
    span: SourceSpan = _span_field()

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class ModuleIdentifier(Identifier):
    """Base name of a module access chain (``pe`` in ``pe.sections``)."""

    kind = "module_identifier"


@dataclass(frozen=True, slots=True)
class Tag(Identifier):
    """Second and later entries of a rule's tag list."""

    kind = "tag"


@dataclass(frozen=True, slots=True)
class RuleReference(Identifier):
    """A rule name inside a rule set: ``any of (rule_a, rule_b*)``."""

    kind = "rule"


@dataclass(frozen=True, slots=True)
class StringIdentifier(Node):
    """``$name`` or the anonymous ``$``; ``name`` excludes the sigil."""

    kind = "string_identifier"

    name: str
    span: SourceSpan = _span_field()

    @property
    def is_anonymous(self) -> bool:
        return self.name == ""

    def __str__(self) -> str:
        return f"${self.name}"


@dataclass(frozen=True, slots=True)
class FilesizeKeyword(Node):
    kind = "filesize_keyword"

    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class RegularExpression(Node):
    """``/pattern/flags``.  The body is kept raw (escapes undecoded)."""

    kind = "regular_expression"

    pattern: str
    flags: str = ""
    span: SourceSpan = _span_field()

    @property
    def case_insensitive(self) -> bool:
        return "i" in self.flags

    @property
    def dot_all(self) -> bool:
        return "s" in self.flags

    def __str__(self) -> str:
        return f"/{self.pattern}/{self.flags}"


# ════════════════════════════════════════════════════════════════════════
# §4  Expressions – pattern references, ranges, access chains
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Range(Node):
    """``(low .. high)`` over numeric expressions."""

    kind = "range"

    low: "Expression"
    high: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringCount(Node):
    """``#name`` / ``#``, optionally ``in (lo..hi)``."""

    kind = "string_count"

    name: str
    range: Optional[Range] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringOffset(Node):
    """``@name`` / ``@``, optionally indexed ``@name[i]``."""

    kind = "string_offset"

    name: str
    index: Optional["Expression"] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringLength(Node):
    """``!name`` / ``!``, optionally indexed ``!name[i]``."""

    kind = "string_length"

    name: str
    index: Optional["Expression"] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class ReadFunctionCall(Node):
    """``uint32be(offset)`` and the other fixed-width integer readers."""

    kind = "read_function_call"

    function: str
    argument: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class MemberAccess(Node):
    kind = "member_access"

    member: Identifier
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class CallArguments(Node):
    kind = "call_arguments"

    arguments: Tuple["Expression", ...]
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class IndexAccess(Node):
    kind = "index_access"

    index: "Expression"
    span: SourceSpan = _span_field()


AccessSuffix = Union[MemberAccess, CallArguments, IndexAccess]


@dataclass(frozen=True, slots=True)
class ModuleAccess(Node):
    """Module-qualified access chain, e.g. ``pe.sections[0].name``.

    ``suffixes`` holds one entry per operation applied to ``module``, in
    order: ``(member_access sections) (index_access 0)
    (member_access name)``.  The first suffix is always a member access,
    and a call only ever follows a member access.
    """

    kind = "module_var_or_func"

    module: ModuleIdentifier
    suffixes: Tuple[AccessSuffix, ...]
    span: SourceSpan = _span_field()

    @property
    def path(self) -> str:
        """Dotted member path with calls/indexes elided (``pe.sections.name``)."""
        names = [self.module.name]
        names.extend(s.member.name for s in self.suffixes if isinstance(s, MemberAccess))
        return ".".join(names)


# ════════════════════════════════════════════════════════════════════════
# §4  Expressions – quantifiers and iteration
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Quantifier(Node):
    """``all`` / ``any`` / ``none`` (``keyword``) or a numeric ``expression``."""

    kind = "quantifier"

    keyword: Optional[str] = None
    expression: Optional["Expression"] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringSet(Node):
    """``them`` or ``($a, $b*, ...)``.

    ``wildcards[i]`` is true when ``members[i]`` was written with a
    trailing ``*`` (prefix match).
    """

    kind = "string_set"

    them: bool = False
    members: Tuple[StringIdentifier, ...] = ()
    wildcards: Tuple[bool, ...] = ()
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class RuleSet(Node):
    """``(rule_a, rule_b*, ...)``; same shape as ``StringSet`` over rules."""

    kind = "rule_set"

    members: Tuple[RuleReference, ...] = ()
    wildcards: Tuple[bool, ...] = ()
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class OfExpression(Node):
    kind = "of_expression"

    quantifier: Quantifier
    string_set: StringSet
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class OfRuleset(Node):
    kind = "of_ruleset"

    quantifier: Quantifier
    rule_set: RuleSet
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringAtOffset(Node):
    """``$a at 100`` / ``2 of ($a, $b) at 0``."""

    kind = "string_at_offset"

    subject: Union[StringIdentifier, OfExpression]
    offset: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringAtRange(Node):
    """``$a in (0..100)``."""

    kind = "string_at_range"

    subject: Union[StringIdentifier, OfExpression]
    range: Range
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class ParenthesizedExpression(Node):
    kind = "parenthesized_expression"

    expression: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class ParenthesizedNumericExpression(Node):
    kind = "parenthesized_numeric_expression"

    expression: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class ForOfExpression(Node):
    """``for <quantifier> of <string set> : ( <condition> )``."""

    kind = "for_of_expression"

    of: OfExpression
    body: ParenthesizedExpression
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class ExpressionList(Node):
    """Explicit ``(e1, e2, ...)`` iterable of a ``for ... in`` loop."""

    kind = "expression_list"

    elements: Tuple["Expression", ...]
    span: SourceSpan = _span_field()


Iterable = Union[Range, ExpressionList, Identifier, ModuleAccess]


@dataclass(frozen=True, slots=True)
class ForInExpression(Node):
    """``for <quantifier> v1, v2 in <iterable> : ( <condition> )``."""

    kind = "for_in_expression"

    quantifier: Quantifier
    variables: Tuple[Identifier, ...]
    iterable: Iterable
    body: ParenthesizedExpression
    span: SourceSpan = _span_field()


# ════════════════════════════════════════════════════════════════════════
# §4  Expressions – operators
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class UnaryExpression(Node):
    """``not x``, ``-x``, ``~x`` and ``not defined x``."""

    kind = "unary_expression"
    FIELDS = ("operator", "operand")

    operator: str
    operand: "Expression"
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class BinaryExpression(Node):
    kind = "binary_expression"
    FIELDS = ("left", "operator", "right")

    left: "Expression"
    operator: str
    right: "Expression"
    span: SourceSpan = _span_field()


Expression = Union[
    IntegerLiteral, FloatLiteral, BooleanLiteral, StringLiteral,
    Identifier, StringIdentifier, FilesizeKeyword, RegularExpression,
    StringCount, StringOffset, StringLength, ReadFunctionCall,
    ModuleAccess, OfExpression, OfRuleset, StringAtOffset, StringAtRange,
    ForOfExpression, ForInExpression, ParenthesizedExpression,
    ParenthesizedNumericExpression, UnaryExpression, BinaryExpression,
]


# ════════════════════════════════════════════════════════════════════════
# §3  Patterns – text, byte, regex, modifiers
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class TextString(Node):
    """Quoted text pattern (restricted escape set)."""

    kind = "text_string"

    value: str
    text: str
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class HexByte(Node):
    """One byte position: ``4D``, ``?A``, ``??``, ``~4D``.

    ``high`` / ``low`` are the nibble values, ``None`` where the nibble
    is a ``?`` wildcard.
    """

    kind = "hex_byte"

    high: Optional[int]
    low: Optional[int]
    negated: bool = False
    span: SourceSpan = _span_field()

    @property
    def is_wildcard(self) -> bool:
        return self.high is None and self.low is None

    @property
    def value(self) -> int:
        """Byte value with wildcard nibbles zeroed."""
        return ((self.high or 0) << 4) | (self.low or 0)

    @property
    def mask(self) -> int:
        """Bit mask of the fixed nibbles (``0xFF`` for a literal byte)."""
        return (0xF0 if self.high is not None else 0) | (0x0F if self.low is not None else 0)

    def __str__(self) -> str:
        def nibble(v: Optional[int]) -> str:
            return "?" if v is None else f"{v:X}"
        return ("~" if self.negated else "") + nibble(self.high) + nibble(self.low)


@dataclass(frozen=True, slots=True)
class HexJump(Node):
    """Variable gap: ``[n]``, ``[n-m]``, ``[n-]``, ``[-m]``, ``[-]``.

    ``low`` / ``high`` are ``None`` where the bound was omitted.  ``ranged``
    records whether a ``-`` was written, distinguishing ``[4]`` from
    ``[4-4]``.
    """

    kind = "hex_jump"

    low: Optional[int]
    high: Optional[int]
    ranged: bool = True
    span: SourceSpan = _span_field()

    def __str__(self) -> str:
        if not self.ranged:
            return f"[{self.low}]"
        low = "" if self.low is None else str(self.low)
        high = "" if self.high is None else str(self.high)
        return f"[{low}-{high}]"


@dataclass(frozen=True, slots=True)
class HexSequence(Node):
    """A run of byte positions inside an alternative."""

    kind = "hex_seq"

    bytes: Tuple[HexByte, ...]
    span: SourceSpan = _span_field()

    def __str__(self) -> str:
        return " ".join(str(b) for b in self.bytes)


@dataclass(frozen=True, slots=True)
class HexAlternative(Node):
    """``( 62 | 63 64 )``: alternatives are byte runs, never nested groups."""

    kind = "hex_alternative"

    alternatives: Tuple[HexSequence, ...]
    span: SourceSpan = _span_field()

    def __str__(self) -> str:
        return "(" + "|".join(str(a) for a in self.alternatives) + ")"


HexElement = Union[HexByte, HexJump, HexAlternative]


@dataclass(frozen=True, slots=True)
class HexString(Node):
    """``{ ... }`` byte pattern as an ordered element sequence."""

    kind = "hex_string"

    elements: Tuple[HexElement, ...]
    span: SourceSpan = _span_field()

    def to_source(self) -> str:
        """Canonical text, e.g. ``{ 61 ?? (62|63) [2-4] 64 }``."""
        return "{ " + " ".join(str(e) for e in self.elements) + " }"


@dataclass(frozen=True, slots=True)
class RegexString(Node):
    kind = "regex_string"

    regex: RegularExpression
    span: SourceSpan = _span_field()


PatternValue = Union[TextString, HexString, RegexString]


@dataclass(frozen=True, slots=True)
class StringModifier(Node):
    """One entry of a modifier list.

    ``key`` is the optional alphabet argument of ``base64``/``base64wide``;
    ``xor_low``/``xor_high`` the optional byte (range) argument of ``xor``.
    Compatibility between modifiers is not checked here.
    """

    kind = "string_modifier"

    name: str
    key: Optional[StringLiteral] = None
    xor_low: Optional[int] = None
    xor_high: Optional[int] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringModifiers(Node):
    kind = "string_modifiers"

    modifiers: Tuple[StringModifier, ...]
    span: SourceSpan = _span_field()

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(m.name for m in self.modifiers)


# ════════════════════════════════════════════════════════════════════════
# §2  Declarations – imports, includes, rules, sections
# ════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class StringDefinition(Node):
    """``$name = <value> <modifiers>?``."""

    kind = "string_definition"
    FIELDS = ("name", "value")

    name: StringIdentifier
    value: PatternValue
    modifiers: Optional[StringModifiers] = None
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class StringsSection(Node):
    kind = "strings_section"

    definitions: Tuple[StringDefinition, ...]
    span: SourceSpan = _span_field()


MetaValue = Union[StringLiteral, IntegerLiteral, BooleanLiteral]


@dataclass(frozen=True, slots=True)
class MetaDefinition(Node):
    kind = "meta_definition"
    FIELDS = ("key", "value")

    key: Identifier
    value: MetaValue
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class MetaSection(Node):
    kind = "meta_section"

    entries: Tuple[MetaDefinition, ...]
    span: SourceSpan = _span_field()

    def get(self, key: str) -> Optional[MetaValue]:
        """Value of the first entry named *key* (keys may repeat)."""
        for entry in self.entries:
            if entry.key.name == key:
                return entry.value
        return None


@dataclass(frozen=True, slots=True)
class ConditionSection(Node):
    kind = "condition_section"

    expression: Expression
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class RuleBody(Node):
    """Sections in fixed order; the condition is mandatory."""

    kind = "rule_body"

    meta: Optional[MetaSection]
    strings: Optional[StringsSection]
    condition: ConditionSection
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class TagList(Node):
    """``: tag1 tag2 ...``.  The first entry is an ``Identifier``, later
    entries are ``Tag`` nodes."""

    kind = "tag_list"

    tags: Tuple[Identifier, ...]
    span: SourceSpan = _span_field()

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.tags)


@dataclass(frozen=True, slots=True)
class RuleDefinition(Node):
    kind = "rule_definition"
    FIELDS = ("name", "body")

    name: Identifier
    tags: Optional[TagList]
    body: RuleBody
    is_private: bool = False
    is_global: bool = False
    span: SourceSpan = _span_field()

    @property
    def modifiers(self) -> Tuple[str, ...]:
        out = []
        if self.is_private:
            out.append("private")
        if self.is_global:
            out.append("global")
        return tuple(out)


@dataclass(frozen=True, slots=True)
class ImportStatement(Node):
    kind = "import_statement"

    module: StringLiteral
    span: SourceSpan = _span_field()


@dataclass(frozen=True, slots=True)
class IncludeStatement(Node):
    kind = "include_statement"

    path: StringLiteral
    span: SourceSpan = _span_field()


Declaration = Union[ImportStatement, IncludeStatement, RuleDefinition]


@dataclass(frozen=True, slots=True)
class SourceFile(Node):
    """Root: declarations in file order."""

    kind = "source_file"

    declarations: Tuple[Declaration, ...]
    span: SourceSpan = _span_field()

    @property
    def imports(self) -> Tuple[ImportStatement, ...]:
        return tuple(d for d in self.declarations if isinstance(d, ImportStatement))

    @property
    def includes(self) -> Tuple[IncludeStatement, ...]:
        return tuple(d for d in self.declarations if isinstance(d, IncludeStatement))

    @property
    def rules(self) -> Tuple[RuleDefinition, ...]:
        return tuple(d for d in self.declarations if isinstance(d, RuleDefinition))

    def rule(self, name: str) -> Optional[RuleDefinition]:
        for r in self.rules:
            if r.name.name == name:
                return r
        return None
