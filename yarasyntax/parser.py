"""
parser.py — YARA rule parser
============================

Recursive-descent parser turning rule source into the syntax tree of
:mod:`yarasyntax.ast`.  Declarations, sections and patterns are parsed
top-down; condition expressions use precedence climbing driven by the
operator table in :mod:`yarasyntax.conflicts`.

Usage::

    from yarasyntax.parser import parse, parse_expression

    tree = parse('''
        import "pe"
        rule mz : exe {
            strings: $mz = { 4D 5A }
            condition: $mz at 0 and pe.number_of_sections > 2
        }
    ''', filename="mz.yar")

    expr = parse_expression("1 + 2 * 3 > 0")

The first error aborts the parse.  Tokens are produced lazily, so the
reported error is the earliest one in the text.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, TypeVar

from .ast import (
    BinaryExpression,
    BooleanLiteral,
    CallArguments,
    ConditionSection,
    DecimalInteger,
    ExpressionList,
    FilesizeKeyword,
    FloatLiteral,
    ForInExpression,
    ForOfExpression,
    HexInteger,
    HexString,
    Identifier,
    ImportStatement,
    IncludeStatement,
    IndexAccess,
    IntegerLiteral,
    MemberAccess,
    MetaDefinition,
    MetaSection,
    ModuleAccess,
    ModuleIdentifier,
    Node,
    OfExpression,
    OfRuleset,
    ParenthesizedExpression,
    Quantifier,
    Range,
    ReadFunctionCall,
    RegexString,
    RegularExpression,
    RuleBody,
    RuleDefinition,
    RuleReference,
    RuleSet,
    SourceFile,
    StringAtOffset,
    StringAtRange,
    StringCount,
    StringDefinition,
    StringIdentifier,
    StringLength,
    StringLiteral,
    StringModifier,
    StringModifiers,
    StringOffset,
    StringSet,
    StringsSection,
    Tag,
    TagList,
    TextString,
    UnaryExpression,
    ZeroInteger,
)
from .conflicts import (
    BINARY_OPERATORS,
    UNARY_OPERATORS,
    Prec,
    Production,
    admits,
    resolve_parenthesized,
)
from .errors import (
    ErrorCodes,
    InvalidEscapeError,
    MissingTokenError,
    NestingTooDeepError,
    RuleSyntaxError,
    SourceSpan,
    SyntacticError,
    UnexpectedEOFError,
    UnexpectedTokenError,
)
from .hexgrammar import parse_byte_pattern
from .lexer import (
    READ_FUNCTIONS,
    SIZE_UNITS,
    STRING_MODIFIERS,
    STRING_OPERATORS,
    Lexer,
    Token,
    TokType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════════
#  CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ParseOptions:
    """Per-parse settings.

    Attributes
    ----------
    filename : str
        Recorded in every span and diagnostic.
    max_nesting : int
        Deepest accepted expression nesting (parentheses, unary chains,
        call arguments ...).  Deeper input raises ``NestingTooDeepError``
        instead of exhausting the interpreter stack.
    """
    filename: str = "<string>"
    max_nesting: int = 100


#: Token types that spell a binary operator.
_OPERATOR_TOKENS = frozenset({
    TokType.STAR, TokType.BACKSLASH, TokType.PERCENT, TokType.PLUS,
    TokType.MINUS, TokType.SHL, TokType.SHR, TokType.AMP, TokType.CARET,
    TokType.PIPE, TokType.LT, TokType.LE, TokType.GT, TokType.GE,
    TokType.EQ, TokType.NE,
})

_QUANTIFIER_KEYWORDS = ("all", "any", "none")

#: Escapes a text pattern accepts besides ``\xHH`` (``\'`` only in '...').
_TEXT_ESCAPES = frozenset('"\\rtn')


# ═══════════════════════════════════════════════════════════════════
#  PARSER
# ═══════════════════════════════════════════════════════════════════

class _Parser:
    """Recursive descent parser for YARA source.

    Grammar (simplified)::

        source_file   → (import | include | rule)*
        import        → 'import' STRING
        include       → 'include' STRING
        rule          → 'private'? 'global'? 'rule' IDENT tag_list? rule_body
        tag_list      → ':' IDENT+
        rule_body     → '{' meta? strings? condition '}'
        meta          → 'meta' ':' (IDENT '=' meta_value)+
        strings       → 'strings' ':' ($ID '=' pattern modifier*)+
        pattern       → STRING | BYTE_PATTERN | REGEX
        condition     → 'condition' ':' expr

        expr          → unary (binop unary)*          precedence climbing
                      | expr<arith> 'of' set           at boolean level
        numeric       → expr restricted to the numeric sub-grammar
        unary         → ('not' | '-' | '~') unary
                      | 'not' 'defined' expr<equality>
                      | postfix
        postfix       → primary ('of' set)? (('at' numeric) | ('in' range))?
        primary       → literal | $ID | #ID ('in' range)? | @ID ('[' numeric ']')?
                      | !ID ('[' numeric ']')? | 'filesize' | read_fn '(' numeric ')'
                      | IDENT ('.' IDENT call? | '[' expr ']')*
                      | quantifier 'of' set | for_expr | '(' expr ')'
        for_expr      → 'for' quantifier 'of' set ':' '(' expr ')'
                      | 'for' quantifier vars 'in' iterable ':' '(' expr ')'
    """

    def __init__(self, text: str, options: ParseOptions):
        self.text = text
        self.options = options
        self.lexer = Lexer(text, options.filename)
        self._lookahead: List[Token] = []
        self._last: Optional[Token] = None
        self._depth = 0
        # >0 while parsing a quantifier or an arithmetic or comparison
        # operand, where 'of' belongs to the caller
        self._quantifier = 0

    # ─────────────────────────────────────────────────────────────
    # Token cursor
    # ─────────────────────────────────────────────────────────────

    def _peek(self, k: int = 0) -> Token:
        while len(self._lookahead) <= k:
            if self._lookahead and self._lookahead[-1].type is TokType.EOF:
                return self._lookahead[-1]
            self._lookahead.append(self.lexer.next_token())
        return self._lookahead[k]

    def _advance(self) -> Token:
        tok = self._peek()
        if tok.type is not TokType.EOF:
            self._lookahead.pop(0)
        self._last = tok
        return tok

    def _at(self, *types: TokType) -> bool:
        return self._peek().type in types

    def _at_keyword(self, *words: str) -> bool:
        return self._peek().is_keyword(*words)

    def _expect(self, tt: TokType, what: Optional[str] = None) -> Token:
        if not self._at(tt):
            raise self._unexpected([what or repr(tt.value)])
        return self._advance()

    def _expect_keyword(self, word: str) -> Token:
        if not self._at_keyword(word):
            raise self._unexpected([repr(word)])
        return self._advance()

    def _unexpected(self, expected: List[str]) -> SyntacticError:
        tok = self._peek()
        if tok.type is TokType.EOF:
            return UnexpectedEOFError(expected, span=tok.span)
        return UnexpectedTokenError(tok.describe(), expected, span=tok.span)

    def _span_from(self, start: SourceSpan) -> SourceSpan:
        """Span from *start* to the end of the last consumed token."""
        return SourceSpan.merge(start, self._last.span)

    def _nested(self, parse: Callable[[], T]) -> T:
        """Run *parse* inside brackets, where 'of' is free again."""
        saved, self._quantifier = self._quantifier, 0
        try:
            return parse()
        finally:
            self._quantifier = saved

    # ─────────────────────────────────────────────────────────────
    # Source file and declarations
    # ─────────────────────────────────────────────────────────────

    def parse_source_file(self) -> SourceFile:
        declarations: List[Node] = []
        while not self._at(TokType.EOF):
            tok = self._peek()
            if tok.is_keyword("import"):
                declarations.append(self._parse_import())
            elif tok.is_keyword("include"):
                declarations.append(self._parse_include())
            elif tok.is_keyword("rule", "private", "global"):
                declarations.append(self._parse_rule())
            else:
                raise self._unexpected(["'import'", "'include'", "'rule'"])
        return SourceFile(declarations=tuple(declarations),
                          span=self.lexer.span(0, len(self.text)))

    def parse_standalone_expression(self) -> Node:
        expr = self._parse_expression()
        if not self._at(TokType.EOF):
            raise self._unexpected(["end of expression"])
        return expr

    def _parse_quoted_path(self) -> StringLiteral:
        tok = self._peek()
        if tok.type is not TokType.STRING or not tok.text.startswith('"'):
            raise self._unexpected(["double-quoted string"])
        self._advance()
        return StringLiteral(value=tok.value, text=tok.text, span=tok.span)

    def _parse_import(self) -> ImportStatement:
        start = self._advance()
        module = self._parse_quoted_path()
        return ImportStatement(module=module, span=self._span_from(start.span))

    def _parse_include(self) -> IncludeStatement:
        start = self._advance()
        path = self._parse_quoted_path()
        return IncludeStatement(path=path, span=self._span_from(start.span))

    def _parse_rule(self) -> RuleDefinition:
        start = self._peek()
        is_private = is_global = False
        if self._at_keyword("private"):
            self._advance()
            is_private = True
        if self._at_keyword("global"):
            self._advance()
            is_global = True
        self._expect_keyword("rule")

        name_tok = self._expect(TokType.IDENTIFIER, "rule name")
        name = Identifier(name=name_tok.value, span=name_tok.span)

        tags = self._parse_tag_list() if self._at(TokType.COLON) else None
        body = self._parse_rule_body()

        rule = RuleDefinition(name=name, tags=tags, body=body,
                              is_private=is_private, is_global=is_global,
                              span=self._span_from(start.span))
        logger.debug("parsed rule %s", rule.name.name)
        return rule

    def _parse_tag_list(self) -> TagList:
        colon = self._advance()
        first = self._expect(TokType.IDENTIFIER, "tag")
        tags: List[Identifier] = [Identifier(name=first.value, span=first.span)]
        while self._at(TokType.IDENTIFIER):
            tok = self._advance()
            tags.append(Tag(name=tok.value, span=tok.span))
        return TagList(tags=tuple(tags), span=self._span_from(colon.span))

    def _parse_rule_body(self) -> RuleBody:
        lbrace = self._expect(TokType.LBRACE, "'{'")
        meta = self._parse_meta_section() if self._at_keyword("meta") else None
        strings = self._parse_strings_section() if self._at_keyword("strings") else None

        if not self._at_keyword("condition"):
            tok = self._peek()
            if tok.type is TokType.RBRACE:
                raise MissingTokenError("condition", span=tok.span,
                                        context="section in rule body",
                                        got=tok.describe())
            expected = ["'condition'"]
            if strings is None:
                expected.insert(0, "'strings'")
                if meta is None:
                    expected.insert(0, "'meta'")
            raise self._unexpected(expected)
        condition = self._parse_condition_section()

        self._expect(TokType.RBRACE, "'}'")
        return RuleBody(meta=meta, strings=strings, condition=condition,
                        span=self._span_from(lbrace.span))

    # ─────────────────────────────────────────────────────────────
    # Sections
    # ─────────────────────────────────────────────────────────────

    def _parse_meta_section(self) -> MetaSection:
        start = self._advance()
        self._expect(TokType.COLON, "':'")
        entries = [self._parse_meta_definition()]
        while self._at(TokType.IDENTIFIER):
            entries.append(self._parse_meta_definition())
        return MetaSection(entries=tuple(entries), span=self._span_from(start.span))

    def _parse_meta_definition(self) -> MetaDefinition:
        key_tok = self._expect(TokType.IDENTIFIER, "meta identifier")
        self._expect(TokType.EQUAL, "'='")

        tok = self._peek()
        if tok.type is TokType.STRING:
            value: Node = StringLiteral(value=tok.value, text=tok.text, span=tok.span)
        elif tok.type is TokType.INTEGER:
            value = self._integer(tok)
        elif tok.is_keyword("true", "false"):
            value = BooleanLiteral(value=tok.text == "true", span=tok.span)
        else:
            raise self._unexpected(["string", "integer", "'true'", "'false'"])
        self._advance()

        return MetaDefinition(key=Identifier(name=key_tok.value, span=key_tok.span),
                              value=value, span=self._span_from(key_tok.span))

    def _parse_strings_section(self) -> StringsSection:
        start = self._advance()
        self._expect(TokType.COLON, "':'")
        definitions = [self._parse_string_definition()]
        while self._at(TokType.STRING_IDENTIFIER):
            definitions.append(self._parse_string_definition())
        return StringsSection(definitions=tuple(definitions),
                              span=self._span_from(start.span))

    def _parse_condition_section(self) -> ConditionSection:
        start = self._advance()
        self._expect(TokType.COLON, "':'")
        expr = self._parse_expression()
        return ConditionSection(expression=expr, span=self._span_from(start.span))

    # ─────────────────────────────────────────────────────────────
    # Pattern definitions
    # ─────────────────────────────────────────────────────────────

    def _parse_string_definition(self) -> StringDefinition:
        name_tok = self._expect(TokType.STRING_IDENTIFIER, "pattern identifier")
        name = StringIdentifier(name=name_tok.value, span=name_tok.span)
        self._expect(TokType.EQUAL, "'='")

        tok = self._peek()
        if tok.type is TokType.STRING:
            self._check_text_escapes(tok)
            value: Node = TextString(value=tok.value, text=tok.text, span=tok.span)
        elif tok.type is TokType.BYTE_PATTERN:
            value = self._byte_pattern(tok)
        elif tok.type is TokType.REGEX:
            pattern, flags = tok.value
            regex = RegularExpression(pattern=pattern, flags=flags, span=tok.span)
            value = RegexString(regex=regex, span=tok.span)
        else:
            raise self._unexpected(["text string", "byte pattern", "regular expression"])
        self._advance()

        modifiers = self._parse_string_modifiers()
        return StringDefinition(name=name, value=value, modifiers=modifiers,
                                span=self._span_from(name_tok.span))

    def _check_text_escapes(self, tok: Token) -> None:
        quote = tok.text[0]
        for offset, sequence in tok.escapes:
            ch = sequence[1:2]
            if ch in _TEXT_ESCAPES or (ch == "'" and quote == "'"):
                continue
            if ch == "x" and len(sequence) == 4:
                continue
            raise InvalidEscapeError(sequence,
                                     span=self.lexer.span(offset, offset + len(sequence)),
                                     context="text pattern")

    def _byte_pattern(self, tok: Token) -> HexString:
        logger.debug("parsing byte pattern at offset %d", tok.start)
        return parse_byte_pattern(tok.value, base=tok.start + 1,
                                  make_span=self.lexer.span,
                                  outer=(tok.start, tok.end))

    def _parse_string_modifiers(self) -> Optional[StringModifiers]:
        modifiers: List[StringModifier] = []
        while self._peek().is_keyword(*STRING_MODIFIERS):
            modifiers.append(self._parse_string_modifier())
        if not modifiers:
            return None
        span = SourceSpan.merge(modifiers[0].span, modifiers[-1].span)
        return StringModifiers(modifiers=tuple(modifiers), span=span)

    def _parse_string_modifier(self) -> StringModifier:
        tok = self._advance()
        name = tok.text
        if name in ("base64", "base64wide") and self._at(TokType.LPAREN):
            self._advance()
            key_tok = self._expect(TokType.STRING, "alphabet string")
            self._expect(TokType.RPAREN, "')'")
            key = StringLiteral(value=key_tok.value, text=key_tok.text, span=key_tok.span)
            return StringModifier(name=name, key=key, span=self._span_from(tok.span))
        if name == "xor" and self._at(TokType.LPAREN):
            self._advance()
            low = self._xor_byte()
            high = None
            if self._at(TokType.MINUS):
                self._advance()
                high = self._xor_byte()
            self._expect(TokType.RPAREN, "')'")
            return StringModifier(name=name, xor_low=low, xor_high=high,
                                  span=self._span_from(tok.span))
        return StringModifier(name=name, span=tok.span)

    def _xor_byte(self) -> int:
        tok = self._peek()
        if tok.type is TokType.HEX_INTEGER and len(tok.text) == 4:
            return self._advance().value
        if (tok.type is TokType.INTEGER and tok.text.isdigit()
                and (tok.text == "0" or not tok.text.startswith("0"))
                and tok.value <= 255):
            return self._advance().value
        raise self._unexpected(["byte value (0-255 or 0xHH)"])

    # ─────────────────────────────────────────────────────────────
    # Expressions: precedence climbing
    # ─────────────────────────────────────────────────────────────

    def _require(self, production: Production, node: Node) -> Node:
        if not admits(production, node):
            what = production.description
            raise SyntacticError(
                f"Expected {what}, found {node.kind}",
                code=ErrorCodes.INVALID_EXPRESSION,
                span=node.span,
                expected=[what],
                got=node.source_text(self.text),
            )
        return node

    def _binary_operator(self, tok: Token) -> Optional[str]:
        if tok.type in _OPERATOR_TOKENS:
            return tok.text
        if tok.type is TokType.KEYWORD and (tok.text in STRING_OPERATORS
                                            or tok.text in ("and", "or")):
            return tok.text
        return None

    def _parse_expression(self, min_prec: Prec = Prec.OR) -> Node:
        """expr → unary (binop unary)*, all binary operators left-associative."""
        left = self._parse_unary()
        while True:
            op = self._binary_operator(self._peek())
            if op is None:
                # `1 + 1 of them` quantifies over the whole arithmetic
                if (min_prec <= Prec.EQUALITY
                        and isinstance(left, (BinaryExpression, UnaryExpression))
                        and self._quantifier == 0 and self._at_keyword("of")
                        and admits(Production.NUMERIC_EXPRESSION, left)):
                    left = self._parse_postfix(left)
                    continue
                return left
            info = BINARY_OPERATORS[op]
            if info.prec < min_prec:
                return left
            self._require(info.left, left)
            self._advance()
            if info.prec >= Prec.COMPARATIVE:
                self._quantifier += 1
            try:
                right = self._parse_expression(Prec(info.prec + 1))
            finally:
                if info.prec >= Prec.COMPARATIVE:
                    self._quantifier -= 1
            self._require(info.right, right)
            left = BinaryExpression(left=left, operator=op, right=right,
                                    span=SourceSpan.merge(left.span, right.span))

    def _parse_numeric(self) -> Node:
        """numeric → the arithmetic and bitwise sub-grammar only."""
        return self._require(Production.NUMERIC_EXPRESSION,
                             self._parse_expression(Prec.BIT_OR))

    def _parse_unary(self) -> Node:
        self._depth += 1
        try:
            if self._depth > self.options.max_nesting:
                raise NestingTooDeepError(self.options.max_nesting,
                                          span=self._peek().span)
            tok = self._peek()
            if tok.is_keyword("not"):
                self._advance()
                if self._at_keyword("defined"):
                    self._advance()
                    operand = self._parse_expression(
                        Prec(UNARY_OPERATORS["not defined"] + 1))
                    return UnaryExpression(operator="not defined", operand=operand,
                                           span=self._span_from(tok.span))
                operand = self._parse_unary()
                return UnaryExpression(operator="not", operand=operand,
                                       span=self._span_from(tok.span))
            if tok.type in (TokType.MINUS, TokType.TILDE):
                self._advance()
                operand = self._parse_unary()
                return UnaryExpression(operator=tok.text, operand=operand,
                                       span=self._span_from(tok.span))
            return self._parse_postfix(self._parse_primary())
        finally:
            self._depth -= 1

    def _parse_postfix(self, node: Node) -> Node:
        if (self._quantifier == 0 and self._at_keyword("of")
                and admits(Production.NUMERIC_EXPRESSION, node)):
            quantifier = Quantifier(expression=node, span=node.span)
            node = self._parse_of(quantifier)

        if isinstance(node, (StringIdentifier, OfExpression)):
            if self._at_keyword("at"):
                self._advance()
                offset = self._parse_numeric()
                return StringAtOffset(subject=node, offset=offset,
                                      span=SourceSpan.merge(node.span, offset.span))
            if self._at_keyword("in"):
                self._advance()
                rng = self._parse_range()
                return StringAtRange(subject=node, range=rng,
                                     span=SourceSpan.merge(node.span, rng.span))
        return node

    # ─────────────────────────────────────────────────────────────
    # Primaries
    # ─────────────────────────────────────────────────────────────

    def _parse_primary(self) -> Node:
        tok = self._peek()
        tt = tok.type

        if tt is TokType.INTEGER:
            self._advance()
            return self._integer(tok)
        if tt is TokType.HEX_INTEGER:
            self._advance()
            return HexInteger(value=tok.value, text=tok.text, span=tok.span)
        if tt is TokType.FLOAT:
            self._advance()
            return FloatLiteral(value=tok.value, text=tok.text, span=tok.span)
        if tt is TokType.STRING:
            self._advance()
            return StringLiteral(value=tok.value, text=tok.text, span=tok.span)
        if tt is TokType.REGEX:
            self._advance()
            pattern, flags = tok.value
            return RegularExpression(pattern=pattern, flags=flags, span=tok.span)
        if tt is TokType.STRING_IDENTIFIER:
            self._advance()
            return StringIdentifier(name=tok.value, span=tok.span)
        if tt is TokType.STRING_COUNT:
            return self._parse_string_count()
        if tt in (TokType.STRING_OFFSET, TokType.STRING_LENGTH):
            return self._parse_indexed_reference()
        if tt is TokType.IDENTIFIER:
            self._advance()
            if self._at(TokType.DOT):
                return self._parse_module_access(tok)
            return Identifier(name=tok.value, span=tok.span)
        if tt is TokType.LPAREN:
            self._advance()
            inner = self._nested(self._parse_expression)
            self._expect(TokType.RPAREN, "')'")
            return resolve_parenthesized(inner, span=self._span_from(tok.span))
        if tt is TokType.KEYWORD:
            return self._parse_keyword_primary(tok)

        raise self._unexpected(["expression"])

    def _parse_keyword_primary(self, tok: Token) -> Node:
        word = tok.text
        if word in ("true", "false"):
            self._advance()
            return BooleanLiteral(value=word == "true", span=tok.span)
        if word == "filesize":
            self._advance()
            return FilesizeKeyword(span=tok.span)
        if word in READ_FUNCTIONS:
            self._advance()
            self._expect(TokType.LPAREN, "'('")
            argument = self._nested(self._parse_numeric)
            self._expect(TokType.RPAREN, "')'")
            return ReadFunctionCall(function=word, argument=argument,
                                    span=self._span_from(tok.span))
        if word in _QUANTIFIER_KEYWORDS:
            self._advance()
            return self._parse_of(Quantifier(keyword=word, span=tok.span))
        if word == "for":
            return self._parse_for()
        raise self._unexpected(["expression"])

    def _integer(self, tok: Token) -> IntegerLiteral:
        unit = tok.text[-2:] if tok.text[-2:] in SIZE_UNITS else None
        digits = tok.text[:-2] if unit else tok.text
        cls = ZeroInteger if digits.strip("0") == "" else DecimalInteger
        return cls(value=tok.value, text=tok.text, unit=unit, span=tok.span)

    def _parse_string_count(self) -> StringCount:
        tok = self._advance()
        rng = None
        if self._at_keyword("in"):
            self._advance()
            rng = self._parse_range()
        return StringCount(name=tok.value, range=rng, span=self._span_from(tok.span))

    def _parse_indexed_reference(self) -> Node:
        tok = self._advance()
        index = None
        if self._at(TokType.LBRACKET):
            self._advance()
            index = self._nested(self._parse_numeric)
            self._expect(TokType.RBRACKET, "']'")
        cls = StringOffset if tok.type is TokType.STRING_OFFSET else StringLength
        return cls(name=tok.value, index=index, span=self._span_from(tok.span))

    def _parse_range(self) -> Range:
        lparen = self._expect(TokType.LPAREN, "'('")
        low = self._nested(self._parse_numeric)
        self._expect(TokType.DOTDOT, "'..'")
        high = self._nested(self._parse_numeric)
        self._expect(TokType.RPAREN, "')'")
        return Range(low=low, high=high, span=self._span_from(lparen.span))

    def _parse_module_access(self, base: Token) -> ModuleAccess:
        module = ModuleIdentifier(name=base.value, span=base.span)
        suffixes: List[Node] = []
        while True:
            if self._at(TokType.DOT):
                dot = self._advance()
                name_tok = self._peek()
                # member names may collide with reserved words (pe.imports, x.rule)
                if name_tok.type not in (TokType.IDENTIFIER, TokType.KEYWORD):
                    raise self._unexpected(["member name"])
                self._advance()
                member = Identifier(name=name_tok.text, span=name_tok.span)
                suffixes.append(MemberAccess(member=member,
                                             span=SourceSpan.merge(dot.span, name_tok.span)))
                if self._at(TokType.LPAREN):
                    suffixes.append(self._parse_call_arguments())
            elif self._at(TokType.LBRACKET):
                lbrack = self._advance()
                index = self._nested(self._parse_expression)
                self._expect(TokType.RBRACKET, "']'")
                suffixes.append(IndexAccess(index=index, span=self._span_from(lbrack.span)))
            else:
                break
        return ModuleAccess(module=module, suffixes=tuple(suffixes),
                            span=self._span_from(base.span))

    def _parse_call_arguments(self) -> CallArguments:
        lparen = self._advance()
        arguments: List[Node] = []
        if not self._at(TokType.RPAREN):
            arguments.append(self._nested(self._parse_expression))
            while self._at(TokType.COMMA):
                self._advance()
                arguments.append(self._nested(self._parse_expression))
        self._expect(TokType.RPAREN, "')'")
        return CallArguments(arguments=tuple(arguments), span=self._span_from(lparen.span))

    # ─────────────────────────────────────────────────────────────
    # Quantified expressions
    # ─────────────────────────────────────────────────────────────

    def _parse_quantifier(self) -> Quantifier:
        tok = self._peek()
        if tok.is_keyword(*_QUANTIFIER_KEYWORDS):
            self._advance()
            return Quantifier(keyword=tok.text, span=tok.span)
        self._quantifier += 1
        try:
            expr = self._parse_numeric()
        finally:
            self._quantifier -= 1
        return Quantifier(expression=expr, span=expr.span)

    def _parse_of(self, quantifier: Quantifier) -> Node:
        self._expect_keyword("of")
        if self._at_keyword("them"):
            them = self._advance()
            string_set = StringSet(them=True, span=them.span)
            return OfExpression(quantifier=quantifier, string_set=string_set,
                                span=SourceSpan.merge(quantifier.span, them.span))

        lparen = self._expect(TokType.LPAREN, "'them' or '('")
        if self._at(TokType.IDENTIFIER):
            rules, wildcards = self._parse_set_members(TokType.IDENTIFIER, "rule name")
            rule_set = RuleSet(
                members=tuple(RuleReference(name=t.value, span=t.span) for t in rules),
                wildcards=wildcards, span=self._span_from(lparen.span))
            return OfRuleset(quantifier=quantifier, rule_set=rule_set,
                             span=SourceSpan.merge(quantifier.span, rule_set.span))

        patterns, wildcards = self._parse_set_members(TokType.STRING_IDENTIFIER,
                                                      "pattern identifier")
        string_set = StringSet(
            members=tuple(StringIdentifier(name=t.value, span=t.span) for t in patterns),
            wildcards=wildcards, span=self._span_from(lparen.span))
        return OfExpression(quantifier=quantifier, string_set=string_set,
                            span=SourceSpan.merge(quantifier.span, string_set.span))

    def _parse_set_members(self, tt: TokType, what: str) -> Tuple[List[Token], Tuple[bool, ...]]:
        """Members of ``( a, b*, ... )`` after the opening parenthesis."""
        members: List[Token] = []
        wildcards: List[bool] = []
        while True:
            members.append(self._expect(tt, what))
            wildcard = self._at(TokType.STAR)
            if wildcard:
                self._advance()
            wildcards.append(wildcard)
            if not self._at(TokType.COMMA):
                break
            self._advance()
        self._expect(TokType.RPAREN, "')'")
        return members, tuple(wildcards)

    def _parse_for(self) -> Node:
        for_tok = self._advance()
        quantifier = self._parse_quantifier()

        if self._at_keyword("of"):
            of = self._parse_of(quantifier)
            if not isinstance(of, OfExpression):
                raise SyntacticError(
                    "A for loop iterates over patterns, not rules",
                    code=ErrorCodes.INVALID_EXPRESSION,
                    span=of.span,
                    expected=["pattern set"],
                    got=of.source_text(self.text),
                )
            self._expect(TokType.COLON, "':'")
            body = self._parse_loop_body()
            return ForOfExpression(of=of, body=body, span=self._span_from(for_tok.span))

        variables = self._parse_loop_variables()
        self._expect_keyword("in")
        iterable = self._parse_iterable()
        self._expect(TokType.COLON, "':'")
        body = self._parse_loop_body()
        return ForInExpression(quantifier=quantifier, variables=variables,
                               iterable=iterable, body=body,
                               span=self._span_from(for_tok.span))

    def _parse_loop_variables(self) -> Tuple[Identifier, ...]:
        parenthesized = self._at(TokType.LPAREN)
        if parenthesized:
            self._advance()
        if not self._at(TokType.IDENTIFIER):
            raise self._unexpected(["loop variable", "'of'"] if not parenthesized
                                   else ["loop variable"])
        variables = []
        while True:
            tok = self._expect(TokType.IDENTIFIER, "loop variable")
            variables.append(Identifier(name=tok.value, span=tok.span))
            if not self._at(TokType.COMMA):
                break
            self._advance()
        if parenthesized:
            self._expect(TokType.RPAREN, "')'")
        return tuple(variables)

    def _parse_iterable(self) -> Node:
        tok = self._peek()
        if tok.type is TokType.LPAREN:
            self._advance()
            first = self._nested(self._parse_expression)
            if self._at(TokType.DOTDOT):
                self._require(Production.NUMERIC_EXPRESSION, first)
                self._advance()
                high = self._nested(self._parse_numeric)
                self._expect(TokType.RPAREN, "')'")
                return Range(low=first, high=high, span=self._span_from(tok.span))
            elements = [first]
            while self._at(TokType.COMMA):
                self._advance()
                elements.append(self._nested(self._parse_expression))
            self._expect(TokType.RPAREN, "')'")
            return ExpressionList(elements=tuple(elements), span=self._span_from(tok.span))
        if tok.type is TokType.IDENTIFIER:
            self._advance()
            if self._at(TokType.DOT):
                return self._parse_module_access(tok)
            return Identifier(name=tok.value, span=tok.span)
        raise self._unexpected(["range", "'('", "identifier"])

    def _parse_loop_body(self) -> ParenthesizedExpression:
        lparen = self._expect(TokType.LPAREN, "'('")
        inner = self._nested(self._parse_expression)
        self._expect(TokType.RPAREN, "')'")
        return ParenthesizedExpression(expression=inner, span=self._span_from(lparen.span))


# ═══════════════════════════════════════════════════════════════════
#  PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def _run(text: str, options: ParseOptions, entry: Callable[[_Parser], T]) -> T:
    parser = _Parser(text, options)
    try:
        return entry(parser)
    except RuleSyntaxError as exc:
        exc.with_source(text)
        raise


def parse(text: str, *, filename: str = "<string>",
          options: Optional[ParseOptions] = None) -> SourceFile:
    """Parse a complete source unit.

    Raises
    ------
    LexicalError
        Unrecognised character, unterminated literal or comment, bad escape.
    SyntacticError
        Token sequence that matches no production.
    """
    options = options or ParseOptions(filename=filename)
    logger.debug("parsing %s (%d chars)", options.filename, len(text))
    started = time.perf_counter()
    tree = _run(text, options, _Parser.parse_source_file)
    logger.debug("parsed %s: %d declarations in %.2f ms", options.filename,
                 len(tree.declarations), (time.perf_counter() - started) * 1000)
    return tree


def parse_expression(text: str, *, filename: str = "<string>",
                     options: Optional[ParseOptions] = None) -> Node:
    """Parse a standalone condition expression; the whole text must be used."""
    options = options or ParseOptions(filename=filename)
    return _run(text, options, _Parser.parse_standalone_expression)


__all__ = ["ParseOptions", "parse", "parse_expression"]
