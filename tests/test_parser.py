# tests/test_parser.py
"""
Tests for declarations, rule structure, sections and pattern
definitions.  Condition expressions are covered in test_expressions.py.
"""

import pytest

from yarasyntax import parse
from yarasyntax.ast import (
    BooleanLiteral,
    DecimalInteger,
    HexString,
    Identifier,
    ImportStatement,
    IncludeStatement,
    RegexString,
    RuleDefinition,
    StringLiteral,
    Tag,
    TextString,
    ZeroInteger,
)
from yarasyntax.errors import (
    ErrorCodes,
    InvalidBytePatternError,
    InvalidEscapeError,
    MissingTokenError,
    UnexpectedEOFError,
    UnexpectedTokenError,
    UnterminatedStringError,
)

from tests.conftest import FULL_YARA, MINIMAL_YARA


def rule_with_strings(strings):
    return parse("rule a {\n strings:\n " + strings + "\n condition:\n true\n}").rules[0]


def first_definition(strings):
    return rule_with_strings(strings).body.strings.definitions[0]


class TestDeclarations:

    def test_empty_source(self):
        tree = parse("")
        assert tree.declarations == ()
        assert tree.kind == "source_file"

    def test_comments_only(self):
        assert parse("// nothing\n/* here */").declarations == ()

    def test_minimal_rule(self, minimal_tree):
        (rule,) = minimal_tree.declarations
        assert isinstance(rule, RuleDefinition)
        assert rule.name == Identifier(name="demo")
        assert rule.tags is None
        assert rule.body.meta is None
        assert rule.body.strings is None
        assert rule.body.condition.expression == BooleanLiteral(value=True)

    def test_imports_and_includes(self, full_tree):
        assert [type(d) for d in full_tree.declarations] == [
            ImportStatement, IncludeStatement, RuleDefinition, RuleDefinition,
        ]
        assert full_tree.imports[0].module.value == "pe"
        assert full_tree.includes[0].path.value == "common.yar"

    def test_import_requires_double_quotes(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("import 'pe'")
        assert exc.value.expected == ["double-quoted string"]

    def test_unknown_declaration(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("condition: true")
        assert exc.value.got == "condition"
        assert "'rule'" in exc.value.expected


class TestRules:

    def test_rule_modifiers(self, full_tree):
        rule = full_tree.rule("mz_header")
        assert rule.is_private and rule.is_global
        assert rule.modifiers == ("private", "global")
        assert full_tree.rule("second").modifiers == ()

    def test_modifier_order_is_fixed(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("global private rule a { condition: true }")
        assert exc.value.got == "private"

    def test_tags(self, full_tree):
        tags = full_tree.rule("mz_header").tags
        assert tags.names == ("exe", "packed")
        assert type(tags.tags[0]) is Identifier
        assert type(tags.tags[1]) is Tag

    def test_colon_without_tags(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("rule a : { condition: true }")
        assert exc.value.expected == ["tag"]

    def test_rule_name_may_not_be_a_keyword(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("rule condition { condition: true }")
        assert exc.value.expected == ["rule name"]

    def test_lookup_by_name(self, full_tree):
        assert full_tree.rule("second").name.name == "second"
        assert full_tree.rule("missing") is None
        assert len(full_tree.rules) == 2

    def test_missing_body(self):
        with pytest.raises(UnexpectedEOFError):
            parse("rule a")


class TestSections:

    def test_missing_condition(self):
        with pytest.raises(MissingTokenError) as exc:
            parse('rule a { strings: $a = "x" }')
        assert exc.value.code is ErrorCodes.MISSING_TOKEN
        assert exc.value.message == "Missing 'condition' section in rule body"

    def test_empty_body(self):
        with pytest.raises(MissingTokenError):
            parse("rule a { }")

    def test_condition_must_come_last(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("rule a { condition: true meta: k = 1 }")
        assert exc.value.got == "meta"
        assert exc.value.expected == ["'}'"]

    def test_meta_after_strings(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse('rule a { strings: $a = "x" meta: k = 1 condition: true }')
        assert exc.value.expected == ["'condition'"]

    def test_empty_strings_section(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("rule a { strings: condition: true }")
        assert exc.value.expected == ["pattern identifier"]

    def test_meta_values(self, full_tree):
        meta = full_tree.rule("mz_header").body.meta
        assert [e.key.name for e in meta.entries] == ["author", "version", "size", "enabled"]
        assert meta.get("author") == StringLiteral(value="analyst", text='"analyst"')
        assert isinstance(meta.get("version"), DecimalInteger)
        assert meta.get("version").value == 3
        assert isinstance(meta.get("size"), ZeroInteger)
        assert meta.get("enabled") == BooleanLiteral(value=True)
        assert meta.get("nothing") is None

    def test_meta_keys_may_repeat(self):
        rule = parse('rule a { meta: k = "one" k = "two" condition: true }').rules[0]
        assert len(rule.body.meta.entries) == 2
        assert rule.body.meta.get("k").value == "one"

    @pytest.mark.parametrize("value", ["-1", "0x10", "1.5", "filesize"])
    def test_meta_value_forms(self, value):
        with pytest.raises(UnexpectedTokenError):
            parse("rule a { meta: k = " + value + " condition: true }")


class TestPatternDefinitions:

    def test_kinds(self, full_tree):
        defs = full_tree.rule("mz_header").body.strings.definitions
        assert [d.name.name for d in defs] == ["mz", "text", "re", "key"]
        assert [type(d.value) for d in defs] == [HexString, TextString, RegexString, TextString]

    def test_byte_pattern(self, full_tree):
        mz = full_tree.rule("mz_header").body.strings.definitions[0]
        assert mz.value.to_source() == "{ 4D 5A ?? [2-4] (00|FF) }"
        assert mz.modifiers is None

    def test_regex_pattern(self, full_tree):
        regex = full_tree.rule("mz_header").body.strings.definitions[2].value.regex
        assert regex.pattern == "md5: [0-9a-f]{32}"
        assert regex.case_insensitive and not regex.dot_all

    def test_anonymous_pattern(self):
        definition = first_definition('$ = "x"')
        assert definition.name.is_anonymous
        assert str(definition.name) == "$"

    def test_text_escapes(self):
        definition = first_definition(r'$a = "a\"b\tc\x41\\"')
        assert definition.value.value == 'a"b\tcA\\'

    def test_single_quote_escape_in_single_quotes(self):
        assert first_definition(r"$a = 'it\'s'").value.value == "it's"

    @pytest.mark.parametrize("text", [r'"\d"', r'"\u0041"', r'"\'"', r'"\101"'])
    def test_text_escape_rejected(self, text):
        with pytest.raises(InvalidEscapeError) as exc:
            first_definition("$a = " + text)
        assert exc.value.message.endswith("in text pattern")

    def test_empty_byte_pattern(self):
        with pytest.raises(InvalidBytePatternError) as exc:
            first_definition("$a = { }")
        assert "empty" in exc.value.message

    def test_byte_pattern_error_offset_is_absolute(self):
        source = "rule a { strings: $a = { 4D [2] } condition: true }"
        with pytest.raises(InvalidBytePatternError) as exc:
            parse(source)
        assert exc.value.offset == source.index("[2]")
        assert exc.value.span.column == source.index("[2]") + 1

    def test_byte_pattern_spans(self):
        source = "rule a { strings: $a = { 4D 5A } condition: true }"
        pattern = parse(source).rules[0].body.strings.definitions[0].value
        assert pattern.source_text(source) == "{ 4D 5A }"
        assert pattern.elements[1].source_text(source) == "5A"

    def test_missing_value(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            first_definition("$a = 1")
        assert exc.value.expected == ["text string", "byte pattern", "regular expression"]


class TestModifiers:

    def test_plain_modifiers(self, full_tree):
        text = full_tree.rule("mz_header").body.strings.definitions[1]
        assert text.modifiers.names == ("nocase", "wide")

    def test_xor_range_and_base64_alphabet(self, full_tree):
        key = full_tree.rule("mz_header").body.strings.definitions[3]
        xor, b64 = key.modifiers.modifiers
        assert (xor.name, xor.xor_low, xor.xor_high) == ("xor", 1, 255)
        assert b64.name == "base64"
        assert b64.key.value == "abc"

    @pytest.mark.parametrize("text,low,high", [
        ("xor", None, None),
        ("xor(5)", 5, None),
        ("xor(0)", 0, None),
        ("xor(0x10-0x20)", 16, 32),
        ("xor(1-255)", 1, 255),
    ])
    def test_xor_forms(self, text, low, high):
        (modifier,) = first_definition('$a = "x" ' + text).modifiers.modifiers
        assert (modifier.xor_low, modifier.xor_high) == (low, high)

    @pytest.mark.parametrize("text", ["xor(256)", "xor(01)", "xor(0x100)", "xor(a)"])
    def test_xor_rejects(self, text):
        with pytest.raises(UnexpectedTokenError):
            first_definition('$a = "x" ' + text)

    def test_modifiers_on_regex(self):
        definition = first_definition("$a = /abc/s nocase ascii wide fullword private")
        assert definition.modifiers.names == ("nocase", "ascii", "wide", "fullword", "private")

    def test_combinations_are_not_checked(self):
        definition = first_definition('$a = "x" nocase nocase xor base64wide')
        assert definition.modifiers.names == ("nocase", "nocase", "xor", "base64wide")

    def test_modifier_is_not_an_expression(self):
        with pytest.raises(UnexpectedTokenError) as exc:
            parse("rule a { condition: nocase }")
        assert exc.value.got == "nocase"


class TestLexicalErrorsThroughParse:

    def test_unterminated_string_offset(self):
        source = 'rule x {\n  condition: "abc\n}'
        with pytest.raises(UnterminatedStringError) as exc:
            parse(source)
        assert exc.value.offset == source.index('"')

    def test_earliest_error_wins(self):
        # the syntax error comes first, the bad character later never lexed
        with pytest.raises(UnexpectedTokenError):
            parse("rule a { condition: true true } `")

    def test_full_source_round_trip_text(self):
        tree = parse(FULL_YARA)
        rule = tree.rule("mz_header")
        assert rule.source_text(FULL_YARA).startswith("private global rule mz_header")
        assert rule.source_text(FULL_YARA).endswith("}")
        assert parse(MINIMAL_YARA).span.end_offset == len(MINIMAL_YARA)
