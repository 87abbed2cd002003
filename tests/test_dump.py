# tests/test_dump.py
"""
Tests for the S-expression rendering of the syntax tree and for the
tree query helpers (spans, walking, field access, equality).
"""

import dataclasses

import pytest
import sexpdata
from sexpdata import Symbol

from yarasyntax import dump, parse, parse_expression
from yarasyntax.lexer import tokenize

from tests.conftest import FULL_YARA


LOOPS_YARA = FULL_YARA + '''
rule loops : t {
    strings:
        $a = "abc" ascii
        $b = { 61 [1] 62 }
    condition:
        for all i in (1..#a) : (@a[i] < 0x100 and !a[i] >= 2)
        and for any of ($a, $b*) : ($ in (0..filesize - 1))
        and 2 of ($a, $b) at pe.entry_point
        and #a in (0..100) == 1
        and uint16(0) == 0x5A4D
        and pe.exports("Run") and not defined pe.rich_signature.clear_data
        and (1 + 2) * -3 \\ 4 % 5 | ~6 ^ 7 & 8 << 1 >> 2 != 0
        and "a" icontains "A" and $a matches /x/s
        and 1 + 1 of them and 1 of (second, mz_header*)
        and for 1 k in (0, 1, 2) : (k < 3)
}
'''


class TestDump:

    def test_minimal_rule(self, minimal_tree):
        assert dump(minimal_tree) == (
            "(source_file (rule_definition name: (identifier) "
            "body: (rule_body (condition_section (boolean_literal)))))"
        )

    def test_tags(self):
        tree = parse("rule a : t1 t2 { condition: true }")
        assert dump(tree.rules[0].tags) == "(tag_list (identifier) (tag))"

    def test_binary_operator_is_not_rendered(self):
        assert dump(parse_expression("1 + 2")) == (
            "(binary_expression left: (integer_decimal_positive) "
            "right: (integer_decimal_positive))"
        )

    def test_unary(self):
        assert dump(parse_expression("not a")) == "(unary_expression operand: (identifier))"

    def test_byte_pattern(self):
        tree = parse("rule a { strings: $a = { 4D ?? (61|62) [2] 00 } condition: $a }")
        definition = tree.rules[0].body.strings.definitions[0]
        assert dump(definition) == (
            "(string_definition name: (string_identifier) value: (hex_string "
            "(hex_byte) (hex_byte) "
            "(hex_alternative (hex_seq (hex_byte)) (hex_seq (hex_byte))) "
            "(hex_jump) (hex_byte)))"
        )

    def test_modifiers(self):
        tree = parse('rule a { strings: $a = "x" base64("abc") wide condition: $a }')
        definition = tree.rules[0].body.strings.definitions[0]
        assert dump(definition.modifiers) == (
            "(string_modifiers (string_modifier (string_literal)) (string_modifier))"
        )

    def test_module_access(self):
        assert dump(parse_expression("pe.sections[0].name")) == (
            "(module_var_or_func (module_identifier) (member_access (identifier)) "
            "(index_access (integer_zero)) (member_access (identifier)))"
        )

    def test_of_expression(self):
        assert dump(parse_expression("any of ($a, $b)")) == (
            "(of_expression (quantifier) (string_set (string_identifier) (string_identifier)))"
        )

    def test_for_in(self):
        assert dump(parse_expression("for all i in (1..2) : (i)")) == (
            "(for_in_expression (quantifier) (identifier) "
            "(range (integer_decimal_positive) (integer_decimal_positive)) "
            "(parenthesized_expression (identifier)))"
        )

    def test_loads_back(self, full_tree):
        data = sexpdata.loads(dump(full_tree))
        assert data[0] == Symbol("source_file")
        assert [d[0] for d in data[1:]] == [
            Symbol("import_statement"), Symbol("include_statement"),
            Symbol("rule_definition"), Symbol("rule_definition"),
        ]

    def test_to_sexp_structure(self, minimal_tree):
        rule = minimal_tree.rules[0].to_sexp()
        assert rule[0] == Symbol("rule_definition")
        assert rule[1] == Symbol("name:")
        assert rule[2] == [Symbol("identifier")]


class TestSpans:

    def test_children_inside_parents(self, full_tree):
        for node in full_tree.walk():
            for child in node.children():
                assert node.span.offset <= child.span.offset, (node.kind, child.kind)
                assert child.span.end_offset <= node.span.end_offset, (node.kind, child.kind)

    def test_spans_fall_on_token_boundaries(self):
        tree = parse(LOOPS_YARA)
        tokens = tokenize(LOOPS_YARA)
        starts = {t.span.offset for t in tokens}
        ends = {t.span.end_offset for t in tokens}
        checked = 0
        for node in tree.walk():
            if node.kind == "source_file" or node.kind.startswith("hex_"):
                continue
            assert node.span.offset in starts, (node.kind, node.source_text(LOOPS_YARA))
            assert node.span.end_offset in ends, (node.kind, node.source_text(LOOPS_YARA))
            checked += 1
        assert checked > 100

    def test_source_text(self, full_tree):
        condition = full_tree.rule("mz_header").body.condition.expression
        assert condition.source_text(FULL_YARA) == (
            '$mz at 0 and #text > 1 and pe.sections[0].name == ".text"'
        )
        module = condition.right.left
        assert module.source_text(FULL_YARA) == "pe.sections[0].name"

    def test_root_covers_text(self, full_tree):
        assert full_tree.span.offset == 0
        assert full_tree.span.end_offset == len(FULL_YARA)
        assert full_tree.span.file == "full.yar"

    def test_line_numbers(self, full_tree):
        second = full_tree.rule("second")
        assert second.span.line == 19
        assert second.span.column == 1


class TestTreeQueries:

    def test_walk_is_preorder(self, minimal_tree):
        assert [n.kind for n in minimal_tree.walk()] == [
            "source_file", "rule_definition", "identifier", "rule_body",
            "condition_section", "boolean_literal",
        ]

    def test_find_all(self, full_tree):
        assert len(full_tree.find_all("string_definition")) == 4
        assert len(full_tree.find_all("rule_definition")) == 2

    def test_child_by_field_name(self, minimal_tree):
        rule = minimal_tree.rules[0]
        assert rule.child_by_field_name("name") is rule.name
        assert rule.child_by_field_name("body") is rule.body
        assert rule.child_by_field_name("tags") is None
        tree = parse_expression("1 + 2")
        assert tree.child_by_field_name("left") is tree.left
        assert tree.child_by_field_name("operator") is None

    def test_equality_ignores_layout(self):
        assert parse("rule a{condition:1+2}") == parse("rule a {\n  condition: 1 + 2\n}")
        assert parse("rule a { condition: 1 }") != parse("rule a { condition: 2 }")

    def test_nodes_are_frozen(self, minimal_tree):
        with pytest.raises(dataclasses.FrozenInstanceError):
            minimal_tree.rules[0].name.name = "other"
