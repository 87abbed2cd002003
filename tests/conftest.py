# tests/conftest.py
"""Shared sources and fixtures for the yarasyntax test suite."""

import pytest

from yarasyntax import parse, parse_expression
from yarasyntax.lexer import TokType, tokenize


MINIMAL_YARA = "rule demo { condition: true }"

FULL_YARA = '''\
import "pe"
include "common.yar"

private global rule mz_header : exe packed {
    meta:
        author = "analyst"
        version = 3
        size = 0
        enabled = true
    strings:
        $mz = { 4D 5A ?? [2-4] (00 | FF) }
        $text = "This program" nocase wide
        $re = /md5: [0-9a-f]{32}/i
        $key = "secret" xor(0x01-0xff) base64("abc")
    condition:
        $mz at 0 and #text > 1 and pe.sections[0].name == ".text"
}

rule second {
    condition:
        any of them
}
'''


def token_types(text):
    """Token types of *text*, EOF excluded."""
    return [t.type for t in tokenize(text) if t.type is not TokType.EOF]


def condition_of(source, index=0):
    """Condition expression of the *index*-th rule in *source*."""
    return parse(source).rules[index].body.condition.expression


@pytest.fixture(scope="module")
def minimal_tree():
    return parse(MINIMAL_YARA)


@pytest.fixture(scope="module")
def full_tree():
    return parse(FULL_YARA, filename="full.yar")


@pytest.fixture
def expr():
    """Parse a standalone condition expression."""
    return parse_expression
