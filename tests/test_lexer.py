# tests/test_lexer.py
"""
Tests for the tokenizer: token classification, literal decoding,
trivia handling and lexical error positions.
"""

import pytest

from yarasyntax.errors import (
    ErrorCodes,
    InvalidCharacterError,
    InvalidEscapeError,
    InvalidNumberError,
    UnterminatedBytePatternError,
    UnterminatedCommentError,
    UnterminatedRegexError,
    UnterminatedStringError,
)
from yarasyntax.lexer import KEYWORDS, Lexer, TokType, tokenize

from tests.conftest import token_types


def single(text):
    tokens = [t for t in tokenize(text) if t.type is not TokType.EOF]
    assert len(tokens) == 1, tokens
    return tokens[0]


class TestNumbers:

    def test_decimal(self):
        tok = single("42")
        assert tok.type is TokType.INTEGER
        assert tok.value == 42

    def test_size_unit_is_part_of_the_literal(self):
        tok = single("5KB")
        assert tok.type is TokType.INTEGER
        assert tok.text == "5KB"
        assert tok.value == 5 * 1024

    @pytest.mark.parametrize("text,value", [
        ("1MB", 1024 ** 2),
        ("2GB", 2 * 1024 ** 3),
        ("0KB", 0),
    ])
    def test_other_units(self, text, value):
        assert single(text).value == value

    def test_unit_separated_by_space_is_an_identifier(self):
        assert token_types("5 KB") == [TokType.INTEGER, TokType.IDENTIFIER]

    def test_unit_followed_by_identifier_chars(self):
        tokens = list(tokenize("5KBx"))
        assert tokens[0].type is TokType.INTEGER
        assert tokens[0].value == 5
        assert tokens[1].type is TokType.IDENTIFIER
        assert tokens[1].text == "KBx"

    def test_hexadecimal(self):
        tok = single("0x1F")
        assert tok.type is TokType.HEX_INTEGER
        assert tok.value == 31
        assert single("0xff").value == 255

    def test_hex_prefix_without_digits(self):
        with pytest.raises(InvalidNumberError) as exc:
            list(tokenize("0x"))
        assert exc.value.offset == 0
        assert exc.value.code is ErrorCodes.INVALID_NUMBER_LITERAL

    def test_float(self):
        tok = single("1.5")
        assert tok.type is TokType.FLOAT
        assert tok.value == 1.5

    def test_range_is_not_a_float(self):
        assert token_types("0..10") == [TokType.INTEGER, TokType.DOTDOT, TokType.INTEGER]


class TestIdentifiersAndSigils:

    def test_keywords_and_identifiers(self):
        tokens = list(tokenize("rule pe xor uint32be contains"))
        assert [t.type for t in tokens[:-1]] == [
            TokType.KEYWORD, TokType.IDENTIFIER, TokType.KEYWORD,
            TokType.KEYWORD, TokType.KEYWORD,
        ]
        assert tokens[0].is_keyword("rule")
        assert not tokens[1].is_keyword("rule")

    def test_keyword_table(self):
        for word in ("condition", "filesize", "them", "defined", "iequals", "base64wide"):
            assert word in KEYWORDS
        assert "entrypoint" not in KEYWORDS

    def test_pattern_sigils(self):
        tokens = list(tokenize("$a #a @a !a"))
        assert [t.type for t in tokens[:-1]] == [
            TokType.STRING_IDENTIFIER, TokType.STRING_COUNT,
            TokType.STRING_OFFSET, TokType.STRING_LENGTH,
        ]
        assert all(t.value == "a" for t in tokens[:-1])

    def test_anonymous_sigils(self):
        tokens = list(tokenize("$ # @ !"))
        assert [t.value for t in tokens[:-1]] == ["", "", "", ""]
        assert tokens[0].type is TokType.STRING_IDENTIFIER
        assert tokens[3].type is TokType.STRING_LENGTH

    def test_pattern_name_may_start_with_digit(self):
        assert single("$1abc").value == "1abc"

    def test_not_equal_is_not_a_length(self):
        assert token_types("a != b") == [TokType.IDENTIFIER, TokType.NE, TokType.IDENTIFIER]

    def test_operators(self):
        assert token_types("<< >> <= >= == .. \\ % ~") == [
            TokType.SHL, TokType.SHR, TokType.LE, TokType.GE, TokType.EQ,
            TokType.DOTDOT, TokType.BACKSLASH, TokType.PERCENT, TokType.TILDE,
        ]


class TestTrivia:

    def test_comments_are_skipped(self):
        assert token_types("a // line\n /* block\n */ b") == [
            TokType.IDENTIFIER, TokType.IDENTIFIER,
        ]

    def test_unterminated_block_comment(self):
        with pytest.raises(UnterminatedCommentError) as exc:
            list(tokenize("a /* never closed"))
        assert exc.value.offset == 2

    def test_byte_order_mark_and_zero_width_space(self):
        tokens = list(tokenize("\ufeffrule\u200ba"))
        assert tokens[0].is_keyword("rule")
        assert tokens[0].start == 1
        assert tokens[1].text == "a"

    def test_eof_token(self):
        tokens = list(tokenize(""))
        assert len(tokens) == 1
        assert tokens[0].type is TokType.EOF
        assert tokens[0].start == 0

    def test_eof_repeats(self):
        lexer = Lexer("a")
        lexer.next_token()
        assert lexer.next_token().type is TokType.EOF
        assert lexer.next_token().type is TokType.EOF


class TestStrings:

    def test_escapes_decoded_and_recorded(self):
        tok = single(r'"a\tb\x41"')
        assert tok.type is TokType.STRING
        assert tok.value == "a\tbA"
        assert tok.escapes == ((2, r"\t"), (5, r"\x41"))

    def test_single_quotes(self):
        tok = single("'it\\'s'")
        assert tok.value == "it's"
        assert tok.text.startswith("'")

    def test_unterminated_at_end_of_input(self):
        with pytest.raises(UnterminatedStringError) as exc:
            list(tokenize('"abc'))
        assert exc.value.offset == 0
        assert "missing closing \"" in exc.value.message

    def test_newline_terminates_nothing(self):
        with pytest.raises(UnterminatedStringError):
            list(tokenize('"ab\ncd"'))

    def test_bad_hex_escape(self):
        with pytest.raises(InvalidEscapeError) as exc:
            list(tokenize(r'"\xZZ"'))
        assert exc.value.offset == 1
        assert exc.value.code is ErrorCodes.INVALID_ESCAPE_SEQUENCE


class TestRegex:

    def test_body_and_flags(self):
        tok = single("/abc/is")
        assert tok.type is TokType.REGEX
        assert tok.value == ("abc", "is")

    def test_escaped_slash_stays_in_body(self):
        assert single(r"/a\/b/").value == (r"a\/b", "")

    def test_unterminated(self):
        with pytest.raises(UnterminatedRegexError) as exc:
            list(tokenize("x matches /abc"))
        assert exc.value.offset == 10

    def test_regex_cannot_span_lines(self):
        with pytest.raises(UnterminatedRegexError):
            list(tokenize("/ab\nc/"))


class TestBytePatterns:

    def test_brace_after_equal_is_a_byte_pattern(self):
        tokens = list(tokenize("$a = { 4D 5A }"))
        assert tokens[2].type is TokType.BYTE_PATTERN
        assert tokens[2].value == " 4D 5A "
        assert tokens[2].text == "{ 4D 5A }"

    def test_brace_elsewhere_is_punctuation(self):
        assert token_types("rule a { }") == [
            TokType.KEYWORD, TokType.IDENTIFIER, TokType.LBRACE, TokType.RBRACE,
        ]

    def test_closing_brace_in_comment_is_ignored(self):
        tok = list(tokenize("$a = { 4D /* } */ 5A }"))[2]
        assert tok.value == " 4D /* } */ 5A "

    def test_unterminated(self):
        with pytest.raises(UnterminatedBytePatternError) as exc:
            list(tokenize("$a = { 4D"))
        assert exc.value.offset == 5


class TestPositionsAndErrors:

    def test_line_and_column(self):
        lexer = Lexer("a\n  b")
        assert lexer.position(0) == (1, 1)
        assert lexer.position(4) == (2, 3)

    def test_token_span(self):
        tok = list(tokenize("rule\n  name", filename="x.yar"))[1]
        assert (tok.span.line, tok.span.column) == (2, 3)
        assert (tok.span.end_line, tok.span.end_column) == (2, 7)
        assert tok.span.file == "x.yar"

    def test_invalid_character(self):
        with pytest.raises(InvalidCharacterError) as exc:
            list(tokenize("rule a `"))
        assert exc.value.offset == 7
        assert exc.value.message == "Invalid character '`'"

    def test_tokenization_is_lazy(self):
        tokens = tokenize('a b "unterminated')
        assert next(tokens).text == "a"
        assert next(tokens).text == "b"
        with pytest.raises(UnterminatedStringError):
            next(tokens)

    def test_describe_truncates(self):
        tok = single('"' + "x" * 40 + '"')
        assert tok.describe().endswith("...")
        assert len(tok.describe()) == 24
