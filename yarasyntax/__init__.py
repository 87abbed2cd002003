"""yarasyntax — YARA rule language front end.

This package tokenizes and parses YARA rule source into an immutable
syntax tree and reports the first lexical or syntax error with its
exact position.  It does not evaluate rules, resolve modules or check
modifier combinations; those are left to consumers of the tree.

Submodules
----------
errors
    Exception hierarchy, structured error codes (``YARA-XXXX``) and the
    ``SourceSpan`` / ``ErrorMessage`` dataclasses used for diagnostics.

lexer
    ``Lexer`` and ``tokenize``: the cursor-driven tokenizer.

ast
    Frozen dataclass nodes, tree queries and ``dump`` (S-expressions).

hexgrammar
    Parsimonious grammar for byte-pattern bodies (``{ 4D 5A [2] ?? }``).

conflicts
    Operator precedence and the general/numeric expression conflict
    table.

parser
    ``parse`` / ``parse_expression`` and ``ParseOptions``.

visitor
    ``NodeVisitor``, ``DepthFirstVisitor`` and ``collect``.

Usage
-----
Programmatic::

    from yarasyntax import parse, dump

    tree = parse('rule demo { condition: true }')
    print(dump(tree))
    # (source_file (rule_definition name: (identifier) body: (rule_body
    #   (condition_section (boolean_literal)))))

"""

from __future__ import annotations

from .ast import Node, SourceFile, dump
from .errors import (
    ErrorCodes,
    GrammarConflictError,
    InternalError,
    LexicalError,
    RuleSyntaxError,
    SourceSpan,
    SyntacticError,
)
from .lexer import Lexer, Token, TokType, tokenize
from .parser import ParseOptions, parse, parse_expression
from .visitor import DepthFirstVisitor, NodeVisitor, collect, visiting

__version__: str = "0.1.0"
__all__: list[str] = [
    "__version__",
    "parse",
    "parse_expression",
    "tokenize",
    "dump",
    "Lexer",
    "Token",
    "TokType",
    "ParseOptions",
    "Node",
    "SourceFile",
    "SourceSpan",
    "NodeVisitor",
    "DepthFirstVisitor",
    "collect",
    "visiting",
    "ErrorCodes",
    "RuleSyntaxError",
    "LexicalError",
    "SyntacticError",
    "InternalError",
    "GrammarConflictError",
]
