"""
yarasyntax/visitor.py
=====================

Visitor pattern infrastructure for syntax tree traversal.

Provides:
- ``NodeVisitor`` — dispatches ``visit_<kind>`` methods, falling back to
  ``generic_visit``
- ``DepthFirstVisitor`` — traversal of all children with ``enter`` /
  ``leave`` hooks
- ``visiting`` — decorator registering one method for several node kinds
- ``collect`` — all nodes of given kinds, in source order
"""

from __future__ import annotations

from typing import Any, Callable, List

from .ast import Node

__all__ = [
    "NodeVisitor",
    "DepthFirstVisitor",
    "visiting",
    "collect",
]


def visiting(*kinds: str) -> Callable:
    """Decorator to register a method as handling specific node kinds.

    Usage:
        class Counter(NodeVisitor):
            @visiting("string_count", "string_offset", "string_length")
            def handle_pattern_reference(self, node):
                ...
    """
    def decorator(method: Callable) -> Callable:
        method._visiting_kinds = kinds
        return method
    return decorator


class NodeVisitor:
    """Base class for syntax tree visitors.

    ``visit(node)`` calls ``visit_<node.kind>`` when the class defines it
    (directly or through ``@visiting``) and ``generic_visit`` otherwise.
    The default ``generic_visit`` does nothing.
    """

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for member in list(vars(cls).values()):
            for kind in getattr(member, "_visiting_kinds", ()):
                if f"visit_{kind}" not in vars(cls):
                    setattr(cls, f"visit_{kind}", member)

    def visit(self, node: Node) -> Any:
        """Dispatch to the appropriate visit method."""
        return node.accept(self)

    def generic_visit(self, node: Node) -> Any:
        """Called when no specific visitor method exists."""
        return None


class DepthFirstVisitor(NodeVisitor):
    """Visitor that traverses all children in depth-first order.

    Override ``enter`` / ``leave`` (or ``enter_<kind>`` / ``leave_<kind>``)
    for pre/post-order processing.  ``visit_<kind>`` overrides replace the
    traversal of that subtree.
    """

    def generic_visit(self, node: Node) -> Any:
        self.enter(node)
        hook = getattr(self, f"enter_{node.kind}", None)
        if hook is not None:
            hook(node)
        for child in node.children():
            self.visit(child)
        hook = getattr(self, f"leave_{node.kind}", None)
        if hook is not None:
            hook(node)
        self.leave(node)
        return None

    def enter(self, node: Node) -> None:
        """Called before visiting children."""

    def leave(self, node: Node) -> None:
        """Called after visiting children."""


class _Collector(DepthFirstVisitor):

    def __init__(self, kinds: tuple):
        self.kinds = kinds
        self.found: List[Node] = []

    def enter(self, node: Node) -> None:
        if node.kind in self.kinds:
            self.found.append(node)


def collect(node: Node, *kinds: str) -> List[Node]:
    """All nodes under *node* (inclusive) whose kind is one of *kinds*."""
    collector = _Collector(kinds)
    collector.visit(node)
    return collector.found
