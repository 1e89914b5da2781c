"""
AtFlow Nodes - Marker Node Set for Observable Contexts
======================================================

The input tree is an ordinary Python `ast` tree extended with the node classes
below. They subclass `ast.expr` / `ast.stmt` so the standard `ast.NodeVisitor`
and `ast.NodeTransformer` machinery walks them like any other node, and every
consumer can match the closed set exhaustively.

Expression nodes:
- Flatten: one flatten marker; stacked markers nest (`@@a` is
  `Flatten(Flatten(Name("a")))`)
- Context: a bare observable context with an expression or block body
- DependencyContext: surface form of a context with an explicit dependency
  parameter list, desugared into Context

Statement nodes:
- Observe: an observation block with optional catch/finally handlers
- Declare: creation shorthand `declare @name = E`
- ChainDeclare: chain-creation shorthand `declare @@...@name = E`

None of these survive the pass; the lowered tree only contains standard nodes.
"""

import ast
from typing import List, Optional, Sequence, Tuple, Union

Body = Union[ast.expr, List[ast.stmt]]


class Flatten(ast.expr):
    """Flatten marker applied to `value`; `nullish` selects the defaulting variant."""

    _fields = ("value", "nullish")

    def __init__(self, value: Optional[ast.expr] = None, nullish: bool = False, **kwargs):
        super().__init__(value=value, nullish=nullish, **kwargs)


class Context(ast.expr):
    """
    Observable context.

    `body` is either a single expression or a list of statements (a block,
    whose value is its `return`). `dependencies` is None for an implicit
    context, or the tuple of identifiers of an explicit dependency list.
    """

    _fields = ("body", "dependencies")

    def __init__(
        self,
        body: Optional[Body] = None,
        dependencies: Optional[Sequence] = None,
        **kwargs,
    ):
        super().__init__(body=body, dependencies=dependencies, **kwargs)


class DependencyContext(ast.expr):
    """Context introduced with an explicit dependency parameter list: `(a, b) => body`."""

    _fields = ("params", "body")

    def __init__(self, params: Sequence = (), body: Optional[Body] = None, **kwargs):
        super().__init__(params=list(params), body=body, **kwargs)


class Observe(ast.stmt):
    """
    Observation block: subscribes to the context formed by `body`.

    `catch_body` runs with the error bound to `error_name`; `finally_body`
    runs once on completion. When `target` is set, the subscription handle is
    assigned to that name.
    """

    _fields = (
        "body",
        "dependencies",
        "error_name",
        "catch_body",
        "finally_body",
        "target",
    )

    def __init__(
        self,
        body: Optional[List[ast.stmt]] = None,
        dependencies: Optional[Sequence] = None,
        error_name: Optional[str] = None,
        catch_body: Optional[List[ast.stmt]] = None,
        finally_body: Optional[List[ast.stmt]] = None,
        target: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            body=list(body or []),
            dependencies=dependencies,
            error_name=error_name,
            catch_body=catch_body,
            finally_body=finally_body,
            target=target,
            **kwargs,
        )


class Declare(ast.stmt):
    """Creation shorthand: bind `target` to a context whose body is `value`."""

    _fields = ("target", "value")

    def __init__(self, target: Optional[ast.expr] = None, value: Optional[ast.expr] = None, **kwargs):
        super().__init__(target=target, value=value, **kwargs)


class ChainDeclare(ast.stmt):
    """Chain-creation shorthand with `markers` stacked creation markers."""

    _fields = ("target", "value", "markers")

    def __init__(
        self,
        target: Optional[ast.expr] = None,
        value: Optional[ast.expr] = None,
        markers: int = 2,
        **kwargs,
    ):
        super().__init__(target=target, value=value, markers=markers, **kwargs)


MARKER_NODES = (Flatten, Context, DependencyContext, Observe, Declare, ChainDeclare)


# ============================================================================
# HELPERS
# ============================================================================


def is_block(body: Body) -> bool:
    """True for a statement-block body, False for an expression body."""
    return isinstance(body, list)


def peel_markers(node: Flatten) -> Tuple[ast.expr, int, bool]:
    """
    Strip stacked flatten markers.

    Returns:
        (operand, depth, nullish) where depth counts the stacked markers and
        nullish is the flag of the innermost marker, the one applied directly
        to the operand.
    """
    depth = 0
    current: ast.expr = node
    nullish = False
    while isinstance(current, Flatten):
        depth += 1
        nullish = bool(current.nullish)
        current = current.value
    return current, depth, nullish


def contains_markers(tree: ast.AST) -> bool:
    """True if any marker node remains anywhere in `tree`."""
    return any(isinstance(node, MARKER_NODES) for node in ast.walk(tree))
