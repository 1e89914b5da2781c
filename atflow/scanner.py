"""
AtFlow Scanner - Locating and Delimiting Observable Contexts
============================================================

Walks one desugared top-level declaration and materialises an
`ObservableContext` record for every `Context` and `Observe` node it contains.

Contract:
- records come back innermost-first (post-order), the order in which they
  must be resolved and lowered
- a context's boundary is exactly its syntactic body; the catch and finally
  handlers of an observation block belong to the enclosing context, and
  contexts inside them are recorded before the block so they are lowered
  before the block copies its handler bodies
- every record knows its anchor: the innermost statement containing it and
  the statement list holding that statement, which is where the lowering
  engine hoists function definitions
- flatten markers met with an empty context stack are collected as orphans
  rather than raised here; the resolver reports them as OutOfContextFlatten
"""

import ast
import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from .config import CONFIG, LoweringConfig
from .errors import ContextNestingTooDeep, MisplacedBlockContext, SourceLocation
from .model import ContextKind, ObservableContext
from .nodes import Context, Flatten, Observe, is_block, peel_markers
from .scope import context_scope

logger = logging.getLogger(__name__)


@dataclass
class ContextScan:
    """Result of scanning one declaration."""

    contexts: List[ObservableContext] = field(default_factory=list)
    orphans: List[Flatten] = field(default_factory=list)

    def __iter__(self) -> Iterator[ObservableContext]:
        return iter(self.contexts)

    def __len__(self) -> int:
        return len(self.contexts)


class ContextScanner(ast.NodeVisitor):
    """
    Collect observable contexts with their nesting, scope and anchor.

    The scanner keeps an explicit stack of open contexts. Statement lists are
    tracked so each context knows where hoisted definitions can go, and the
    number of lambdas and comprehensions entered since the last statement is
    counted, since a block-bodied context inside one cannot be hoisted.
    """

    def __init__(
        self,
        config: LoweringConfig = CONFIG,
        counter: Optional[Iterator[int]] = None,
    ):
        self.config = config
        self.scan = ContextScan()
        self._counter = counter if counter is not None else itertools.count(1)
        self._stack: List[ObservableContext] = []
        self._anchor: Optional[ast.stmt] = None
        self._anchor_body: Optional[List[ast.stmt]] = None
        self._inline_depth = 0

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def generic_visit(self, node: ast.AST) -> None:
        for _, value in ast.iter_fields(node):
            if isinstance(value, list):
                if value and all(isinstance(item, ast.stmt) for item in value):
                    self._visit_statements(value)
                else:
                    for item in value:
                        if isinstance(item, ast.AST):
                            self.visit(item)
            elif isinstance(value, ast.AST):
                self.visit(value)

    def _visit_statements(self, body: List[ast.stmt]) -> None:
        saved = (self._anchor, self._anchor_body, self._inline_depth)
        try:
            for statement in list(body):
                self._anchor, self._anchor_body, self._inline_depth = statement, body, 0
                self.visit(statement)
        finally:
            self._anchor, self._anchor_body, self._inline_depth = saved

    def _visit_inline_scope(self, node: ast.AST) -> None:
        self._inline_depth += 1
        try:
            self.generic_visit(node)
        finally:
            self._inline_depth -= 1

    visit_Lambda = _visit_inline_scope
    visit_ListComp = _visit_inline_scope
    visit_SetComp = _visit_inline_scope
    visit_DictComp = _visit_inline_scope
    visit_GeneratorExp = _visit_inline_scope

    # ------------------------------------------------------------------
    # Context-introducing nodes
    # ------------------------------------------------------------------

    def _open(self, node: ast.AST, kind: ContextKind, dependencies) -> ObservableContext:
        depth = len(self._stack) + 1
        location = SourceLocation.of(node, self.config.filename)
        if depth > self.config.max_nesting_depth:
            raise ContextNestingTooDeep(
                f"observable contexts nested {depth} deep, limit is "
                f"{self.config.max_nesting_depth}",
                location,
            )
        if self._anchor is None or self._anchor_body is None:
            raise TypeError("contexts must be scanned inside a statement list")
        if dependencies is not None:
            dependencies = tuple(dependencies)
        record = ObservableContext(
            node=node,
            kind=kind,
            identity=next(self._counter),
            depth=depth,
            scope=context_scope(node.body),
            dependencies=dependencies,
            anchor=self._anchor,
            anchor_body=self._anchor_body,
            parent=self._stack[-1] if self._stack else None,
        )
        logger.debug(
            "Found %s context #%d at %s (depth %d)",
            kind.value,
            record.identity,
            location,
            depth,
        )
        return record

    def visit_Context(self, node: Context) -> None:
        kind = ContextKind.BLOCK if is_block(node.body) else ContextKind.EXPRESSION
        if kind is ContextKind.BLOCK and self._inline_depth:
            raise MisplacedBlockContext(
                "block-bodied context cannot appear inside a lambda or comprehension",
                SourceLocation.of(node, self.config.filename),
            )
        record = self._open(node, kind, node.dependencies)
        self._stack.append(record)
        try:
            self.generic_visit(node)
        finally:
            self._stack.pop()
        self.scan.contexts.append(record)

    def visit_Observe(self, node: Observe) -> None:
        record = self._open(node, ContextKind.OBSERVATION, node.dependencies)
        self._stack.append(record)
        try:
            self._visit_statements(node.body)
        finally:
            self._stack.pop()

        # Handlers run outside the observed context. Their contexts are lowered
        # in place before the block copies them into its handler functions.
        for handler_body in (node.catch_body, node.finally_body):
            if handler_body:
                self._visit_statements(handler_body)
        self.scan.contexts.append(record)

    def visit_Flatten(self, node: Flatten) -> None:
        if not self._stack:
            self.scan.orphans.append(node)
        operand, _, _ = peel_markers(node)
        self.visit(operand)

    def _reject_sugar(self, node: ast.AST) -> None:
        raise TypeError(f"{type(node).__name__} must be desugared before scanning")

    visit_Declare = _reject_sugar
    visit_ChainDeclare = _reject_sugar
    visit_DependencyContext = _reject_sugar


def scan_declaration(
    body: List[ast.stmt],
    config: LoweringConfig = CONFIG,
    counter: Optional[Iterator[int]] = None,
) -> ContextScan:
    """
    Scan a statement list (normally a single top-level declaration).

    Args:
        body: The statement list holding the declaration
        config: Lowering configuration
        counter: Shared identity counter, so hidden names stay unique across
            declarations of one module

    Returns:
        The contexts innermost-first plus any out-of-context flatten markers
    """
    scanner = ContextScanner(config, counter)
    scanner._visit_statements(body)
    return scanner.scan
