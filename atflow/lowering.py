"""
AtFlow Lowering - Rewriting Contexts into Reactive Pipelines
============================================================

Consumes one context and its resolved dependency table and rewrites the
context in place using only the runtime operator vocabulary:

    rt.combine(adapt(dep1), ..., adapt(depN)).pipe(rt.transform(fn))

where

    adapt(dep) = rt.normalize(dep.identifier)
                   .pipe(rt.flatten_latest() * (dep.depth - 1),
                         rt.default_until_first() if dep.nullish)

`fn` takes the combined tuple; every flatten site of the body is replaced by
the tuple slot of its dependency. Expression bodies become a `lambda`, block
bodies a function definition hoisted just before the anchor statement.

Explicit dependency contexts append passive snapshot slots with
`rt.snapshot(...)` ahead of the transform. Observation blocks are subscribed
instead of transformed:

    [target =] rt.subscribe(stream, on_next, on_error, on_complete)

with the body, catch and finally handlers hoisted as function definitions.
"""

import ast
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import CONFIG, LoweringConfig
from .model import ContextKind, Dependency, DependencyTable, ObservableContext
from .nodes import Flatten

logger = logging.getLogger(__name__)


@dataclass
class LoweredContext:
    """What lowering one context produced."""

    context: ObservableContext
    table: DependencyTable
    replacement: List[ast.AST]
    hoisted: List[ast.stmt] = field(default_factory=list)


# ============================================================================
# NODE BUILDERS
# ============================================================================


def _load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def _arguments(*names: str) -> ast.arguments:
    return ast.arguments(
        posonlyargs=[],
        args=[ast.arg(arg=name) for name in names],
        vararg=None,
        kwonlyargs=[],
        kw_defaults=[],
        kwarg=None,
        defaults=[],
    )


def _function(name: str, params: List[str], body: List[ast.stmt]) -> ast.FunctionDef:
    # type_params only exists from 3.12 on.
    function = ast.FunctionDef(
        name=name,
        args=_arguments(*params),
        body=list(body) or [ast.Pass()],
        decorator_list=[],
        returns=None,
        type_comment=None,
    )
    if "type_params" in ast.FunctionDef._fields:
        function.type_params = []
    return function


def _method_call(receiver: ast.expr, method: str, args: List[ast.expr]) -> ast.Call:
    return ast.Call(
        func=ast.Attribute(value=receiver, attr=method, ctx=ast.Load()),
        args=args,
        keywords=[],
    )


class PipelineBuilder:
    """Builds runtime calls against the configured runtime alias."""

    def __init__(self, config: LoweringConfig = CONFIG):
        self.config = config

    def primitive(self, name: str, *args: ast.expr) -> ast.Call:
        return _method_call(_load(self.config.runtime_alias), name, list(args))

    def adapter(self, dependency: Dependency) -> ast.expr:
        """
        Per-dependency adapter.

        Depth d contributes d - 1 `flatten_latest()` calls, since `combine`
        itself supplies the last level; the nullish variant appends
        `default_until_first()` after all of them.
        """
        source = self.primitive("normalize", _load(dependency.identifier))
        operators = [self.primitive("flatten_latest") for _ in range(dependency.depth - 1)]
        if dependency.nullish:
            operators.append(self.primitive("default_until_first"))
        if not operators:
            return source
        return _method_call(source, "pipe", operators)

    def combined(self, table: DependencyTable) -> ast.Call:
        return self.primitive(
            "combine", *[self.adapter(dependency) for dependency in table.dependencies]
        )

    def snapshot(self, table: DependencyTable) -> Optional[ast.Call]:
        if not table.passive:
            return None
        return self.primitive(
            "snapshot", *[_load(passive.identifier) for passive in table.passive]
        )


# ============================================================================
# BODY REWRITE
# ============================================================================


class SlotRewriter(ast.NodeTransformer):
    """Replace flatten sites and passive references by `values[i]` slots."""

    def __init__(self, table: DependencyTable, values_name: str):
        self.table = table
        self.values_name = values_name
        self.offset = len(table.dependencies)

    def _slot(self, position: int, origin: ast.AST) -> ast.Subscript:
        slot = ast.Subscript(
            value=_load(self.values_name),
            slice=ast.Constant(value=position),
            ctx=ast.Load(),
        )
        return ast.copy_location(slot, origin)

    def visit_Flatten(self, node: Flatten) -> ast.Subscript:
        dependency = self.table.site_slots[id(node)]
        return self._slot(dependency.position, node)

    def visit_Name(self, node: ast.Name) -> ast.expr:
        passive = self.table.passive_slots.get(id(node))
        if passive is None:
            return node
        return self._slot(self.offset + passive.position, node)


# ============================================================================
# LOWERING ENGINE
# ============================================================================


class _Replace(ast.NodeTransformer):
    """Swap one node, found by identity, for its replacement."""

    def __init__(self, target: ast.AST, replacement: ast.AST):
        self.target = target
        self.replacement = replacement
        self.replaced = False

    def visit(self, node: ast.AST) -> ast.AST:
        if node is self.target:
            self.replaced = True
            return self.replacement
        return super().visit(node)


def _index_of(body: List[ast.stmt], statement: ast.stmt) -> int:
    for index, candidate in enumerate(body):
        if candidate is statement:
            return index
    raise ValueError("anchor statement is no longer in its statement list")


class LoweringEngine:
    """
    Lower contexts one at a time.

    Each call to `lower` mutates the tree around the context: the context node
    is replaced by the pipeline expression (or, for observation blocks, by the
    hoisted handlers and the subscribe statement) and any function definitions
    are inserted before the anchor statement.
    """

    def __init__(self, config: LoweringConfig = CONFIG):
        self.config = config
        self.builder = PipelineBuilder(config)

    def lower(self, context: ObservableContext, table: DependencyTable) -> LoweredContext:
        if context.kind is ContextKind.OBSERVATION:
            lowered = self._lower_observation(context, table)
        else:
            lowered = self._lower_value(context, table)
        logger.debug(
            "Lowered %s context #%d with %d dependencies",
            context.kind.value,
            context.identity,
            len(table),
        )
        return lowered

    def _rewrite(self, context: ObservableContext, table: DependencyTable, values: str):
        rewriter = SlotRewriter(table, values)
        body = context.body
        if isinstance(body, list):
            return [rewriter.visit(statement) for statement in body]
        return rewriter.visit(body)

    def _stream(self, table: DependencyTable, *operators: ast.expr) -> ast.expr:
        stream = self.builder.combined(table)
        snapshot = self.builder.snapshot(table)
        pipe = ([snapshot] if snapshot is not None else []) + list(operators)
        if not pipe:
            return stream
        return _method_call(stream, "pipe", pipe)

    def _lower_value(self, context: ObservableContext, table: DependencyTable) -> LoweredContext:
        node = context.node
        values = self.config.hidden("values", context.identity)
        body = self._rewrite(context, table, values)
        hoisted: List[ast.stmt] = []

        if context.kind is ContextKind.BLOCK:
            function = _function(self.config.hidden("context", context.identity), [values], body)
            hoisted.append(ast.copy_location(function, node))
            callback: ast.expr = _load(function.name)
        else:
            callback = ast.Lambda(args=_arguments(values), body=body)

        pipeline = self._stream(table, self.builder.primitive("transform", callback))
        ast.copy_location(pipeline, node)

        replacer = _Replace(node, pipeline)
        replacer.visit(context.anchor)
        if not replacer.replaced:
            raise ValueError(f"context #{context.identity} is not inside its anchor statement")

        if hoisted:
            index = _index_of(context.anchor_body, context.anchor)
            context.anchor_body[index:index] = hoisted
        return LoweredContext(context, table, [pipeline], hoisted)

    def _lower_observation(
        self, context: ObservableContext, table: DependencyTable
    ) -> LoweredContext:
        node = context.node
        identity = context.identity
        values = self.config.hidden("values", identity)

        hoisted: List[ast.stmt] = [
            _function(self.config.hidden("next", identity), [values], self._rewrite(context, table, values))
        ]
        handlers: List[ast.expr] = [_load(hoisted[0].name)]

        if node.catch_body:
            hoisted.append(
                _function(self.config.hidden("catch", identity), [node.error_name], node.catch_body)
            )
            handlers.append(_load(hoisted[-1].name))
        else:
            handlers.append(ast.Constant(value=None))

        if node.finally_body:
            hoisted.append(_function(self.config.hidden("finally", identity), [], node.finally_body))
            handlers.append(_load(hoisted[-1].name))
        else:
            handlers.append(ast.Constant(value=None))

        subscription = self.builder.primitive("subscribe", self._stream(table), *handlers)
        if node.target:
            statement: ast.stmt = ast.Assign(
                targets=[ast.Name(id=node.target, ctx=ast.Store())], value=subscription
            )
        else:
            statement = ast.Expr(value=subscription)

        replacement = [ast.copy_location(item, node) for item in hoisted + [statement]]
        index = _index_of(context.anchor_body, node)
        context.anchor_body[index : index + 1] = replacement
        return LoweredContext(context, table, replacement, hoisted)


def lower_context(
    context: ObservableContext,
    table: DependencyTable,
    config: LoweringConfig = CONFIG,
) -> LoweredContext:
    """Lower a single resolved context in place."""
    return LoweringEngine(config).lower(context, table)


def build_adapter(dependency: Dependency, config: LoweringConfig = CONFIG) -> ast.expr:
    """The adapter expression feeding `dependency` into `combine`."""
    return PipelineBuilder(config).adapter(dependency)
