"""
AtFlow Resolver - Dependency Resolution for Observable Contexts
===============================================================

Computes, for one context, the ordered and de-duplicated table of streams the
context depends on, and validates the scoping rules that keep the dependency
graph stable.

Algorithm (pre-order walk of the context body):
1. At each flatten marker, count the stacked markers to get the chain depth
   and read the nullish flag of the innermost marker.
2. The operand beneath the markers must be a bare identifier.
3. Look the identifier up in the explicit scope stack, stopping at the
   context's own boundary. A hit means the target is declared inside the
   context: LocalIdentifierFlatten. A miss means an outer context or module
   binding, which is legal.
4. With an explicit dependency list, only listed identifiers may be flattened
   (UndeclaredExplicitDependency otherwise); plain references to listed
   identifiers become passive snapshot slots.
5. Insert the site under (identifier, depth, nullish); the first occurrence
   fixes the position.

Inner contexts are always lowered before their enclosing context is resolved,
so the walk never meets a Context or Observe node. If it does, the caller broke
the innermost-first order.
"""

import ast
import logging
from typing import List, Sequence

from .config import CONFIG, LoweringConfig
from .errors import (
    InvalidFlattenTarget,
    LocalIdentifierFlatten,
    OutOfContextFlatten,
    SourceLocation,
    UndeclaredExplicitDependency,
)
from .model import DependencyTable, FlattenSite, ObservableContext
from .nodes import Context, Flatten, Observe, peel_markers
from .scope import ScopeStack, lookup_local, nested_scope

logger = logging.getLogger(__name__)

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)
_FUNCTIONS = (ast.FunctionDef, ast.AsyncFunctionDef)


class DependencyResolver:
    """
    Resolve the dependency table of a single context.

    The scope stack is passed explicitly through the walk; nothing is captured
    from enclosing Python closures or module state, so resolvers for different
    contexts are independent of each other.

    Example:
        ```python
        table = DependencyResolver(context).resolve()
        [dependency.key for dependency in table.dependencies]
        # [("a", 1, False), ("b", 2, True)]
        ```
    """

    def __init__(self, context: ObservableContext, config: LoweringConfig = CONFIG):
        self.context = context
        self.config = config
        self.table = DependencyTable()

    def resolve(self) -> DependencyTable:
        stack: ScopeStack = (self.context.scope,)
        body = self.context.body
        for node in body if isinstance(body, list) else [body]:
            self._walk(node, stack)
        logger.debug(
            "Resolved context #%d: %d dependencies, %d passive, %d sites",
            self.context.identity,
            len(self.table.dependencies),
            len(self.table.passive),
            len(self.table.sites),
        )
        return self.table

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _walk(self, node: ast.AST, stack: ScopeStack) -> None:
        if isinstance(node, Flatten):
            self._record_site(node, stack)
            return
        if isinstance(node, (Context, Observe)):
            raise TypeError(
                f"nested {type(node).__name__} reached the resolver of context "
                f"#{self.context.identity}; contexts must be lowered innermost-first"
            )
        if isinstance(node, ast.Name):
            self._record_reference(node, stack)
            return
        if self._is_stream_reference(node):
            return

        scope = nested_scope(node, stack[-1])
        if scope is None:
            for child in ast.iter_child_nodes(node):
                self._walk(child, stack)
            return

        inner = stack + (scope,)
        for name, value in ast.iter_fields(node):
            if isinstance(node, _COMPREHENSIONS) and name == "generators":
                self._walk_generators(value, stack, inner)
                continue
            self._walk_field(value, inner if self._enters_scope(node, name) else stack)

    def _walk_field(self, value, stack: ScopeStack) -> None:
        if isinstance(value, list):
            for item in value:
                if isinstance(item, ast.AST):
                    self._walk(item, stack)
        elif isinstance(value, ast.AST):
            self._walk(value, stack)

    def _walk_generators(
        self,
        generators: Sequence[ast.comprehension],
        outer: ScopeStack,
        inner: ScopeStack,
    ) -> None:
        for position, generator in enumerate(generators):
            self._walk(generator.target, inner)
            # The first iterable is evaluated in the enclosing scope.
            self._walk(generator.iter, outer if position == 0 else inner)
            for condition in generator.ifs:
                self._walk(condition, inner)

    def _is_stream_reference(self, node: ast.AST) -> bool:
        """
        True for the `normalize(x)` and `snapshot(x, ...)` calls left behind by
        an inner context that was already lowered. Their arguments name
        streams, never snapshot values of the enclosing context.
        """
        if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
            return False
        receiver = node.func.value
        return (
            isinstance(receiver, ast.Name)
            and receiver.id == self.config.runtime_alias
            and node.func.attr in ("normalize", "snapshot")
        )

    @staticmethod
    def _enters_scope(node: ast.AST, field_name: str) -> bool:
        """True if `field_name` of `node` is evaluated inside the node's own scope."""
        if isinstance(node, (_FUNCTIONS, ast.ClassDef, ast.Lambda)):
            return field_name == "body"
        return isinstance(node, _COMPREHENSIONS)

    # ------------------------------------------------------------------
    # Sites
    # ------------------------------------------------------------------

    def _location(self, node: ast.AST) -> SourceLocation:
        return SourceLocation.of(node, self.config.filename)

    def _record_site(self, node: Flatten, stack: ScopeStack) -> None:
        operand, depth, nullish = peel_markers(node)
        location = self._location(node)
        if not isinstance(operand, ast.Name):
            raise InvalidFlattenTarget(
                f"flatten operand must be a bare identifier, got {type(operand).__name__}",
                location,
            )
        identifier = operand.id

        if lookup_local(stack, identifier) is not None:
            raise LocalIdentifierFlatten(
                f"cannot flatten {identifier!r}: it is declared inside its own "
                "observable context",
                location,
                identifier,
            )
        explicit = self.context.dependencies
        if explicit is not None and identifier not in explicit:
            raise UndeclaredExplicitDependency(
                f"cannot flatten {identifier!r}: it is not in the explicit "
                f"dependency list ({', '.join(explicit) or 'empty'})",
                location,
                identifier,
            )

        dependency = self.table.add_site(
            FlattenSite(node, identifier, depth, nullish, location)
        )
        logger.debug(
            "Site %s at %s -> slot %d", dependency.key, location, dependency.position
        )

    def _record_reference(self, node: ast.Name, stack: ScopeStack) -> None:
        explicit = self.context.dependencies
        if explicit is None or not isinstance(node.ctx, ast.Load):
            return
        if node.id in explicit and lookup_local(stack, node.id) is None:
            self.table.add_passive(node)


def resolve_context(
    context: ObservableContext, config: LoweringConfig = CONFIG
) -> DependencyTable:
    """Resolve and validate the dependencies of one context."""
    return DependencyResolver(context, config).resolve()


def check_orphans(orphans: List[Flatten], config: LoweringConfig = CONFIG) -> None:
    """Raise OutOfContextFlatten for the first flatten marker found outside any context."""
    if not orphans:
        return
    node = orphans[0]
    operand, _, _ = peel_markers(node)
    identifier = operand.id if isinstance(operand, ast.Name) else None
    raise OutOfContextFlatten(
        "flatten operator used outside of any observable context",
        SourceLocation.of(node, config.filename),
        identifier,
    )
