"""
AtFlow Desugar - Shorthand Expansion into Canonical Contexts
============================================================

Runs before scanning so the later stages only ever see `Context`, `Flatten`
and canonical `Observe` nodes.

Expansions:
- Declare (`declare @name = E`)          -> `name = Context(E)`
- ChainDeclare (`declare @@..@name = E`) -> one hidden creation per marker,
  each later one flattening the previous binding once more
- DependencyContext (`(a, b) => body`)   -> `Context(body, dependencies=("a", "b"))`
- Observe whose body is a single try/except/finally -> catch and finally
  handlers of the observation block

Dependency lists given as strings, names or tuples are normalised to a tuple
of unique identifiers in the order they were written.
"""

import ast
import logging
from typing import List, Optional, Sequence, Tuple

from .config import CONFIG, LoweringConfig
from .errors import InvalidFlattenTarget, MalformedChainShorthand, SourceLocation
from .nodes import ChainDeclare, Context, Declare, DependencyContext, Flatten, Observe

logger = logging.getLogger(__name__)

_CATCH_ALL = ("Exception", "BaseException")


class ShorthandDesugarer(ast.NodeTransformer):
    """Rewrite surface sugar into the canonical context form, innermost first."""

    def __init__(self, config: LoweringConfig = CONFIG):
        self.config = config

    def _location(self, node: ast.AST) -> SourceLocation:
        return SourceLocation.of(node, self.config.filename)

    def _target_name(self, node: ast.stmt) -> str:
        target = node.target
        if not isinstance(target, ast.Name):
            raise MalformedChainShorthand(
                "creation shorthand target must be a plain identifier",
                self._location(target if target is not None else node),
            )
        return target.id

    def _assign(self, name: str, value: ast.expr, origin: ast.AST) -> ast.Assign:
        assign = ast.Assign(targets=[ast.Name(id=name, ctx=ast.Store())], value=value)
        ast.copy_location(assign.targets[0], origin)
        ast.copy_location(value, origin)
        return ast.copy_location(assign, origin)

    # ------------------------------------------------------------------
    # Creation shorthands
    # ------------------------------------------------------------------

    def visit_Declare(self, node: Declare) -> ast.Assign:
        self.generic_visit(node)
        name = self._target_name(node)
        logger.debug("Desugaring creation shorthand for %r", name)
        return self._assign(name, Context(body=node.value), node)

    def visit_ChainDeclare(self, node: ChainDeclare) -> List[ast.stmt]:
        self.generic_visit(node)
        markers = node.markers
        if not isinstance(markers, int) or isinstance(markers, bool) or markers < 1:
            raise MalformedChainShorthand(
                f"chain-creation shorthand needs at least one marker, got {markers!r}",
                self._location(node),
            )
        name = self._target_name(node)
        logger.debug("Desugaring %d-marker chain creation for %r", markers, name)

        names = [self.config.hidden("chain", name, level) for level in range(1, markers)]
        names.append(name)

        statements: List[ast.stmt] = [self._assign(names[0], Context(body=node.value), node)]
        for previous, current in zip(names, names[1:]):
            operand = ast.copy_location(ast.Name(id=previous, ctx=ast.Load()), node)
            chained = Flatten(Flatten(operand))
            ast.copy_location(chained.value, node)
            ast.copy_location(chained, node)
            statements.append(self._assign(current, Context(body=chained), node))
        return statements

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def visit_DependencyContext(self, node: DependencyContext) -> Context:
        self.generic_visit(node)
        dependencies = self.normalize_dependencies(node.params, node)
        return ast.copy_location(Context(body=node.body, dependencies=dependencies), node)

    def visit_Context(self, node: Context) -> Context:
        self.generic_visit(node)
        if node.dependencies is not None:
            node.dependencies = self.normalize_dependencies(node.dependencies, node)
        return node

    def visit_Observe(self, node: Observe) -> Observe:
        self.generic_visit(node)
        if node.dependencies is not None:
            node.dependencies = self.normalize_dependencies(node.dependencies, node)
        if node.catch_body is None and node.finally_body is None:
            self._lift_try(node)
        node.catch_body = node.catch_body or None
        node.finally_body = node.finally_body or None
        if node.catch_body is not None and not node.error_name:
            node.error_name = self.config.hidden("error")
        return node

    def _lift_try(self, node: Observe) -> None:
        """Move the handlers of a sole try statement onto the observation block."""
        if len(node.body) != 1 or type(node.body[0]) is not ast.Try:
            return
        statement: ast.Try = node.body[0]
        if statement.orelse or len(statement.handlers) > 1:
            return
        handler: Optional[ast.ExceptHandler] = None
        if statement.handlers:
            handler = statement.handlers[0]
            if handler.type is not None and not (
                isinstance(handler.type, ast.Name) and handler.type.id in _CATCH_ALL
            ):
                return
        if handler is None and not statement.finalbody:
            return

        logger.debug("Lifting try handlers onto observation block")
        node.body = statement.body
        if handler is not None:
            node.catch_body = handler.body
            node.error_name = handler.name or node.error_name
        node.finally_body = statement.finalbody or None

    def normalize_dependencies(self, dependencies, origin: ast.AST) -> Tuple[str, ...]:
        """Flatten a dependency list into unique identifiers in written order."""
        if isinstance(dependencies, (str, ast.Name)):
            entries: Sequence = [dependencies]
        elif isinstance(dependencies, (ast.Tuple, ast.List)):
            entries = dependencies.elts
        else:
            entries = list(dependencies)

        names: List[str] = []
        for entry in entries:
            if isinstance(entry, ast.Name):
                entry = entry.id
            if not isinstance(entry, str) or not entry.isidentifier():
                raise InvalidFlattenTarget(
                    f"explicit dependency {entry!r} is not a plain identifier",
                    self._location(origin),
                )
            if entry not in names:
                names.append(entry)
        return tuple(names)


def desugar(tree: ast.AST, config: LoweringConfig = CONFIG) -> ast.AST:
    """Expand every shorthand in `tree` in place and return it."""
    return ShorthandDesugarer(config).visit(tree)
