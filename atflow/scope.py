"""
AtFlow Scope - Explicit Scope Bindings for Context Bodies
=========================================================

The resolver never relies on ambient or global symbol tables. Each context gets
a `ScopeBinding` holding the identifiers declared directly inside its body, and
every nested function, lambda, class or comprehension met while walking that
body pushes its own binding on an explicit stack that is passed down the walk.

Lookup stops at the first context boundary: a name found at or above it (in
walk order) is local to the context, anything else belongs to an outer
context or to module scope.

Binding rules follow Python's:
- assignment, augmented assignment, annotated assignment, `del`, `for`,
  `with ... as`, `except ... as`, walrus and match-capture targets bind
- `import` binds the alias (or the first component of a dotted name)
- `def` and `class` bind their name in the enclosing scope
- `global` / `nonlocal` names are not local
- nested scopes are not entered, except for the parts Python evaluates in the
  enclosing scope (decorators, defaults, the first comprehension iterator)
- walrus targets inside a comprehension bind in the enclosing scope
"""

import ast
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Set, Tuple, Union

from .nodes import Context, DependencyContext, Observe

_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


@dataclass(frozen=True)
class ScopeBinding:
    """
    Identifiers declared in one scope.

    Attributes:
        declared: Names bound inside the scope
        boundary: True for the body scope of an observable context
        kind: "context", "function", "class" or "comprehension"
        parent: The enclosing binding inside the same context, if any
    """

    declared: FrozenSet[str]
    boundary: bool = False
    kind: str = "context"
    parent: Optional["ScopeBinding"] = None

    def binds(self, name: str) -> bool:
        return name in self.declared


ScopeStack = Tuple[ScopeBinding, ...]


def lookup_local(stack: ScopeStack, name: str) -> Optional[ScopeBinding]:
    """
    Find the binding of `name` within the current context.

    Walks `stack` from innermost to outermost and stops after the first
    context boundary. Class scopes are only visible when they are innermost,
    as in Python.

    Returns:
        The ScopeBinding declaring `name`, or None if it is bound outside the
        current context (or not at all).
    """
    for position, binding in enumerate(reversed(stack)):
        if binding.kind == "class" and position > 0:
            continue
        if binding.binds(name):
            return binding
        if binding.boundary:
            return None
    return None


def shadows(stack: ScopeStack, name: str) -> bool:
    """True if `name` is rebound by a scope above the innermost context boundary."""
    return lookup_local(stack, name) is not None


# ============================================================================
# BINDING COLLECTION
# ============================================================================


class BindingCollector(ast.NodeVisitor):
    """Collect names bound at one scope level without entering nested scopes."""

    def __init__(self):
        self.bound: Set[str] = set()
        self.excluded: Set[str] = set()

    @property
    def names(self) -> FrozenSet[str]:
        return frozenset(self.bound - self.excluded)

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.bound.add(node.id)

    def visit_Global(self, node: ast.Global) -> None:
        self.excluded.update(node.names)

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.excluded.update(node.names)

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.bound.add(alias.asname or alias.name.split(".")[0])

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        for alias in node.names:
            if alias.name != "*":
                self.bound.add(alias.asname or alias.name)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_MatchAs(self, node: ast.MatchAs) -> None:
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node: ast.MatchStar) -> None:
        if node.name:
            self.bound.add(node.name)

    def visit_MatchMapping(self, node: ast.MatchMapping) -> None:
        if node.rest:
            self.bound.add(node.rest)
        self.generic_visit(node)

    def _visit_signature(self, args: ast.arguments) -> None:
        for default in list(args.defaults) + [d for d in args.kw_defaults if d]:
            self.visit(default)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self.bound.add(node.name)
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._visit_signature(node.args)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.bound.add(node.name)
        for expr in node.decorator_list + node.bases:
            self.visit(expr)
        for keyword in node.keywords:
            self.visit(keyword.value)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._visit_signature(node.args)

    def _visit_comprehension(self, node) -> None:
        self.visit(node.generators[0].iter)
        # Walrus targets inside a comprehension bind in this scope.
        for inner in ast.walk(node):
            if isinstance(inner, ast.NamedExpr) and isinstance(inner.target, ast.Name):
                self.bound.add(inner.target.id)

    visit_ListComp = _visit_comprehension
    visit_SetComp = _visit_comprehension
    visit_DictComp = _visit_comprehension
    visit_GeneratorExp = _visit_comprehension

    # Nested contexts lower into their own function scope.
    def visit_Context(self, node: Context) -> None:
        return None

    def visit_DependencyContext(self, node: DependencyContext) -> None:
        return None

    def visit_Observe(self, node: Observe) -> None:
        if node.target:
            self.bound.add(node.target)


def collect_bindings(body: Union[ast.AST, Sequence[ast.AST]]) -> FrozenSet[str]:
    """Names bound at the top scope level of `body` (a node or list of nodes)."""
    collector = BindingCollector()
    for node in body if isinstance(body, (list, tuple)) else [body]:
        collector.visit(node)
    return collector.names


def argument_names(args: ast.arguments) -> List[str]:
    """Every parameter name declared by a signature."""
    names = [arg.arg for arg in list(args.posonlyargs) + list(args.args) + list(args.kwonlyargs)]
    if args.vararg:
        names.append(args.vararg.arg)
    if args.kwarg:
        names.append(args.kwarg.arg)
    return names


# ============================================================================
# SCOPE CONSTRUCTORS
# ============================================================================


def context_scope(body) -> ScopeBinding:
    """Binding for the body of an observable context."""
    return ScopeBinding(
        declared=collect_bindings(body),
        boundary=True,
        kind="context",
    )


def nested_scope(node: ast.AST, parent: Optional[ScopeBinding]) -> Optional[ScopeBinding]:
    """
    Binding for a nested scope met while walking a context body.

    Returns:
        A ScopeBinding for functions, lambdas, classes and comprehensions,
        None for any other node.
    """
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        declared = collect_bindings(node.body) | frozenset(argument_names(node.args))
        return ScopeBinding(declared, kind="function", parent=parent)
    if isinstance(node, ast.Lambda):
        declared = collect_bindings(node.body) | frozenset(argument_names(node.args))
        return ScopeBinding(declared, kind="function", parent=parent)
    if isinstance(node, ast.ClassDef):
        return ScopeBinding(collect_bindings(node.body), kind="class", parent=parent)
    if isinstance(node, _COMPREHENSIONS):
        declared: Set[str] = set()
        for generator in node.generators:
            declared |= collect_bindings(generator.target)
        return ScopeBinding(frozenset(declared), kind="comprehension", parent=parent)
    return None
