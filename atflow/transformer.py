"""
AtFlow Transformer - Driving the Pass over a Module
===================================================

Runs the four stages for every top-level declaration of a module:

    desugar -> scan -> (resolve -> lower) for each context, innermost first

Each declaration is processed on its own copy. A static error aborts that
declaration only: its original statement is kept untouched, the error is
collected, and the remaining declarations are lowered as usual. Declarations
that contain no marker nodes are passed through as-is, so lowering an already
lowered module is a no-op.
"""

import ast
import copy
import itertools
import logging
from dataclasses import dataclass, field
from types import CodeType
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import CONFIG, LoweringConfig
from .desugar import desugar
from .errors import ContextNestingTooDeep, LoweringError, LoweringFailed, SourceLocation
from .lowering import LoweredContext, LoweringEngine
from .nodes import contains_markers
from .resolver import check_orphans, resolve_context
from .scanner import scan_declaration

logger = logging.getLogger(__name__)


@dataclass
class LoweringResult:
    """
    Outcome of lowering a module.

    Attributes:
        module: The lowered module; declarations that failed are left as they were
        diagnostics: One error per failed declaration
        lowered: Every context lowered, in processing order
    """

    module: ast.Module
    diagnostics: List[LoweringError] = field(default_factory=list)
    lowered: List[LoweredContext] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def raise_for_errors(self) -> "LoweringResult":
        if self.diagnostics:
            raise LoweringFailed(self.diagnostics)
        return self


def lower_declaration(
    declaration: ast.stmt,
    config: LoweringConfig = CONFIG,
    counter: Optional[Iterator[int]] = None,
) -> Tuple[List[ast.stmt], List[LoweredContext]]:
    """
    Lower one top-level declaration.

    Returns:
        The statements replacing the declaration (hoisted definitions first)
        and the lowered contexts.

    Raises:
        LoweringError: Any static error; the input declaration is not modified.
        ContextNestingTooDeep: Also raised when the tree is too deep for the
            interpreter to walk, whatever the configured guard.
    """
    try:
        container = ast.Module(body=[copy.deepcopy(declaration)], type_ignores=[])
        desugar(container, config)

        scan = scan_declaration(container.body, config, counter)
        check_orphans(scan.orphans, config)

        engine = LoweringEngine(config)
        lowered = []
        for context in scan:
            table = resolve_context(context, config)
            lowered.append(engine.lower(context, table))
    except RecursionError as error:
        raise ContextNestingTooDeep(
            "declaration is nested too deeply to lower",
            SourceLocation.of(declaration, config.filename),
        ) from error

    for statement in container.body:
        if contains_markers(statement):
            raise TypeError(f"marker node left in lowered output: {ast.dump(statement)[:80]}")
    return container.body, lowered


def _runtime_import(config: LoweringConfig) -> ast.Import:
    return ast.Import(names=[ast.alias(name=config.runtime_module, asname=config.runtime_alias)])


def _import_position(body: List[ast.stmt]) -> int:
    """Index after the module docstring and any `from __future__` imports."""
    position = 0
    if (
        body
        and isinstance(body[0], ast.Expr)
        and isinstance(body[0].value, ast.Constant)
        and isinstance(body[0].value.value, str)
    ):
        position = 1
    while (
        position < len(body)
        and isinstance(body[position], ast.ImportFrom)
        and body[position].module == "__future__"
    ):
        position += 1
    return position


def lower_module(module: ast.Module, config: Optional[LoweringConfig] = None) -> LoweringResult:
    """
    Lower every observable context of `module`.

    The input module is never mutated. When nothing needed lowering the very
    same module object is returned.
    """
    config = config or CONFIG
    counter = itertools.count(1)
    result = LoweringResult(module=module)
    body: List[ast.stmt] = []
    changed = False

    for declaration in module.body:
        if not contains_markers(declaration):
            body.append(declaration)
            continue
        try:
            statements, lowered = lower_declaration(declaration, config, counter)
        except LoweringError as error:
            logger.debug("Declaration at line %s failed: %s", getattr(declaration, "lineno", "?"), error)
            result.diagnostics.append(error)
            body.append(declaration)
            continue
        body.extend(statements)
        result.lowered.extend(lowered)
        changed = True

    if not changed:
        return result

    if config.inject_runtime_import and result.lowered:
        body.insert(_import_position(body), _runtime_import(config))
    # Only new statements; input statements are neither mutated nor walked again.
    originals = {id(statement) for statement in module.body}
    for statement in body:
        if id(statement) not in originals:
            ast.fix_missing_locations(statement)
    result.module = ast.Module(body=body, type_ignores=list(module.type_ignores))
    logger.debug(
        "Lowered %d contexts, %d declarations failed",
        len(result.lowered),
        len(result.diagnostics),
    )
    return result


def lower(tree: ast.AST, config: Optional[LoweringConfig] = None) -> ast.Module:
    """
    Lower a module, a single statement or a list of statements.

    Raises:
        LoweringFailed: If any declaration failed to lower.
    """
    if isinstance(tree, ast.Module):
        module = tree
    elif isinstance(tree, list):
        module = ast.Module(body=tree, type_ignores=[])
    else:
        module = ast.Module(body=[tree], type_ignores=[])
    return lower_module(module, config).raise_for_errors().module


def compile_module(
    tree: ast.AST,
    filename: str = "<atflow>",
    config: Optional[LoweringConfig] = None,
) -> CodeType:
    """Lower `tree` and compile the result for `exec`."""
    module = lower(tree, config)
    return compile(ast.fix_missing_locations(module), filename, "exec")


def run_module(
    tree: ast.AST,
    namespace: Optional[Dict[str, Any]] = None,
    config: Optional[LoweringConfig] = None,
) -> Dict[str, Any]:
    """Lower, compile and execute `tree` in `namespace`, returning the namespace."""
    namespace = {} if namespace is None else namespace
    exec(compile_module(tree, config=config), namespace)
    return namespace
