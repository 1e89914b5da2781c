"""
AtFlow - Flattening Observables inside Ordinary Expressions

Semantic analysis and lowering for observable contexts: flatten markers inside
a context are resolved to an ordered dependency table and the context is
rewritten into a reactive pipeline over a small runtime vocabulary.
"""

from .config import CONFIG, LoweringConfig
from .diagnostics import diagnostics_table, render_diagnostics
from .errors import (
    ContextNestingTooDeep,
    InvalidFlattenTarget,
    LocalIdentifierFlatten,
    LoweringError,
    LoweringFailed,
    MalformedChainShorthand,
    MisplacedBlockContext,
    OutOfContextFlatten,
    SourceLocation,
    UndeclaredExplicitDependency,
)
from .lowering import LoweredContext, LoweringEngine, build_adapter, lower_context
from .model import (
    ContextKind,
    Dependency,
    DependencyTable,
    FlattenSite,
    ObservableContext,
    PassiveDependency,
)
from .nodes import (
    ChainDeclare,
    Context,
    Declare,
    DependencyContext,
    Flatten,
    Observe,
)
from .resolver import DependencyResolver, resolve_context
from .scanner import ContextScan, ContextScanner, scan_declaration
from .scope import ScopeBinding
from .desugar import ShorthandDesugarer, desugar
from .transformer import (
    LoweringResult,
    compile_module,
    lower,
    lower_declaration,
    lower_module,
    run_module,
)

__all__ = [
    # Marker nodes
    "Flatten",
    "Context",
    "DependencyContext",
    "Observe",
    "Declare",
    "ChainDeclare",
    # Pass stages
    "desugar",
    "ShorthandDesugarer",
    "scan_declaration",
    "ContextScanner",
    "ContextScan",
    "resolve_context",
    "DependencyResolver",
    "lower_context",
    "build_adapter",
    "LoweringEngine",
    # Driver
    "lower",
    "lower_module",
    "lower_declaration",
    "compile_module",
    "run_module",
    "LoweringResult",
    "LoweredContext",
    # Records
    "ObservableContext",
    "ContextKind",
    "FlattenSite",
    "Dependency",
    "PassiveDependency",
    "DependencyTable",
    "ScopeBinding",
    # Configuration
    "LoweringConfig",
    "CONFIG",
    # Diagnostics
    "render_diagnostics",
    "diagnostics_table",
    # Exception classes
    "LoweringError",
    "LoweringFailed",
    "OutOfContextFlatten",
    "LocalIdentifierFlatten",
    "UndeclaredExplicitDependency",
    "ContextNestingTooDeep",
    "MalformedChainShorthand",
    "InvalidFlattenTarget",
    "MisplacedBlockContext",
    "SourceLocation",
]
