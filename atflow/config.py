"""
AtFlow Configuration
====================

Parameters of the lowering pass. A single `LoweringConfig` instance is threaded
through every stage; `CONFIG` is the default used when callers pass none.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class LoweringConfig:
    """Lowering pass configuration parameters."""

    # Deepest allowed context nesting before ContextNestingTooDeep
    max_nesting_depth: int = 32

    # Module providing combine/transform/flatten_latest/... at runtime
    runtime_module: str = "atflow.runtime"
    runtime_alias: str = "_atflow_rt"

    # Prefix of every name the pass introduces (hidden bindings, handlers)
    hidden_prefix: str = "_atflow_"

    # Prepend `import <runtime_module> as <runtime_alias>` to lowered modules
    inject_runtime_import: bool = True

    # Reported in SourceLocation of diagnostics
    filename: str = "<unknown>"

    def hidden(self, *parts: object) -> str:
        """Build a hidden identifier from the configured prefix."""
        return self.hidden_prefix + "_".join(str(part) for part in parts)


CONFIG = LoweringConfig()
