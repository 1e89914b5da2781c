"""
AtFlow Errors - Static Diagnostics for the Lowering Pass
========================================================

Every error produced by the pass is static: it is raised while a top-level
declaration is being desugared, scanned, resolved or lowered, before any output
for that declaration exists. The driver catches them per declaration, so a
failure never leaks into unrelated declarations.

Hierarchy:
- LoweringError: base class, carries a message, a SourceLocation and the
  offending identifier (when there is one)
- OutOfContextFlatten, LocalIdentifierFlatten, UndeclaredExplicitDependency,
  ContextNestingTooDeep, MalformedChainShorthand, InvalidFlattenTarget,
  MisplacedBlockContext: the concrete kinds
- LoweringFailed: aggregate raised by LoweringResult.raise_for_errors()
"""

import ast
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class SourceLocation:
    """Position of a node in the source the tree was parsed from."""

    filename: str = "<unknown>"
    lineno: Optional[int] = None
    col_offset: Optional[int] = None

    @classmethod
    def of(cls, node: Optional[ast.AST], filename: str = "<unknown>") -> "SourceLocation":
        """Build a location from any AST node, tolerating missing positions."""
        if node is None:
            return cls(filename)
        return cls(
            filename,
            getattr(node, "lineno", None),
            getattr(node, "col_offset", None),
        )

    def __str__(self) -> str:
        if self.lineno is None:
            return self.filename
        if self.col_offset is None:
            return f"{self.filename}:{self.lineno}"
        return f"{self.filename}:{self.lineno}:{self.col_offset + 1}"


# ============================================================================
# BASE CLASS
# ============================================================================


class LoweringError(Exception):
    """
    Base class for static errors raised by the lowering pass.

    Attributes:
        message: Human readable description of the problem
        location: Where the problem was detected
        identifier: The identifier involved, if any
    """

    kind = "LoweringError"

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        identifier: Optional[str] = None,
    ):
        self.message = message
        self.location = location or SourceLocation()
        self.identifier = identifier
        super().__init__(f"{self.location}: {message}")


# ============================================================================
# CONCRETE KINDS
# ============================================================================


class OutOfContextFlatten(LoweringError):
    """Flatten marker used with no enclosing observable context."""

    kind = "OutOfContextFlatten"


class LocalIdentifierFlatten(LoweringError):
    """Flatten target is bound inside its own innermost context."""

    kind = "LocalIdentifierFlatten"


class UndeclaredExplicitDependency(LoweringError):
    """Flatten target is missing from the context's explicit dependency list."""

    kind = "UndeclaredExplicitDependency"


class ContextNestingTooDeep(LoweringError):
    """Context nesting exceeds the configured recursion guard."""

    kind = "ContextNestingTooDeep"


class MalformedChainShorthand(LoweringError):
    """Creation shorthand with no markers or a target that is not a plain name."""

    kind = "MalformedChainShorthand"


class InvalidFlattenTarget(LoweringError):
    """The operand beneath the flatten markers is not a bare identifier."""

    kind = "InvalidFlattenTarget"


class MisplacedBlockContext(LoweringError):
    """Block-bodied context nested in a lambda or comprehension."""

    kind = "MisplacedBlockContext"


# ============================================================================
# AGGREGATE
# ============================================================================


class LoweringFailed(Exception):
    """One or more top-level declarations failed to lower."""

    def __init__(self, diagnostics: List[LoweringError]):
        self.diagnostics = list(diagnostics)
        lines = [str(error) for error in self.diagnostics]
        super().__init__(
            f"{len(lines)} declaration(s) failed to lower:\n" + "\n".join(lines)
        )
