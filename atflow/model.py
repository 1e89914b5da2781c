"""
AtFlow Model - Records Produced and Consumed by the Pass
========================================================

Plain data records shared by the scanner, resolver and lowering engine:

- ObservableContext: one delimited context found by the scanner
- FlattenSite: one occurrence of the flatten operator
- Dependency: a de-duplicated flatten target, keyed by (identifier, depth, nullish)
- PassiveDependency: a plain reference to an explicit dependency parameter
- DependencyTable: the ordered result of resolving one context

Records live only for the duration of the pass.
"""

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import SourceLocation
from .scope import ScopeBinding

DependencyKey = Tuple[str, int, bool]


class ContextKind(Enum):
    """Syntactic flavour of an observable context."""

    EXPRESSION = "expression"
    BLOCK = "block"
    OBSERVATION = "observation"


@dataclass(frozen=True)
class FlattenSite:
    """One flatten operator application; `node` is the outermost marker."""

    node: ast.expr
    identifier: str
    depth: int
    nullish: bool
    location: SourceLocation

    @property
    def key(self) -> DependencyKey:
        return (self.identifier, self.depth, self.nullish)


@dataclass(frozen=True)
class Dependency:
    """A resolved dependency and its slot in the combine argument list."""

    identifier: str
    depth: int
    nullish: bool
    position: int

    @property
    def key(self) -> DependencyKey:
        return (self.identifier, self.depth, self.nullish)


@dataclass(frozen=True)
class PassiveDependency:
    """A snapshot-only reference to an explicit dependency parameter."""

    identifier: str
    position: int


@dataclass
class DependencyTable:
    """
    Ordered dependencies of one context.

    `dependencies` is in first-occurrence order of a pre-order walk of the
    body, and so is `passive`. `site_slots` maps id() of each outermost
    Flatten node to its dependency; `passive_slots` does the same for plain
    Name nodes that read a snapshot.
    """

    dependencies: List[Dependency] = field(default_factory=list)
    passive: List[PassiveDependency] = field(default_factory=list)
    sites: List[FlattenSite] = field(default_factory=list)
    site_slots: Dict[int, Dependency] = field(default_factory=dict)
    passive_slots: Dict[int, PassiveDependency] = field(default_factory=dict)
    _index: Dict[DependencyKey, Dependency] = field(default_factory=dict, repr=False)
    _passive_index: Dict[str, PassiveDependency] = field(default_factory=dict, repr=False)

    def add_site(self, site: FlattenSite) -> Dependency:
        """Record a site, collapsing it onto an existing dependency with the same key."""
        dependency = self._index.get(site.key)
        if dependency is None:
            dependency = Dependency(
                site.identifier, site.depth, site.nullish, len(self.dependencies)
            )
            self._index[site.key] = dependency
            self.dependencies.append(dependency)
        self.sites.append(site)
        self.site_slots[id(site.node)] = dependency
        return dependency

    def add_passive(self, node: ast.Name) -> PassiveDependency:
        """Record a plain reference to an explicit dependency parameter."""
        passive = self._passive_index.get(node.id)
        if passive is None:
            passive = PassiveDependency(node.id, len(self.passive))
            self._passive_index[node.id] = passive
            self.passive.append(passive)
        self.passive_slots[id(node)] = passive
        return passive

    def keys(self) -> List[DependencyKey]:
        """The context's free-variable set, in slot order."""
        return [dependency.key for dependency in self.dependencies]

    def __len__(self) -> int:
        return len(self.dependencies)


@dataclass
class ObservableContext:
    """
    A context located by the scanner.

    Attributes:
        node: The Context or Observe node
        kind: Expression, block or observation flavour
        identity: Unique number within the declaration, used for hidden names
        depth: Nesting level, 1 for an outermost context
        scope: Bindings declared directly inside the context body
        dependencies: Explicit dependency list, or None
        anchor: Statement before which hoisted definitions are inserted
        anchor_body: Statement list that holds `anchor`
        parent: Enclosing context, if any
    """

    node: ast.AST
    kind: ContextKind
    identity: int
    depth: int
    scope: ScopeBinding
    dependencies: Optional[Tuple[str, ...]]
    anchor: ast.stmt
    anchor_body: List[ast.stmt]
    parent: Optional["ObservableContext"] = None

    @property
    def body(self):
        return self.node.body

    @property
    def is_explicit(self) -> bool:
        return self.dependencies is not None
