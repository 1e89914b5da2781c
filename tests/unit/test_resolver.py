"""Unit tests for dependency resolution and scoping errors."""

import pytest

from atflow import (
    InvalidFlattenTarget,
    LocalIdentifierFlatten,
    OutOfContextFlatten,
    UndeclaredExplicitDependency,
    desugar,
    resolve_context,
    scan_declaration,
)
from atflow.resolver import check_orphans


def resolve(tree, config=None):
    """Desugar and scan `tree`, then resolve its only context."""
    desugar(tree)
    scan = scan_declaration(tree.body)
    check_orphans(scan.orphans)
    (context,) = scan.contexts
    if config is None:
        return resolve_context(context)
    return resolve_context(context, config)


@pytest.mark.unit
class TestDependencyTable:
    """Ordering and de-duplication of dependencies."""

    def test_dependencies_follow_first_occurrence(self, parse):
        """Slots are numbered in pre-order of the first site of each key."""
        table = resolve(parse("x = context(at(c) + at(a) * at(b) + at(a))"))

        assert table.keys() == [("c", 1, False), ("a", 1, False), ("b", 1, False)]
        assert [dependency.position for dependency in table.dependencies] == [0, 1, 2]

    def test_repeated_sites_share_one_dependency(self, parse):
        """Every site with the same key maps to the same slot."""
        tree = parse("x = context(at(a) + at(a) + at(a))")
        table = resolve(tree)

        assert len(table) == 1
        assert len(table.sites) == 3
        assert {table.site_slots[id(site.node)].position for site in table.sites} == {0}

    def test_depth_is_part_of_the_key(self, parse):
        """@a and @@a are different dependencies."""
        table = resolve(parse("x = context(at(a) + at(at(a)))"))

        assert table.keys() == [("a", 1, False), ("a", 2, False)]

    def test_nullish_is_part_of_the_key(self, parse):
        """@a and @?a are different dependencies."""
        table = resolve(parse("x = context(at(a) + at_nullish(a))"))

        assert table.keys() == [("a", 1, False), ("a", 1, True)]

    def test_nullish_flag_comes_from_the_innermost_marker(self, parse):
        """Only the marker wrapping the identifier decides nullishness."""
        table = resolve(parse("x = context(at(at_nullish(a)) + at_nullish(at(b)))"))

        assert table.keys() == [("a", 2, True), ("b", 2, False)]

    def test_context_without_sites_has_empty_table(self, parse):
        """A context that flattens nothing has zero dependencies."""
        table = resolve(parse("x = context(1 + 2)"))

        assert len(table) == 0
        assert table.keys() == []

    def test_sites_inside_nested_function_are_collected(self, parse):
        """Flatten sites in nested lambdas and comprehensions still belong to the context."""
        table = resolve(parse("x = context([n + at(offset) for n in (lambda k: [k, at(base)])(1)])"))

        assert table.keys() == [("offset", 1, False), ("base", 1, False)]


@pytest.mark.unit
class TestScoping:
    """Scoping rules for flatten targets."""

    def test_outer_identifiers_are_legal(self, parse):
        """Names bound outside the context may be flattened."""
        table = resolve(
            parse(
                """
                @context
                def total():
                    doubled = helper(2)
                    return at(source) + doubled
                """
            )
        )
        assert table.keys() == [("source", 1, False)]

    def test_identifier_declared_in_block_is_rejected(self, parse):
        """A stream created inside the block it is flattened in is rejected."""
        tree = parse(
            """
            @context
            def total():
                x = make_stream()
                return at(x) + 1
            """
        )
        with pytest.raises(LocalIdentifierFlatten) as excinfo:
            resolve(tree)

        assert excinfo.value.identifier == "x"
        assert excinfo.value.location.lineno == 5

    def test_lambda_parameter_is_local(self, parse):
        """Parameters of a nested lambda are declared inside the context."""
        with pytest.raises(LocalIdentifierFlatten):
            resolve(parse("x = context(list(map(lambda s: at(s), streams)))"))

    def test_comprehension_target_is_local(self, parse):
        with pytest.raises(LocalIdentifierFlatten):
            resolve(parse("x = context([at(s) for s in streams])"))

    def test_first_comprehension_iterable_is_evaluated_outside(self, parse):
        """The first iterable runs in the enclosing scope, so a same-named target does not shadow it."""
        table = resolve(parse("x = context([s for s in at(s)])"))

        assert table.keys() == [("s", 1, False)]

    def test_non_identifier_operand_is_rejected(self, parse):
        with pytest.raises(InvalidFlattenTarget, match="Attribute"):
            resolve(parse("x = context(at(store.price) + 1)"))


@pytest.mark.unit
class TestExplicitDependencies:
    """Contexts with an explicit dependency list."""

    def test_listed_identifier_may_be_flattened(self, parse):
        table = resolve(parse("x = uses(a, b)(at(a) + 1)"))

        assert table.keys() == [("a", 1, False)]

    def test_unlisted_identifier_is_rejected(self, parse):
        """Flattening anything outside the list is an error, even an outer name."""
        with pytest.raises(UndeclaredExplicitDependency) as excinfo:
            resolve(parse("x = uses(a)(at(a) + at(b))"))

        assert excinfo.value.identifier == "b"

    def test_local_check_precedes_list_check(self, parse):
        """A locally bound target reports LocalIdentifierFlatten first."""
        with pytest.raises(LocalIdentifierFlatten):
            resolve(parse("x = uses(a)(at(a) + (lambda c: at(c))(1))"))

    def test_plain_listed_references_become_passive_slots(self, parse):
        """Plain references to listed names are snapshot reads, not triggers."""
        table = resolve(parse("x = uses(a, b)(at(a) + b + b + c)"))

        assert table.keys() == [("a", 1, False)]
        assert [passive.identifier for passive in table.passive] == ["b"]
        assert len(table.passive_slots) == 2

    def test_shadowed_listed_name_is_not_passive(self, parse):
        table = resolve(parse("x = uses(a, b)(at(a) + (lambda b: b)(2))"))

        assert table.passive == []


@pytest.mark.unit
def test_orphan_flatten_is_out_of_context(parse, config):
    """A marker with no enclosing context is reported against its identifier."""
    tree = desugar(parse("y = at(a) + 2"))
    scan = scan_declaration(tree.body, config)

    with pytest.raises(OutOfContextFlatten) as excinfo:
        check_orphans(scan.orphans, config)

    assert excinfo.value.identifier == "a"
    assert str(excinfo.value.location) == "snippet.py:1:5"
