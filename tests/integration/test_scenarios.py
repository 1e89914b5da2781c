"""
End-to-end scenarios: lower a snippet, execute it against real subjects and
observe what the resulting streams emit.
"""

import pytest
from reactivex.subject import BehaviorSubject, Subject

from atflow import LocalIdentifierFlatten, LoweringFailed, OutOfContextFlatten, run_module
from utils import assert_no_observers, recorder


def emissions(stream):
    values, sink = recorder()
    subscription = stream.subscribe(sink)
    return values, subscription


@pytest.mark.integration
class TestCoreScenarios:
    """The reference scenarios for the flatten operator."""

    def test_single_source_plus_constant(self, parse):
        """@a + 2 with a emitting 1, 2, 3 emits 3, 4, 5."""
        a = Subject()
        namespace = run_module(parse("total = context(at(a) + 2)"), {"a": a})
        values, _ = emissions(namespace["total"])

        for value in (1, 2, 3):
            a.on_next(value)

        assert values == [3, 4, 5]

    def test_two_sources_reuse_latest_values(self, parse):
        """@a + @b waits for both, then recomputes on each emission."""
        a, b = Subject(), Subject()
        namespace = run_module(parse("total = context(at(a) + at(b))"), {"a": a, "b": b})
        values, _ = emissions(namespace["total"])

        a.on_next(1)
        assert values == []
        b.on_next(10)
        a.on_next(2)

        assert values == [11, 12]

    def test_flatten_outside_context_fails_without_output(self, parse):
        """No pipeline exists when resolution fails, so nothing is ever emitted."""
        a = Subject()
        with pytest.raises(LoweringFailed) as excinfo:
            run_module(parse("total = at(a) + 2"), {"a": a})

        (error,) = excinfo.value.diagnostics
        assert isinstance(error, OutOfContextFlatten)
        a.on_next(1)
        assert_no_observers(a)

    def test_stream_declared_inside_its_context_is_rejected(self, parse):
        tree = parse(
            """
            @context
            def total():
                x = make_stream()
                return at(x) + 1
            """
        )
        with pytest.raises(LoweringFailed) as excinfo:
            run_module(tree, {"make_stream": Subject})

        (error,) = excinfo.value.diagnostics
        assert isinstance(error, LocalIdentifierFlatten)
        assert error.identifier == "x"

    def test_explicit_dependency_snapshot_does_not_retrigger(self, parse):
        """Plain references to listed names read the latest value passively."""
        a, b = Subject(), BehaviorSubject(10)
        namespace = run_module(parse("total = uses(a, b)(at(a) + b)"), {"a": a, "b": b})
        values, _ = emissions(namespace["total"])

        a.on_next(1)
        b.on_next(20)
        b.on_next(30)
        a.on_next(2)

        assert values == [11, 32]

    def test_unlisted_plain_name_is_an_ordinary_reference(self, parse):
        a = Subject()
        namespace = run_module(parse("total = uses(a)(at(a) + offset)"), {"a": a, "offset": 100})
        values, _ = emissions(namespace["total"])

        a.on_next(1)
        assert values == [101]


@pytest.mark.integration
class TestContextForms:
    """Block contexts, nesting, nullish and chained flattening at runtime."""

    def test_block_context(self, parse):
        a, b = BehaviorSubject("x"), BehaviorSubject("y")
        tree = parse(
            """
            @context
            def label():
                parts = [at(a), at(b)]
                return "-".join(parts)
            """
        )
        namespace = run_module(tree, {"a": a, "b": b})
        values, _ = emissions(namespace["label"])
        b.on_next("z")

        assert values == ["x-y", "x-z"]

    def test_constant_context_emits_once(self, parse):
        namespace = run_module(parse("answer = context(40 + 2)"))
        values, _ = emissions(namespace["answer"])

        assert values == [42]

    def test_depth_two_follows_latest_inner_stream(self, parse):
        selected, first, second = Subject(), Subject(), Subject()
        namespace = run_module(parse("latest = context(at(at(selected)) + 1)"), {"selected": selected})
        values, _ = emissions(namespace["latest"])

        selected.on_next(first)
        first.on_next(1)
        selected.on_next(second)
        first.on_next(2)
        second.on_next(5)

        assert values == [2, 6]

    def test_nullish_flatten_does_not_wait(self, parse):
        name = Subject()
        namespace = run_module(parse('greeting = context(at_nullish(name) or "anonymous")'), {"name": name})
        values, _ = emissions(namespace["greeting"])

        assert values == ["anonymous"]
        name.on_next("ada")
        assert values == ["anonymous", "ada"]

    def test_nested_context_inside_block(self, parse):
        """An inner context returned from a block is flattened by a later declaration."""
        a, b = BehaviorSubject(2), BehaviorSubject(3)
        tree = parse(
            """
            @context
            def scaled():
                factor = at(a)
                return context(at(b) * factor)

            result = context(at(at(scaled)))
            """
        )
        namespace = run_module(tree, {"a": a, "b": b})
        values, _ = emissions(namespace["result"])

        b.on_next(4)
        a.on_next(10)

        assert values == [6, 8, 40]

    def test_chain_shorthand(self, parse):
        """declare @@total = E flattens the streams that E produces."""
        selected, first, second = Subject(), Subject(), Subject()
        namespace = run_module(parse("declare(total, at(selected), markers=2)"), {"selected": selected})
        values, _ = emissions(namespace["total"])

        selected.on_next(first)
        first.on_next(1)
        selected.on_next(second)
        first.on_next(9)
        second.on_next(5)

        assert values == [1, 5]
        assert "_atflow_chain_total_1" in namespace

    def test_cancelling_a_pipeline_detaches_every_source(self, parse):
        a, b = BehaviorSubject(1), Subject()
        namespace = run_module(parse("total = context(at(a) + at(at(b)))"), {"a": a, "b": b})
        inner = BehaviorSubject(5)
        values, subscription = emissions(namespace["total"])
        b.on_next(inner)

        subscription.dispose()

        assert values == [6]
        assert_no_observers(a, b, inner)


@pytest.mark.integration
class TestObservationBlocks:
    """Observation blocks subscribe immediately and route errors to their handler."""

    SOURCE = """
        with observe() as handle:
            try:
                seen.append(at(a) * 2)
            except Exception as problem:
                errors.append(str(problem))
            finally:
                finished.append(True)
        """

    def observe_block(self, parse, a):
        namespace = {"a": a, "seen": [], "errors": [], "finished": []}
        return run_module(parse(self.SOURCE), namespace)

    def test_values_and_completion(self, parse):
        a = Subject()
        namespace = self.observe_block(parse, a)

        a.on_next(1)
        a.on_next(2)
        a.on_completed()

        assert namespace["seen"] == [2, 4]
        assert namespace["finished"] == [True]
        assert namespace["errors"] == []

    def test_source_error_reaches_catch(self, parse):
        a = Subject()
        namespace = self.observe_block(parse, a)

        a.on_error(ValueError("broken"))

        assert namespace["errors"] == ["broken"]
        assert namespace["finished"] == []

    def test_disposing_handle_stops_observation(self, parse):
        a = Subject()
        namespace = self.observe_block(parse, a)

        namespace["handle"].dispose()
        a.on_next(1)

        assert namespace["seen"] == []
        assert_no_observers(a)

    def test_handler_markers_are_outside_the_block(self, parse):
        tree = parse(
            """
            with observe():
                try:
                    seen.append(at(a))
                finally:
                    seen.append(at(b))
            """
        )
        with pytest.raises(LoweringFailed) as excinfo:
            run_module(tree, {"a": Subject(), "b": Subject(), "seen": []})

        assert isinstance(excinfo.value.diagnostics[0], OutOfContextFlatten)

    def test_observation_inside_finally_starts_on_completion(self, parse):
        tree = parse(
            """
            with observe():
                try:
                    seen.append(at(a))
                finally:
                    with observe():
                        seen.append(at(b) * 10)
            """
        )
        a, b = Subject(), Subject()
        namespace = run_module(tree, {"a": a, "b": b, "seen": []})

        a.on_next(1)
        b.on_next(5)
        a.on_completed()
        b.on_next(2)

        assert namespace["seen"] == [1, 20]

    def test_block_context_inside_catch(self, parse):
        tree = parse(
            """
            with observe():
                try:
                    seen.append(at(a))
                except Exception as problem:
                    @context
                    def recovered():
                        return at(b) + 1
                    recovered.subscribe(seen.append)
            """
        )
        a, b = Subject(), BehaviorSubject(4)
        namespace = run_module(tree, {"a": a, "b": b, "seen": []})

        a.on_next(1)
        a.on_error(ValueError("broken"))
        b.on_next(9)

        assert namespace["seen"] == [1, 5, 10]
