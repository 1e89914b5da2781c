"""
AtFlow Runtime - Reactive Primitives Referenced by Lowered Code
===============================================================

Lowered contexts only ever call the functions in this module, imported under
the configured alias (`_atflow_rt` by default). They are thin adapters over
reactivex (RxPY):

| primitive             | contract                                                    |
|-----------------------|-------------------------------------------------------------|
| combine(*sources)     | tuple of latest values once every source has emitted       |
| transform(fn)         | map operator, errors and completion pass through            |
| flatten_latest()      | switch to the most recently emitted inner stream            |
| default_until_first() | emit a default unless the source emitted during subscribe() |
| subscribe(...)        | cancellable subscription with next/error/complete handlers  |
| normalize(value)      | any non-stream value becomes a single-value stream          |
| snapshot(*sources)    | append latest passive values without ever triggering        |

Synchronous emission, for `default_until_first`, means an emission delivered
before the source's `subscribe()` call returns. Anything delivered later,
including work queued on a trampoline or event loop to run "immediately",
counts as asynchronous and is preceded by the default.
"""

import logging
from typing import Any, Callable, List, Optional

import reactivex
from reactivex import Observable
from reactivex import operators as ops
from reactivex.abc import DisposableBase
from reactivex.disposable import CompositeDisposable, Disposable

logger = logging.getLogger(__name__)

Operator = Callable[[Observable], Observable]


def is_stream(value: Any) -> bool:
    """True for reactivex observables, including subjects."""
    return isinstance(value, Observable)


def _single(value: Any) -> Observable:
    """A stream that emits `value` and completes, synchronously on subscribe."""

    def subscribe(observer, scheduler=None) -> DisposableBase:
        observer.on_next(value)
        observer.on_completed()
        return Disposable()

    return reactivex.create(subscribe)


def normalize(value: Any) -> Observable:
    """
    Wrap any non-stream value as a single-value stream.

    Streams are returned unchanged, so normalising twice is harmless.

    Example:
        ```python
        normalize(5).subscribe(print)        # prints 5
        normalize(subject) is subject        # True
        ```
    """
    if is_stream(value):
        return value
    return _single(value)


# ============================================================================
# PRIMITIVES
# ============================================================================


def combine(*sources: Any) -> Observable:
    """
    Join sources into a stream of latest-value tuples.

    Emits once every source has emitted at least once, then again on each
    emission of any source, reusing the latest values of the others. With no
    sources it emits a single empty tuple and completes.
    """
    if not sources:
        return _single(())
    return reactivex.combine_latest(*[normalize(source) for source in sources])


def transform(fn: Callable[[Any], Any]) -> Operator:
    """Apply `fn` to each value; exceptions raised by `fn` become stream errors."""
    return ops.map(fn)


def flatten_latest() -> Operator:
    """Collapse a stream of streams by following the latest inner stream."""

    def flatten(source: Observable) -> Observable:
        return source.pipe(ops.map(normalize), ops.switch_latest())

    return flatten


def default_until_first(default: Any = None) -> Operator:
    """
    Emit `default` right after subscribing unless the source already emitted.

    If the source completes during subscribe() without emitting, the default
    is still delivered before the completion.
    """

    def operator(source: Observable) -> Observable:
        def subscribe(observer, scheduler=None) -> DisposableBase:
            state = {"emitted": False, "subscribing": True}

            def on_next(value: Any) -> None:
                state["emitted"] = True
                observer.on_next(value)

            def on_completed() -> None:
                if state["subscribing"] and not state["emitted"]:
                    state["emitted"] = True
                    observer.on_next(default)
                observer.on_completed()

            subscription = source.subscribe(
                on_next, observer.on_error, on_completed, scheduler=scheduler
            )
            state["subscribing"] = False
            if not state["emitted"]:
                state["emitted"] = True
                observer.on_next(default)
            return subscription

        return reactivex.create(subscribe)

    return operator


def snapshot(*sources: Any, default: Any = None) -> Operator:
    """
    Append the latest value of each passive source to every emitted tuple.

    Passive sources never trigger an emission; until one has emitted, its
    slot holds `default`. Errors on passive sources propagate, their
    completion is ignored.
    """

    def operator(trigger: Observable) -> Observable:
        def subscribe(observer, scheduler=None) -> DisposableBase:
            latest: List[Any] = [default] * len(sources)
            passive = CompositeDisposable()

            for index, source in enumerate(sources):

                def remember(value: Any, index: int = index) -> None:
                    latest[index] = value

                passive.add(
                    normalize(source).subscribe(
                        remember, observer.on_error, scheduler=scheduler
                    )
                )

            def on_next(values: Any) -> None:
                observer.on_next(tuple(values) + tuple(latest))

            main = trigger.subscribe(
                on_next, observer.on_error, observer.on_completed, scheduler=scheduler
            )
            return CompositeDisposable(passive, main)

        return reactivex.create(subscribe)

    return operator


def _terminate_silently(error: Exception) -> None:
    logger.debug("Observation terminated by unhandled error: %r", error)


def subscribe(
    stream: Any,
    on_next: Optional[Callable[[Any], None]] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
    on_complete: Optional[Callable[[], None]] = None,
) -> DisposableBase:
    """
    Subscribe the handlers of an observation block.

    Exceptions raised by `on_next` are routed to `on_error`, which runs before
    the subscription is disposed. Without `on_error` the subscription ends
    quietly (the error is logged at debug level). Disposing the returned
    handle unsubscribes every adapter and source transitively.
    """
    observed = normalize(stream)
    if on_next is not None:
        observed = observed.pipe(ops.do_action(on_next))
    return observed.subscribe(
        on_error=on_error or _terminate_silently,
        on_completed=on_complete,
    )
