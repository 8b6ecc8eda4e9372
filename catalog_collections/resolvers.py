from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import threading
from typing import TYPE_CHECKING, Optional, TypeVar, overload

from asgiref.sync import sync_to_async
from strawberry.utils.inspect import in_async_context
from typing_extensions import ParamSpec

from .exceptions import CatalogTimeout

if TYPE_CHECKING:
    from collections.abc import Callable

    from graphql.pyutils import AwaitableOrValue

_R = TypeVar("_R")
_P = ParamSpec("_P")

resolving_async: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "resolving-async",
    default=False,
)


@overload
def django_resolver(
    f: Callable[_P, _R],
    *,
    cancellable: bool = False,
    timeout: Optional[Callable[[], Optional[float]]] = None,
) -> Callable[_P, AwaitableOrValue[_R]]: ...


@overload
def django_resolver(
    *,
    cancellable: bool = False,
    timeout: Optional[Callable[[], Optional[float]]] = None,
) -> Callable[[Callable[_P, _R]], Callable[_P, AwaitableOrValue[_R]]]: ...


def django_resolver(f=None, *, cancellable: bool = False, timeout=None):
    """Django resolver for handling both sync and async.

    This decorator is used to make sure that resolver is always called from
    sync context.  sync_to_async helper in used if function is called from
    async context. This is useful especially with Django ORM, which does not
    support async. Coroutines are not wrapped.

    With `cancellable=True` the resolver receives a `cancel_event` keyword
    argument. It is set when the awaiting task gets cancelled (e.g. the client
    disconnected), so long running work in the worker thread can stop early.

    `timeout` returns the number of seconds the awaiting task waits for a
    cancellable resolver, or None to wait forever. When it runs out the event
    is set and `CatalogTimeout` is raised without waiting for the thread.
    """

    def wrapper(resolver):
        if inspect.iscoroutinefunction(resolver) or inspect.isasyncgenfunction(
            resolver,
        ):
            return resolver

        def sync_resolver(*args, **kwargs):
            if cancellable:
                kwargs.setdefault("cancel_event", None)
            return resolver(*args, **kwargs)

        def run_in_thread(*args, **kwargs):
            token = resolving_async.set(True)
            try:
                return sync_resolver(*args, **kwargs)
            finally:
                resolving_async.reset(token)

        async def async_resolver(*args, **kwargs):
            if not cancellable:
                return await sync_to_async(run_in_thread)(*args, **kwargs)

            cancel_event = threading.Event()
            seconds = timeout() if timeout is not None else None
            task = asyncio.ensure_future(
                sync_to_async(run_in_thread)(
                    *args, cancel_event=cancel_event, **kwargs
                )
            )
            try:
                done, _ = await asyncio.wait({task}, timeout=seconds)
            except asyncio.CancelledError:
                cancel_event.set()
                task.cancel()
                raise

            if not done:
                cancel_event.set()
                task.cancel()
                raise CatalogTimeout(
                    f"Resolver did not finish within {seconds} seconds"
                )
            return task.result()

        @functools.wraps(resolver)
        def inner_wrapper(*args, **kwargs):
            f = (
                async_resolver
                if in_async_context() and not resolving_async.get()
                else sync_resolver
            )
            return f(*args, **kwargs)

        return inner_wrapper

    if f is not None:
        return wrapper(f)

    return wrapper

