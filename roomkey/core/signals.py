# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from asyncio import Future, ensure_future
from dataclasses import dataclass, field
from inspect import isawaitable
from typing import Any, Callable, DefaultDict, List, Optional, Set

from .data import Runtime

Callback = Callable[..., Any]


@dataclass
class Subscription:
    """Handle returned when registering a callback, `cancel()` removes it."""

    _on_cancel: Optional[Callable[[], None]] = field(repr=False)


    @property
    def active(self) -> bool:
        return self._on_cancel is not None


    def cancel(self) -> None:
        if self._on_cancel:
            self._on_cancel()
            self._on_cancel = None


@dataclass
class Emitter:
    """Named signals with synchronous dispatch.

    Callbacks returning an awaitable are scheduled as tasks, which are
    kept in `pending_tasks` until they finish.
    """

    callbacks: Runtime[DefaultDict[str, List[Callback]]] = field(
        init=False, repr=False, default_factory=lambda: DefaultDict(list),
    )

    pending_tasks: Runtime[Set[Future]] = field(
        init=False, repr=False, default_factory=set,
    )


    def on(self, signal: str, callback: Callback) -> Subscription:
        self.callbacks[signal].append(callback)

        def remove() -> None:
            if callback in self.callbacks[signal]:
                self.callbacks[signal].remove(callback)

        return Subscription(remove)


    def once(self, signal: str, callback: Callback) -> Subscription:
        def wrapper(*args, **kwargs) -> Any:
            subscription.cancel()
            return callback(*args, **kwargs)

        subscription = self.on(signal, wrapper)
        return subscription


    def emit(self, signal: str, *args, **kwargs) -> None:
        for callback in list(self.callbacks[signal]):
            result = callback(*args, **kwargs)

            if isawaitable(result):
                task = ensure_future(result)
                self.pending_tasks.add(task)
                task.add_done_callback(self.pending_tasks.discard)
