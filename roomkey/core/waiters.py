# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from asyncio import Future, get_running_loop
from dataclasses import dataclass, field
from typing import Callable, Generic, Optional, Set

from .data import Runtime
from .utils import T


@dataclass
class Waiter(Generic[T]):
    """Wait for a value returned by `getter` to become available.

    `changed()` must be called whenever the getter's result may have
    changed. Every waiter re-checks the getter when woken up and keeps
    waiting until it returns something other than `None`.
    A value that is already available is returned without suspending.
    """

    getter: Callable[[], Optional[T]] = field(repr=False)

    _futures: Runtime[Set[Future]] = field(
        init=False, repr=False, default_factory=set,
    )


    @property
    def waiting(self) -> int:
        return len(self._futures)


    def get_if_ready(self) -> Optional[T]:
        return self.getter()


    async def wait(self) -> T:
        value = self.getter()

        while value is None:
            future = get_running_loop().create_future()
            self._futures.add(future)

            try:
                await future
            finally:
                self._futures.discard(future)

            value = self.getter()

        return value


    def changed(self) -> None:
        futures, self._futures = self._futures, set()

        for future in futures:
            if not future.done():
                future.set_result(None)
