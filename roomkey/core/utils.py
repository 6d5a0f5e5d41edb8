# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

from io import StringIO
from typing import Any, Dict, Generator, Type, TypeVar

from rich.console import Console

DictS    = Dict[str, Any]
NoneType = type(None)
T        = TypeVar("T")


def rich_repr(*objects: Any, sep: str = " ", color: bool = False) -> str:
    out     = StringIO()
    console = Console(file=out, force_terminal=color, width=80, soft_wrap=True)
    console.print(*objects, sep=sep, end=" ")
    return out.getvalue().rstrip()


def rich_thruthies(*args, sep: str = " ") -> str:
    return rich_repr(*[a for a in args if a], sep=sep)


def deep_find_parent_classes(cls: Type) -> Generator[Type, None, None]:
    for parent in getattr(cls, "__bases__", ()):
        yield parent
        yield from deep_find_parent_classes(parent)
