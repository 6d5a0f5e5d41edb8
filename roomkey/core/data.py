# Copyright roomkey authors & contributors
# SPDX-License-Identifier: LGPL-3.0-or-later

import json
from dataclasses import dataclass
from dataclasses import fields as get_fields
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import (
    Annotated, Any, Callable, ClassVar, Dict, Optional, Sequence, Tuple, Type,
    TypeVar, Union, get_args, get_origin,
)

from pydantic import TypeAdapter, ValidationError

from .errors import RoomKeyError
from .utils import DictS, NoneType, T, deep_find_parent_classes

Loaders  = Dict[Union[str, Type], Callable[[Any], Any]]
Dumpers  = Dict[Union[str, Type], Callable[["JSON", Any], Any]]
JSONT    = TypeVar("JSONT", bound="JSON")
_Missing = object()

_Runtime = object()
_Parent  = object()
Runtime  = Annotated[T, _Runtime]
Parent   = Annotated[T, _Runtime, _Parent]

EPOCH = datetime.fromtimestamp(0, timezone.utc)


def dump_date(value: datetime) -> int:
    return round(value.timestamp() * 1000)


def ms_precision(value: datetime) -> datetime:
    """Return `value` in UTC, truncated to what `dump_date` can represent."""

    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def load_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value

    # EJSON form, {"$date": milliseconds}
    if isinstance(value, dict):
        value = value["$date"]

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected milliseconds since epoch, got {value!r}")

    return EPOCH + timedelta(milliseconds=value)


@dataclass
class JSONLoadError(RoomKeyError):
    type:   Type
    data:   Any
    reason: str


@dataclass
class JSON:
    aliases: ClassVar[Runtime[Dict[str, Union[str, Sequence[str]]]]] = {}

    dumpers: ClassVar[Runtime[Dumpers]] = {
        Enum:      lambda self, v: v.value,
        bytes:     lambda self, v: v.decode(),
        datetime:  lambda self, v: dump_date(v),
        timedelta: lambda self, v: int(v.total_seconds() * 1000),
    }

    loaders: ClassVar[Runtime[Loaders]] = {
        bytes:    lambda v: v.encode(),
        datetime: load_date,
    }


    @property
    def dict(self) -> DictS:
        data: DictS = {}

        for f in get_fields(self):
            value          = getattr(self, f.name)
            unset_optional = f.default is None and value is None

            if annotation_is_runtime(f.type) or unset_optional:
                continue

            dct  = data
            path = self._path(f.name)

            for part in path[:-1]:
                dct = dct.setdefault(part, {})

            dct[path[-1]] = self._dump(value, f.name)

        return data


    @property
    def json(self) -> str:
        return json.dumps(self.dict, indent=4, ensure_ascii=False)


    @classmethod
    def from_dict(cls: Type[JSONT], data: DictS, parent=None) -> JSONT:
        if not isinstance(data, dict):
            raise JSONLoadError(cls, data, "Expected dict")

        fields = {}

        for f in get_fields(cls):
            if annotation_is_parent(f.type):
                if parent is not None:
                    fields[f.name] = parent
                continue

            value: Any = data

            for part in cls._path(f.name):
                if not isinstance(value, dict):
                    value = _Missing
                    break

                value = value.get(part, _Missing)

            if value is not _Missing:
                fields[f.name] = cls._load(f.type, value, f.name)

        try:
            return cls(**fields)  # type: ignore
        except TypeError as e:
            raise JSONLoadError(cls, data, next(iter(e.args), ""))


    @classmethod
    def from_json(cls: Type[JSONT], data: str, parent=None) -> JSONT:
        return cls.from_dict(json.loads(data), parent)


    def but(self: JSONT, **fields) -> JSONT:
        return replace(self, **fields)


    @classmethod
    def _path(cls, field_name: str) -> Tuple[str, ...]:
        path = cls.aliases.get(field_name, field_name)
        return (path,) if isinstance(path, str) else tuple(path)


    def _dump(self, value: Any, name: Optional[str] = None) -> Any:
        if name and name in self.dumpers:
            return self.dumpers[name](self, value)

        if type(value) in self.dumpers:
            return self.dumpers[type(value)](self, value)

        for parent in deep_find_parent_classes(type(value)):
            if parent in self.dumpers:
                return self.dumpers[parent](self, value)

        if isinstance(value, JSON):
            return value.dict

        if isinstance(value, dict):
            return {k: self._dump(v) for k, v in value.items()}

        if isinstance(value, (list, tuple, set)):
            return [self._dump(v) for v in value]

        return value


    @classmethod
    def _load(
        cls,
        annotation: Any,
        value:      Any,
        field_name: Optional[str] = None,
    ) -> Any:

        typ   = unwrap_annotated(annotation)
        value = cls._apply_loader(typ, value, field_name)
        load  = cls._get_loadable_type(typ, value)

        if is_subclass(load, JSON):
            return value if isinstance(value, load) else load.from_dict(value)

        return cls._auto_cast(load, value, field_name)


    @staticmethod
    def _get_loadable_type(annotation: Any, value: Any) -> Optional[Type]:
        typ = get_origin(annotation) or annotation

        if typ is Union:
            # Unions of several types needing conversion can't be guessed,
            # the first one that isn't None is used
            choices = [c for c in get_args(annotation) if c is not NoneType]

            if value is None or not choices:
                return None

            typ = next(
                (c for c in choices if is_instance(value, c)), choices[0],
            )
            typ = get_origin(typ) or typ

        return typ if isinstance(typ, type) else None


    @classmethod
    def _apply_loader(
        cls, annotation: Any, value: Any, field_name: Optional[str] = None,
    ) -> Any:

        loader = cls.loaders.get(field_name) if field_name else None

        if not loader:
            typ    = cls._get_loadable_type(annotation, value)
            loader = cls.loaders.get(typ) if typ else None

        if not loader:
            return value

        try:
            return loader(value)
        except Exception as e:  # noqa
            raise JSONLoadError(cls, value, f"{field_name}: {e!r}")


    @classmethod
    def _auto_cast(
        cls, typ: Optional[Type], value: Any, field_name: Optional[str] = None,
    ) -> Any:

        if typ is None or typ is Any:
            return value

        try:
            return type_adapter(typ).validate_python(value)
        except ValidationError as e:
            raise JSONLoadError(cls, value, f"{field_name}: {e}")


@lru_cache(maxsize=None)
def type_adapter(typ: Type) -> TypeAdapter:
    return TypeAdapter(typ)


def is_instance(value: Any, annotation: Any) -> bool:
    typ = get_origin(annotation) or annotation
    return isinstance(typ, type) and isinstance(value, typ)


def is_subclass(value: Any, typ: Type) -> bool:
    return isinstance(value, type) and issubclass(value, typ)


def annotation_is_runtime(ann: Any) -> bool:
    if get_origin(ann) is ClassVar and get_args(ann):
        ann = get_args(ann)[0]
    return get_origin(ann) is Annotated and _Runtime in ann.__metadata__


def annotation_is_parent(ann: Any) -> bool:
    return get_origin(ann) is Annotated and _Parent in ann.__metadata__


def unwrap_annotated(ann: Any) -> Any:
    return ann.__origin__ if get_origin(ann) is Annotated else ann
