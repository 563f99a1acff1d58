# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Closed sets of named string constants.

Members are instances of a nested `Value` subclass declared as class attributes:

    class LinkMode(Enum["LinkMode.Value"]):
        class Value(Enum.Value):
            pass

        COPY = Value("copy")
        HARDLINK = Value("hardlink")

Members compare by identity. Their string form is what gets written to environment variables and
metadata files; `for_value` maps it back.
"""

from typing import TYPE_CHECKING, Any, Generic, Tuple, Type, TypeVar

if TYPE_CHECKING:
    _V = TypeVar("_V", bound="Enum.Value")
else:
    _V = TypeVar("_V")


class Enum(Generic[_V]):
    class Value:
        def __init__(self, value: str) -> None:
            self.value = value

        def __str__(self) -> str:
            return self.value

        def __repr__(self) -> str:
            return "{type}({value!r})".format(type=type(self).__qualname__, value=self.value)

    _members: Tuple[Any, ...] = ()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        # Class bodies preserve declaration order.
        cls._members = tuple(
            member for member in vars(cls).values() if isinstance(member, Enum.Value)
        )

    @classmethod
    def values(cls: Type["Enum[_V]"]) -> Tuple[_V, ...]:
        return cls._members

    @classmethod
    def for_value(cls: Type["Enum[_V]"], value: str) -> _V:
        for member in cls.values():
            if member.value == value:
                return member
        raise ValueError(
            "{value!r} is not a valid {name}; must be one of {members}".format(
                value=value,
                name=cls.__name__,
                members=", ".join(repr(member.value) for member in cls.values()),
            )
        )
