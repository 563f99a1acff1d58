# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import itertools
import os.path
from typing import Dict, Iterable, Iterator, Optional, Tuple

import attr
from packaging.tags import Tag, parse_tag, sys_tags


def is_wheel(path: str) -> bool:
    return path.endswith(".whl")


def _prepare_tags(tags: Iterable[Tag]) -> Tuple[Tag, ...]:
    if isinstance(tags, tuple):
        return tags
    # Preserve the first-seen order of tags while dropping duplicates.
    return tuple(dict.fromkeys(tags))


@attr.s(frozen=True, order=True)
class RankedTag:
    tag: Tag = attr.ib(order=False)
    rank: int = attr.ib()


@attr.s(frozen=True)
class CompatibilityTags:
    """A ranked set of PEP-425 compatibility tags.

    Tags are ordered most specific 1st to most generic last. The more specific a tag, the lower its
    rank value, with the most specific tag (best match) being ranked 0.

    See: https://www.python.org/dev/peps/pep-0425/#use
    """

    @classmethod
    def from_wheel(cls, wheel: str) -> "CompatibilityTags":
        if not is_wheel(wheel):
            raise ValueError(
                "Can only calculate wheel tags from a filename that ends in .whl per "
                "https://peps.python.org/pep-0427/#file-name-convention, given: {wheel!r}".format(
                    wheel=wheel
                )
            )
        wheel_stem, _ = os.path.splitext(os.path.basename(wheel))
        # Wheel filename format: https://www.python.org/dev/peps/pep-0427/#file-name-convention
        # `{distribution}-{version}(-{build tag})?-{python tag}-{abi tag}-{platform tag}.whl`
        wheel_components = wheel_stem.rsplit("-", 3)
        if len(wheel_components) != 4:
            pattern = "`-{python tag}-{abi tag}-{platform tag}.whl`"
            raise ValueError(
                "Can only calculate wheel tags from a filename that ends in {pattern} per "
                "https://peps.python.org/pep-0427/#file-name-convention, given: {wheel!r}".format(
                    pattern=pattern, wheel=wheel
                )
            )
        return cls(tags=tuple(parse_tag("-".join(wheel_components[-3:]))))

    @classmethod
    def from_strings(cls, tags: Iterable[str]) -> "CompatibilityTags":
        return cls(tags=tuple(itertools.chain.from_iterable(parse_tag(tag) for tag in tags)))

    @classmethod
    def current(cls) -> "CompatibilityTags":
        """The tags supported by the current interpreter, most specific first."""
        return cls(tags=tuple(sys_tags()))

    _tags: Tuple[Tag, ...] = attr.ib(converter=_prepare_tags)
    _rankings: Dict[Tag, int] = attr.ib(eq=False, factory=dict)

    @_tags.validator
    def _validate_tags(self, attribute: "attr.Attribute", value: Tuple[Tag, ...]) -> None:
        if not value:
            raise ValueError(
                "The tags parameter should contain at least one tag; given an empty set."
            )

    @property
    def __rankings(self) -> Dict[Tag, int]:
        if not self._rankings:
            self._rankings.update((tag, rank) for rank, tag in enumerate(self._tags))
        return self._rankings

    def rank(self, tag: Tag) -> Optional[int]:
        return self.__rankings.get(tag)

    def best_match(self, tags: Iterable[Tag]) -> Optional[RankedTag]:
        best_match: Optional[RankedTag] = None
        for tag in tags:
            rank = self.rank(tag)
            if rank is None:
                continue
            ranked_tag = RankedTag(tag=tag, rank=rank)
            if best_match is None or ranked_tag < best_match:
                best_match = ranked_tag
        return best_match

    def is_compatible(self, wheel: str) -> bool:
        """Return `True` if the wheel file named `wheel` can be installed for these tags."""
        return self.best_match(CompatibilityTags.from_wheel(wheel)) is not None

    def __iter__(self) -> Iterator[Tag]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __getitem__(self, index: int) -> Tag:
        return self._tags[index]
