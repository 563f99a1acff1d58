# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import itertools
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import attr
from packaging import markers
from packaging.markers import Marker, Value, Variable
from packaging.version import InvalidVersion, Version

from sitesync.exceptions import production_assert, reportable_unexpected_error_msg


@attr.s(frozen=True)
class MarkerEnvironment:
    """A PEP-508 marker environment.

    See: https://www.python.org/dev/peps/pep-0508/#environment-markers
    """

    @classmethod
    def default(cls) -> "MarkerEnvironment":
        """The marker environment for the current interpreter."""
        return cls(**markers.default_environment())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarkerEnvironment":
        fields = attr.fields_dict(cls)
        return cls(**{key: value for key, value in data.items() if key in fields})

    @classmethod
    def for_target(
        cls, version_info: Tuple[int, ...], base: Optional["MarkerEnvironment"] = None
    ) -> "MarkerEnvironment":
        """A marker environment for an interpreter of the given version on the current machine.

        Only the Python version markers are adjusted; the platform markers are those of `base` or
        else of the current interpreter.
        """
        environment = base or cls.default()
        return attr.evolve(
            environment,
            python_version=".".join(map(str, version_info[:2])),
            python_full_version=".".join(map(str, version_info[:3])),
        )

    implementation_name: Optional[str] = attr.ib(default=None)
    implementation_version: Optional[str] = attr.ib(default=None)
    os_name: Optional[str] = attr.ib(default=None)
    platform_machine: Optional[str] = attr.ib(default=None)
    platform_python_implementation: Optional[str] = attr.ib(default=None)
    platform_release: Optional[str] = attr.ib(default=None)
    platform_system: Optional[str] = attr.ib(default=None)
    platform_version: Optional[str] = attr.ib(default=None)
    python_full_version: Optional[str] = attr.ib(default=None)
    python_version: Optional[str] = attr.ib(default=None)
    sys_platform: Optional[str] = attr.ib(default=None)

    def as_dict(self) -> Dict[str, str]:
        """Render this marker environment as a dictionary.

        For any environment markers that are unset (`None`), the entry is omitted from the
        environment.
        """
        return attr.asdict(self, filter=lambda _attribute, value: value is not None)

    def evaluate(self, marker: Optional[Marker], *extras: str) -> bool:
        """Evaluate `marker` in this environment.

        A missing marker always applies. When extras are given, the marker applies if it applies
        for any one of them.
        """
        if marker is None:
            return True
        environment: Dict[str, str] = dict(self.as_dict())
        for extra in extras or ("",):
            environment["extra"] = extra
            if marker.evaluate(environment):
                return True
        return False


def _marker_items(marker: Marker) -> Iterable[Any]:
    marker_items = getattr(marker, "_markers", None)
    if marker_items is None:
        raise AssertionError(
            reportable_unexpected_error_msg(
                "Expected packaging.markers.Marker to have a _markers attribute; found none in "
                "{marker} of type {type}",
                marker=marker,
                type=type(marker).__name__,
            )
        )
    production_assert(
        hasattr(marker_items, "__iter__"),
        "Expected packaging.markers.Marker._markers to be iterable; found {marker_items} of type "
        "{type}",
        marker_items=marker_items,
        type=type(marker_items).__name__,
    )
    return marker_items


def _iter_atoms(items: Iterable[Any]) -> Iterator[Tuple[str, str]]:
    for item in items:
        if isinstance(item, list):
            for atom in _iter_atoms(item):
                yield atom
        elif isinstance(item, tuple):
            lhs, _, rhs = item
            if isinstance(lhs, Variable) and isinstance(rhs, Value):
                yield lhs.value, rhs.value
            elif isinstance(rhs, Variable) and isinstance(lhs, Value):
                yield rhs.value, lhs.value


_VERSION_VARIABLES = frozenset(
    ("python_version", "python_full_version", "implementation_version", "platform_release")
)

# Comparing environments cross-product style is exponential in the number of distinct variables;
# past this many environments we give up and report the markers as overlapping.
_MAX_ENVIRONMENTS = 4096

_OTHER = "<other>"


def _version_neighbors(literal: str) -> Iterator[str]:
    yield literal
    try:
        version = Version(literal)
    except InvalidVersion:
        return
    release = list(version.release)
    for index in range(len(release)):
        for delta in (-1, 1):
            bumped = list(release[: index + 1])
            bumped[index] += delta
            if bumped[index] >= 0:
                yield ".".join(map(str, bumped + [0] * (len(release) - index - 1)))
    yield ".".join(map(str, release + [0]))
    yield ".".join(map(str, release + [1]))


def _candidate_values(marker_list: Iterable[Marker]) -> Dict[str, List[str]]:
    candidates: Dict[str, List[str]] = {}
    for marker in marker_list:
        for variable, literal in _iter_atoms(_marker_items(marker)):
            values = candidates.setdefault(variable, [])
            expansions = (
                _version_neighbors(literal) if variable in _VERSION_VARIABLES else (literal,)
            )
            for value in expansions:
                if value not in values:
                    values.append(value)
    for variable, values in candidates.items():
        if variable == "extra":
            values.append("")
        elif variable not in _VERSION_VARIABLES:
            values.append(_OTHER)
    return candidates


def _evaluates(marker: Marker, environment: Dict[str, str]) -> bool:
    try:
        return marker.evaluate(environment)
    except InvalidVersion:
        return False


def markers_disjoint(marker1: Optional[Marker], marker2: Optional[Marker]) -> bool:
    """Return `True` if no environment can satisfy both markers.

    The environments considered are those spanned by the literal values each marker compares
    against, plus nearby versions for version markers and an unmatched value for the rest. This
    finds any environment where both markers apply in practice; when the space is too large to
    enumerate, the markers are conservatively reported as overlapping.
    """
    if marker1 is None or marker2 is None:
        return False

    candidates = _candidate_values((marker1, marker2))
    variables = sorted(candidates)
    count = 1
    for variable in variables:
        count *= len(candidates[variable])
    if count > _MAX_ENVIRONMENTS:
        return False

    base = MarkerEnvironment.default().as_dict()
    base["extra"] = ""
    for values in itertools.product(*(candidates[variable] for variable in variables)):
        environment = dict(base)
        environment.update(zip(variables, values))
        if _evaluates(marker1, environment) and _evaluates(marker2, environment):
            return False
    return True
