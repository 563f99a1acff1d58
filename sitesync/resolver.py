# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Selecting one distribution per project that satisfies a set of requirements.

By default only the given requirements are resolved; their own dependencies are not followed. With
`ResolveOptions(no_deps=False)`, dependencies are followed wave by wave: the requirements of each
newly selected distribution narrow the allowed versions of the projects they name, and any
selection that no longer satisfies its narrowed specifier is made again.

Registry requirements select among candidates, preferring in order:

1. The installed distribution, when it satisfies the requirement.
2. A compatible cached artifact, when the requirement pins an exact version.
3. The highest candidate version satisfying the requirement that is not yanked (unless pinned
   exactly), whose `Requires-Python` admits the target and, for wheels, whose tags match the
   target. Among artifacts of the same version, the wheel with the best matching tags wins over
   lesser wheels and source distributions.
"""

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

import attr
from packaging.requirements import Requirement as PackagingRequirement
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync import jobs
from sitesync.dist_metadata import DistMetadata, is_wheel
from sitesync.distribution import Distribution
from sitesync.enum import Enum
from sitesync.exceptions import IncompatibleArtifactError
from sitesync.fingerprint import registry_fingerprint
from sitesync.index import Candidate
from sitesync.locators import DirectUrl, Editable, Registry
from sitesync.pep_503 import ProjectName
from sitesync.requirement import Requirement, RequirementSet
from sitesync.sources import Described, exact_pin
from sitesync.target import Target
from sitesync.tracer import TRACER


class MetadataLookup(Protocol):
    """What the resolver needs to know about the world."""

    @property
    def location(self) -> str:
        """Where registry candidates are looked for, e.g.: "the package registry"."""
        ...

    def unavailable_hint(self) -> Optional[str]:
        ...

    def candidates(self, project_name: ProjectName) -> Tuple[Candidate, ...]:
        ...

    def cached_distribution(self, requirement: Requirement) -> Optional[Distribution]:
        ...

    def describe(self, requirement: Requirement) -> Described:
        ...

    def metadata(self, distribution: Distribution) -> DistMetadata:
        ...


@attr.s(frozen=True)
class ResolveOptions:
    no_deps: bool = attr.ib(default=True)
    preferences: Tuple[Distribution, ...] = attr.ib(default=(), converter=tuple)
    upgrade_all: bool = attr.ib(default=False)
    upgrade: FrozenSet[ProjectName] = attr.ib(default=frozenset(), converter=frozenset)
    max_jobs: Optional[int] = attr.ib(default=None)

    def preference(self, project_name: ProjectName) -> Optional[Distribution]:
        if self.upgrade_all or project_name in self.upgrade:
            return None
        for distribution in self.preferences:
            if distribution.project_name == project_name:
                return distribution
        return None


class Exclusion(Enum["Exclusion.Value"]):
    class Value(Enum.Value):
        pass

    NOT_FOUND = Value("not-found")
    NO_MATCHING_VERSION = Value("no-matching-version")
    YANKED = Value("yanked")
    REQUIRES_PYTHON = Value("requires-python")
    INCOMPATIBLE_TAGS = Value("incompatible-tags")
    INVALID_FORMAT = Value("invalid-format")


def _render_requirement(requirement: Requirement) -> str:
    name = requirement.project_name.normalized
    if isinstance(requirement.locator, Registry):
        return "{name}{specifier}".format(name=name, specifier=requirement.specifier)
    return name


@attr.s(frozen=True)
class Conflict:
    """An explanation of why a set of requirements cannot be satisfied."""

    requirement: Requirement = attr.ib()
    exclusion: Exclusion.Value = attr.ib()
    location: str = attr.ib(default="the package registry")
    required_by: Optional[Distribution] = attr.ib(default=None)
    python_version: Optional[str] = attr.ib(default=None)
    requires_python: Optional[SpecifierSet] = attr.ib(default=None)
    version: Optional[Version] = attr.ib(default=None)
    sole_version: bool = attr.ib(default=False)
    hints: Tuple[str, ...] = attr.ib(default=())

    @property
    def project_name(self) -> ProjectName:
        return self.requirement.project_name

    def _required(self) -> str:
        rendered = _render_requirement(self.requirement)
        if self.required_by is not None:
            return "{dependent} depends on {requirement}".format(
                dependent=self.required_by.pin(), requirement=rendered
            )
        return "you require {requirement}".format(requirement=rendered)

    def _explain(self) -> str:
        name = self.project_name.normalized
        rendered = _render_requirement(self.requirement)
        if self.exclusion is Exclusion.NOT_FOUND:
            return (
                "Because {name} was not found in {location} and {required}, we can conclude "
                "that your requirements are unsatisfiable."
            ).format(name=name, location=self.location, required=self._required())
        if self.exclusion is Exclusion.NO_MATCHING_VERSION:
            return (
                "Because there is no version of {requirement} and {required}, we can conclude "
                "that your requirements are unsatisfiable."
            ).format(requirement=rendered, required=self._required())
        if self.exclusion is Exclusion.YANKED:
            return (
                "Because all versions of {requirement} were yanked and {required}, we can "
                "conclude that your requirements are unsatisfiable."
            ).format(requirement=rendered, required=self._required())
        if self.exclusion is Exclusion.REQUIRES_PYTHON:
            pin = "{name}=={version}".format(name=name, version=self.version)
            if self.sole_version:
                conclusion = (
                    "And because only {pin} is available and {required}, we can conclude that "
                    "the requirements are unsatisfiable."
                )
            else:
                conclusion = (
                    "And because {required}, we can conclude that your requirements are "
                    "unsatisfiable."
                )
            return (
                "Because the current Python version ({python_version}) does not satisfy "
                "Python{requires_python} and {pin} depends on Python{requires_python}, we can "
                "conclude that {pin} cannot be used.\n" + conclusion
            ).format(
                python_version=self.python_version,
                requires_python=self.requires_python,
                pin=pin,
                required=self._required(),
            )
        if self.exclusion is Exclusion.INCOMPATIBLE_TAGS:
            return (
                "Because {requirement} has no wheels with a matching platform tag and "
                "{required}, we can conclude that your requirements are unsatisfiable."
            ).format(requirement=rendered, required=self._required())
        if self.exclusion is Exclusion.INVALID_FORMAT:
            return (
                "Because {name} was found, but has an invalid format and {required}, we can "
                "conclude that the requirements are unsatisfiable."
            ).format(name=name, required=self._required())
        raise AssertionError("Unhandled exclusion {exclusion}.".format(exclusion=self.exclusion))

    def render(self) -> str:
        lines = ["No solution found when resolving dependencies:"]
        lines.extend("  " + line for line in self._explain().splitlines())
        for hint in self.hints:
            lines.append("")
            lines.append("  hint: {hint}".format(hint=hint))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()


@attr.s(frozen=True)
class Resolution:
    distributions: Tuple[Distribution, ...] = attr.ib()
    resolved: int = attr.ib(default=0)
    warnings: Tuple[str, ...] = attr.ib(default=())

    def get(self, project_name: ProjectName) -> Optional[Distribution]:
        for distribution in self.distributions:
            if distribution.project_name == project_name:
                return distribution
        return None


@attr.s(frozen=True)
class _Selection:
    distribution: Distribution = attr.ib()
    resolved: bool = attr.ib(default=True)
    warning: Optional[str] = attr.ib(default=None)


def _yanked_warning(distribution: Distribution) -> Optional[str]:
    locator = distribution.locator
    if not isinstance(locator, Registry) or not locator.yanked:
        return None
    pin = "{name}=={version}".format(
        name=distribution.project_name.normalized, version=distribution.version
    )
    if locator.yanked_reason:
        return (
            '{pin} is yanked (reason: "{reason}"). Refresh your lockfile to pin an un-yanked '
            "version.".format(pin=pin, reason=locator.yanked_reason)
        )
    return "{pin} is yanked. Refresh your lockfile to pin an un-yanked version.".format(pin=pin)


class _Resolver:
    def __init__(
        self,
        requirements: RequirementSet,
        target: Target,
        lookup: MetadataLookup,
        options: ResolveOptions,
    ) -> None:
        self._requirements = requirements
        self._target = target
        self._lookup = lookup
        self._options = options

    def _conflict(
        self, requirement: Requirement, exclusion: Exclusion.Value, **kwargs
    ) -> Conflict:
        hints: Tuple[str, ...] = ()
        if exclusion is Exclusion.NOT_FOUND:
            hint = self._lookup.unavailable_hint()
            if hint:
                hints = ("Packages were unavailable because {hint}".format(hint=hint),)
        return Conflict(
            requirement=requirement,
            exclusion=exclusion,
            location=self._lookup.location,
            python_version=self._target.python_version,
            hints=hints,
            **kwargs
        )

    def _python_compatible(self, requires_python: Optional[SpecifierSet]) -> bool:
        return requires_python is None or requires_python.contains(
            self._target.python_version, prereleases=True
        )

    def _wheel_rank(self, candidate: Candidate) -> Optional[int]:
        if candidate.tags is None:
            return None
        ranked_tag = self._target.tags.best_match(candidate.tags)
        return ranked_tag.rank if ranked_tag is not None else None

    def _select_registry(
        self, requirement: Requirement, required_by: Optional[Distribution]
    ) -> Union[_Selection, Conflict]:
        project_name = requirement.project_name
        specifier = requirement.specifier & self._requirements.constraints_for(project_name)

        preferred = self._options.preference(project_name)
        if (
            preferred is not None
            and specifier.contains(preferred.version, prereleases=True)
            and self._python_compatible(preferred.requires_python)
        ):
            TRACER.log("Keeping installed {dist}".format(dist=preferred), V=2)
            return _Selection(distribution=preferred, resolved=False)

        pinned = attr.evolve(requirement, specifier=specifier)
        cached = self._lookup.cached_distribution(pinned)
        if cached is not None:
            return _Selection(
                distribution=cached, resolved=False, warning=_yanked_warning(cached)
            )

        candidates = self._lookup.candidates(project_name)
        if not candidates:
            return self._conflict(pinned, Exclusion.NOT_FOUND, required_by=required_by)

        matching = set(specifier.filter({candidate.version for candidate in candidates}))
        in_range = [candidate for candidate in candidates if candidate.version in matching]
        if not in_range:
            return self._conflict(pinned, Exclusion.NO_MATCHING_VERSION, required_by=required_by)

        exact_version = exact_pin(specifier)
        unyanked = [
            candidate
            for candidate in in_range
            if not candidate.yanked or candidate.version == exact_version
        ]
        if not unyanked:
            return self._conflict(pinned, Exclusion.YANKED, required_by=required_by)

        python_compatible = [
            candidate
            for candidate in unyanked
            if self._python_compatible(candidate.requires_python)
        ]
        if not python_compatible:
            newest = max(unyanked, key=lambda candidate: candidate.version)
            return self._conflict(
                pinned,
                Exclusion.REQUIRES_PYTHON,
                required_by=required_by,
                requires_python=newest.requires_python,
                version=newest.version,
                sole_version=all(candidate.version == newest.version for candidate in candidates),
            )

        ranked: List[Tuple[Tuple[Version, bool, int], Candidate]] = []
        for candidate in python_compatible:
            rank = self._wheel_rank(candidate)
            if candidate.is_wheel and rank is None:
                continue
            sort_key = (candidate.version, candidate.is_wheel, -rank if rank is not None else 0)
            ranked.append((sort_key, candidate))
        if not ranked:
            return self._conflict(pinned, Exclusion.INCOMPATIBLE_TAGS, required_by=required_by)

        _, best = max(ranked, key=lambda item: item[0])
        locator = best.locator
        distribution = Distribution(
            project_name=project_name,
            version=best.version,
            locator=locator,
            fingerprint=registry_fingerprint(locator),
            requires_python=best.requires_python,
        )
        return _Selection(distribution=distribution, warning=_yanked_warning(distribution))

    def _select_direct(
        self, requirement: Requirement, required_by: Optional[Distribution]
    ) -> Union[_Selection, Conflict]:
        locator = requirement.locator
        if (
            isinstance(locator, DirectUrl)
            and is_wheel(locator.filename)
            and not self._target.is_compatible(locator.filename)
        ):
            raise IncompatibleArtifactError(
                "A {kind} dependency is incompatible with the current platform: {filename}".format(
                    kind="path" if locator.is_local else "URL", filename=locator.filename
                )
            )

        described = self._lookup.describe(requirement)
        if described.metadata.project_name != requirement.project_name:
            return self._conflict(requirement, Exclusion.INVALID_FORMAT, required_by=required_by)

        distribution = described.distribution
        # Editables are checked later and fail outright; see `planner.check_requires_python`.
        if not isinstance(locator, Editable) and not self._python_compatible(
            distribution.requires_python
        ):
            return self._conflict(
                requirement,
                Exclusion.REQUIRES_PYTHON,
                required_by=required_by,
                requires_python=distribution.requires_python,
                version=distribution.version,
                sole_version=True,
            )

        preferred = self._options.preference(requirement.project_name)
        unchanged = preferred is not None and preferred.is_equivalent(distribution)
        return _Selection(distribution=distribution, resolved=not (unchanged or described.cached))

    def select(
        self, requirement: Requirement, required_by: Optional[Distribution] = None
    ) -> Union[_Selection, Conflict]:
        if isinstance(requirement.locator, Registry):
            return self._select_registry(requirement, required_by)
        return self._select_direct(requirement, required_by)

    def _select_all(
        self, requests: Iterable[Tuple[Requirement, Optional[Distribution]]]
    ) -> Tuple[Dict[ProjectName, _Selection], List[Conflict]]:
        results = jobs.map_parallel(
            inputs=list(requests),
            function=lambda request: (request[0], self.select(*request)),
            max_jobs=self._options.max_jobs,
            noun="requirement",
            verb="resolve",
            verb_past="resolved",
        )
        selections: Dict[ProjectName, _Selection] = {}
        conflicts: List[Conflict] = []
        for requirement, result in results:
            if isinstance(result, Conflict):
                conflicts.append(result)
            else:
                selections[requirement.project_name] = result
        return selections, conflicts

    def resolve(self) -> Union[Resolution, Conflict]:
        with TRACER.timed(
            "Resolving {count} requirements".format(count=len(self._requirements)), V=2
        ):
            selections, conflicts = self._select_all(
                (requirement, None) for requirement in self._requirements
            )
            if conflicts:
                return min(conflicts, key=lambda conflict: conflict.project_name)
            if not self._options.no_deps:
                result = self._follow_dependencies(selections)
                if isinstance(result, Conflict):
                    return result
        return Resolution(
            distributions=tuple(
                selection.distribution
                for _, selection in sorted(selections.items(), key=lambda item: item[0])
            ),
            resolved=sum(1 for selection in selections.values() if selection.resolved),
            warnings=tuple(
                selection.warning
                for _, selection in sorted(selections.items(), key=lambda item: item[0])
                if selection.warning
            ),
        )

    def _follow_dependencies(self, selections: Dict[ProjectName, _Selection]) -> Optional[Conflict]:
        required: Dict[ProjectName, Requirement] = {
            requirement.project_name: requirement for requirement in self._requirements
        }
        pending = [selection.distribution for selection in selections.values()]
        while pending:
            metadata_by_dist: Mapping[Distribution, DistMetadata] = dict(
                jobs.map_parallel(
                    inputs=pending,
                    function=lambda dist: (dist, self._lookup.metadata(dist)),
                    max_jobs=self._options.max_jobs,
                    noun="distribution",
                    verb="read metadata of",
                    verb_past="read metadata of",
                )
            )
            requests: Dict[ProjectName, Tuple[Requirement, Distribution]] = {}
            for dist in sorted(metadata_by_dist, key=lambda d: d.project_name):
                extras = required[dist.project_name].extras
                for dependency in metadata_by_dist[dist].requires_dists:
                    request = self._merge(required, dist, dependency, extras, selections)
                    if request is not None:
                        requests[request.project_name] = (request, dist)

            new_selections, conflicts = self._select_all(requests.values())
            if conflicts:
                return min(conflicts, key=lambda conflict: conflict.project_name)
            selections.update(new_selections)
            pending = [selection.distribution for selection in new_selections.values()]
        return None

    def _merge(
        self,
        required: Dict[ProjectName, Requirement],
        dependent: Distribution,
        dependency: PackagingRequirement,
        extras: FrozenSet[str],
        selections: Mapping[ProjectName, _Selection],
    ) -> Optional[Requirement]:
        """Fold a dependency into what is required and return it if it needs (re-)selecting."""
        if not self._target.marker_environment.evaluate(dependency.marker, *sorted(extras)):
            return None
        project_name = ProjectName(dependency.name)
        if dependency.url:
            requirement = Requirement.parse(
                "{name} @ {url}".format(name=dependency.name, url=dependency.url)
            )
            requirement = attr.evolve(requirement, extras=frozenset(dependency.extras))
        else:
            requirement = Requirement(
                project_name=project_name,
                specifier=dependency.specifier,
                extras=frozenset(dependency.extras),
            )

        existing = required.get(project_name)
        if existing is None:
            required[project_name] = requirement
            return requirement

        merged = existing
        if isinstance(existing.locator, Registry) and isinstance(requirement.locator, Registry):
            merged = attr.evolve(
                existing,
                specifier=existing.specifier & requirement.specifier,
                extras=existing.extras | requirement.extras,
            )
        elif requirement.extras - existing.extras:
            merged = attr.evolve(existing, extras=existing.extras | requirement.extras)
        required[project_name] = merged

        selection = selections.get(project_name)
        if selection is None:
            return merged
        if merged.extras != existing.extras:
            return merged
        if isinstance(merged.locator, Registry) and not merged.specifier.contains(
            selection.distribution.version, prereleases=True
        ):
            return merged
        return None


def resolve(
    requirements: RequirementSet,
    target: Target,
    lookup: MetadataLookup,
    options: ResolveOptions = ResolveOptions(),
) -> Union[Resolution, Conflict]:
    """Select one distribution per required project or explain why that is impossible.

    :raise: :class:`IncompatibleArtifactError` if a requirement names a wheel that cannot be
            installed on the target.
    """
    return _Resolver(requirements, target, lookup, options).resolve()
