# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
from typing import Iterable, Union

import pytest
from packaging.version import Version

from sitesync.build import StaticProjectBackend
from sitesync.cache.artifacts import ArtifactCache
from sitesync.distribution import Distribution
from sitesync.exceptions import IncompatibleArtifactError
from sitesync.fingerprint import registry_fingerprint
from sitesync.index import PackageFinder, SimpleIndex
from sitesync.locators import Registry
from sitesync.pep_503 import ProjectName
from sitesync.requirement import Requirement, RequirementSet
from sitesync.resolver import Conflict, Exclusion, Resolution, ResolveOptions, resolve
from sitesync.sources import SourceProvider
from sitesync.target import Target
from testing.index import INDEX_URL, Index, IndexFetcher
from testing.wheels import make_wheel


def create_provider(cache: ArtifactCache, fetcher: IndexFetcher) -> SourceProvider:
    return SourceProvider(
        cache=cache,
        target=Target.current(),
        fetcher=fetcher,
        finder=PackageFinder(indexes=[SimpleIndex(url=INDEX_URL, fetcher=fetcher)]),
        build_backend=StaticProjectBackend(),
    )


def resolve_requirements(
    provider: SourceProvider,
    requirements: Iterable[str],
    constraints: Iterable[str] = (),
    options: ResolveOptions = ResolveOptions(),
) -> Union[Resolution, Conflict]:
    target = Target.current()
    requirement_set = RequirementSet.create(
        [Requirement.parse(requirement) for requirement in requirements],
        target.marker_environment,
        constraints=[Requirement.parse(constraint) for constraint in constraints],
    )
    return resolve(requirement_set, target, provider, options)


def assert_resolution(result: Union[Resolution, Conflict]) -> Resolution:
    assert isinstance(result, Resolution), str(result)
    return result


def assert_conflict(result: Union[Resolution, Conflict]) -> Conflict:
    assert isinstance(result, Conflict), repr(result)
    return result


def pins(resolution: Resolution) -> Iterable[str]:
    return [distribution.pin() for distribution in resolution.distributions]


def test_highest_version(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0")
    index.publish("bar", "0.1")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo", "bar"]))
    assert ["bar==0.1", "foo==2.0"] == pins(resolution)
    assert 2 == resolution.resolved
    assert () == resolution.warnings

    resolution = assert_resolution(resolve_requirements(provider, ["foo<2"]))
    assert ["foo==1.0"] == pins(resolution)


def test_constraints(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo"], constraints=["foo<2"]))
    assert ["foo==1.0"] == pins(resolution)


def test_yanked(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0", yanked="Broken on import.")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo"]))
    assert ["foo==1.0"] == pins(resolution)
    assert () == resolution.warnings

    resolution = assert_resolution(resolve_requirements(provider, ["foo==2.0"]))
    assert ["foo==2.0"] == pins(resolution)
    assert (
        'foo==2.0 is yanked (reason: "Broken on import."). Refresh your lockfile to pin an '
        "un-yanked version.",
    ) == resolution.warnings

    conflict = assert_conflict(resolve_requirements(provider, ["foo>1"]))
    assert Exclusion.YANKED is conflict.exclusion


def test_not_found(cache: ArtifactCache, fetcher: IndexFetcher) -> None:
    conflict = assert_conflict(resolve_requirements(create_provider(cache, fetcher), ["missing"]))
    assert Exclusion.NOT_FOUND is conflict.exclusion
    assert (
        "No solution found when resolving dependencies:\n"
        "  Because missing was not found in the package registry and you require missing, we can "
        "conclude that your requirements are unsatisfiable."
    ) == conflict.render()


def test_not_found_offline(cache: ArtifactCache, index: Index) -> None:
    index.publish("foo", "1.0")
    fetcher = IndexFetcher(index, offline=True)
    provider = SourceProvider(
        cache=cache,
        target=Target.current(),
        fetcher=fetcher,
        finder=PackageFinder(),
        build_backend=StaticProjectBackend(),
    )

    conflict = assert_conflict(resolve_requirements(provider, ["foo==1.0"]))
    assert (
        "No solution found when resolving dependencies:\n"
        "  Because foo was not found in the cache and you require foo==1.0, we can conclude that "
        "your requirements are unsatisfiable.\n"
        "\n"
        "  hint: Packages were unavailable because the network was disabled"
    ) == conflict.render()
    assert () == fetcher.pages


def test_no_matching_version(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    conflict = assert_conflict(
        resolve_requirements(create_provider(cache, fetcher), ["foo>=2"])
    )
    assert Exclusion.NO_MATCHING_VERSION is conflict.exclusion
    assert "Because there is no version of foo>=2 and you require foo>=2" in conflict.render()


def test_requires_python(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0", requires_python=">=99")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo"]))
    assert ["foo==1.0"] == pins(resolution)

    conflict = assert_conflict(resolve_requirements(provider, ["foo==2.0"]))
    assert Exclusion.REQUIRES_PYTHON is conflict.exclusion
    assert Version("2.0") == conflict.version
    assert (
        "Because the current Python version ({python_version}) does not satisfy Python>=99 and "
        "foo==2.0 depends on Python>=99, we can conclude that foo==2.0 cannot be used.".format(
            python_version=Target.current().python_version
        )
    ) in conflict.render()
    assert conflict.render().endswith(
        "And because you require foo==2.0, we can conclude that your requirements are "
        "unsatisfiable."
    )


def test_requires_python_only_version(
    cache: ArtifactCache, index: Index, fetcher: IndexFetcher
) -> None:
    index.publish("example", "0.0.0", requires_python="<=3.5")
    conflict = assert_conflict(
        resolve_requirements(create_provider(cache, fetcher), ["example"])
    )
    assert Exclusion.REQUIRES_PYTHON is conflict.exclusion
    assert (
        "No solution found when resolving dependencies:\n"
        "  Because the current Python version ({python_version}) does not satisfy Python<=3.5 "
        "and example==0.0.0 depends on Python<=3.5, we can conclude that example==0.0.0 cannot "
        "be used.\n"
        "  And because only example==0.0.0 is available and you require example, we can "
        "conclude that the requirements are unsatisfiable."
    ).format(python_version=Target.current().python_version) == conflict.render()


def test_incompatible_tags(
    tmpdir: str, cache: ArtifactCache, index: Index, fetcher: IndexFetcher
) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0", tag="py3-none-not_a_platform")
    index.publish("bar", "1.0", tag="py3-none-not_a_platform")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo"]))
    assert ["foo==1.0"] == pins(resolution)

    conflict = assert_conflict(resolve_requirements(provider, ["bar"]))
    assert Exclusion.INCOMPATIBLE_TAGS is conflict.exclusion

    wheel = make_wheel(os.path.join(tmpdir, "dists"), "baz", "1.0", tag="py3-none-not_a_platform")
    with pytest.raises(
        IncompatibleArtifactError,
        match=(
            r"A path dependency is incompatible with the current platform: "
            r"baz-1\.0-py3-none-not_a_platform\.whl"
        ),
    ):
        resolve_requirements(provider, [wheel])


def test_installed_preference(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0")
    provider = create_provider(cache, fetcher)

    locator = Registry(filename="foo-1.0-py3-none-any.whl")
    installed = Distribution(
        project_name=ProjectName("foo"),
        version=Version("1.0"),
        locator=locator,
        fingerprint=registry_fingerprint(locator),
    )

    resolution = assert_resolution(
        resolve_requirements(provider, ["foo"], options=ResolveOptions(preferences=[installed]))
    )
    assert (installed,) == resolution.distributions
    assert 0 == resolution.resolved

    resolution = assert_resolution(
        resolve_requirements(
            provider,
            ["foo"],
            options=ResolveOptions(preferences=[installed], upgrade=[ProjectName("foo")]),
        )
    )
    assert ["foo==2.0"] == pins(resolution)

    # Installed distributions that no longer satisfy the requirement are not kept.
    resolution = assert_resolution(
        resolve_requirements(provider, ["foo>1"], options=ResolveOptions(preferences=[installed]))
    )
    assert ["foo==2.0"] == pins(resolution)


def test_direct_reference(tmpdir: str, cache: ArtifactCache, fetcher: IndexFetcher) -> None:
    wheel = make_wheel(os.path.join(tmpdir, "dists"), "foo", "1.0", requires_dists=["bar"])
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, [wheel]))
    assert ["foo==1.0"] == pins(resolution)
    assert 1 == resolution.resolved
    assert () == fetcher.pages

    mismatched = make_wheel(
        os.path.join(tmpdir, "mismatched"), "foo", "1.0", metadata_name="not-foo"
    )
    conflict = assert_conflict(resolve_requirements(provider, [mismatched]))
    assert Exclusion.INVALID_FORMAT is conflict.exclusion


def test_follow_dependencies(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0", requires_dists=["bar>=1", "baz; python_version < '3'"])
    index.publish("bar", "0.9")
    index.publish("bar", "1.1")
    provider = create_provider(cache, fetcher)

    resolution = assert_resolution(resolve_requirements(provider, ["foo"]))
    assert ["foo==1.0"] == pins(resolution)

    resolution = assert_resolution(
        resolve_requirements(provider, ["foo"], options=ResolveOptions(no_deps=False))
    )
    assert ["bar==1.1", "foo==1.0"] == pins(resolution)

    conflict = assert_conflict(
        resolve_requirements(
            provider, ["foo"], constraints=["bar<1"], options=ResolveOptions(no_deps=False)
        )
    )
    assert ProjectName("bar") == conflict.project_name
    assert Exclusion.NO_MATCHING_VERSION is conflict.exclusion
    assert "and foo==1.0 depends on bar" in conflict.render()
