# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os

from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync.build import StaticProjectBackend
from sitesync.cache.artifacts import ArtifactCache, Provenance, Refresh
from sitesync.distribution import Distribution
from sitesync.fingerprint import registry_fingerprint
from sitesync.index import PackageFinder, SimpleIndex
from sitesync.locators import Editable, Registry
from sitesync.pep_503 import ProjectName
from sitesync.requirement import Requirement
from sitesync.sources import FetchStatistics, SourceProvider, exact_pin
from sitesync.target import Target
from testing import make_project
from testing.index import INDEX_URL, Index, IndexFetcher


def create_provider(
    cache: ArtifactCache, fetcher: IndexFetcher, refresh: Refresh = Refresh()
) -> SourceProvider:
    indexes = [] if fetcher.offline else [SimpleIndex(url=INDEX_URL, fetcher=fetcher)]
    return SourceProvider(
        cache=cache,
        target=Target.current(),
        fetcher=fetcher,
        finder=PackageFinder(indexes=indexes),
        build_backend=StaticProjectBackend(),
        refresh=refresh,
    )


def test_exact_pin() -> None:
    assert Version("1.0") == exact_pin(SpecifierSet("==1.0"))
    assert Version("1.0") == exact_pin(SpecifierSet("===1.0"))
    assert exact_pin(SpecifierSet("==1.*")) is None
    assert exact_pin(SpecifierSet(">=1.0")) is None
    assert exact_pin(SpecifierSet("==1.0,<2")) is None
    assert exact_pin(SpecifierSet()) is None


def fetch_registry_artifact(provider: SourceProvider, project_name: str, version: str) -> None:
    for candidate in provider.candidates(ProjectName(project_name)):
        if candidate.version == Version(version):
            provider.fetch(
                Distribution(
                    project_name=candidate.project_name,
                    version=candidate.version,
                    locator=candidate.locator,
                    fingerprint=registry_fingerprint(candidate.locator),
                )
            )
            return
    raise AssertionError(
        "No candidate {project_name}=={version}".format(project_name=project_name, version=version)
    )


def test_fetch_records_statistics(
    cache: ArtifactCache, index: Index, fetcher: IndexFetcher
) -> None:
    wheel = index.publish("foo", "1.0")
    provider = create_provider(cache, fetcher)
    assert FetchStatistics() == provider.statistics

    fetch_registry_artifact(provider, "foo", "1.0")
    assert FetchStatistics(prepared=1) == provider.statistics
    assert 1 == len(fetcher.downloads)

    entry = cache.entries_for(ProjectName("foo"))[0]
    assert os.path.basename(wheel) == entry.filename
    assert Provenance.DOWNLOAD is entry.provenance

    # Cached artifacts are not fetched again.
    fetch_registry_artifact(provider, "foo", "1.0")
    assert FetchStatistics(prepared=1) == provider.statistics
    assert 1 == len(fetcher.downloads)


def test_cached_distribution(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0")
    provider = create_provider(cache, fetcher)
    fetch_registry_artifact(provider, "foo", "1.0")

    assert provider.cached_distribution(Requirement.parse("foo")) is None
    assert provider.cached_distribution(Requirement.parse("foo>=1")) is None
    assert provider.cached_distribution(Requirement.parse("foo==2.0")) is None

    distribution = provider.cached_distribution(Requirement.parse("foo==1.0"))
    assert distribution is not None
    assert "foo==1.0" == distribution.pin()
    assert Registry(filename="foo-1.0-py3-none-any.whl") == distribution.locator

    refreshing = create_provider(
        cache, fetcher, refresh=Refresh(project_names=[ProjectName("foo")])
    )
    assert refreshing.cached_distribution(Requirement.parse("foo==1.0")) is None


def test_cached_distribution_requires_python(
    cache: ArtifactCache, index: Index, fetcher: IndexFetcher
) -> None:
    index.publish("foo", "1.0", requires_python=">=99")
    provider = create_provider(cache, fetcher)
    fetch_registry_artifact(provider, "foo", "1.0")
    assert 1 == len(cache.entries_for(ProjectName("foo")))

    # Cached artifacts the interpreter cannot run are left for the index to explain.
    assert provider.cached_distribution(Requirement.parse("foo==1.0")) is None


def test_cached_distribution_yanked(
    cache: ArtifactCache, index: Index, fetcher: IndexFetcher
) -> None:
    index.publish("foo", "1.0", yanked="broken")
    index.publish("bar", "1.0")
    provider = create_provider(cache, fetcher)
    fetch_registry_artifact(provider, "foo", "1.0")
    fetch_registry_artifact(provider, "bar", "1.0")

    entry = cache.entries_for(ProjectName("foo"))[0]
    assert entry.yanked
    assert "broken" == entry.yanked_reason

    distribution = provider.cached_distribution(Requirement.parse("foo==1.0"))
    assert distribution is not None
    assert isinstance(distribution.locator, Registry)
    assert distribution.locator.yanked
    assert "broken" == distribution.locator.yanked_reason

    distribution = provider.cached_distribution(Requirement.parse("bar==1.0"))
    assert distribution is not None
    assert isinstance(distribution.locator, Registry)
    assert not distribution.locator.yanked


def test_offline_candidates(cache: ArtifactCache, index: Index, fetcher: IndexFetcher) -> None:
    index.publish("foo", "1.0")
    index.publish("foo", "2.0")
    fetch_registry_artifact(create_provider(cache, fetcher), "foo", "1.0")

    offline = create_provider(cache, IndexFetcher(index, offline=True))
    assert "the cache" == offline.location
    assert "the network was disabled" == offline.unavailable_hint()
    assert [Version("1.0")] == [
        candidate.version for candidate in offline.candidates(ProjectName("foo"))
    ]
    assert () == offline.candidates(ProjectName("bar"))


def test_location(cache: ArtifactCache, fetcher: IndexFetcher) -> None:
    provider = create_provider(cache, fetcher)
    assert "the package registry" == provider.location
    assert provider.unavailable_hint() is None

    no_index = SourceProvider(
        cache=cache,
        target=Target.current(),
        fetcher=fetcher,
        finder=PackageFinder(),
        build_backend=StaticProjectBackend(),
        no_index=True,
    )
    assert "the provided package locations" == no_index.location
    unavailable_hint = no_index.unavailable_hint()
    assert unavailable_hint is not None
    assert unavailable_hint.startswith("index lookups were disabled")


def test_describe_editable(tmpdir: str, cache: ArtifactCache, fetcher: IndexFetcher) -> None:
    project = make_project(os.path.join(tmpdir, "project"), name="proj", version="2.1")
    provider = create_provider(cache, fetcher)

    described = provider.describe(Requirement.parse(project, editable=True))
    assert "proj==2.1" == described.distribution.pin()
    assert isinstance(described.distribution.locator, Editable)
    assert "editable" == described.distribution.fingerprint.kind
    assert not described.cached

    # Local projects only have their metadata prepared until installed.
    assert FetchStatistics() == provider.statistics
    entry = provider.fetch(described.distribution)
    assert FetchStatistics(built_editables=1) == provider.statistics
    assert ProjectName("proj") == entry.project_name

    assert provider.describe(Requirement.parse(project, editable=True)).cached
