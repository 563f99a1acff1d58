# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

"""Synchronizing an environment with a set of requirements.

A sync installs exactly the requirements given: every requirement resolves to one distribution,
distributions already installed as resolved are left alone, everything else installed is removed.
"""

import sys
import time
from typing import Iterable, List, Optional, Tuple, Union

import attr

from sitesync import jobs, sitesync_warnings
from sitesync.build import BuildBackend, StaticProjectBackend
from sitesync.cache.artifacts import ArtifactCache, CacheEntry, Refresh
from sitesync.common import LinkMode
from sitesync.compiler import Compiler
from sitesync.distribution import Distribution
from sitesync.exceptions import (
    CompileError,
    PlanError,
    SitesyncError,
    iter_causes,
    render_error,
)
from sitesync.fetcher import NetworkConfiguration, URLFetcher
from sitesync.index import FindLinks, PackageFinder, SimpleIndex
from sitesync.installer import apply
from sitesync.inventory import Inventory
from sitesync.pep_503 import ProjectName
from sitesync.planner import ForceSpec, check_requires_python, plan
from sitesync.requirement import Requirement, RequirementSet
from sitesync.requirements import RequirementsConfiguration, parse_requirement_file
from sitesync.resolver import Conflict, ResolveOptions, resolve
from sitesync.result import Error
from sitesync.sources import SourceProvider
from sitesync.summary import Phase, Summary
from sitesync.target import TargetEnvironment
from sitesync.tracer import TRACER
from sitesync.variables import ENV, Variables


def _project_names(names: Iterable[Union[str, ProjectName]]) -> Tuple[ProjectName, ...]:
    return tuple(
        sorted(name if isinstance(name, ProjectName) else ProjectName(name) for name in names)
    )


@attr.s(frozen=True)
class SyncOptions:
    """How to sync; every option defaults to the corresponding `SITESYNC_*` variable, if any."""

    @classmethod
    def from_env(cls, env: Variables = ENV, **overrides) -> "SyncOptions":
        options = dict(
            index_url=env.SITESYNC_INDEX_URL,
            no_index=env.SITESYNC_NO_INDEX,
            offline=env.SITESYNC_OFFLINE,
            link_mode=env.SITESYNC_LINK_MODE,
            compile_bytecode=env.SITESYNC_COMPILE_BYTECODE,
            max_jobs=env.SITESYNC_MAX_JOBS,
        )
        options.update(overrides)
        return cls(**options)

    index_url: str = attr.ib(default="https://pypi.org/simple")
    extra_index_urls: Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    find_links: Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    no_index: bool = attr.ib(default=False)
    offline: bool = attr.ib(default=False)
    link_mode: LinkMode.Value = attr.ib(default=LinkMode.default())
    compile_bytecode: bool = attr.ib(default=False)
    strict: bool = attr.ib(default=False)
    reinstall: bool = attr.ib(default=False)
    reinstall_packages: Tuple[ProjectName, ...] = attr.ib(default=(), converter=_project_names)
    refresh: bool = attr.ib(default=False)
    refresh_packages: Tuple[ProjectName, ...] = attr.ib(default=(), converter=_project_names)
    no_deps: bool = attr.ib(default=True)
    max_jobs: Optional[int] = attr.ib(default=None)
    network_configuration: NetworkConfiguration = attr.ib(factory=NetworkConfiguration)

    def with_requirements_configuration(
        self, configuration: RequirementsConfiguration
    ) -> "SyncOptions":
        """Fold in the package location options found in requirements files."""
        return attr.evolve(
            self,
            index_url=configuration.index_url or self.index_url,
            extra_index_urls=self.extra_index_urls + configuration.extra_index_urls,
            find_links=self.find_links + configuration.find_links,
            no_index=self.no_index or configuration.no_index,
        )

    @property
    def refresh_directive(self) -> Refresh:
        return Refresh(all=self.refresh, project_names=frozenset(self.refresh_packages))

    @property
    def force(self) -> ForceSpec:
        # Refreshing a project re-fetches it and so reinstalls it too.
        return ForceSpec(
            reinstall_all=self.reinstall or self.refresh,
            reinstall_packages=frozenset(self.reinstall_packages + self.refresh_packages),
        )

    def package_finder(self, fetcher: URLFetcher) -> PackageFinder:
        find_links = [FindLinks(location=location, fetcher=fetcher) for location in self.find_links]
        if self.offline:
            return PackageFinder(find_links=[links for links in find_links if links.is_local])
        indexes: List[SimpleIndex] = []
        if not self.no_index:
            indexes.extend(
                SimpleIndex(url=url, fetcher=fetcher)
                for url in (self.index_url,) + self.extra_index_urls
            )
        return PackageFinder(indexes=indexes, find_links=find_links)


def _plan_error(e: SitesyncError) -> Error:
    error = PlanError("Failed to determine installation plan")
    error.__cause__ = e
    message = render_error(error)
    for cause in iter_causes(e):
        hint = getattr(cause, "hint", None)
        if hint:
            message += "\n\n  hint: Packages were unavailable because {hint}".format(hint=hint)
            break
    return Error(message)


def _wrap(message: str, cause: BaseException) -> SitesyncError:
    error = SitesyncError(message)
    error.__cause__ = cause
    return error


class _Stopwatch:
    def __init__(self) -> None:
        self._start = time.time()

    def lap(self) -> float:
        now = time.time()
        elapsed, self._start = now - self._start, now
        return elapsed


def sync(
    requirements: Iterable[Requirement],
    environment: TargetEnvironment,
    cache: ArtifactCache,
    options: SyncOptions = SyncOptions(),
    constraints: Iterable[Requirement] = (),
    fetcher: Optional[URLFetcher] = None,
    build_backend: Optional[BuildBackend] = None,
) -> Union[Summary, Error]:
    """Make `environment` hold exactly the distributions `requirements` resolve to.

    Failures to parse, resolve or plan leave the environment untouched. Once applying the plan
    starts, a failure to install one distribution leaves the others installed.
    """
    target = environment.target
    stopwatch = _Stopwatch()
    try:
        requirement_set = RequirementSet.create(
            requirements, target.marker_environment, constraints=constraints
        )
    except SitesyncError as e:
        return _plan_error(e)

    try:
        inventory = Inventory.load(environment)
    except SitesyncError as e:
        return Error(render_error(e))

    fetcher = fetcher or URLFetcher(
        network_configuration=options.network_configuration, offline=options.offline
    )
    refresh = options.refresh_directive
    provider = SourceProvider(
        cache=cache,
        target=target,
        fetcher=fetcher,
        finder=options.package_finder(fetcher),
        build_backend=build_backend or StaticProjectBackend(),
        refresh=refresh,
        no_index=options.no_index,
    )

    upgrade = frozenset(options.reinstall_packages + options.refresh_packages)
    try:
        resolution = resolve(
            requirement_set,
            target,
            provider,
            ResolveOptions(
                no_deps=options.no_deps,
                preferences=inventory.distributions,
                upgrade_all=options.reinstall or options.refresh,
                upgrade=upgrade,
                max_jobs=options.max_jobs,
            ),
        )
    except SitesyncError as e:
        return _plan_error(e)
    if isinstance(resolution, Conflict):
        return Error("error: {conflict}".format(conflict=resolution.render()), exit_code=1)
    resolved = Phase(count=resolution.resolved, elapsed=stopwatch.lap())

    try:
        check_requires_python(resolution.distributions, target)
    except SitesyncError as e:
        return Error(render_error(e))

    installation_plan = plan(resolution.distributions, inventory.distributions, options.force)
    stopwatch.lap()

    def prepare(dist: Distribution) -> Tuple[ProjectName, CacheEntry]:
        try:
            return dist.project_name, provider.fetch(dist)
        except SitesyncError as e:
            raise _wrap("Failed to fetch: {dist}".format(dist=dist), e)

    try:
        entries = dict(
            jobs.map_parallel(
                inputs=installation_plan.to_install,
                function=prepare,
                max_jobs=options.max_jobs,
                noun="distribution",
                verb="prepare",
                verb_past="prepared",
            )
        )
    except SitesyncError as e:
        return Error(render_error(_wrap("Failed to prepare distributions", e)))
    prepare_elapsed = stopwatch.lap()
    statistics = provider.statistics

    report = apply(
        installation_plan,
        environment,
        inventory,
        entries,
        link_mode=options.link_mode,
        max_jobs=options.max_jobs,
    )
    if report.errors:
        return Error("\n".join(render_error(error) for error in report.errors))
    apply_elapsed = stopwatch.lap()

    warnings = list(resolution.warnings)
    compiled = Phase()
    if options.compile_bytecode and report.python_files:
        try:
            result = Compiler(target).compile(report.python_files)
            compiled = Phase(count=len(result), elapsed=stopwatch.lap())
        except CompileError as e:
            error = _wrap(
                "Failed to bytecode-compile Python file in: {site_packages}".format(
                    site_packages=environment.site_packages
                ),
                e,
            )
            if options.strict:
                return Error(render_error(error))
            warnings.append(render_error(error).partition("error: ")[2])

    warnings.extend(Inventory.load(environment).diagnostics(target.marker_environment))
    return Summary(
        resolved=resolved,
        downloaded=Phase(count=statistics.prepared, elapsed=prepare_elapsed),
        built_editables=Phase(count=statistics.built_editables, elapsed=prepare_elapsed),
        uninstalled=Phase(count=len(report.uninstalled), elapsed=apply_elapsed),
        installed=Phase(count=len(report.installed), elapsed=apply_elapsed),
        compiled=compiled,
        audited=Phase(count=len(installation_plan.audited), elapsed=resolved.elapsed),
        removed_distributions=report.uninstalled,
        added_distributions=report.installed,
        warnings=tuple(warnings),
    )


def run(
    requirement_files: Iterable[str],
    venv_dir: Optional[str] = None,
    options: Optional[SyncOptions] = None,
    cache_root: Optional[str] = None,
) -> int:
    """Sync the virtual environment at `venv_dir` with the given requirements files.

    The summary, warnings and any error are written to stderr.

    :return: The exit code: 0 on success, 1 if the requirements are unsatisfiable and 2 for any
             other failure.
    """
    options = options or SyncOptions.from_env()
    try:
        fetcher = URLFetcher(
            network_configuration=options.network_configuration, offline=options.offline
        )
        configuration = RequirementsConfiguration.collect(
            item
            for requirement_file in requirement_files
            for item in parse_requirement_file(requirement_file, fetcher=fetcher)
        )
        environment = (
            TargetEnvironment.from_venv(venv_dir) if venv_dir else TargetEnvironment.current()
        )
    except (IOError, OSError, SitesyncError) as e:
        print(render_error(e), file=sys.stderr)
        return 2

    options = options.with_requirements_configuration(configuration)
    with TRACER.timed("Syncing {root}".format(root=environment.root)):
        with ArtifactCache.open(cache_root) as cache:
            result = sync(
                configuration.requirements,
                environment,
                cache,
                options=options,
                constraints=configuration.constraints,
                fetcher=fetcher,
            )
    if isinstance(result, Error):
        result.maybe_display()
        return result.exit_code

    print(result.render(), file=sys.stderr)
    if sitesync_warnings.emit_warnings(ENV):
        for warning in result.warnings:
            print(sitesync_warnings.format_warning(warning), file=sys.stderr)
    return 0
