# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

# Due to the SITESYNC_ properties, disable checkstyle.
# checkstyle: noqa

import os
from typing import (
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Type,
    TypeVar,
    Union,
    overload,
)

from sitesync.common import LinkMode
from sitesync.exceptions import SitesyncError

_O = TypeVar("_O")
_P = TypeVar("_P")


class NoValueError(Exception):
    """Indicates a property has no value set.

    When raised from a method decorated with `@defaulted_property(default)` indicates the default
    value should be used.
    """


class InvalidValueError(SitesyncError):
    """Indicates an environment variable is set to a value sitesync cannot interpret."""


class DefaultedProperty(Generic[_O, _P]):
    """Represents a property with a default value.

    To determine the value of the property without the default value applied, access it through the
    class and call the `strip_default` method, passing the instance in question.
    """

    def __init__(self, func: Callable[[_O], _P], default: Union[_P, Callable[[], _P]]) -> None:
        self._func = func
        self._default = default

    @overload
    def __get__(
        self, instance: None, owner_class: Optional[Type[_O]] = None
    ) -> "DefaultedProperty[_O, _P]":
        pass

    @overload
    def __get__(self, instance: _O, owner_class: Optional[Type[_O]] = None) -> _P:
        pass

    def __get__(self, instance, owner_class=None):
        if instance is None:  # The descriptor was accessed from the class.
            return self
        try:
            return self._func(instance)
        except NoValueError:
            return self._default() if callable(self._default) else self._default

    def strip_default(self, instance: _O) -> Optional[_P]:
        """Return the value of this property without the default value applied.

        :param instance: The instance to check for the non-defaulted property value.
        :return: The property value or `None` if not set.
        """
        try:
            return self._func(instance)
        except NoValueError:
            return None


def defaulted_property(
    default: Union[_P, Callable[[], _P]],
) -> Callable[[Callable[[_O], _P]], DefaultedProperty[_O, _P]]:
    """Creates a `@property` with a `default` value.

    Accessors decorated with this function should raise `NoValueError` to indicate the `default`
    value should be used. A callable default is evaluated lazily each time it is needed.
    """

    def wrapped(func: Callable[[_O], _P]) -> DefaultedProperty[_O, _P]:
        return DefaultedProperty(func, default)

    return wrapped


def _default_cache_dir() -> str:
    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        return os.path.join(xdg_cache_home, "sitesync")
    return os.path.expanduser(os.path.join("~", ".cache", "sitesync"))


def _default_max_jobs() -> int:
    return os.cpu_count() or 1


class Variables:
    """Environment variables supported by sitesync."""

    @classmethod
    def from_rc(cls, rc: Optional[str] = None) -> Dict[str, str]:
        """Read sitesync configuration variables from sitesyncrc files.

        :param rc: an absolute path to a sitesyncrc file.
        :return: A dict of key value pairs found in processed sitesyncrc files.
        """
        ret_vars: Dict[str, str] = {}
        rc_locations = ["/etc/sitesyncrc", "~/.sitesyncrc"]
        if rc:
            rc_locations.append(rc)
        for filename in rc_locations:
            try:
                with open(os.path.expanduser(filename)) as fh:
                    for line in fh:
                        kv = cls._get_kv(line)
                        if kv:
                            ret_vars[kv[0]] = kv[1]
            except IOError:
                continue
        return ret_vars

    @classmethod
    def _get_kv(cls, variable: str) -> Optional[List[str]]:
        kv = variable.strip().split("=")
        if len(list(filter(None, kv))) == 2:
            return kv
        return None

    def __init__(self, environ: Optional[Dict[str, str]] = None, rc: Optional[str] = None) -> None:
        self._environ = environ.copy() if environ is not None else os.environ.copy()
        if not self.SITESYNC_IGNORE_RCFILES:
            rc_values = self.from_rc(rc).copy()
            rc_values.update(self._environ)
            self._environ = rc_values

    def _maybe_get_string(self, variable: str) -> Optional[str]:
        return self._environ.get(variable)

    def _get_string(self, variable: str) -> str:
        value = self._maybe_get_string(variable)
        if value is None:
            raise NoValueError(variable)
        return value

    def _maybe_get_bool(self, variable: str) -> Optional[bool]:
        value = self._maybe_get_string(variable)
        if value is None:
            return None
        if value.lower() in ("0", "false"):
            return False
        if value.lower() in ("1", "true"):
            return True
        raise InvalidValueError(
            "Invalid value for {variable}, must be 0/1/false/true, got {value!r}".format(
                variable=variable, value=value
            )
        )

    def _get_bool(self, variable: str) -> bool:
        value = self._maybe_get_bool(variable)
        if value is None:
            raise NoValueError(variable)
        return value

    def _maybe_get_path(self, variable: str) -> Optional[str]:
        value = self._maybe_get_string(variable)
        if value is None:
            return None
        return os.path.realpath(os.path.expanduser(value))

    def _get_path(self, variable: str) -> str:
        value = self._maybe_get_path(variable)
        if value is None:
            raise NoValueError(variable)
        return value

    def _get_int(self, variable: str) -> int:
        value = self._get_string(variable)
        try:
            return int(value)
        except ValueError:
            raise InvalidValueError(
                "Invalid value for {variable}, must be an integer, got {value!r}".format(
                    variable=variable, value=value
                )
            )

    @defaulted_property(default=0)
    def SITESYNC_VERBOSE(self) -> int:
        """Integer.

        Set the verbosity level of sitesync debug logging. The higher the number, the more logging,
        with 0 being disabled.

        Default: 0
        """
        return self._get_int("SITESYNC_VERBOSE")

    @property
    def SITESYNC_EMIT_WARNINGS(self) -> Optional[bool]:
        """Boolean.

        Emit warnings to stderr. Warnings are always emitted at SITESYNC_VERBOSE >= 1.

        Default: unset (warnings are emitted).
        """
        return self._maybe_get_bool("SITESYNC_EMIT_WARNINGS")

    @defaulted_property(default=False)
    def SITESYNC_IGNORE_RCFILES(self) -> bool:
        """Boolean.

        Explicitly disable the reading/parsing of sitesyncrc files (~/.sitesyncrc).

        Default: false.
        """
        return self._get_bool("SITESYNC_IGNORE_RCFILES")

    @defaulted_property(default=_default_cache_dir)
    def SITESYNC_CACHE_DIR(self) -> str:
        """Directory.

        The directory sitesync stores downloaded and built distributions in. Removing it never
        affects already synced environments.

        Default: $XDG_CACHE_HOME/sitesync or else ~/.cache/sitesync
        """
        return self._get_path("SITESYNC_CACHE_DIR")

    @defaulted_property(default=_default_max_jobs)
    def SITESYNC_MAX_JOBS(self) -> int:
        """Integer.

        The maximum number of concurrent downloads, builds and installs.

        Default: the number of CPUs.
        """
        max_jobs = self._get_int("SITESYNC_MAX_JOBS")
        if max_jobs < 1:
            raise InvalidValueError(
                "Invalid value for SITESYNC_MAX_JOBS, must be a positive integer, got "
                "{max_jobs}".format(max_jobs=max_jobs)
            )
        return max_jobs

    @defaulted_property(default=LinkMode.default)
    def SITESYNC_LINK_MODE(self) -> LinkMode.Value:
        """String (clone|copy|hardlink).

        How files are placed into the target environment from the cache. Clones fall back to copies
        where the filesystem does not support them and hard links fall back to copies across
        filesystems.

        Default: clone.
        """
        value = self._get_string("SITESYNC_LINK_MODE")
        try:
            return LinkMode.for_value(value)
        except ValueError as e:
            raise InvalidValueError("Invalid value for SITESYNC_LINK_MODE: {err}".format(err=e))

    @defaulted_property(default=False)
    def SITESYNC_OFFLINE(self) -> bool:
        """Boolean.

        Disable network access. Only cached distributions and local find-links directories are
        consulted.

        Default: false.
        """
        return self._get_bool("SITESYNC_OFFLINE")

    @defaulted_property(default=False)
    def SITESYNC_NO_INDEX(self) -> bool:
        """Boolean.

        Ignore the package index. Only find-links locations and direct references are consulted.

        Default: false.
        """
        return self._get_bool("SITESYNC_NO_INDEX")

    @defaulted_property(default="https://pypi.org/simple")
    def SITESYNC_INDEX_URL(self) -> str:
        """URL.

        The base URL of the PEP 503 / PEP 691 simple repository API to resolve registry
        requirements against.

        Default: https://pypi.org/simple
        """
        return self._get_string("SITESYNC_INDEX_URL")

    @defaulted_property(default=False)
    def SITESYNC_COMPILE_BYTECODE(self) -> bool:
        """Boolean.

        Compile the Python sources of installed distributions to bytecode after installing them.

        Default: false.
        """
        return self._get_bool("SITESYNC_COMPILE_BYTECODE")

    def __repr__(self) -> str:
        return "{}({!r})".format(type(self).__name__, self._environ)


# Global singleton environment
ENV = Variables()
