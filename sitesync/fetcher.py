# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import os
import shutil
import ssl
import threading
import time
from contextlib import closing, contextmanager
from typing import BinaryIO, Dict, Iterator, Mapping, Optional, Tuple, cast
from urllib.error import HTTPError
from urllib.parse import urlparse
from urllib.request import (
    FileHandler,
    HTTPSHandler,
    OpenerDirector,
    ProxyHandler,
    Request,
    build_opener,
)

import attr

from sitesync.common import safe_mkdir
from sitesync.exceptions import SourceFetchError
from sitesync.locators import url_to_path
from sitesync.tracer import TRACER
from sitesync.version import __version__
from sitesync.vcs import NETWORK_DISABLED_HINT


@attr.s(frozen=True)
class NetworkConfiguration:
    """Configuration for network requests.

    :param retries: The maximum number of retries each connection should attempt.
    :param timeout: The socket timeout in seconds.
    :param proxy: A proxy to use in the form [user:passwd@]proxy.server:port.
    :param cert: The path to an alternate CA bundle.
    """

    retries: int = attr.ib(default=5)
    timeout: float = attr.ib(default=15)
    proxy: Optional[str] = attr.ib(default=None)
    cert: Optional[str] = attr.ib(default=None)

    @retries.validator
    def _validate_retries(self, attribute, value):
        if value < 0:
            raise ValueError(
                "The {} parameter should be >= 0; given: {}".format(attribute.name, value)
            )

    @timeout.validator
    def _validate_timeout(self, attribute, value):
        if value <= 0:
            raise ValueError(
                "The {} parameter should be > 0; given: {}".format(attribute.name, value)
            )


_SSL_CONTEXTS: Dict[Optional[str], ssl.SSLContext] = {}
_SSL_CONTEXTS_LOCK = threading.Lock()


def get_ssl_context(cert: Optional[str] = None) -> ssl.SSLContext:
    with _SSL_CONTEXTS_LOCK:
        ssl_context = _SSL_CONTEXTS.get(cert)
        if not ssl_context:
            ssl_context = ssl.create_default_context(cafile=cert)
            _SSL_CONTEXTS[cert] = ssl_context
        return ssl_context


# N.B.: We eagerly initialize an SSLContext for the default case of no CA cert in the main thread.
get_ssl_context()


@attr.s(frozen=True)
class FetchResult:
    """A fetched artifact and the cache validator of the resource it was fetched from.

    The validator is `None` when the server supplied neither an `ETag` nor a `Last-Modified`
    header.
    """

    path: str = attr.ib()
    validator: Optional[str] = attr.ib(default=None)


def _validator_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    etag = headers.get("ETag")
    if etag:
        return "etag:{etag}".format(etag=etag)
    last_modified = headers.get("Last-Modified")
    if last_modified:
        return "last-modified:{last_modified}".format(last_modified=last_modified)
    return None


class NotFoundError(SourceFetchError):
    """Indicates the server reported that the requested resource does not exist."""


def is_local_url(url: str) -> bool:
    return urlparse(url).scheme == "file"


class URLFetcher:
    """Fetches http(s) and file URLs with retries for transient failures.

    When `offline`, any attempt to access a non-file URL fails fast with a `SourceFetchError` that
    carries a hint explaining that the network was disabled.
    """

    USER_AGENT = "sitesync/{version}".format(version=__version__)

    def __init__(
        self,
        network_configuration: Optional[NetworkConfiguration] = None,
        offline: bool = False,
    ) -> None:
        network_configuration = network_configuration or NetworkConfiguration()
        self._timeout = network_configuration.timeout
        self._max_retries = network_configuration.retries
        self._offline = offline

        proxies: Optional[Dict[str, str]] = None
        if network_configuration.proxy:
            proxies = {protocol: network_configuration.proxy for protocol in ("http", "https")}
        self._handlers = (
            ProxyHandler(proxies),
            HTTPSHandler(context=get_ssl_context(cert=network_configuration.cert)),
            FileHandler(),
        )

    @property
    def offline(self) -> bool:
        return self._offline

    def _check_network(self, url: str) -> None:
        if self._offline and not is_local_url(url):
            raise SourceFetchError(
                "Cannot fetch {url} in offline mode.".format(url=url), hint=NETWORK_DISABLED_HINT
            )

    def _opener(self) -> OpenerDirector:
        return build_opener(*self._handlers)

    @contextmanager
    def get_body_stream(
        self,
        url: str,
        extra_headers: Optional[Mapping[str, str]] = None,
        method: str = "GET",
    ) -> Iterator[Tuple[BinaryIO, Mapping[str, str]]]:
        """Open `url`, yielding its body stream and response headers."""
        self._check_network(url)

        retries = 0
        retry_delay_secs = 0.1
        last_error: Optional[Exception] = None
        while retries <= self._max_retries:
            if retries > 0:
                time.sleep(retry_delay_secs)
                retry_delay_secs *= 2

            headers = dict(extra_headers) if extra_headers else {}
            headers["User-Agent"] = self.USER_AGENT
            request = Request(url, headers=headers, method=method)
            try:
                fp = self._opener().open(request, timeout=self._timeout)
                break
            except HTTPError as e:
                # See: https://tools.ietf.org/html/rfc2616#page-39
                if e.code == 404:
                    raise NotFoundError(
                        "Failed to fetch {url}: HTTP 404 {reason}".format(url=url, reason=e.reason)
                    ) from e
                if e.code not in (
                    408,  # Request Time-out
                    500,  # Internal Server Error
                    503,  # Service Unavailable
                    504,  # Gateway Time-out
                ):
                    raise SourceFetchError(
                        "Failed to fetch {url}: HTTP {code} {reason}".format(
                            url=url, code=e.code, reason=e.reason
                        )
                    ) from e
                last_error = e
            except (IOError, OSError) as e:
                # Errors are overly broad here: a URLError can indicate a retryable socket level
                # error, so we always retry.
                last_error = e
            finally:
                retries += 1
        else:
            raise SourceFetchError(
                "Failed to fetch {url}: {err}".format(url=url, err=last_error)
            ) from last_error

        with closing(fp) as body_stream:
            yield cast(BinaryIO, body_stream), body_stream.headers

    @contextmanager
    def get_body_iter(self, url: str) -> Iterator[Iterator[str]]:
        with self.get_body_stream(url) as (body_stream, _):
            yield (line.decode("utf-8") for line in body_stream.readlines())

    def get_content(self, url: str, accept: str) -> Tuple[bytes, Optional[str]]:
        """Fetch the body of `url` with the given `Accept` header along with its content type."""
        with self.get_body_stream(url, extra_headers={"Accept": accept}) as (body_stream, headers):
            return body_stream.read(), headers.get("Content-Type")

    def validator(self, url: str) -> Optional[str]:
        """Return a token that changes whenever the resource at `url` changes.

        For remote resources this is derived from the `ETag` or else `Last-Modified` response
        header of a `HEAD` request. For local files this is the file's modification time.
        """
        if is_local_url(url):
            return "mtime:{mtime}".format(mtime=os.stat(url_to_path(url)).st_mtime_ns)
        with self.get_body_stream(url, method="HEAD") as (_, headers):
            return _validator_from_headers(headers)

    def fetch(self, url: str, dest_dir: str, filename: Optional[str] = None) -> FetchResult:
        """Download the resource at `url` into `dest_dir`."""
        filename = filename or os.path.basename(urlparse(url).path)
        dest = os.path.join(safe_mkdir(dest_dir), filename)
        if is_local_url(url):
            path = url_to_path(url)
            try:
                shutil.copy2(path, dest)
            except (IOError, OSError) as e:
                raise SourceFetchError(
                    "Failed to read {path}: {err}".format(path=path, err=e)
                ) from e
            return FetchResult(path=dest, validator=self.validator(url))

        with TRACER.timed("Fetching {url}".format(url=url), V=2):
            with self.get_body_stream(url) as (body_stream, headers), open(dest, "wb") as out:
                shutil.copyfileobj(body_stream, out)
                return FetchResult(path=dest, validator=_validator_from_headers(headers))
