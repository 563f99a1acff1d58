# Copyright 2026 Sitesync project contributors.
# Licensed under the Apache License, Version 2.0 (see LICENSE).

import attr
from packaging.specifiers import SpecifierSet
from packaging.version import Version

from sitesync.distribution import Distribution
from sitesync.fingerprint import SourceFingerprint
from sitesync.locators import DirectUrl, Registry
from sitesync.pep_503 import ProjectName

FOO = Distribution(
    project_name=ProjectName("Foo"),
    version=Version("1.0"),
    locator=Registry(filename="foo-1.0-py3-none-any.whl"),
    fingerprint=SourceFingerprint(kind="registry", identity="foo-1.0-py3-none-any.whl"),
)


def test_pin_and_str() -> None:
    assert "foo==1.0" == FOO.pin()
    assert "foo==1.0" == str(FOO)
    assert FOO.provenance is None

    url = "https://example.com/foo-1.0-py3-none-any.whl"
    from_url = attr.evolve(
        FOO,
        locator=DirectUrl(url=url),
        fingerprint=SourceFingerprint(kind="url", identity=url + "|etag"),
    )
    assert "foo==1.0 (from {url})".format(url=url) == str(from_url)


def test_is_equivalent() -> None:
    assert FOO.is_equivalent(attr.evolve(FOO, requires_python=SpecifierSet(">=3")))
    assert FOO.is_equivalent(
        attr.evolve(FOO, locator=Registry(url="https://example.com/foo-1.0-py3-none-any.whl"))
    )
    assert not FOO.is_equivalent(attr.evolve(FOO, version=Version("1.0.1")))
    assert not FOO.is_equivalent(
        attr.evolve(FOO, fingerprint=SourceFingerprint(kind="registry", identity="other.whl"))
    )
