"""
Tests for tolerant version parsing, range expressions and version resolution.
"""

import pytest
from fakes import FakeReleaseSource
from packaging.version import Version

from s3mirror.exceptions import InvalidRangeExpression, SourceUnavailable
from s3mirror.mirror.interfaces import Release, VersionSpec
from s3mirror.mirror.version import (
    VersionResolver,
    filter_versions,
    parse_range,
    parse_tolerant,
    select_tags,
)

pytestmark = [pytest.mark.unit]


class TestParseTolerant:
    """Tests for parse_tolerant."""

    @pytest.mark.parametrize(
        "tag, expected",
        [
            ("1.2.3", "1.2.3"),
            ("v1.2.3", "1.2.3"),
            ("V1.2.3", "1.2.3"),
            ("  v1.2.3  ", "1.2.3"),
            ("1.2", "1.2.0"),
            ("v2", "2.0.0"),
            ("1.29.0-rc.1", "1.29.0rc1"),
            ("1.0.0-beta2", "1.0.0b2"),
            ("1.0.0-alpha", "1.0.0a0"),
            ("1.0.0+build.5", "1.0.0"),
        ],
    )
    def test_parses_common_tag_forms(self, tag, expected):
        """Leading v, missing components and semver suffixes are tolerated."""
        assert parse_tolerant(tag) == Version(expected)

    @pytest.mark.parametrize(
        "tag",
        [
            None,
            "",
            "   ",
            "latest",
            "release-2024",
            "nightly",
            "1.2.3.4",
            "v",
            "1.2.3beta",
            "1.2rc1",
            "1.2.3.rc1",
        ],
    )
    def test_rejects_non_versions(self, tag):
        """Tags that are not versions parse to None instead of raising."""
        assert parse_tolerant(tag) is None

    def test_prerelease_sorts_below_release(self):
        assert parse_tolerant("1.29.0-rc.1") < parse_tolerant("1.29.0")
        assert parse_tolerant("1.29.0-alpha.1") < parse_tolerant("1.29.0-beta.1")
        assert parse_tolerant("1.29.0-beta.1") < parse_tolerant("1.29.0-rc.1")

    def test_unknown_prerelease_label_still_sorts_below_release(self):
        parsed = parse_tolerant("2.0.0-snapshot")
        assert parsed is not None
        assert parsed.is_prerelease
        assert parsed < Version("2.0.0")


class TestParseRange:
    """Tests for parse_range and range matching."""

    @pytest.mark.parametrize(
        "expression, matching, not_matching",
        [
            (">=1.28.0 <1.29.0", ["1.28.0", "1.28.9"], ["1.27.9", "1.29.0"]),
            ("1.2.3", ["1.2.3", "v1.2.3"], ["1.2.4"]),
            ("=1.2.3", ["1.2.3"], ["1.2.2"]),
            ("==1.2.3", ["1.2.3"], ["1.2.2"]),
            ("!=1.2.3", ["1.2.2", "1.2.4"], ["1.2.3"]),
            (">1.0.0", ["1.0.1"], ["1.0.0"]),
            ("<=1.0.0", ["1.0.0", "0.9.0"], ["1.0.1"]),
            ("<1.0.0 || >=2.0.0", ["0.9.0", "2.1.0"], ["1.5.0"]),
            (">= 1.2.0 < 1.3.0", ["1.2.5"], ["1.3.0"]),
            ("1.2.x", ["1.2.0", "1.2.99"], ["1.3.0", "1.1.9"]),
            (">=1.x", ["1.0.0", "5.0.0"], ["0.9.9"]),
            ("!=1.2.x", ["1.1.0", "1.3.0"], ["1.2.4"]),
            ("*", ["0.0.1", "99.0.0"], []),
            ("<2.x", ["1.9.9"], ["2.0.0"]),
            ("<=2.x", ["2.9.9"], ["3.0.0"]),
            (">2.x", ["3.0.0"], ["2.9.9"]),
        ],
    )
    def test_matching(self, expression, matching, not_matching):
        version_range = parse_range(expression)
        for version in matching:
            assert version_range(parse_tolerant(version)), f"{version} should match {expression}"
        for version in not_matching:
            assert not version_range(parse_tolerant(version)), f"{version} should not match {expression}"

    def test_prerelease_of_upper_bound_is_inside_range(self):
        """1.29.0-rc.1 is below 1.29.0 and therefore inside <1.29.0."""
        version_range = parse_range(">=1.28.0 <1.29.0")
        assert version_range(parse_tolerant("1.29.0-rc.1"))

    @pytest.mark.parametrize(
        "expression",
        ["", "   ", ">=", "not-a-range", ">=1.0.0 ||", "|| <2.0.0", "1.x.2", ">=abc", "~1.2.3"],
    )
    def test_invalid_expressions_raise(self, expression):
        with pytest.raises(InvalidRangeExpression) as exc_info:
            parse_range(expression)
        assert exc_info.value.expression == expression

    def test_non_string_expression_raises(self):
        with pytest.raises(InvalidRangeExpression):
            parse_range(None)  # type: ignore[arg-type]


class TestSelectAndFilter:
    """Tests for select_tags and filter_versions."""

    def test_select_tags_drops_untagged_and_prereleases(self):
        releases = [
            Release("v1.0.0"),
            Release(None),
            Release(""),
            Release("v1.1.0-rc.1", prerelease=True),
        ]
        assert select_tags(releases, include_prereleases=False) == ["v1.0.0"]
        assert select_tags(releases, include_prereleases=True) == [
            "v1.0.0",
            "v1.1.0-rc.1",
        ]

    def test_filter_keeps_original_strings_in_source_order(self):
        tags = ["v1.28.1", "latest", "1.28.0", "v1.30.0", "v1.28.2"]
        selected = filter_versions(tags, parse_range(">=1.28.0 <1.29.0"))
        assert selected == ["v1.28.1", "1.28.0", "v1.28.2"]

    def test_unparseable_tags_are_skipped_without_error(self):
        assert filter_versions(["nightly", "???"], parse_range("*")) == []


class TestVersionResolver:
    """Tests for VersionResolver.resolve."""

    def test_kubectl_scenario(self, kubectl_releases):
        """Prerelease-flagged and out-of-range tags are excluded."""
        resolver = VersionResolver(FakeReleaseSource(kubectl_releases))

        versions = resolver.resolve("kubernetes", "kubernetes", ">=1.28.0 <1.29.0")

        assert set(versions) == {"v1.28.0", "v1.28.1"}
        assert versions == ["v1.28.1", "v1.28.0"]

    def test_prereleases_included_when_requested(self, kubectl_releases):
        resolver = VersionResolver(FakeReleaseSource(kubectl_releases))

        versions = resolver.resolve(
            "kubernetes", "kubernetes", ">=1.28.0 <1.29.0", include_prereleases=True
        )

        assert versions == ["v1.29.0-rc.1", "v1.28.1", "v1.28.0"]

    def test_invalid_range_fails_before_listing(self, kubectl_releases):
        source = FakeReleaseSource(kubectl_releases)
        resolver = VersionResolver(source)

        with pytest.raises(InvalidRangeExpression):
            resolver.resolve("kubernetes", "kubernetes", ">=>1.0")

        assert source.calls == []

    def test_source_unavailable_propagates(self):
        resolver = VersionResolver(FakeReleaseSource({}))

        with pytest.raises(SourceUnavailable) as exc_info:
            resolver.resolve("missing", "repo", ">=1.0.0")

        assert exc_info.value.owner == "missing"
        assert exc_info.value.status_code == 404

    def test_resolve_spec_uses_locator(self, kubectl_releases):
        source = FakeReleaseSource(kubectl_releases)
        spec = VersionSpec(
            github="https://github.com/kubernetes/kubernetes/",
            semver="1.28.1",
        )

        assert VersionResolver(source).resolve_spec(spec) == ["v1.28.1"]
        assert source.calls == ["kubernetes/kubernetes"]
