"""
Version Resolution for the s3mirror Sync Subsystem

This module parses release tags tolerantly, parses semantic-version range
expressions, and resolves the tags of a repository that fall inside a range.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from packaging.version import InvalidVersion, Version

from s3mirror.exceptions import InvalidRangeExpression
from s3mirror.log_utils import logger

from .interfaces import Release, ReleaseSource, VersionSpec

TOLERANT_VERSION_RX = re.compile(
    r"^(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+))?"
    r"(?:\.(?P<patch>\d+))?"
    r"(?:-"
    r"(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
WILDCARD_VERSION_RX = re.compile(
    r"^[vV]?(?P<major>\d+|[xX*])(?:\.(?P<minor>\d+|[xX*]))?(?:\.(?P<patch>\d+|[xX*]))?$"
)
PRERELEASE_LABEL_RX = re.compile(
    r"^(alpha|a|beta|b|rc|c|pre|preview|dev)[-_]?(\d*)$", re.IGNORECASE
)
COMPARATOR_RX = re.compile(r"^(?P<op>>=|<=|!=|==|=|>|<)?(?P<version>\S+)$")
OPERATOR_ONLY_RX = re.compile(r"^(>=|<=|!=|==|=|>|<)$")
WILDCARDS = frozenset({"x", "X", "*"})

_PEP440_LABELS = {
    "alpha": "a",
    "a": "a",
    "beta": "b",
    "b": "b",
    "rc": "rc",
    "c": "rc",
    "pre": "rc",
    "preview": "rc",
    "dev": ".dev",
}
_LOCAL_UNSAFE_RX = re.compile(r"[^0-9A-Za-z.]+")


def _strip_prefix(version: str) -> str:
    trimmed = version.strip()
    if trimmed[:1] in ("v", "V"):
        trimmed = trimmed[1:]
    return trimmed


def _pep440_prerelease(prerelease: str) -> str:
    """
    Translate a semver prerelease suffix into a PEP 440 suffix.

    Known labels (alpha, beta, rc, dev and their abbreviations) map onto PEP 440
    prerelease segments, keeping a following numeric identifier as the number.
    Unknown labels become a dev release so they still sort below the release.
    """
    identifiers = prerelease.split(".")
    match = PRERELEASE_LABEL_RX.match(identifiers[0])
    if not match:
        local = _LOCAL_UNSAFE_RX.sub(".", prerelease).strip(".")
        return f".dev0+{local}" if local else ".dev0"

    label = _PEP440_LABELS[match.group(1).lower()]
    number = match.group(2)
    rest = identifiers[1:]
    if not number and rest and rest[0].isdigit():
        number = rest.pop(0)
    suffix = f"{label}{int(number or 0)}"
    if rest:
        local = _LOCAL_UNSAFE_RX.sub(".", ".".join(rest)).strip(".")
        if local:
            suffix += f"+{local}"
    return suffix


def parse_tolerant(version: Optional[str]) -> Optional[Version]:
    """
    Parse a release tag into a comparable version, tolerating common deviations.

    Surrounding whitespace and a leading "v" are ignored, missing minor and patch
    components are treated as zero, and semver prerelease suffixes ("-rc.1",
    "-beta2") become PEP 440 prereleases. Build metadata does not take part in
    precedence and is dropped.

    Returns:
        The parsed Version, or None when the tag is not a version.
    """
    if version is None:
        return None
    trimmed = _strip_prefix(version)
    if not trimmed:
        return None

    match = TOLERANT_VERSION_RX.match(trimmed)
    if not match:
        return None

    release = ".".join(
        str(int(match.group(part) or 0)) for part in ("major", "minor", "patch")
    )
    prerelease = match.group("pre")
    try:
        if prerelease:
            return Version(release + _pep440_prerelease(prerelease))
        return Version(release)
    except InvalidVersion:
        return None


@dataclass(frozen=True)
class Comparator:
    """
    A single range comparator.

    Exact comparators use ``lower`` only. Wildcard comparators ("1.2.x") match
    the half-open interval [lower, upper); ``upper`` is None when every
    component is a wildcard.
    """

    op: str
    lower: Version
    upper: Optional[Version] = None
    wildcard: bool = False

    def matches(self, version: Version) -> bool:
        if not self.wildcard:
            return _EXACT_OPS[self.op](version, self.lower)

        in_span = self.lower <= version and (
            self.upper is None or version < self.upper
        )
        if self.op == "=":
            return in_span
        if self.op == "!=":
            return not in_span
        if self.op == ">":
            return self.upper is not None and version >= self.upper
        if self.op == ">=":
            return version >= self.lower
        if self.op == "<":
            return version < self.lower
        # "<="
        return self.upper is None or version < self.upper


_EXACT_OPS: dict = {
    "=": lambda v, bound: v == bound,
    "!=": lambda v, bound: v != bound,
    ">": lambda v, bound: v > bound,
    ">=": lambda v, bound: v >= bound,
    "<": lambda v, bound: v < bound,
    "<=": lambda v, bound: v <= bound,
}


@dataclass(frozen=True)
class VersionRange:
    """
    A parsed range expression: OR-groups of AND-ed comparators.

    ``>=1.2.0 <2.0.0 || >=3.0.0`` matches versions in [1.2.0, 2.0.0) or >= 3.0.0.
    """

    expression: str
    groups: Tuple[Tuple[Comparator, ...], ...]

    def matches(self, version: Version) -> bool:
        return any(
            all(comparator.matches(version) for comparator in group)
            for group in self.groups
        )

    def __call__(self, version: Version) -> bool:
        return self.matches(version)


def _split_comparators(part: str) -> List[str]:
    """Split an AND-group on whitespace, re-attaching operators written apart from their version."""
    tokens: List[str] = []
    pending_op = ""
    for token in part.split():
        if OPERATOR_ONLY_RX.match(token):
            if pending_op:
                raise ValueError(f"operator {pending_op!r} has no version")
            pending_op = token
            continue
        tokens.append(pending_op + token)
        pending_op = ""
    if pending_op:
        raise ValueError(f"operator {pending_op!r} has no version")
    return tokens


def _parse_wildcard(op: str, text: str) -> Optional[Comparator]:
    match = WILDCARD_VERSION_RX.match(text)
    if not match:
        return None
    parts = [match.group("major"), match.group("minor"), match.group("patch")]
    present = [p for p in parts if p is not None]
    if not any(p in WILDCARDS for p in present):
        return None

    # Once a wildcard appears every following component must be one too
    first_wild = next(i for i, p in enumerate(present) if p in WILDCARDS)
    if any(p not in WILDCARDS for p in present[first_wild:]):
        raise ValueError(f"wildcard must be the last version component in {text!r}")

    fixed = [int(p) for p in present[:first_wild]]
    lower = Version(".".join(str(n) for n in (fixed + [0, 0, 0])[:3]))
    if not fixed:
        upper = None
    else:
        bumped = fixed[:-1] + [fixed[-1] + 1]
        upper = Version(".".join(str(n) for n in (bumped + [0, 0, 0])[:3]))
    return Comparator(op=op, lower=lower, upper=upper, wildcard=True)


def _parse_comparator(token: str) -> Comparator:
    match = COMPARATOR_RX.match(token)
    if not match:
        raise ValueError(f"malformed comparator {token!r}")
    op = match.group("op") or "="
    if op == "==":
        op = "="
    text = match.group("version")

    wildcard = _parse_wildcard(op, text)
    if wildcard is not None:
        return wildcard

    version = parse_tolerant(text)
    if version is None:
        raise ValueError(f"invalid version {text!r}")
    return Comparator(op=op, lower=version)


def parse_range(expression: str) -> VersionRange:
    """
    Parse a semantic-version range expression.

    Comparators are separated by whitespace (AND) and groups by ``||`` (OR).
    Supported operators are =, ==, !=, >, >=, <, <= (a bare version means =),
    and x/X/* wildcards may replace trailing version components.

    Raises:
        InvalidRangeExpression: If the expression is empty or malformed.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidRangeExpression(str(expression), "range expression is empty")

    groups: List[Tuple[Comparator, ...]] = []
    try:
        for part in expression.split("||"):
            tokens = _split_comparators(part)
            if not tokens:
                raise ValueError("empty comparator group")
            groups.append(tuple(_parse_comparator(token) for token in tokens))
    except ValueError as exc:
        raise InvalidRangeExpression(expression, str(exc)) from exc

    return VersionRange(expression=expression, groups=tuple(groups))


def select_tags(releases: Iterable[Release], include_prereleases: bool) -> List[str]:
    """
    Return release tag names in source order, dropping untagged releases and,
    unless ``include_prereleases`` is set, releases flagged as prereleases.
    """
    tags: List[str] = []
    for release in releases:
        if not release.tag_name:
            continue
        if release.prerelease and not include_prereleases:
            continue
        tags.append(release.tag_name)
    return tags


def filter_versions(
    tags: Sequence[str], version_range: Callable[[Version], bool]
) -> List[str]:
    """
    Keep the tags whose tolerant parse satisfies ``version_range``.

    The original tag strings are returned, in their original order. Tags that
    are not versions are skipped silently.
    """
    selected: List[str] = []
    for tag in tags:
        parsed = parse_tolerant(tag)
        if parsed is None:
            logger.debug(f"Ignoring tag {tag!r}: not a version")
            continue
        if version_range(parsed):
            selected.append(tag)
    return selected


class VersionResolver:
    """Resolves the release tags of a repository that satisfy a version range."""

    def __init__(self, source: ReleaseSource):
        self.source = source

    def resolve(
        self,
        owner: str,
        repo: str,
        range_expression: str,
        include_prereleases: bool = False,
    ) -> List[str]:
        """
        List the releases of ``owner/repo`` and keep the tags inside the range.

        The range is parsed before any network call is made.

        Raises:
            InvalidRangeExpression: If ``range_expression`` does not parse.
            SourceUnavailable: If the release listing fails.
        """
        version_range = parse_range(range_expression)
        releases = self.source.list_releases(owner, repo)
        tags = select_tags(releases, include_prereleases)
        selected = filter_versions(tags, version_range)
        logger.debug(
            f"{owner}/{repo}: {len(releases)} releases, {len(tags)} candidate tags, "
            f"{len(selected)} within {range_expression!r}"
        )
        return selected

    def resolve_spec(self, spec: VersionSpec) -> List[str]:
        return self.resolve(spec.owner, spec.repo, spec.semver, spec.prereleases)
