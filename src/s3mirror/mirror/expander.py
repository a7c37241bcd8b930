"""
Target Expansion for the s3mirror Sync Subsystem

Expands a binary entry over its declared targets, resolved versions, operating
systems, architectures and binary names, rendering each combination's
download URL, checksum URL and destination key.
"""

import itertools
from typing import Callable, Iterator, Optional, Sequence

from s3mirror.log_utils import logger

from .interfaces import BinaryEntry, ExpandedTarget, ExpansionContext, TargetSpec
from .templating import evaluate_condition, render

ExcludedCallback = Callable[[ExpansionContext, TargetSpec], None]


def build_context(
    entry: BinaryEntry, version: str, os_name: str, arch: str, bin_name: str
) -> ExpansionContext:
    return ExpansionContext(
        name=entry.name,
        version=version,
        os=os_name,
        arch=arch,
        bin=bin_name,
        github=entry.versions.github,
    )


def render_target(
    target: TargetSpec, context: ExpansionContext, target_index: int = 0
) -> Optional[ExpandedTarget]:
    """
    Render one target for one context.

    Returns:
        The rendered target, or None when the target's condition excludes it.

    Raises:
        TemplateError: If any template fails to parse or render.
    """
    if target.condition is not None and not evaluate_condition(
        target.condition, context
    ):
        return None

    url = render(target.url, context)
    checksum_url = None
    if target.checksum is not None:
        # A checksum template may render empty to opt a combination out
        checksum_url = render(target.checksum, context).strip() or None
    key = render(target.destination, context)
    return ExpandedTarget(
        context=context,
        url=url,
        key=key,
        checksum_url=checksum_url,
        target_index=target_index,
    )


class TargetExpander:
    """
    Lazily expands binary entries into rendered targets.

    Iteration is nested target -> version -> os -> arch -> bin, in declaration
    order, so uploads and log lines follow the configuration file.
    """

    def __init__(self, on_excluded: Optional[ExcludedCallback] = None):
        """
        Parameters:
            on_excluded: Called with the context and target of every combination
                whose condition did not render to "true".
        """
        self.on_excluded = on_excluded

    def expand(
        self, entry: BinaryEntry, versions: Sequence[str]
    ) -> Iterator[ExpandedTarget]:
        combinations = itertools.product(
            enumerate(entry.targets), versions, entry.os, entry.arch, entry.bins
        )
        for (index, target), version, os_name, arch, bin_name in combinations:
            context = build_context(entry, version, os_name, arch, bin_name)
            expanded = render_target(target, context, index)
            if expanded is None:
                logger.debug(
                    f"Excluded by condition: {entry.name} {version} "
                    f"{os_name}/{arch} ({bin_name}), target #{index}"
                )
                if self.on_excluded is not None:
                    self.on_excluded(context, target)
                continue
            yield expanded
