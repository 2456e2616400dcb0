"""Resolve an operator channel allow-list against the labels a source reports."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

_WILDCARD_CHARS = set("*?[")


@dataclass(frozen=True)
class ChannelSelection:
    """Ordered result of :func:`select_channels`."""

    labels: tuple[str, ...]
    unmatched: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.labels)

    def __contains__(self, label: object) -> bool:
        return label in self.labels


def _is_pattern(item: str) -> bool:
    return any(ch in _WILDCARD_CHARS for ch in item)


def _normalize_request(requested: str | Iterable[str] | None) -> list[str]:
    if requested is None:
        return ["all"]
    if isinstance(requested, str):
        return [requested]
    items = [str(item).strip() for item in requested]
    return [item for item in items if item] or ["all"]


def select_channels(
    requested: str | Iterable[str] | None,
    available: Sequence[str],
) -> ChannelSelection:
    """
    Select a subset of ``available`` labels.

    ``requested`` may contain plain labels, shell-style wildcards (``CSC*``),
    the keyword ``all`` and exclusions prefixed with ``-`` (``-CSC3``). The
    result keeps the order of ``available``. Plain labels that do not exist
    are reported in ``unmatched`` and logged; the selection narrows to what
    the source actually provides.
    """
    items = _normalize_request(requested)
    includes = [item for item in items if not item.startswith("-")]
    excludes = [item[1:] for item in items if item.startswith("-") and len(item) > 1]

    if not includes:
        # only exclusions given, start from everything
        includes = ["all"]

    chosen: set[str] = set()
    unmatched: list[str] = []
    for item in includes:
        if item.lower() == "all":
            chosen.update(available)
        elif _is_pattern(item):
            matches = fnmatch.filter(available, item)
            if not matches:
                logger.warning("Channel pattern %r does not match any channel", item)
            chosen.update(matches)
        elif item in available:
            chosen.add(item)
        else:
            unmatched.append(item)

    for item in excludes:
        if _is_pattern(item):
            chosen.difference_update(fnmatch.filter(available, item))
        else:
            chosen.discard(item)

    if unmatched:
        logger.warning(
            "Requested channels not found in acquisition system, ignoring: %s",
            ", ".join(unmatched),
        )

    labels = tuple(label for label in available if label in chosen)
    if not labels:
        logger.warning("Channel selection is empty, no continuous data will be written")
    return ChannelSelection(labels=labels, unmatched=tuple(unmatched))


__all__ = ["ChannelSelection", "select_channels"]
