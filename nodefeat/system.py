"""System feature source: node name and os-release information."""

from __future__ import annotations

import logging
import os
import re
from typing import Dict, Optional

from .source import (
    ETC_DIR,
    AttributeFeatureSet,
    FeatureLabels,
    Features,
    FeatureSource,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "system"
OS_RELEASE_FEATURE = "osrelease"
NAME_FEATURE = "name"

OS_RELEASE_FIELDS = ("ID", "VERSION_ID", "VERSION_ID.major", "VERSION_ID.minor")

_OS_RELEASE_LINE = re.compile(r"^(?P<key>\w+)=(?P<value>.+)", re.ASCII)
_VERSION = re.compile(r"(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\..*)?", re.ASCII)


class SystemSource(FeatureSource, LabelSource):
    """Discovers the node name and operating system release."""

    def __init__(self) -> None:
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        release = self.get_features().attributes.get(OS_RELEASE_FEATURE)
        elements = release.elements if release else {}
        return {
            f"os_release.{key}": elements[key]
            for key in OS_RELEASE_FIELDS
            if key in elements
        }

    def discover(self) -> None:
        features = Features()
        features.attributes[NAME_FEATURE] = AttributeFeatureSet(
            {"nodename": os.environ.get("NODE_NAME", "")}
        )

        try:
            release = parse_os_release(ETC_DIR.path("os-release"))
        except OSError as err:
            log.error("failed to get os-release: %s", err)
        else:
            attrs = AttributeFeatureSet(dict(release))
            if "VERSION_ID" in release:
                for sub_key, sub_value in split_version(release["VERSION_ID"]).items():
                    if sub_value:
                        attrs.elements[f"VERSION_ID.{sub_key}"] = sub_value
            features.attributes[OS_RELEASE_FEATURE] = attrs

        self._features = features
        log.debug("discovered system features: %s", features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def parse_os_release(path: str) -> Dict[str, str]:
    """Parse an os-release file into a key/value mapping, stripping quotes."""
    release: Dict[str, str] = {}
    with open(path, encoding="utf-8", errors="replace") as fh:
        for line in fh:
            match = _OS_RELEASE_LINE.match(line.rstrip("\n"))
            if match:
                release[match["key"]] = match["value"].strip("\"'")
    return release


def split_version(version: str) -> Dict[str, str]:
    """Split a numeric version into its major and minor components.

    Returns an empty mapping when the version does not start with a number;
    a missing minor component is given as an empty string.
    """
    match = _VERSION.fullmatch(version)
    if match is None:
        return {}
    return {"major": match["major"], "minor": match["minor"] or ""}


SOURCE = SystemSource()
register(SOURCE)