"""Storage feature source: block device queue attributes."""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from .source import (
    SYSFS_DIR,
    FeatureLabels,
    Features,
    FeatureSource,
    InstanceFeature,
    InstanceFeatureSet,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "storage"
BLOCK_FEATURE = "block"

# Files under /sys/block/<dev>/queue that are read for each device.
QUEUE_ATTRS = ("dax", "rotational", "nr_zones", "zoned")


class StorageSource(FeatureSource, LabelSource):
    """Discovers block devices and their queue attributes."""

    def __init__(self) -> None:
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        block = self.get_features().instances.get(BLOCK_FEATURE)
        devices = block.elements if block else []
        if any(dev.attributes.get("rotational") == "0" for dev in devices):
            return {"nonrotationaldisk": True}
        return {}

    def discover(self) -> None:
        self._features = Features()
        try:
            devs = detect_block()
        except OSError as err:
            raise OSError(f"failed to detect block devices: {err}") from err
        self._features.instances[BLOCK_FEATURE] = InstanceFeatureSet(devs)
        log.debug("discovered storage features: %s", self._features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def detect_block() -> List[InstanceFeature]:
    """Return one instance per block device found in sysfs."""
    base = SYSFS_DIR.path("block")
    try:
        names = sorted(os.listdir(base))
    except OSError as err:
        raise OSError(f"failed to list block devices: {err}") from err
    return [read_block_dev_queue_info(os.path.join(base, name)) for name in names]


def read_block_dev_queue_info(path: str) -> InstanceFeature:
    """Read the queue attributes of one block device; missing ones are skipped."""
    attrs = {"name": os.path.basename(path)}
    for attr_name in QUEUE_ATTRS:
        try:
            with open(os.path.join(path, "queue", attr_name), encoding="utf-8") as fh:
                attrs[attr_name] = fh.read().strip()
        except OSError as err:
            log.debug("failed to read block device queue attribute %s: %s", attr_name, err)
    return InstanceFeature(attrs)


SOURCE = StorageSource()
register(SOURCE)