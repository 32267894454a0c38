"""Memory feature source: NUMA topology and NVDIMM devices."""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

from .source import (
    SYSFS_DIR,
    AttributeFeatureSet,
    FeatureLabels,
    Features,
    FeatureSource,
    InstanceFeature,
    InstanceFeatureSet,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "memory"
NV_FEATURE = "nv"
NUMA_FEATURE = "numa"

# Files under each nd device directory that are read.
ND_DEV_ATTRS = ("devtype", "mode")


class MemorySource(FeatureSource, LabelSource):
    """Discovers NUMA nodes and NVDIMM devices."""

    def __init__(self) -> None:
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        labels: FeatureLabels = {}
        features = self.get_features()

        numa = features.attributes.get(NUMA_FEATURE)
        if numa is not None and numa.elements.get("is_numa") == "true":
            labels["numa"] = True

        nv = features.instances.get(NV_FEATURE)
        devices = nv.elements if nv else []
        if devices:
            labels["nv.present"] = True
        if any(dev.attributes.get("devtype") == "nd_dax" for dev in devices):
            labels["nv.dax"] = True

        return labels

    def discover(self) -> None:
        features = Features()

        try:
            numa = detect_numa()
        except OSError as err:
            log.error("failed to detect NUMA nodes: %s", err)
        else:
            features.attributes[NUMA_FEATURE] = AttributeFeatureSet(numa)

        try:
            nv = detect_nv()
        except OSError as err:
            log.error("failed to detect nvdimm devices: %s", err)
        else:
            features.instances[NV_FEATURE] = InstanceFeatureSet(nv)

        self._features = features
        log.debug("discovered memory features: %s", features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def detect_numa() -> Dict[str, str]:
    """Return whether the node is NUMA and how many NUMA nodes it has."""
    base = SYSFS_DIR.path("bus/node/devices")
    try:
        nodes = os.listdir(base)
    except OSError as err:
        raise OSError(f"failed to list numa nodes: {err}") from err
    return {
        "is_numa": str(len(nodes) > 1).lower(),
        "node_count": str(len(nodes)),
    }


def detect_nv() -> List[InstanceFeature]:
    """Return one instance per NVDIMM device; an absent bus means no devices."""
    base = SYSFS_DIR.path("bus/nd/devices")
    try:
        devices = sorted(os.listdir(base))
    except FileNotFoundError:
        log.info("No NVDIMM devices present")
        return []
    except OSError as err:
        raise OSError(f"failed to list nvdimm devices: {err}") from err
    return [read_nd_device_info(os.path.join(base, dev)) for dev in devices]


def read_nd_device_info(path: str) -> InstanceFeature:
    """Read the attributes of one nd device; unreadable ones are skipped."""
    attrs = {"name": os.path.basename(path)}
    for attr_name in ND_DEV_ATTRS:
        try:
            with open(os.path.join(path, attr_name), encoding="utf-8") as fh:
                attrs[attr_name] = fh.read().strip()
        except OSError as err:
            log.debug("failed to read nd device attribute %s: %s", attr_name, err)
    return InstanceFeature(attrs)


SOURCE = MemorySource()
register(SOURCE)