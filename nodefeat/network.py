"""Network feature source: network interfaces backed by a device."""

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

NAME = "network"
DEVICE_FEATURE = "device"

SYSFS_BASE_DIR = "class/net"

# Files under /sys/class/net/<iface> that are read.
IFACE_ATTRS = ("operstate", "speed")
# Files under /sys/class/net/<iface>/device that are read.
DEV_ATTRS = ("sriov_numvfs", "sriov_totalvfs")

_SRIOV_LABELS = {
    "sriov_totalvfs": "sriov.capable",
    "sriov_numvfs": "sriov.configured",
}


class NetworkSource(FeatureSource, LabelSource):
    """Discovers physical network interfaces and their SR-IOV state."""

    def __init__(self) -> None:
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        labels: FeatureLabels = {}
        devices = self.get_features().instances.get(DEVICE_FEATURE)
        for dev in devices.elements if devices else []:
            attrs = dev.attributes
            for attr, label in _SRIOV_LABELS.items():
                if attr not in attrs:
                    continue
                try:
                    count = int(attrs[attr])
                except ValueError as err:
                    log.error(
                        "failed to parse %s of %s: %s", attr, attrs.get("name"), err
                    )
                    continue
                if count > 0:
                    labels[label] = True
        return labels

    def discover(self) -> None:
        self._features = Features()
        try:
            devs = detect_net_devices()
        except OSError as err:
            raise OSError(f"failed to detect network devices: {err}") from err
        self._features.instances[DEVICE_FEATURE] = InstanceFeatureSet(devs)
        log.debug("discovered network features: %s", self._features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def detect_net_devices() -> List[InstanceFeature]:
    """Return one instance per network interface that has a backing device."""
    base = SYSFS_DIR.path(SYSFS_BASE_DIR)
    try:
        ifaces = sorted(os.listdir(base))
    except OSError as err:
        raise OSError(f"failed to list network interfaces: {err}") from err

    info = []
    for name in ifaces:
        iface_path = os.path.join(base, name)
        if os.path.exists(os.path.join(iface_path, "device")):
            info.append(read_iface_info(iface_path))
        else:
            log.debug("skipping non-device iface %r", name)
    return info


def _read_attrs(directory: str, names, attrs: dict, kind: str) -> None:
    for attr_name in names:
        try:
            with open(os.path.join(directory, attr_name), encoding="utf-8") as fh:
                attrs[attr_name] = fh.read().strip()
        except FileNotFoundError:
            continue
        except OSError as err:
            log.error("failed to read net %s attribute %s: %s", kind, attr_name, err)


def read_iface_info(path: str) -> InstanceFeature:
    """Read interface and device attributes of one network interface."""
    attrs = {"name": os.path.basename(path)}
    _read_attrs(path, IFACE_ATTRS, attrs, "iface")
    _read_attrs(os.path.join(path, "device"), DEV_ATTRS, attrs, "device")
    return InstanceFeature(attrs)


SOURCE = NetworkSource()
register(SOURCE)