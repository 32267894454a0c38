"""PCI feature source: PCI devices and their sysfs attributes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .source import (
    SYSFS_DIR,
    ConfigurableSource,
    FeatureLabels,
    Features,
    FeatureSource,
    InstanceFeature,
    InstanceFeatureSet,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "pci"
DEVICE_FEATURE = "device"

MANDATORY_DEV_ATTRS = ("class", "vendor", "device", "subsystem_vendor", "subsystem_device")
OPTIONAL_DEV_ATTRS = ("sriov_totalvfs", "iommu_group/type", "iommu/intel-iommu/version")

_DEFAULT_LABEL_FIELDS = ("class", "vendor")


def _default_class_whitelist() -> List[str]:
    return ["03", "0b40", "12"]


def _default_label_fields() -> List[str]:
    return list(_DEFAULT_LABEL_FIELDS)


@dataclass
class PciConfig:
    """Configuration of the PCI source."""

    device_class_whitelist: List[str] = field(default_factory=_default_class_whitelist)
    device_label_fields: List[str] = field(default_factory=_default_label_fields)


def _label_fields(configured: List[str]) -> List[str]:
    wanted = set(configured)
    fields = [attr for attr in MANDATORY_DEV_ATTRS if attr in wanted]
    invalid = wanted.difference(fields)
    if invalid:
        log.warning(
            "invalid fields (%s) in deviceLabelFields, ignoring...",
            ", ".join(sorted(invalid)),
        )
    if not fields:
        log.warning("no valid fields in deviceLabelFields defined, using the defaults")
        fields = list(_DEFAULT_LABEL_FIELDS)
    return fields


class PciSource(FeatureSource, LabelSource, ConfigurableSource):
    """Discovers PCI devices and labels those of whitelisted classes."""

    def __init__(self) -> None:
        self._config = PciConfig()
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> PciConfig:
        return PciConfig()

    def get_config(self) -> PciConfig:
        return self._config

    def set_config(self, config: PciConfig) -> None:
        if not isinstance(config, PciConfig):
            raise TypeError(f"invalid config type: {type(config).__name__}")
        self._config = config

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        labels: FeatureLabels = {}
        fields = _label_fields(self._config.device_label_fields)
        devices = self.get_features().instances.get(DEVICE_FEATURE)

        for dev in devices.elements if devices else []:
            attrs = dev.attributes
            dev_class = attrs.get("class", "")
            for white in self._config.device_class_whitelist:
                if dev_class.startswith(white.lower()):
                    dev_label = "_".join(attrs.get(attr, "") for attr in fields)
                    labels[f"{dev_label}.present"] = True
                    if "sriov_totalvfs" in attrs:
                        labels[f"{dev_label}.sriov.capable"] = True
                    break
        return labels

    def discover(self) -> None:
        self._features = Features()
        try:
            devs = detect_pci()
        except OSError as err:
            raise OSError(f"failed to detect PCI devices: {err}") from err
        self._features.instances[DEVICE_FEATURE] = InstanceFeatureSet(devs)
        log.debug("discovered pci features: %s", self._features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def read_single_pci_attribute(dev_path: str, attr_name: str) -> str:
    """Read one sysfs attribute of a PCI device, without the "0x" prefix.

    The class code is cut to its first four characters, dropping the
    programming interface.
    """
    try:
        with open(os.path.join(dev_path, attr_name), encoding="utf-8", errors="replace") as fh:
            data = fh.read()
    except OSError as err:
        raise OSError(f"failed to read device attribute {attr_name}: {err}") from err

    value = data.removeprefix("0x").strip()
    if attr_name == "class" and len(value) > 4:
        value = value[:4]
    return value


def read_pci_dev_info(dev_path: str) -> InstanceFeature:
    """Read the attributes of one PCI device; a missing mandatory one raises OSError."""
    attrs: Dict[str, str] = {}
    for attr in MANDATORY_DEV_ATTRS:
        try:
            attrs[attr] = read_single_pci_attribute(dev_path, attr)
        except OSError as err:
            raise OSError(f"failed to read device {attr}: {err}") from err
    for attr in OPTIONAL_DEV_ATTRS:
        try:
            attrs[attr] = read_single_pci_attribute(dev_path, attr)
        except OSError:
            continue
    return InstanceFeature(attrs)


def detect_pci() -> List[InstanceFeature]:
    """Return one instance per readable PCI device found in sysfs."""
    base = SYSFS_DIR.path("bus/pci/devices")
    names = sorted(os.listdir(base))

    info = []
    for name in names:
        try:
            info.append(read_pci_dev_info(os.path.join(base, name)))
        except OSError as err:
            log.error("%s", err)
    return info


SOURCE = PciSource()
register(SOURCE)