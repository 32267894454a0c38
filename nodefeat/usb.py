"""USB feature source: USB devices and their sysfs attributes."""

from __future__ import annotations

import glob
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

NAME = "usb"
DEVICE_FEATURE = "device"

DEV_ATTRS = ("class", "vendor", "device", "serial")

# The sysfs files of USB devices, named consistently with the PCI attributes.
DEV_ATTR_FILE_MAP = {
    "class": "bDeviceClass",
    "device": "idProduct",
    "vendor": "idVendor",
    "serial": "serial",
}


def _default_class_whitelist() -> List[str]:
    # Video, Miscellaneous, Application Specific and Vendor Specific classes.
    return ["0e", "ef", "fe", "ff"]


def _default_label_fields() -> List[str]:
    return ["class", "vendor", "device"]


@dataclass
class UsbConfig:
    """Configuration of the USB source."""

    device_class_whitelist: List[str] = field(default_factory=_default_class_whitelist)
    device_label_fields: List[str] = field(default_factory=_default_label_fields)


def _label_fields(configured: List[str]) -> List[str]:
    wanted = set(configured)
    fields = [attr for attr in DEV_ATTRS if attr in wanted]
    invalid = wanted.difference(fields)
    if invalid:
        log.warning(
            "invalid fields (%s) in deviceLabelFields, ignoring...",
            ", ".join(sorted(invalid)),
        )
    if not fields:
        log.warning("no valid fields in deviceLabelFields defined, using the defaults")
        fields = _default_label_fields()
    return fields


class UsbSource(FeatureSource, LabelSource, ConfigurableSource):
    """Discovers USB devices and labels those of whitelisted classes."""

    def __init__(self) -> None:
        self._config = UsbConfig()
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> UsbConfig:
        return UsbConfig()

    def get_config(self) -> UsbConfig:
        return self._config

    def set_config(self, config: UsbConfig) -> None:
        if not isinstance(config, UsbConfig):
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
                    break
        return labels

    def discover(self) -> None:
        self._features = Features()
        try:
            devs = detect_usb()
        except OSError as err:
            raise OSError(f"failed to detect USB devices: {err}") from err
        self._features.instances[DEVICE_FEATURE] = InstanceFeatureSet(devs)
        log.debug("discovered usb features: %s", self._features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def read_single_usb_sysfs_attribute(path: str) -> str:
    """Read one sysfs file, stripped of surrounding whitespace."""
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            return fh.read().strip()
    except OSError as err:
        raise OSError(
            f"failed to read device attribute {os.path.basename(path)}: {err}"
        ) from err


def read_single_usb_attribute(dev_path: str, attr_name: str) -> str:
    """Read a named attribute (class, vendor, device, serial) of a USB device."""
    try:
        file_name = DEV_ATTR_FILE_MAP[attr_name]
    except KeyError:
        raise ValueError(f"unknown USB device attribute {attr_name!r}") from None
    return read_single_usb_sysfs_attribute(os.path.join(dev_path, file_name))


def read_usb_dev_info(dev_path: str) -> List[InstanceFeature]:
    """Read one USB device.

    A device whose class is "00" is described per interface instead: one
    instance for each interface, carrying the interface class.
    """
    attrs: Dict[str, str] = {}
    for attr in DEV_ATTRS:
        try:
            value = read_single_usb_attribute(dev_path, attr)
        except OSError:
            continue
        if value:
            attrs[attr] = value

    if attrs.get("class") != "00":
        return [InstanceFeature(attrs)]

    instances = []
    for intf in sorted(glob.glob(os.path.join(dev_path, "*", "bInterfaceClass"))):
        sub_attrs = dict(attrs)
        sub_attrs["class"] = read_single_usb_sysfs_attribute(intf)
        instances.append(InstanceFeature(sub_attrs))
    return instances


def detect_usb() -> List[InstanceFeature]:
    """Return instances for all USB devices (entries with a product id) in sysfs."""
    pattern = SYSFS_DIR.path("bus/usb/devices/*/idProduct")
    info: List[InstanceFeature] = []
    for product_path in sorted(glob.glob(pattern)):
        try:
            info.extend(read_usb_dev_info(os.path.dirname(product_path)))
        except OSError as err:
            log.error("%s", err)
    return info


SOURCE = UsbSource()
register(SOURCE)