import os

import pytest

from nodefeat import pci
from nodefeat.source import SYSFS_DIR


def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


@pytest.fixture
def sysfs(tmp_path, monkeypatch):
    monkeypatch.setattr(SYSFS_DIR, "root", str(tmp_path))
    return tmp_path


def _make_device(base, name, cls="0x030000", vendor="0x8086", device="0x1234", extra=None):
    dev = os.path.join(str(base), "bus/pci/devices", name)
    values = {
        "class": cls,
        "vendor": vendor,
        "device": device,
        "subsystem_vendor": "0xaaaa",
        "subsystem_device": "0xbbbb",
    }
    values.update(extra or {})
    for attr, value in values.items():
        _write(os.path.join(dev, attr), value + "\n")
    return dev


def test_pci_source_name_and_empty_labels():
    assert pci.SOURCE.name() == pci.NAME
    src = pci.PciSource()
    assert src.get_labels() == {}


def test_read_single_attribute_strips_prefix_and_class(sysfs):
    dev = _make_device(sysfs, "0000:00:02.0")
    assert pci.read_single_pci_attribute(dev, "class") == "0300"
    assert pci.read_single_pci_attribute(dev, "vendor") == "8086"


def test_read_single_attribute_missing(sysfs):
    dev = _make_device(sysfs, "0000:00:02.0")
    with pytest.raises(OSError, match="sriov_totalvfs"):
        pci.read_single_pci_attribute(dev, "sriov_totalvfs")


def test_read_dev_info_optional_attrs(sysfs):
    dev = _make_device(
        sysfs, "0000:00:02.0", extra={"sriov_totalvfs": "8", "iommu_group/type": "DMA"}
    )
    info = pci.read_pci_dev_info(dev)
    assert info.attributes == {
        "class": "0300",
        "vendor": "8086",
        "device": "1234",
        "subsystem_vendor": "aaaa",
        "subsystem_device": "bbbb",
        "sriov_totalvfs": "8",
        "iommu_group/type": "DMA",
    }


def test_read_dev_info_missing_mandatory(sysfs):
    dev = _make_device(sysfs, "0000:00:02.0")
    os.remove(os.path.join(dev, "subsystem_device"))
    with pytest.raises(OSError, match="subsystem_device"):
        pci.read_pci_dev_info(dev)


def test_detect_pci_skips_broken_devices(sysfs):
    _make_device(sysfs, "0000:00:02.0")
    broken = _make_device(sysfs, "0000:00:03.0")
    os.remove(os.path.join(broken, "vendor"))
    devs = pci.detect_pci()
    assert [d.attributes["class"] for d in devs] == ["0300"]


def test_discover_without_sysfs_raises(sysfs):
    src = pci.PciSource()
    with pytest.raises(OSError, match="failed to detect PCI devices"):
        src.discover()


def test_labels_default(sysfs):
    _make_device(sysfs, "0000:00:02.0")
    _make_device(sysfs, "0000:00:1f.0", cls="0x060100", vendor="0x1111")
    src = pci.PciSource()
    src.discover()
    assert src.get_labels() == {"0300_8086.present": True}


def test_labels_sriov_capable(sysfs):
    _make_device(sysfs, "0000:00:02.0", extra={"sriov_totalvfs": "4"})
    src = pci.PciSource()
    src.discover()
    assert src.get_labels() == {
        "0300_8086.present": True,
        "0300_8086.sriov.capable": True,
    }


def test_labels_custom_fields_are_ordered(sysfs):
    _make_device(sysfs, "0000:00:02.0")
    src = pci.PciSource()
    src.set_config(pci.PciConfig(device_label_fields=["device", "vendor", "bogus"]))
    src.discover()
    assert src.get_labels() == {"8086_1234.present": True}


def test_labels_invalid_fields_use_defaults(sysfs):
    _make_device(sysfs, "0000:00:02.0")
    src = pci.PciSource()
    src.set_config(pci.PciConfig(device_label_fields=["nope"]))
    src.discover()
    assert src.get_labels() == {"0300_8086.present": True}


def test_whitelist_is_case_insensitive(sysfs):
    _make_device(sysfs, "0000:00:05.0", cls="0x0b4000")
    src = pci.PciSource()
    src.set_config(pci.PciConfig(device_class_whitelist=["0B40"]))
    src.discover()
    assert src.get_labels() == {"0b40_8086.present": True}


def test_config_round_trip_and_type_check():
    src = pci.PciSource()
    cfg = src.new_config()
    assert cfg.device_class_whitelist == ["03", "0b40", "12"]
    assert cfg.device_label_fields == ["class", "vendor"]
    src.set_config(cfg)
    assert src.get_config() is cfg
    with pytest.raises(TypeError):
        src.set_config({"deviceClassWhitelist": []})