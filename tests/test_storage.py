import pytest

from nodefeat import storage
from nodefeat.source import HostDir


@pytest.fixture
def sysfs(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "SYSFS_DIR", HostDir(str(tmp_path)))
    return tmp_path


def _queue(sysfs, dev, **attrs):
    queue = sysfs / "block" / dev / "queue"
    queue.mkdir(parents=True)
    for key, value in attrs.items():
        (queue / key).write_text(value + "\n")


def test_storage_source_name_and_empty_labels():
    assert storage.SOURCE.name() == storage.NAME
    src = storage.StorageSource()
    assert src.name() == "storage"
    assert src.get_labels() == {}


def test_read_block_dev_queue_info(sysfs):
    _queue(sysfs, "sda", rotational="1", dax="0")
    info = storage.read_block_dev_queue_info(str(sysfs / "block" / "sda"))
    assert info.attributes == {"name": "sda", "rotational": "1", "dax": "0"}


def test_detect_block_sorted(sysfs):
    _queue(sysfs, "sdb", rotational="1")
    _queue(sysfs, "nvme0n1", rotational="0", zoned="none", nr_zones="0")
    devs = storage.detect_block()
    assert [d.attributes["name"] for d in devs] == ["nvme0n1", "sdb"]
    assert devs[0].attributes["zoned"] == "none"


def test_detect_block_missing(sysfs):
    with pytest.raises(OSError):
        storage.detect_block()


def test_discover_nonrotational(sysfs):
    _queue(sysfs, "sda", rotational="1")
    _queue(sysfs, "nvme0n1", rotational="0")
    src = storage.StorageSource()
    src.discover()
    assert len(src.get_features().instances[storage.BLOCK_FEATURE].elements) == 2
    assert src.get_labels() == {"nonrotationaldisk": True}


def test_discover_only_rotational(sysfs):
    _queue(sysfs, "sda", rotational="1")
    src = storage.StorageSource()
    src.discover()
    assert src.get_labels() == {}


def test_discover_failure_leaves_empty_features(sysfs):
    src = storage.StorageSource()
    with pytest.raises(OSError, match="failed to detect block devices"):
        src.discover()
    assert src.get_features().instances == {}