import pytest

from nodefeat import system
from nodefeat.source import ETC_DIR
from nodefeat.system import SystemSource, parse_os_release, split_version


def test_system_source():
    src = SystemSource()
    assert src.name() == system.NAME
    assert src.priority() == 0
    assert src.get_labels() == {}


def test_singleton_registered_name():
    assert system.SOURCE.name() == "system"


@pytest.mark.parametrize(
    "version, expected",
    [
        ("20.04", {"major": "20", "minor": "04"}),
        ("8", {"major": "8", "minor": ""}),
        ("1.2.3", {"major": "1", "minor": "2"}),
        ("7.x", {"major": "7", "minor": ""}),
        ("rolling", {}),
        ("", {}),
    ],
)
def test_split_version(version, expected):
    assert split_version(version) == expected


def test_parse_os_release(tmp_path):
    path = tmp_path / "os-release"
    path.write_text(
        'NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="20.04"\n# comment\nPRETTY=\'x y\'\n\n'
    )
    assert parse_os_release(str(path)) == {
        "NAME": "Ubuntu",
        "ID": "ubuntu",
        "VERSION_ID": "20.04",
        "PRETTY": "x y",
    }


def test_parse_os_release_missing(tmp_path):
    with pytest.raises(OSError):
        parse_os_release(str(tmp_path / "missing"))


def test_discover_and_labels(tmp_path, monkeypatch):
    (tmp_path / "os-release").write_text('ID=ubuntu\nVERSION_ID="20.04"\n')
    monkeypatch.setattr(ETC_DIR, "root", str(tmp_path))
    monkeypatch.setenv("NODE_NAME", "node-a")

    src = SystemSource()
    src.discover()
    features = src.get_features()
    assert features.attributes["name"].elements == {"nodename": "node-a"}
    assert features.attributes["osrelease"].elements["VERSION_ID.major"] == "20"
    assert src.get_labels() == {
        "os_release.ID": "ubuntu",
        "os_release.VERSION_ID": "20.04",
        "os_release.VERSION_ID.major": "20",
        "os_release.VERSION_ID.minor": "04",
    }


def test_discover_without_minor(tmp_path, monkeypatch):
    (tmp_path / "os-release").write_text("ID=rhel\nVERSION_ID=8\n")
    monkeypatch.setattr(ETC_DIR, "root", str(tmp_path))

    src = SystemSource()
    src.discover()
    assert src.get_labels() == {
        "os_release.ID": "rhel",
        "os_release.VERSION_ID": "8",
        "os_release.VERSION_ID.major": "8",
    }


def test_discover_without_os_release(tmp_path, monkeypatch):
    monkeypatch.setattr(ETC_DIR, "root", str(tmp_path))
    monkeypatch.delenv("NODE_NAME", raising=False)

    src = SystemSource()
    src.discover()
    features = src.get_features()
    assert features.attributes["name"].elements == {"nodename": ""}
    assert "osrelease" not in features.attributes
    assert src.get_labels() == {}