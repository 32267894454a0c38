import pytest

from nodefeat import fake
from nodefeat.fake import FakeConfig, FakeSource
from nodefeat.source import get_feature_source, get_label_source


def test_identity():
    src = FakeSource()
    assert src.name() == "fake"
    assert src.priority() == 0
    assert src.disable_by_default() is True


def test_singleton_registered():
    assert get_feature_source("fake") is fake.SOURCE
    assert get_label_source("fake") is fake.SOURCE


def test_features_empty_before_discover():
    features = FakeSource().get_features()
    assert features.flags == {}
    assert features.attributes == {}
    assert features.instances == {}


def test_discover_defaults():
    src = FakeSource()
    src.discover()
    features = src.get_features()
    assert features.flags["flag"].elements == {"flag_1", "flag_2", "flag_3"}
    assert features.attributes["attribute"].elements == {
        "attr_1": "true",
        "attr_2": "false",
        "attr_3": "10",
    }
    names = [inst.attributes["name"] for inst in features.instances["instance"].elements]
    assert names == ["instance_1", "instance_2", "instance_3"]
    assert features.instances["instance"].elements[0].attributes["attr_4"] == "foobar"


def test_default_labels():
    labels = FakeSource().get_labels()
    assert labels == {
        "fakefeature1": "true",
        "fakefeature2": "true",
        "fakefeature3": "true",
    }


def test_custom_config():
    src = FakeSource()
    config = FakeConfig(
        labels={"lbl": "v"},
        flag_features=["x"],
        attribute_features={"a": "b"},
        instance_features=[{"name": "n"}],
    )
    src.set_config(config)
    src.discover()
    features = src.get_features()
    assert src.get_config() is config
    assert features.flags["flag"].elements == {"x"}
    assert features.attributes["attribute"].elements == {"a": "b"}
    assert features.instances["instance"].elements[0].attributes == {"name": "n"}
    assert src.get_labels() == {"lbl": "v"}


def test_labels_are_a_copy():
    src = FakeSource()
    labels = src.get_labels()
    labels["extra"] = "true"
    assert "extra" not in src.get_labels()


def test_new_config_is_fresh():
    src = FakeSource()
    first = src.new_config()
    second = src.new_config()
    first.flag_features.append("other")
    assert second == FakeConfig()
    assert first != second


def test_set_config_wrong_type():
    with pytest.raises(TypeError):
        FakeSource().set_config({"labels": {}})