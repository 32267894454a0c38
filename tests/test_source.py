import pytest

import nodefeat.fake  # noqa: F401  (registers the source)
import nodefeat.system  # noqa: F401  (registers the source)
from nodefeat.source import (
    AttributeFeatureSet,
    DuplicateFeatureError,
    Features,
    FeatureSource,
    FlagFeatureSet,
    HostDir,
    InstanceFeature,
    InstanceFeatureSet,
    get_all_configurable_sources,
    get_all_feature_sources,
    get_all_features,
    get_all_label_sources,
    get_configurable_source,
    get_feature_source,
    get_label_source,
    register,
    unregister,
)


class _Dummy(FeatureSource):
    def __init__(self, name, features):
        self._name = name
        self._features = features

    def name(self):
        return self._name

    def discover(self):
        pass

    def get_features(self):
        return self._features


@pytest.fixture
def registered():
    names = []

    def _add(src):
        register(src)
        names.append(src.name())
        return src

    yield _add
    for name in names:
        unregister(name)


def test_label_sources():
    sources = get_all_label_sources()
    assert len(sources) > 0
    for name, src in sources.items():
        assert name == src.name()


def test_configurable_sources():
    sources = get_all_configurable_sources()
    assert len(sources) > 0
    for name, src in sources.items():
        assert name == src.name()
        original = src.get_config()
        try:
            config = src.new_config()
            src.set_config(config)
            assert src.get_config() == config
        finally:
            src.set_config(original)


def test_feature_sources():
    sources = get_all_feature_sources()
    assert len(sources) > 0
    for name, src in sources.items():
        assert name == src.name()
        features = src.get_features()
        assert features.flags == {}
        assert features.attributes == {}
        assert features.instances == {}


def test_lookup_by_kind():
    assert get_feature_source("system").name() == "system"
    assert get_label_source("fake").name() == "fake"
    assert get_configurable_source("system") is None
    assert get_feature_source("no-such-source") is None


def test_register_duplicate_raises(registered):
    registered(_Dummy("dummy", Features()))
    with pytest.raises(ValueError):
        register(_Dummy("dummy", Features()))


def test_unregister_unknown_raises():
    with pytest.raises(KeyError):
        unregister("no-such-source")


def test_get_all_features_prefixes(registered):
    features = Features(
        flags={"f": FlagFeatureSet({"a"})},
        attributes={"g": AttributeFeatureSet({"k": "v"})},
        instances={"h": InstanceFeatureSet([InstanceFeature({"name": "x"})])},
    )
    registered(_Dummy("dummy", features))
    combined = get_all_features()
    assert combined.flags["dummy.f"].elements == {"a"}
    assert combined.attributes["dummy.g"].elements == {"k": "v"}
    assert combined.instances["dummy.h"].elements[0].attributes == {"name": "x"}
    assert combined.exists("dummy.g") == "attribute"
    assert combined.exists("dummy.nope") is None


def test_get_all_features_duplicate(registered):
    features = Features(
        flags={"x": FlagFeatureSet({"a"})},
        attributes={"x": AttributeFeatureSet({"k": "v"})},
    )
    registered(_Dummy("dup", features))
    with pytest.raises(DuplicateFeatureError):
        get_all_features()


def test_insert_attribute_features():
    features = Features()
    features.insert_attribute_features("rule", "matched", {"a": "1"})
    features.insert_attribute_features("rule", "matched", {"b": "2"})
    features.insert_attribute_features("rule", "matched", None)
    assert features.attributes["rule.matched"].elements == {"a": "1", "b": "2"}


def test_exists_kinds():
    features = Features(
        flags={"f": FlagFeatureSet()},
        instances={"i": InstanceFeatureSet()},
    )
    assert features.exists("f") == "flag"
    assert features.exists("i") == "instance"


def test_host_dir_path():
    assert HostDir("/sys").path("bus", "pci/devices") == "/sys/bus/pci/devices"
    assert HostDir("/host-sys").path("/block") == "/host-sys/block"