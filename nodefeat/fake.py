"""A fake feature source producing configurable, fixed features."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .source import (
    AttributeFeatureSet,
    ConfigurableSource,
    FeatureLabels,
    Features,
    FeatureSource,
    FlagFeatureSet,
    InstanceFeature,
    InstanceFeatureSet,
    LabelSource,
    SupplementalSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "fake"
FLAG_FEATURE = "flag"
ATTRIBUTE_FEATURE = "attribute"
INSTANCE_FEATURE = "instance"


def _default_labels() -> Dict[str, str]:
    return {"fakefeature1": "true", "fakefeature2": "true", "fakefeature3": "true"}


def _default_flags() -> List[str]:
    return ["flag_1", "flag_2", "flag_3"]


def _default_attributes() -> Dict[str, str]:
    return {"attr_1": "true", "attr_2": "false", "attr_3": "10"}


def _default_instances() -> List[Dict[str, str]]:
    return [
        {
            "name": "instance_1",
            "attr_1": "true",
            "attr_2": "false",
            "attr_3": "10",
            "attr_4": "foobar",
        },
        {"name": "instance_2", "attr_1": "true", "attr_2": "true", "attr_3": "100"},
        {"name": "instance_3"},
    ]


@dataclass
class FakeConfig:
    """Configuration of the fake source."""

    labels: Dict[str, str] = field(default_factory=_default_labels)
    flag_features: List[str] = field(default_factory=_default_flags)
    attribute_features: Dict[str, str] = field(default_factory=_default_attributes)
    instance_features: List[Dict[str, str]] = field(default_factory=_default_instances)


class FakeSource(FeatureSource, LabelSource, ConfigurableSource, SupplementalSource):
    """Feature source whose features and labels come straight from its config."""

    def __init__(self) -> None:
        self._config = FakeConfig()
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> FakeConfig:
        return FakeConfig()

    def get_config(self) -> FakeConfig:
        return self._config

    def set_config(self, config: FakeConfig) -> None:
        if not isinstance(config, FakeConfig):
            raise TypeError(f"invalid config type: {type(config).__name__}")
        self._config = config

    def discover(self) -> None:
        cfg = self._config
        features = Features()
        features.flags[FLAG_FEATURE] = FlagFeatureSet(set(cfg.flag_features))
        features.attributes[ATTRIBUTE_FEATURE] = AttributeFeatureSet(
            dict(cfg.attribute_features)
        )
        features.instances[INSTANCE_FEATURE] = InstanceFeatureSet(
            [InstanceFeature(dict(attrs)) for attrs in cfg.instance_features]
        )
        self._features = features
        log.debug("discovered fake features: %s", features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        return dict(self._config.labels)

    def disable_by_default(self) -> bool:
        return True


SOURCE = FakeSource()
register(SOURCE)