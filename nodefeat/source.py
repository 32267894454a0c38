"""Feature data model and the registry of feature sources."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Union

LabelValue = Union[str, bool]
FeatureLabels = Dict[str, LabelValue]


@dataclass
class HostDir:
    """A host directory whose root may be relocated, e.g. under a container mount."""

    root: str

    def path(self, *args: str) -> str:
        """Join the given components below the root directory."""
        parts = [part.lstrip(os.sep) for part in args]
        return os.path.normpath(os.path.join(self.root, *parts))


SYSFS_DIR = HostDir("/sys")
ETC_DIR = HostDir("/etc")
USR_DIR = HostDir("/usr")
BOOT_DIR = HostDir("/boot")


@dataclass
class FlagFeatureSet:
    """A set of named boolean features."""

    elements: Set[str] = field(default_factory=set)


@dataclass
class AttributeFeatureSet:
    """A set of named features with string values."""

    elements: Dict[str, str] = field(default_factory=dict)


@dataclass
class InstanceFeature:
    """One instance (e.g. a device) described by its attributes."""

    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class InstanceFeatureSet:
    """A list of feature instances."""

    elements: List[InstanceFeature] = field(default_factory=list)


@dataclass
class Features:
    """Raw features, grouped by kind and keyed by feature name."""

    flags: Dict[str, FlagFeatureSet] = field(default_factory=dict)
    attributes: Dict[str, AttributeFeatureSet] = field(default_factory=dict)
    instances: Dict[str, InstanceFeatureSet] = field(default_factory=dict)

    def exists(self, name: str) -> Optional[str]:
        """Return the kind ("flag", "attribute", "instance") of a feature, or None."""
        if name in self.flags:
            return "flag"
        if name in self.attributes:
            return "attribute"
        if name in self.instances:
            return "instance"
        return None

    def insert_attribute_features(
        self, domain: str, feature: str, values: Optional[Mapping[str, str]]
    ) -> None:
        """Add values to the attribute feature "<domain>.<feature>", creating it if needed."""
        key = f"{domain}.{feature}"
        target = self.attributes.setdefault(key, AttributeFeatureSet())
        target.elements.update(values or {})


class DuplicateFeatureError(ValueError):
    """Raised when two feature sources produce the same prefixed feature name."""


class Source(ABC):
    """Base of all sources."""

    @abstractmethod
    def name(self) -> str:
        """Friendly name of the source."""


class FeatureSource(Source):
    """A source that discovers raw node features."""

    @abstractmethod
    def discover(self) -> None:
        """Run feature discovery."""

    @abstractmethod
    def get_features(self) -> Features:
        """Return discovered features in raw form."""


class LabelSource(Source):
    """A source of node feature labels."""

    @abstractmethod
    def get_labels(self) -> FeatureLabels:
        """Return discovered feature labels."""

    @abstractmethod
    def priority(self) -> int:
        """Priority of the source."""


class ConfigurableSource(Source):
    """A source that can be configured."""

    @abstractmethod
    def new_config(self) -> Any:
        """Return a new default configuration."""

    @abstractmethod
    def get_config(self) -> Any:
        """Return the effective configuration."""

    @abstractmethod
    def set_config(self, config: Any) -> None:
        """Change the effective configuration."""


class SupplementalSource(Source):
    """A source outside the core production set (deprecated, experimental or for testing)."""

    @abstractmethod
    def disable_by_default(self) -> bool:
        """True if the source should be disabled by default in production."""


_sources: Dict[str, Source] = {}


def register(src: Source) -> None:
    """Register a source; a name may be registered only once."""
    name = src.name()
    if name in _sources:
        raise ValueError(f"source {name!r} already registered")
    _sources[name] = src


def unregister(name: str) -> Source:
    """Remove a registered source and return it; raises KeyError if it is not registered."""
    try:
        removed = _sources.pop(name)
    except KeyError:
        raise KeyError(f"source {name!r} is not registered") from None
    return removed


def _get_typed(name: str, kind: type) -> Optional[Any]:
    src = _sources.get(name)
    return src if isinstance(src, kind) else None


def _all_typed(kind: type) -> Dict[str, Any]:
    return {name: src for name, src in _sources.items() if isinstance(src, kind)}


def get_feature_source(name: str) -> Optional[FeatureSource]:
    """Return a registered feature source, or None."""
    return _get_typed(name, FeatureSource)


def get_all_feature_sources() -> Dict[str, FeatureSource]:
    """Return all registered feature sources."""
    return _all_typed(FeatureSource)


def get_label_source(name: str) -> Optional[LabelSource]:
    """Return a registered label source, or None."""
    return _get_typed(name, LabelSource)


def get_all_label_sources() -> Dict[str, LabelSource]:
    """Return all registered label sources."""
    return _all_typed(LabelSource)


def get_configurable_source(name: str) -> Optional[ConfigurableSource]:
    """Return a registered configurable source, or None."""
    return _get_typed(name, ConfigurableSource)


def get_all_configurable_sources() -> Dict[str, ConfigurableSource]:
    """Return all registered configurable sources."""
    return _all_typed(ConfigurableSource)


def get_all_features() -> Features:
    """Combine the features of all feature sources, prefixing each with its source name."""
    combined = Features()
    for src_name, src in get_all_feature_sources().items():
        features = src.get_features()
        groups = (
            ("flag", features.flags, combined.flags),
            ("attribute", features.attributes, combined.attributes),
            ("instance", features.instances, combined.instances),
        )
        for kind, items, target in groups:
            for key, value in items.items():
                full = f"{src_name}.{key}"
                existing = combined.exists(full)
                if existing is not None:
                    raise DuplicateFeatureError(
                        f"feature source {src_name!r} returned {kind} feature {full!r} "
                        f"which already exists (type {existing!r})"
                    )
                target[full] = value
    return combined