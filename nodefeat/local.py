"""Local feature source: labels from feature files and hook programs."""

from __future__ import annotations

import logging
import os
import stat
import subprocess
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .source import (
    AttributeFeatureSet,
    ConfigurableSource,
    FeatureLabels,
    Features,
    FeatureSource,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "local"
LABEL_FEATURE = "label"

FEATURE_FILES_DIR = "/etc/kubernetes/node-feature-discovery/features.d/"
HOOK_DIR = "/etc/kubernetes/node-feature-discovery/source.d/"


@dataclass
class LocalConfig:
    """Configuration of the local source."""

    hooks_enabled: bool = True


class LocalSource(FeatureSource, LabelSource, ConfigurableSource):
    """Reads labels from feature files and, optionally, from hook programs."""

    def __init__(
        self, features_dir: str = FEATURE_FILES_DIR, hook_dir: str = HOOK_DIR
    ) -> None:
        self.features_dir = features_dir
        self.hook_dir = hook_dir
        self._config = LocalConfig()
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> LocalConfig:
        return LocalConfig()

    def get_config(self) -> LocalConfig:
        return self._config

    def set_config(self, config: LocalConfig) -> None:
        if not isinstance(config, LocalConfig):
            raise TypeError(f"invalid config type: {type(config).__name__}")
        self._config = config

    def priority(self) -> int:
        return 20

    def get_labels(self) -> FeatureLabels:
        labels = self.get_features().attributes.get(LABEL_FEATURE)
        return dict(labels.elements) if labels else {}

    def discover(self) -> None:
        try:
            features = get_features_from_files(self.features_dir)
        except OSError as err:
            log.error("%s", err)
            features = {}

        if self._config.hooks_enabled:
            log.info("starting hooks...")
            try:
                from_hooks = get_features_from_hooks(self.hook_dir)
            except OSError as err:
                log.error("%s", err)
                from_hooks = {}
            for key, value in from_hooks.items():
                if key in features:
                    log.warning(
                        "overriding '%s': value changed from '%s' to '%s'",
                        key, features[key], value,
                    )
                features[key] = value

        self._features = Features()
        self._features.attributes[LABEL_FEATURE] = AttributeFeatureSet(features)
        log.debug("discovered local features: %s", self._features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def parse_features(lines: Iterable[str]) -> Dict[str, str]:
    """Parse "key=value" lines; a bare key means "true". Empty lines are skipped."""
    features: Dict[str, str] = {}
    for line in lines:
        if not line:
            continue
        key, sep, value = line.partition("=")
        features[key] = value if sep else "true"
    return features


def _merge(target: Dict[str, str], new: Dict[str, str], origin: str, name: str) -> None:
    for key, value in new.items():
        if key in target:
            log.warning(
                "overriding label '%s' from another %s (%s): value changed from '%s' to '%s'",
                key, origin, name, target[key], value,
            )
        target[key] = value


def get_features_from_hooks(hook_dir: str) -> Dict[str, str]:
    """Run every hook in hook_dir and collect the features they print."""
    try:
        names = sorted(os.listdir(hook_dir))
    except FileNotFoundError:
        log.info("hook directory %s does not exist", hook_dir)
        return {}
    except OSError as err:
        raise OSError(f"unable to access {hook_dir}: {err}") from err

    if names:
        log.warning(
            "hooks are DEPRECATED since v0.12.0 and support will be removed in a "
            "future release; use feature files instead"
        )

    features: Dict[str, str] = {}
    for name in names:
        try:
            lines = run_hook(hook_dir, name)
        except (OSError, subprocess.SubprocessError) as err:
            log.error("source local failed running hook '%s': %s", name, err)
            continue
        file_features = parse_features(lines)
        log.debug("features from hook %r: %s", name, file_features)
        _merge(features, file_features, "hook", name)
    return features


def run_hook(hook_dir: str, name: str) -> List[str]:
    """Run one hook and return its output lines.

    Non-regular files yield no lines. Raises CalledProcessError if the hook
    exits with a non-zero status and OSError if it cannot be started.
    """
    path = os.path.join(hook_dir, name)
    try:
        mode = os.stat(path).st_mode
    except OSError as err:
        log.error("skipping %s, failed to get stat: %s", path, err)
        raise

    if not stat.S_ISREG(mode):
        return []

    result = subprocess.run([path], capture_output=True, check=False)

    err_lines = result.stderr.decode("utf-8", errors="replace").split("\n")
    if err_lines and err_lines[-1] == "":
        err_lines.pop()
    for line in err_lines:
        log.error("%s: %s", name, line)

    if result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode, path, result.stdout, result.stderr
        )
    return result.stdout.decode("utf-8", errors="replace").split("\n")


def get_features_from_files(features_dir: str) -> Dict[str, str]:
    """Read every feature file in features_dir and collect their features."""
    try:
        names = sorted(os.listdir(features_dir))
    except FileNotFoundError:
        log.info("features directory %s does not exist", features_dir)
        return {}
    except OSError as err:
        raise OSError(f"unable to access {features_dir}: {err}") from err

    features: Dict[str, str] = {}
    for name in names:
        try:
            lines = get_file_content(features_dir, name)
        except OSError as err:
            log.error("source local failed reading file '%s': %s", name, err)
            continue
        file_features = parse_features(lines)
        log.debug("features from feature file %r: %s", name, file_features)
        _merge(features, file_features, "features.d file", name)
    return features


def get_file_content(features_dir: str, name: str) -> List[str]:
    """Return the lines of one feature file; non-regular files yield no lines."""
    path = os.path.join(features_dir, name)
    try:
        mode = os.stat(path).st_mode
    except OSError as err:
        log.error("skipping %s, failed to get stat: %s", path, err)
        raise

    if not stat.S_ISREG(mode):
        return []
    with open(path, "rb") as fh:
        return fh.read().decode("utf-8", errors="replace").split("\n")


SOURCE = LocalSource()
register(SOURCE)