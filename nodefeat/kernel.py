"""Kernel feature source: version, kernel config, loaded modules and SELinux."""

from __future__ import annotations

import gzip
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .source import (
    BOOT_DIR,
    SYSFS_DIR,
    USR_DIR,
    AttributeFeatureSet,
    ConfigurableSource,
    FeatureLabels,
    Features,
    FeatureSource,
    FlagFeatureSet,
    LabelSource,
    register,
)

log = logging.getLogger(__name__)

NAME = "kernel"

CONFIG_FEATURE = "config"
LOADED_MODULE_FEATURE = "loadedmodule"
SELINUX_FEATURE = "selinux"
VERSION_FEATURE = "version"

KMOD_PROCFS_PATH = "/proc/modules"
OSRELEASE_PATH = "/proc/sys/kernel/osrelease"
PROC_KCONFIG_PATH = "/proc/config.gz"
LIB_MODULES_DIR = "/lib/modules"

_FORBIDDEN_VERSION_CHARS = re.compile(r"[^-A-Za-z0-9_.]")
_VERSION_COMPONENTS = re.compile(
    r"(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<revision>\d+))?(?:-.*)?",
    re.ASCII | re.DOTALL,
)


def _default_config_opts() -> List[str]:
    return ["NO_HZ", "NO_HZ_IDLE", "NO_HZ_FULL", "PREEMPT"]


@dataclass
class KernelConfig:
    """Configuration of the kernel source."""

    kconfig_file: str = ""
    config_opts: List[str] = field(default_factory=_default_config_opts)


class KernelSource(FeatureSource, LabelSource, ConfigurableSource):
    """Discovers kernel version, configuration, loaded modules and SELinux state."""

    def __init__(self) -> None:
        self._config = KernelConfig()
        self._features: Optional[Features] = None
        # Mangled kconfig values used for kernel.config.<opt> labels and
        # legacy kConfig custom rules.
        self.legacy_kconfig: Optional[Dict[str, str]] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> KernelConfig:
        return KernelConfig()

    def get_config(self) -> KernelConfig:
        return self._config

    def set_config(self, config: KernelConfig) -> None:
        if not isinstance(config, KernelConfig):
            raise TypeError(f"invalid config type: {type(config).__name__}")
        self._config = config

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        labels: FeatureLabels = {}
        features = self.get_features()

        version = features.attributes.get(VERSION_FEATURE)
        if version is not None:
            for key, value in version.elements.items():
                labels[f"{VERSION_FEATURE}.{key}"] = value

        legacy = self.legacy_kconfig or {}
        for opt in self._config.config_opts:
            if opt in legacy:
                labels[f"{CONFIG_FEATURE}.{opt}"] = legacy[opt]

        selinux = features.attributes.get(SELINUX_FEATURE)
        if selinux is not None and selinux.elements.get("enabled") == "true":
            labels["selinux.enabled"] = "true"

        return labels

    def discover(self) -> None:
        features = Features()

        try:
            version = parse_version()
        except OSError as err:
            log.error("failed to get kernel version: %s", err)
        else:
            features.attributes[VERSION_FEATURE] = AttributeFeatureSet(version)

        try:
            real, legacy = parse_kconfig(self._config.kconfig_file)
        except OSError as err:
            self.legacy_kconfig = None
            log.error("failed to read kconfig: %s", err)
        else:
            features.attributes[CONFIG_FEATURE] = AttributeFeatureSet(real)
            self.legacy_kconfig = legacy

        try:
            kmods = get_loaded_modules()
        except OSError as err:
            log.error("failed to get loaded kernel modules: %s", err)
        else:
            features.flags[LOADED_MODULE_FEATURE] = FlagFeatureSet(set(kmods))

        try:
            selinux = selinux_enabled()
        except OSError as err:
            log.warning("%s", err)
        else:
            features.attributes[SELINUX_FEATURE] = AttributeFeatureSet(
                {"enabled": str(selinux).lower()}
            )

        self._features = features
        log.debug("discovered kernel features: %s", features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def get_legacy_kconfig() -> Optional[Dict[str, str]]:
    """Return the mangled kernel config of the registered kernel source."""
    return SOURCE.legacy_kconfig


def read_kconfig_gzip(filename: str) -> bytes:
    """Read and decompress a gzipped kernel config file."""
    with gzip.open(filename, "rb") as fh:
        return fh.read()


def _kconfig_search_paths() -> List[str]:
    try:
        kver = get_version()
    except OSError:
        return [PROC_KCONFIG_PATH, USR_DIR.path("src/linux/.config")]
    return [
        PROC_KCONFIG_PATH,
        USR_DIR.path(f"src/linux-{kver}/.config"),
        USR_DIR.path("src/linux/.config"),
        USR_DIR.path(f"lib/modules/{kver}/config"),
        USR_DIR.path(f"lib/ostree-boot/config-{kver}"),
        USR_DIR.path(f"lib/kernel/config-{kver}"),
        USR_DIR.path(f"src/linux-headers-{kver}/.config"),
        f"{LIB_MODULES_DIR}/{kver}/build/.config",
        BOOT_DIR.path(f"config-{kver}"),
    ]


def parse_kconfig(config_path: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Find and parse the kernel config, trying config_path first.

    Returns the options as set (quotes stripped) and a legacy copy in which
    "y" and "m" are given as "true". Raises OSError if no config is readable.
    """
    candidates = [config_path, *_kconfig_search_paths()]
    raw: Optional[bytes] = None
    for path in candidates:
        if not path:
            continue
        try:
            if os.path.splitext(path)[1] == ".gz":
                raw = read_kconfig_gzip(path)
            else:
                with open(path, "rb") as fh:
                    raw = fh.read()
        except (OSError, EOFError):
            continue
        break

    if raw is None:
        raise FileNotFoundError(f"failed to read kernel config from {candidates}")

    return parse_kconfig_text(raw.decode("utf-8", errors="replace"))


def parse_kconfig_text(text: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Parse kernel config text into real and legacy option mappings."""
    real: Dict[str, str] = {}
    legacy: Dict[str, str] = {}
    for line in text.split("\n"):
        if not line.startswith("CONFIG_"):
            continue
        key, sep, raw_value = line.partition("=")
        if not sep:
            continue
        name = key[len("CONFIG_"):]
        value = raw_value.strip('"')
        real[name] = value
        legacy[name] = "true" if raw_value in ("y", "m") else value
    return real, legacy


def get_loaded_modules() -> List[str]:
    """Return the names of the currently loaded kernel modules."""
    try:
        with open(KMOD_PROCFS_PATH, encoding="utf-8", errors="replace") as fh:
            content = fh.read()
    except OSError as err:
        raise OSError(f"failed to read file {KMOD_PROCFS_PATH}: {err}") from err
    return [line.split()[0] for line in content.split("\n") if line.strip()]


def selinux_enabled() -> bool:
    """Detect whether SELinux is enforcing on the host."""
    sysfs_base = SYSFS_DIR.path("fs")
    try:
        os.stat(sysfs_base)
    except OSError as err:
        raise OSError(f"unable to detect selinux status: {err}") from err

    selinux_base = os.path.join(sysfs_base, "selinux")
    if not os.path.exists(selinux_base):
        log.info("selinux not available on the system")
        return False

    try:
        with open(os.path.join(selinux_base, "enforce"), "rb") as fh:
            status = fh.read()
    except OSError as err:
        raise OSError(f"failed to detect the status of selinux: {err}") from err
    return status[:1] == b"1"


def get_version() -> str:
    """Return the running kernel release string."""
    with open(OSRELEASE_PATH, encoding="utf-8", errors="replace") as fh:
        return fh.read().strip()


def sanitize_version(full: str) -> str:
    """Make a kernel release usable as a label value."""
    return _FORBIDDEN_VERSION_CHARS.sub("_", full).strip("-_.")


def parse_version() -> Dict[str, str]:
    """Return the full kernel version and its major, minor and revision parts."""
    full = sanitize_version(get_version())
    version = {"full": full}
    match = _VERSION_COMPONENTS.fullmatch(full)
    if match is not None:
        for key in ("major", "minor", "revision"):
            version[key] = match[key] or ""
    return version


SOURCE = KernelSource()
register(SOURCE)