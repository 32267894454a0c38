"""CPU feature source: CPUID flags, model, power states, security and topology."""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from .hwcap import get_cpuid_flags
from .source import (
    SYSFS_DIR,
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

NAME = "cpu"

CPUID_FEATURE = "cpuid"
CPU_MODEL = "model"
CSTATE_FEATURE = "cstate"
PSTATE_FEATURE = "pstate"
RDT_FEATURE = "rdt"
SE_FEATURE = "se"  # deprecated, kept for backwards compatibility
SECURITY_FEATURE = "security"
SGX_FEATURE = "sgx"  # deprecated, kept for backwards compatibility
SST_FEATURE = "sst"
TOPOLOGY_FEATURE = "topology"

CPUINFO_PATH = "/proc/cpuinfo"


def _default_blacklist() -> List[str]:
    return [
        "BMI1", "BMI2", "CLMUL", "CMOV", "CX16", "ERMS", "F16C", "HTT",
        "LZCNT", "MMX", "MMXEXT", "NX", "POPCNT", "RDRAND", "RDSEED",
        "RDTSCP", "SGX", "SGXLC", "SSE", "SSE2", "SSE3", "SSE4", "SSE42",
        "SSSE3",
    ]


@dataclass
class CpuidConfig:
    """Which CPUID flags are turned into labels."""

    attribute_blacklist: List[str] = field(default_factory=_default_blacklist)
    attribute_whitelist: List[str] = field(default_factory=list)


@dataclass
class CpuConfig:
    """Configuration of the CPU source."""

    cpuid: CpuidConfig = field(default_factory=CpuidConfig)


@dataclass(frozen=True)
class KeyFilter:
    """A whitelist or blacklist of keys."""

    keys: FrozenSet[str] = frozenset()
    whitelist: bool = False

    def unmask(self, key: str) -> bool:
        """True if the key passes the filter."""
        return (key in self.keys) == self.whitelist

    @classmethod
    def from_config(cls, config: CpuidConfig) -> "KeyFilter":
        if config.attribute_whitelist:
            return cls(frozenset(config.attribute_whitelist), True)
        return cls(frozenset(config.attribute_blacklist), False)


def _machine() -> str:
    return platform.machine().lower()


def _is_amd64() -> bool:
    return _machine() in ("x86_64", "amd64")


def _is_s390x() -> bool:
    return _machine() == "s390x"


class CpuSource(FeatureSource, LabelSource, ConfigurableSource):
    """Discovers CPU features of the host."""

    def __init__(self) -> None:
        self._config = CpuConfig()
        self._cpuid_filter = KeyFilter()
        self._features: Optional[Features] = None

    def name(self) -> str:
        return NAME

    def new_config(self) -> CpuConfig:
        return CpuConfig()

    def get_config(self) -> CpuConfig:
        return self._config

    def set_config(self, config: CpuConfig) -> None:
        if not isinstance(config, CpuConfig):
            raise TypeError(f"invalid config type: {type(config).__name__}")
        self._config = config
        self._cpuid_filter = KeyFilter.from_config(config.cpuid)

    def priority(self) -> int:
        return 0

    def get_labels(self) -> FeatureLabels:
        labels: FeatureLabels = {}
        features = self.get_features()

        def attrs(name: str) -> Dict[str, str]:
            found = features.attributes.get(name)
            return found.elements if found else {}

        def flags(name: str) -> FrozenSet[str]:
            found = features.flags.get(name)
            return frozenset(found.elements) if found else frozenset()

        for flag in flags(CPUID_FEATURE):
            if self._cpuid_filter.unmask(flag):
                labels[f"cpuid.{flag}"] = True

        for prefix, feature in (
            ("model.", CPU_MODEL),
            ("cstate.", CSTATE_FEATURE),
            ("pstate.", PSTATE_FEATURE),
        ):
            for key, value in attrs(feature).items():
                labels[prefix + key] = value

        for flag in flags(RDT_FEATURE):
            labels[f"rdt.{flag}"] = True

        for prefix, feature in (
            ("security.", SECURITY_FEATURE),
            ("sgx.", SGX_FEATURE),
            ("se.", SE_FEATURE),
            ("power.sst_", SST_FEATURE),
        ):
            for key, value in attrs(feature).items():
                labels[prefix + key] = value

        topology = attrs(TOPOLOGY_FEATURE)
        if "hardware_multithreading" in topology:
            labels["hardware_multithreading"] = topology["hardware_multithreading"]

        return labels

    def discover(self) -> None:
        features = Features()

        features.flags[CPUID_FEATURE] = FlagFeatureSet(set(get_cpuid_flags()))
        features.attributes[CPU_MODEL] = AttributeFeatureSet(_get_cpu_model())

        try:
            cstate = detect_cstate()
        except (OSError, ValueError) as err:
            log.error("failed to detect cstate: %s", err)
        else:
            features.attributes[CSTATE_FEATURE] = AttributeFeatureSet(cstate)

        try:
            pstate = detect_pstate()
        except OSError as err:
            log.error("%s", err)
            pstate = {}
        features.attributes[PSTATE_FEATURE] = AttributeFeatureSet(pstate)

        # RDT detection needs CPUID access, which is not available here.
        features.flags[RDT_FEATURE] = FlagFeatureSet(set())

        security = discover_security()
        features.attributes[SECURITY_FEATURE] = AttributeFeatureSet(security)
        if "sgx.enabled" in security:
            features.attributes[SGX_FEATURE] = AttributeFeatureSet(
                {"enabled": security["sgx.enabled"]}
            )
        if "se.enabled" in security:
            features.attributes[SE_FEATURE] = AttributeFeatureSet(
                {"enabled": security["se.enabled"]}
            )

        # SST-BF detection needs CPUID access, which is not available here.
        features.attributes[SST_FEATURE] = AttributeFeatureSet({})

        features.attributes[TOPOLOGY_FEATURE] = AttributeFeatureSet(discover_topology())

        self._features = features
        log.debug("discovered cpu features: %s", features)

    def get_features(self) -> Features:
        if self._features is None:
            self._features = Features()
        return self._features


def _get_cpu_model() -> Dict[str, str]:
    info = {"vendor_id": "", "family": "0", "id": "0"}
    keys = {"vendor_id": "vendor_id", "cpu family": "family", "model": "id"}
    try:
        with open(CPUINFO_PATH, encoding="utf-8", errors="replace") as fh:
            for line in fh:
                if not line.strip():
                    break
                key, sep, value = line.partition(":")
                key = key.strip()
                if sep and key in keys:
                    info[keys[key]] = value.strip()
    except OSError as err:
        log.debug("failed to read %s: %s", CPUINFO_PATH, err)
    return info


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8", errors="replace") as fh:
        return fh.read()


def detect_cstate() -> Dict[str, str]:
    """Detect whether c-states are enabled (intel_idle driver only).

    Returns an empty mapping when the information does not apply. Raises
    OSError if sysfs cannot be read and ValueError for a malformed value.
    """
    if not _is_amd64():
        return {}

    sysfs_base = SYSFS_DIR.path("devices/system/cpu")
    try:
        os.stat(sysfs_base)
    except OSError as err:
        raise OSError(f"unable to detect cstate status: {err}") from err

    cpuidle_dir = os.path.join(sysfs_base, "cpuidle")
    if not os.path.exists(cpuidle_dir):
        log.info("cpuidle disabled in the kernel")
        return {}

    try:
        driver = _read_text(os.path.join(cpuidle_dir, "current_driver")).strip()
    except OSError as err:
        raise OSError(f"cannot get driver for cpuidle: {err}") from err
    if driver != "intel_idle":
        log.info("intel_idle driver is not in use (%s is active)", driver)
        return {}

    try:
        data = _read_text(SYSFS_DIR.path("module/intel_idle/parameters/max_cstate"))
    except OSError as err:
        raise OSError(f"cannot determine cstate from max_cstates: {err}") from err
    try:
        cstates = int(data.strip())
    except ValueError as err:
        raise ValueError(f"non-integer value of cstates: {err}") from err

    return {"enabled": str(cstates > 0).lower()}


def detect_pstate() -> Dict[str, str]:
    """Detect intel_pstate status, turbo boost and the common scaling governor."""
    if not _is_amd64():
        return {}

    sysfs_base = SYSFS_DIR.path("devices/system/cpu")
    try:
        os.stat(sysfs_base)
    except OSError as err:
        raise OSError(f"unable to detect pstate status: {err}") from err

    pstate_dir = os.path.join(sysfs_base, "intel_pstate")
    if not os.path.exists(pstate_dir):
        log.info("intel pstate driver not enabled")
        return {}

    try:
        status = _read_text(os.path.join(pstate_dir, "status")).strip()
    except OSError as err:
        raise OSError(f"could not read pstate status: {err}") from err
    if status == "off":
        log.info("intel_pstate driver is not in use")
        return {}
    features = {"status": status}

    try:
        with open(os.path.join(pstate_dir, "no_turbo"), "rb") as fh:
            no_turbo = fh.read()
    except OSError as err:
        log.error("can't detect whether turbo boost is enabled: %s", err)
    else:
        features["turbo"] = "true" if no_turbo[:1] == b"0" else "false"

    if status != "active":
        return features

    cpufreq_dir = os.path.join(sysfs_base, "cpufreq")
    try:
        policies = sorted(os.listdir(cpufreq_dir))
    except OSError as err:
        log.error("failed to read cpufreq directory: %s", err)
        return features

    scaling = ""
    for policy in policies:
        policy_dir = os.path.join(cpufreq_dir, policy)
        try:
            cpus = _read_text(os.path.join(policy_dir, "affected_cpus"))
        except OSError:
            log.error("could not read cpufreq policy %s affected_cpus", policy)
            continue
        if not cpus.strip():
            log.info("policy %s has no associated cpus", policy)
            continue
        try:
            policy_scaling = _read_text(os.path.join(policy_dir, "scaling_governor")).strip()
        except OSError:
            log.error("could not read cpufreq policy %s scaling_governor", policy)
            continue
        if scaling and scaling != policy_scaling:
            log.info("scaling_governor for policy %s doesn't match prior policy", policy)
            scaling = ""
            break
        scaling = policy_scaling

    if scaling:
        features["scaling_governor"] = scaling
    return features


def _file_equals(path: str, expected: bytes) -> bool:
    try:
        with open(path, "rb") as fh:
            return fh.read() == expected
    except OSError:
        return False


def discover_security() -> Dict[str, str]:
    """Detect enabled trusted-execution features (TDX, s390x Secure Execution)."""
    elems: Dict[str, str] = {}
    if _is_amd64():
        if _file_equals(SYSFS_DIR.path("module/kvm_intel/parameters/tdx"), b"Y\n"):
            elems["tdx.enabled"] = "true"
    elif _is_s390x():
        if _file_equals(SYSFS_DIR.path("firmware/uv/prot_virt_host"), b"1\n"):
            elems["se.enabled"] = "true"
    return elems


def discover_topology() -> Dict[str, str]:
    """Report whether hardware multithreading is in use."""
    try:
        ht = have_thread_siblings()
    except OSError as err:
        log.error("failed to detect hyper-threading: %s", err)
        return {}
    return {"hardware_multithreading": str(ht).lower()}


def have_thread_siblings() -> bool:
    """True if any CPU lists more than one thread sibling."""
    base = SYSFS_DIR.path("bus/cpu/devices")
    for name in sorted(os.listdir(base)):
        siblings = _read_text(
            os.path.join(base, name, "topology", "thread_siblings_list")
        )
        if "," in siblings or "-" in siblings:
            return True
    return False


SOURCE = CpuSource()
register(SOURCE)