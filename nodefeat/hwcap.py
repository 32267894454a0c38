"""CPU feature flags decoded from the kernel's hardware capability words."""

from __future__ import annotations

import logging
import platform
import struct
import sys
from typing import Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)

AUXV_PATH = "/proc/self/auxv"

AT_NULL = 0
AT_HWCAP = 16
AT_HWCAP2 = 26

_AUXV_ENTRY = struct.Struct("@LL")


def _bit_table(*names: str) -> Dict[int, str]:
    """Map 1 << i to the i-th name."""
    return {1 << bit: name for bit, name in enumerate(names)}


ARM_HWCAP = _bit_table(
    "SWP", "HALF", "THUMB", "26BIT", "FASTMUL", "FPA", "VFP", "EDSP", "JAVA",
    "IWMMXT", "CRUNCH", "THUMBEE", "NEON", "VFPv3", "VFPv3D16", "TLS", "VFPv4",
    "IDIVA", "IDIVT", "VFPD32", "LPAE", "EVTSTRM",
)

ARM_HWCAP2 = _bit_table("AES", "PMULL", "SHA1", "SHA2", "CRC32")

ARM64_HWCAP = _bit_table(
    "FP", "ASIMD", "EVTSTRM", "AES", "PMULL", "SHA1", "SHA2", "CRC32",
    "ATOMICS", "FPHP", "ASIMDHP", "CPUID", "ASIMDRDM", "JSCVT", "FCMA",
    "LRCPC", "DCPOP", "SHA3", "SM3", "SM4", "ASIMDDP", "SHA512", "SVE",
    "ASIMDFHM", "DIT", "USCAT", "ILRCPC", "FLAGM", "SSBS", "SB", "PACA", "PACG",
)

ARM64_HWCAP2 = _bit_table(
    "DCPODP", "SVE2", "SVEAES", "SVEPMULL", "SVEBITPERM", "SVESHA3", "SVESM4",
    "FLAGM2", "FRINT", "SVEI8MM", "SVEF32MM", "SVEF64MM", "SVEBF16", "I8MM",
    "BF16", "DGH", "RNG", "BTI", "MTE", "ECV", "AFP", "RPRES", "MTE3", "SME",
    "SMEI16I64", "SMEF64F64", "SMEI8I32", "SMEF16F32", "SMEB16F32",
    "SMEF32F32", "SMEFA64", "WFXT", "EBF16", "SVEEBF16",
)

PPC64LE_HWCAP = {
    0x80000000: "PPC32",
    0x40000000: "PPC64",
    0x20000000: "PPC601",
    0x10000000: "ALTIVEC",
    0x08000000: "FPU",
    0x04000000: "MMU",
    0x02000000: "4xxMAC",
    0x01000000: "UCACHE",
    0x00800000: "SPE",
    0x00400000: "EFPFLOAT",
    0x00200000: "EFPDOUBLE",
    0x00100000: "NOTB",
    0x00080000: "POWER4",
    0x00040000: "POWER5",
    0x00020000: "POWER5+",
    0x00010000: "CELLBE",
    0x00008000: "BOOKE",
    0x00004000: "SMT",
    0x00002000: "IC_SNOOP",
    0x00001000: "ARCH_2_05",
    0x00000800: "PA6T",
    0x00000400: "DFP",
    0x00000200: "POWER6X",
    0x00000100: "ARCH_2_06",
    0x00000080: "VSX",
    0x00000040: "ARCHPMU",
    0x00000002: "TRUE_LE",
    0x00000001: "PPCLE",
}

PPC64LE_HWCAP2 = {
    0x80000000: "ARCH_2_07",
    0x40000000: "HTM",
    0x20000000: "DSCR",
    0x10000000: "EBB",
    0x08000000: "ISEL",
    0x04000000: "TAR",
    0x02000000: "VCRYPTO",
    0x01000000: "HTM-NOSC",
    0x00800000: "ARCH_3_00",
    0x00400000: "IEEE128",
    0x00200000: "DARN",
    0x00100000: "SCV",
    0x00080000: "HTM-NO-SUSPEND",
    0x00040000: "ARCH_3_1",
    0x00020000: "MMA",
}

S390X_HWCAP = _bit_table(
    "ESAN3", "ZARCH", "STFLE", "MSA", "LDISP", "EIMM", "DFP", "EDAT", "ETF3EH",
    "HIGHGPRS", "TE", "VX", "VXD", "VXE", "GS", "VXE2", "VXP", "SORT", "DFLT",
    "VXP2", "NNPA", "PCIMIO", "SIE",
)

# Per architecture: names for AT_HWCAP bits and, where used, AT_HWCAP2 bits.
ARCH_TABLES: Dict[str, Tuple[Mapping[int, str], Optional[Mapping[int, str]]]] = {
    "arm": (ARM_HWCAP, ARM_HWCAP2),
    "arm64": (ARM64_HWCAP, ARM64_HWCAP2),
    "ppc64le": (PPC64LE_HWCAP, PPC64LE_HWCAP2),
    "s390x": (S390X_HWCAP, None),
}

_ARCH_ALIASES = {"aarch64": "arm64"}


def _arch_key(machine: str) -> Optional[str]:
    machine = machine.lower()
    if machine in ARCH_TABLES:
        return machine
    if machine in _ARCH_ALIASES:
        return _ARCH_ALIASES[machine]
    if machine.startswith("arm"):
        return "arm"
    return None


def decode_hwcap(names: Mapping[int, str], value: int) -> List[str]:
    """Return the names of the bits set in value, lowest bit first; unknown bits are ignored."""
    return [
        names[1 << bit]
        for bit in range(64)
        if value & (1 << bit) and (1 << bit) in names
    ]


def flags_from_hwcap(arch: str, hwcap: int, hwcap2: int) -> List[str]:
    """Decode the capability words of an architecture into feature names.

    Names from hwcap come first, then those from hwcap2. Raises ValueError
    for an architecture without a capability table.
    """
    key = _arch_key(arch)
    if key is None:
        raise ValueError(f"no hardware capability table for architecture {arch!r}")
    table, table2 = ARCH_TABLES[key]
    flags = decode_hwcap(table, hwcap)
    if table2 is not None:
        flags.extend(decode_hwcap(table2, hwcap2))
    return flags


def read_hwcaps(auxv_path: str = AUXV_PATH) -> Tuple[int, int]:
    """Read AT_HWCAP and AT_HWCAP2 from an auxiliary vector file; absent entries are 0."""
    with open(auxv_path, "rb") as fh:
        data = fh.read()
    usable = len(data) - len(data) % _AUXV_ENTRY.size
    values = {AT_HWCAP: 0, AT_HWCAP2: 0}
    for key, value in _AUXV_ENTRY.iter_unpack(data[:usable]):
        if key == AT_NULL:
            break
        if key in values:
            values[key] = value
    return values[AT_HWCAP], values[AT_HWCAP2]


def get_cpuid_flags() -> List[str]:
    """Return the CPU feature flags of the running machine, or an empty list if unknown."""
    if not sys.platform.startswith("linux"):
        return []
    key = _arch_key(platform.machine())
    if key is None:
        return []
    try:
        hwcap, hwcap2 = read_hwcaps()
    except OSError as err:
        log.error("failed to read hardware capabilities: %s", err)
        return []
    return flags_from_hwcap(key, hwcap, hwcap2)