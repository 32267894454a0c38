# nodefeat

`nodefeat` inspects a Linux host and reports what it finds about its CPU,
kernel, memory, network, PCI and USB devices, storage and operating system.
Each area is a *feature source*. A source can:

- **discover** raw features and keep them. There are three kinds: flags
  (a set of names), attributes (name to string value) and instances (a list
  of attribute mappings, one per device).
- turn those features into a flat mapping of **labels**, whose values are
  strings or `True`.
- in some cases, take a **configuration** that changes how labels are
  produced.

Everything is read from files under `/proc`, `/sys`, `/etc`, `/usr` and
`/boot`. The only programs ever started are the hooks of the local source.

## Installation

```
pip install nodefeat
```

Python 3.10 or newer is required. The package has no runtime dependencies.

## Sources

| Module              | Source class    | What it looks at                                           |
|---------------------|-----------------|------------------------------------------------------------|
| `nodefeat.cpu`      | `CpuSource`     | CPU flags, model, c-/p-states, TDX/Secure Execution, SMT   |
| `nodefeat.kernel`   | `KernelSource`  | kernel version, kernel config, loaded modules, SELinux     |
| `nodefeat.memory`   | `MemorySource`  | NUMA nodes, NVDIMM devices                                 |
| `nodefeat.network`  | `NetworkSource` | network interfaces with a backing device, SR-IOV           |
| `nodefeat.pci`      | `PciSource`     | PCI devices                                                |
| `nodefeat.usb`      | `UsbSource`     | USB devices (per interface when the device class is `00`)  |
| `nodefeat.storage`  | `StorageSource` | block devices, e.g. non-rotational disks                   |
| `nodefeat.system`   | `SystemSource`  | node name (`NODE_NAME`) and `os-release`                   |
| `nodefeat.local`    | `LocalSource`   | feature files and hook programs                            |
| `nodefeat.fake`     | `FakeSource`    | fixed, configurable features for testing                   |

The configurable sources are `CpuSource` (`CpuConfig`), `KernelSource`
(`KernelConfig`), `PciSource` (`PciConfig`), `UsbSource` (`UsbConfig`),
`LocalSource` (`LocalConfig`) and `FakeSource` (`FakeConfig`).

`nodefeat.hwcap` decodes the kernel's hardware-capability words into CPU flag
names on ARM, ARM64, ppc64le and s390x: `flags_from_hwcap(arch, hwcap, hwcap2)`
decodes given values, `read_hwcaps()` reads them from `/proc/self/auxv` and
`get_cpuid_flags()` does both for the running machine.

## Usage

```python
from nodefeat.kernel import KernelSource
from nodefeat.pci import PciSource

kernel = KernelSource()
kernel.discover()
print(kernel.get_labels())    # e.g. {"version.major": "6", "version.full": "6.1.0", ...}

pci = PciSource()
pci.discover()
print(pci.get_labels())       # e.g. {"0300_10de.present": True}
```

`discover()` of the network, PCI, USB and storage sources raises `OSError`
when their sysfs directory cannot be listed. The other sources log what they
cannot read and leave that feature out.

### Configuration

```python
from nodefeat.pci import PciSource

pci = PciSource()
config = pci.new_config()
config.device_label_fields = ["vendor", "device"]
pci.set_config(config)
```

`set_config` raises `TypeError` when given a configuration of another source.

### Local features

`LocalSource(features_dir, hook_dir)` reads `key=value` lines (a bare `key`
means `"true"`) from every regular file in `features_dir`. When
`LocalConfig.hooks_enabled` is true (the default), it also runs every regular
file in `hook_dir` and parses its standard output the same way. Values from
hooks override values from files. The directories default to
`/etc/kubernetes/node-feature-discovery/features.d/` and `.../source.d/`.

### The registry

Importing a source module registers one instance of its source, named `SOURCE`
in that module, in the registry of `nodefeat.source`. `register(src)` adds
a source (a name may be registered only once, otherwise `ValueError`) and
`unregister(name)` removes one.

- `get_label_source(name)` / `get_all_label_sources()`
- `get_feature_source(name)` / `get_all_feature_sources()`
- `get_configurable_source(name)` / `get_all_configurable_sources()`
- `get_all_features()` merges the features of all feature sources into one
  `Features` object, prefixing each feature name with its source name
  (for example `cpu.cpuid`). A name produced twice raises
  `DuplicateFeatureError`.

### Host paths

Inside a container the host's directories are often mounted under a prefix.
The sources resolve host paths through the `HostDir` objects `SYSFS_DIR`,
`ETC_DIR`, `USR_DIR` and `BOOT_DIR` in `nodefeat.source`; setting their
`root` (for example `SYSFS_DIR.root = "/host-sys"`) makes the sources read
the host's files instead. `/proc` paths are not relocated.

## What it does not do

- There is no command-line program and no long-running service: the package
  is a library, and the caller decides what to do with the labels.
- Labels are not published anywhere; there is no cluster or API client.
- On x86 there is no CPUID access: the CPU source reports no CPUID flags,
  no RDT features, no SST-BF and no SGX there, and takes the CPU model from
  `/proc/cpuinfo`.
- There is no rule engine for custom labels.