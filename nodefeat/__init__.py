"""Feature sources that inspect a Linux node and express what they find as labels."""

__version__ = "0.1.0"

__all__ = [
    "cpu",
    "fake",
    "hwcap",
    "kernel",
    "local",
    "memory",
    "network",
    "pci",
    "source",
    "storage",
    "system",
    "usb",
]