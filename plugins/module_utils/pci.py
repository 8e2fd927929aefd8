"""
features for PCI devices. a device is matched by (vendor id, device id) against KNOWN_DEVICES
after being filtered by device class. sysfs is used for enumeration.
"""

import os

from dataclasses import dataclass
from typing import Iterable, Iterator

from ansible_collections.unity.node_features.plugins.module_utils.cpuinfo import contains_token

DEFAULT_SYSFS_PCI_PATH = "/sys/bus/pci/devices"
# display controllers
DISPLAY_DEVICE_CLASS = 0x030000
DISPLAY_DEVICE_CLASS_MASK = 0xFF0000

# only the devices that exist in this cluster
KNOWN_DEVICES = {
    # NVIDIA
    0x10DE: {
        0x15F7: "PCI::GPU::P100",  # P100 PCIe 12GB
        0x1DB5: "PCI::GPU::V100",  # V100 SXM2 32GB
        0x1DB6: "PCI::GPU::V100",  # V100 PCIe 32GB
        0x1EB8: "PCI::GPU::T4",
        0x20B5: "PCI::GPU::A100",  # A100 PCIe 80GB
        0x2235: "PCI::GPU::A40",
    },
    # AMD
    0x1002: {
        0x66A1: "PCI::GPU::MI50",
        0x738C: "PCI::GPU::MI100",
    },
}


@dataclass(frozen=True)
class PciDevice:
    vendor_id: int
    device_id: int
    device_class: int


def _read_hex(path: str) -> int:
    with open(path, "r", encoding="utf8") as fd:
        return int(fd.read().strip(), 16)


def read_sysfs_devices(root: str = DEFAULT_SYSFS_PCI_PATH) -> Iterator[PciDevice]:
    """
    each device directory has "vendor", "device" and "class" files, like "0x10de"
    devices that can't be read are skipped, and so is a root that can't be listed
    """
    try:
        addresses = sorted(os.listdir(root))
    except OSError:
        return
    for address in addresses:
        device_dir = os.path.join(root, address)
        try:
            yield PciDevice(
                vendor_id=_read_hex(os.path.join(device_dir, "vendor")),
                device_id=_read_hex(os.path.join(device_dir, "device")),
                device_class=_read_hex(os.path.join(device_dir, "class")),
            )
        except (OSError, ValueError):
            continue


def device_features(
    devices: Iterable[PciDevice],
    known: dict[int, dict[int, str]] = KNOWN_DEVICES,
    device_class: int = DISPLAY_DEVICE_CLASS,
    device_class_mask: int = DISPLAY_DEVICE_CLASS_MASK,
) -> str:
    "comma separated features for the known devices, each feature at most once"
    output = []
    for device in devices:
        if (device.device_class & device_class_mask) != (device_class & device_class_mask):
            continue
        feature = known.get(device.vendor_id, {}).get(device.device_id)
        if feature is None:
            continue
        if not contains_token(",".join(output), feature, ","):
            output.append(feature)
    return ",".join(output)
