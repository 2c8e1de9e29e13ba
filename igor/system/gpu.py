"""GPU inventory from lspci output."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

NVIDIA_VENDOR_ID = "10de"

# 01:00.0 VGA compatible controller [0300]: NVIDIA Corporation AD102 [GeForce RTX 4090] [10de:2684] (rev a1)
_LSPCI_LINE = re.compile(
    r"^(?P<slot>\S+)\s+(?P<cls>[^\[]+?)\s*\[(?P<class_id>[0-9a-f]{4})\]:\s*"
    r"(?P<desc>.*?)\s*\[(?P<vendor>[0-9a-f]{4}):(?P<device>[0-9a-f]{4})\]",
    re.IGNORECASE,
)

# Display controller classes: VGA, XGA, 3D, other display
_DISPLAY_CLASSES = {"0300", "0301", "0302", "0380"}


@dataclass
class GPUDevice:
    """A PCI display device."""

    slot: str
    vendor_id: str
    device_id: str
    description: str = ""
    driver: str = ""

    @property
    def is_nvidia(self) -> bool:
        return self.vendor_id.lower() == NVIDIA_VENDOR_ID


@dataclass
class GPUInfo:
    """Detected GPUs."""

    devices: List[GPUDevice] = field(default_factory=list)

    @property
    def nvidia_gpus(self) -> List[GPUDevice]:
        return [d for d in self.devices if d.is_nvidia]

    def has_nvidia_gpu(self) -> bool:
        return bool(self.nvidia_gpus)


def parse_lspci(output: str) -> GPUInfo:
    """Parse ``lspci -nn`` output into a GPUInfo."""
    info = GPUInfo()
    for line in output.splitlines():
        match = _LSPCI_LINE.match(line.strip())
        if not match or match.group("class_id") not in _DISPLAY_CLASSES:
            continue
        info.devices.append(
            GPUDevice(
                slot=match.group("slot"),
                vendor_id=match.group("vendor").lower(),
                device_id=match.group("device").lower(),
                description=match.group("desc"),
            )
        )
    return info


def detect_gpus(executor) -> GPUInfo:
    """Detect GPUs with lspci; returns an empty inventory when lspci fails."""
    result = executor.execute("lspci", "-nn")
    if result.failed:
        logger.warning(f"GPU detection failed: {result.error_message()}")
        return GPUInfo()
    info = parse_lspci(result.stdout)
    logger.info(f"Detected {len(info.devices)} display device(s), {len(info.nvidia_gpus)} NVIDIA")
    return info
