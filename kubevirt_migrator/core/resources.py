"""Resource sizing for replication jobs.

Replication jobs copy the guest filesystem with rclone/rsync; the work grows
with the amount of data actually written to the VM disk, so CPU and memory
are derived from observed disk usage and clamped to sane bounds.
"""

import math
import re

from ..models.resources import ResourceProfile

GIB = 1024**3

MIN_CPU_CORES = 1
MAX_CPU_CORES = 4
MIN_MEMORY_GB = 2
MAX_MEMORY_GB = 8
GB_PER_CORE = 5
MEMORY_PER_GB = 0.3
REQUEST_RATIO = 0.7

# Share of the PVC assumed used when disk usage cannot be measured
PVC_UTILIZATION = 0.25
# Share of the raw block size assumed used when du -sh output is unparseable
RAW_BLOCK_UTILIZATION = 0.3

_HUMAN_SIZE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([A-Za-z]*)\s*$")
_HUMAN_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "KIB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "MIB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
    "GIB": 1024**3,
    "T": 1024**4,
    "TB": 1024**4,
    "TIB": 1024**4,
}

_QUANTITY = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([A-Za-z]*)\s*$")
_QUANTITY_UNITS = {
    "": 1,
    "k": 1000,
    "ki": 1024,
    "m": 1000**2,
    "mi": 1024**2,
    "g": 1000**3,
    "gi": 1024**3,
    "t": 1000**4,
    "ti": 1024**4,
}


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def calculate_resources(used_bytes: float) -> ResourceProfile:
    """Derive a replication ResourceProfile from used disk bytes."""
    used_gb = max(used_bytes / GIB, 1.0)

    cpu_cores = _clamp(math.ceil(used_gb / GB_PER_CORE), MIN_CPU_CORES, MAX_CPU_CORES)
    memory_gb = _clamp(math.ceil(used_gb * MEMORY_PER_GB), MIN_MEMORY_GB, MAX_MEMORY_GB)

    return ResourceProfile(
        cpu_limit=f"{cpu_cores:.1f}",
        cpu_request=f"{cpu_cores * REQUEST_RATIO:.1f}",
        memory_limit=f"{memory_gb}Gi",
        memory_request=f"{math.ceil(memory_gb * REQUEST_RATIO)}Gi",
    )


def resources_from_pvc_size(pvc_size: str) -> ResourceProfile:
    """Size a replication job assuming the PVC is a quarter full."""
    return calculate_resources(parse_quantity(pvc_size) * PVC_UTILIZATION)


def default_resources() -> ResourceProfile:
    """Fallback profile when neither disk usage nor PVC size is known."""
    return ResourceProfile(
        cpu_limit="1",
        cpu_request="1",
        memory_limit="2Gi",
        memory_request="2Gi",
    )


def parse_human_size(value: str) -> int:
    """Parse ``du -h`` style sizes (``1.5G``, ``512M``, ``20KiB``) into bytes.

    Units are binary multiples, as printed by coreutils.

    Raises:
        ValueError: If the value is not a recognised size
    """
    match = _HUMAN_SIZE.match(value)
    if not match:
        raise ValueError(f"invalid size format: {value!r}")
    number, unit = match.groups()
    multiplier = _HUMAN_UNITS.get(unit.upper())
    if multiplier is None:
        raise ValueError(f"unknown size unit: {unit!r}")
    return int(float(number) * multiplier)


def parse_quantity(value: str) -> int:
    """Parse a Kubernetes storage quantity (``10Gi``, ``500M``) into bytes.

    Raises:
        ValueError: If the quantity is malformed or uses an unsupported suffix
    """
    match = _QUANTITY.match(value)
    if not match:
        raise ValueError(f"invalid quantity: {value!r}")
    number, suffix = match.groups()
    multiplier = _QUANTITY_UNITS.get(suffix.lower())
    if multiplier is None:
        raise ValueError(f"unsupported quantity suffix: {suffix!r}")
    return int(float(number) * multiplier)
