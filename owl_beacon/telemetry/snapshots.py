"""Device state snapshots published on the cpu, network and sketch channels."""

from __future__ import annotations

import hashlib
import os
import platform
import resource
import shutil
import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from ..version import __version__

PACKAGE_ROOT = Path(__file__).resolve().parent.parent

_MEMINFO_PATH = Path("/proc/meminfo")


def compose_client_id(prefix: str, hardware_address: bytes) -> str:
    """Build ``<prefix>_`` plus the last three MAC octets, e.g. ``esp32_a-1b-ff``.

    Octets are rendered in lower-case hex without zero padding.
    """
    octets = hardware_address[-3:]
    return f"{prefix}_" + "-".join(format(octet, "x") for octet in octets)


def _read_meminfo(path: Path = _MEMINFO_PATH) -> Dict[str, int]:
    values: Dict[str, int] = {}
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return values
    for line in lines:
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0]) * 1024
    return values


def cpu_snapshot(
    *, started_at: float, monotonic: Optional[float] = None, meminfo_path: Path = _MEMINFO_PATH
) -> Dict[str, Any]:
    now = time.monotonic() if monotonic is None else monotonic
    meminfo = _read_meminfo(meminfo_path)
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is reported in kilobytes on Linux
    peak_rss = usage.ru_maxrss * 1024

    return {
        "Heap Size": meminfo.get("MemTotal", 0),
        "FreeHeap": meminfo.get("MemFree", 0),
        "Minimum Free Heap": meminfo.get("MemAvailable", meminfo.get("MemFree", 0)),
        "Max Free Heap": peak_rss,
        "Chip Model": platform.machine() or "unknown",
        "Chip Revision": platform.release(),
        "Millis": int((now - started_at) * 1000),
        "Cycle Count": time.perf_counter_ns() & 0xFFFFFFFF,
    }


def network_snapshot(*, local_address: Optional[str], client_id: str) -> Dict[str, Any]:
    return {
        "IP-Address": local_address or "0.0.0.0",
        "MQTT-ClientID": client_id,
    }


def _source_files(root: Path) -> Iterable[Path]:
    return sorted(path for path in root.rglob("*.py") if path.is_file())


@lru_cache(maxsize=4)
def package_digest(root: Path = PACKAGE_ROOT) -> tuple[int, str]:
    """Total size and MD5 of the package sources, in a stable order."""
    digest = hashlib.md5()
    size = 0
    for path in _source_files(root):
        data = path.read_bytes()
        size += len(data)
        digest.update(path.relative_to(root).as_posix().encode("utf-8"))
        digest.update(data)
    return size, digest.hexdigest()


def sketch_snapshot(
    *,
    target: str,
    build_timestamp: Optional[str],
    root: Path = PACKAGE_ROOT,
) -> Dict[str, Any]:
    size, md5 = package_digest(root)
    disk = shutil.disk_usage(root)
    return {
        "Project version": __version__,
        "Target": target,
        "Build timestamp": build_timestamp or "unknown",
        "Sdk Version": platform.python_version(),
        "CpuFreq": os.cpu_count() or 0,
        "SketchSize": size,
        "Free SketchSpace": disk.free,
        "Sketch MD5": md5,
        "Flash ChipSize": disk.total,
    }
