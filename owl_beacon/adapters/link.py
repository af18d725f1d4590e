"""Host network link adapter.

The link is considered up when the host holds a routable local address
towards a probe destination (a UDP ``connect`` sends no packets). Repair is
delegated to optional shell commands such as ``nmcli device connect wlan0``.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import socket
import uuid
from pathlib import Path
from typing import Optional

from ..config import DeviceConfig, LinkConfig

LOGGER = logging.getLogger(__name__)

UNSPECIFIED_ADDRESS = "0.0.0.0"


class LinkError(RuntimeError):
    """Raised when a link repair command fails."""


def _mac_from_node(node: int) -> bytes:
    return node.to_bytes(6, "big")


class HostLink:
    """Link client backed by the host's routing table."""

    def __init__(
        self,
        config: LinkConfig,
        *,
        interface: Optional[str] = None,
        sysfs_root: Path = Path("/sys/class/net"),
    ) -> None:
        self._config = config
        self._interface = interface
        self._sysfs_root = sysfs_root

    @classmethod
    def from_config(cls, link: LinkConfig, device: DeviceConfig) -> "HostLink":
        return cls(link, interface=device.interface)

    async def connect(self) -> None:
        await self._run_command(self._config.connect_command, "connect")

    async def disconnect(self) -> None:
        await self._run_command(self._config.disconnect_command, "disconnect")

    def is_connected(self) -> bool:
        if self._interface and not self._interface_up():
            return False
        address = self.local_address()
        return address is not None and address != UNSPECIFIED_ADDRESS

    def local_address(self) -> Optional[str]:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self._interface:
                bind_device = getattr(socket, "SO_BINDTODEVICE", None)
                if bind_device is not None:
                    try:
                        sock.setsockopt(
                            socket.SOL_SOCKET,
                            bind_device,
                            self._interface.encode("utf-8"),
                        )
                    except OSError:
                        # Needs CAP_NET_RAW; fall back to the default route.
                        pass
            sock.connect((self._config.probe_host, self._config.probe_port))
            return sock.getsockname()[0]
        except OSError as exc:
            LOGGER.debug("No route to %s: %s", self._config.probe_host, exc)
            return None
        finally:
            sock.close()

    def hardware_address(self) -> bytes:
        if self._interface:
            address_file = self._sysfs_root / self._interface / "address"
            try:
                text = address_file.read_text(encoding="utf-8").strip()
                return bytes(int(part, 16) for part in text.split(":"))
            except (OSError, ValueError):
                LOGGER.debug("Could not read hardware address from %s", address_file)
        return _mac_from_node(uuid.getnode())

    def _interface_up(self) -> bool:
        assert self._interface is not None
        operstate = self._sysfs_root / self._interface / "operstate"
        try:
            state = operstate.read_text(encoding="utf-8").strip().lower()
        except OSError:
            return False
        # Some drivers never leave "unknown" even while carrying traffic.
        return state in ("up", "unknown")

    async def _run_command(self, command: Optional[str], action: str) -> None:
        if not command:
            LOGGER.debug("No link %s command configured", action)
            return

        argv = shlex.split(command)
        LOGGER.info("Running link %s command: %s", action, command)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise LinkError(f"link {action} command could not start: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._config.command_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise LinkError(f"link {action} command timed out") from exc

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise LinkError(
                f"link {action} command exited with {process.returncode}: {detail}"
            )
