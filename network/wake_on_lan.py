"""Wake-on-LAN magic packet sender."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Optional

from models.records import normalize_address

logger = logging.getLogger(__name__)

WAKE_PORT = 9


def build_magic_packet(address: str) -> bytes:
    """Six 0xFF bytes followed by the hardware address repeated sixteen times."""
    mac = bytes.fromhex(normalize_address(address).replace(":", ""))
    return b"\xff" * 6 + mac * 16


def broadcast_for(host: Optional[str], default: str) -> str:
    """Broadcast address of ``host``'s /24 network, or ``default`` for unknown and IPv6 hosts."""
    if host is None:
        return default
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return default
    if ip.version != 4:
        return default
    return str(ipaddress.ip_network(f"{ip}/24", strict=False).broadcast_address)


class MagicPacketSender:
    """Broadcasts magic packets over UDP."""

    def __init__(self, broadcast_address: str = "255.255.255.255", port: int = WAKE_PORT) -> None:
        self.broadcast_address = broadcast_address
        self.port = port

    async def send_wake_signal(self, address: str, host: Optional[str] = None) -> None:
        packet = build_magic_packet(address)
        target = broadcast_for(host, self.broadcast_address)
        await asyncio.to_thread(self._send_packet, packet, target)
        logger.info(
            "Sent magic packet to %s:%s",
            target,
            self.port,
            extra={"address": address, "host": host},
        )

    def _send_packet(self, packet: bytes, target: str) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.sendto(packet, (target, self.port))
