"""Neighbour table lookups and reachability checks for workers."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import Dict, Iterable, Mapping, Optional, Set

from models.errors import NeighborLookupError
from models.records import normalize_address
from storage.base import NeighborGateway

logger = logging.getLogger(__name__)


def parse_neighbor_table(text: str) -> Dict[str, str]:
    """Map host addresses to hardware addresses from ``ip neigh`` output.

    Lines without a link-layer address or with an unparsable host are
    skipped; a malformed hardware address raises ``NeighborLookupError``.
    """
    entries: Dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if "lladdr" not in parts:
            continue
        index = parts.index("lladdr")
        if index + 1 >= len(parts):
            continue
        try:
            host = str(ipaddress.ip_address(parts[0]))
        except ValueError:
            continue
        try:
            entries[host] = normalize_address(parts[index + 1])
        except ValueError as exc:
            raise NeighborLookupError(
                f"Malformed hardware address {parts[index + 1]!r} for {host} in neighbour table."
            ) from exc
    return entries


class LinuxNeighborGateway:
    """Runs ``ping`` and ``ip neigh`` as subprocesses."""

    def __init__(self, ping_timeout: int = 1) -> None:
        self.ping_timeout = ping_timeout

    async def ping(self, host: str) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                "ping",
                host,
                "-c",
                "1",
                "-W",
                str(self.ping_timeout),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("Could not run ping", extra={"host": host, "reason": str(exc)})
            return False
        return await process.wait() == 0

    async def neighbors(self) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                "ip",
                "neigh",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except OSError as exc:
            raise NeighborLookupError(f"'ip neigh' could not be run: {exc}") from exc
        if process.returncode != 0:
            raise NeighborLookupError(
                f"'ip neigh' exited with {process.returncode}: {stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode(errors="replace")


class NeighborResolver:
    """Answers which host a worker is on, and whether it is already up."""

    def __init__(self, gateway: NeighborGateway) -> None:
        self.gateway = gateway

    async def address_for_host(self, host: Optional[str]) -> Optional[str]:
        """Hardware address of the machine at ``host``, ``None`` when unknown.

        Loopback and multicast hosts never resolve.
        """
        if host is None:
            return None
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            return None
        if ip.is_loopback or ip.is_multicast:
            return None
        table = parse_neighbor_table(await self.gateway.neighbors())
        return table.get(str(ip))

    async def hosts_for(self, addresses: Iterable[str]) -> Dict[str, Optional[str]]:
        table = parse_neighbor_table(await self.gateway.neighbors())
        by_address = {address: host for host, address in table.items()}
        return {address: by_address.get(address) for address in addresses}

    async def awake(self, hosts: Mapping[str, Optional[str]]) -> Set[str]:
        """Addresses whose host answers a ping; failed pings count as asleep."""
        targets = [(address, host) for address, host in hosts.items() if host is not None]
        answers = await asyncio.gather(
            *(self.gateway.ping(host) for _, host in targets),
            return_exceptions=True,
        )
        return {address for (address, _), answer in zip(targets, answers) if answer is True}
