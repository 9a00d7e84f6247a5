"""Discovery of SMB servers on the local network."""

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import psutil

from nasbox.config import settings

logger = logging.getLogger(__name__)

MIN_PREFIX_LENGTH = 24
REVERSE_LOOKUP_TIMEOUT_SECONDS = 1.0


@dataclass(frozen=True)
class DiscoveredServer:
    host: str
    ip_address: str


def local_ipv4_interface() -> Optional[ipaddress.IPv4Interface]:
    """First non-loopback IPv4 address of an interface that is up, with its prefix."""
    stats = psutil.net_if_stats()
    for name, addresses in psutil.net_if_addrs().items():
        if name in stats and not stats[name].isup:
            continue
        for address in addresses:
            if address.family != socket.AF_INET or not address.address:
                continue
            ip = ipaddress.IPv4Address(address.address)
            if ip.is_loopback or ip.is_link_local:
                continue
            netmask = address.netmask or "255.255.255.0"
            return ipaddress.IPv4Interface(f"{ip}/{netmask}")
    return None


def subnet_targets(interface: Optional[ipaddress.IPv4Interface]) -> List[str]:
    """Hosts of the interface's block, never wider than a /24, minus the local address."""
    if interface is None:
        return []
    prefix = max(interface.network.prefixlen, MIN_PREFIX_LENGTH)
    network = ipaddress.IPv4Network(f"{interface.ip}/{prefix}", strict=False)
    return [str(host) for host in network.hosts() if host != interface.ip]


class DiscoveryScanner:
    """Probes the local subnet for hosts accepting connections on the SMB port.

    One probe task is launched per candidate and all are awaited together; a
    semaphore caps how many connections are in flight. Probe failures only
    mean "not an SMB host" and are never raised.
    """

    def __init__(
        self,
        port: Optional[int] = None,
        concurrency: Optional[int] = None,
        probe_timeout_ms: Optional[int] = None,
        fallback_hostnames: Optional[Sequence[str]] = None
    ):
        self.port = port or settings.smb_port
        self.concurrency = concurrency or settings.discovery_concurrency
        self.probe_timeout = (probe_timeout_ms or settings.discovery_probe_timeout_ms) / 1000
        self.fallback_hostnames = list(
            fallback_hostnames if fallback_hostnames is not None else settings.discovery_hostnames
        )

    async def discover(self) -> List[DiscoveredServer]:
        """Scan the subnet, falling back to well-known hostnames when it is empty.

        Returns:
            Reachable servers, unique by IP and sorted by host label.
        """
        interface = local_ipv4_interface()
        local_ip = str(interface.ip) if interface else None
        targets = subnet_targets(interface)
        logger.info(f"Scanning {len(targets)} hosts around {local_ip or 'unknown address'} on port {self.port}")

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(*(self._scan_host(ip, semaphore) for ip in targets))
        found = [server for server in results if server is not None and server.ip_address != local_ip]

        if not found:
            logger.info("Subnet scan found no SMB hosts; probing fallback hostnames")
            found = [server for server in await self._probe_hostnames(semaphore) if server.ip_address != local_ip]

        servers = self._dedupe(found)
        logger.info(f"Discovery finished with {len(servers)} server(s)")
        return servers

    @staticmethod
    def _dedupe(servers: Iterable[DiscoveredServer]) -> List[DiscoveredServer]:
        by_ip = {}
        for server in servers:
            by_ip.setdefault(server.ip_address, server)
        return sorted(by_ip.values(), key=lambda server: (server.host.lower(), server.ip_address))

    async def _scan_host(self, ip: str, semaphore: asyncio.Semaphore) -> Optional[DiscoveredServer]:
        async with semaphore:
            if not await self.probe(ip):
                return None
            return DiscoveredServer(host=await self.reverse_lookup(ip), ip_address=ip)

    async def probe(self, host: str) -> bool:
        """True when a TCP connection to the SMB port opens within the probe timeout."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.port), timeout=self.probe_timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def reverse_lookup(self, ip: str) -> str:
        """Host name for an IP, or the IP itself when no distinct name resolves."""
        loop = asyncio.get_running_loop()
        try:
            name, _ = await asyncio.wait_for(
                loop.getnameinfo((ip, self.port), socket.NI_NAMEREQD),
                timeout=REVERSE_LOOKUP_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError):
            return ip
        return name if name and name != ip else ip

    async def _resolve(self, hostname: str) -> List[str]:
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(hostname, self.port, family=socket.AF_INET, type=socket.SOCK_STREAM),
                timeout=REVERSE_LOOKUP_TIMEOUT_SECONDS,
            )
        except (OSError, asyncio.TimeoutError):
            return []
        return list(dict.fromkeys(info[4][0] for info in infos))

    async def _probe_hostname(self, hostname: str, semaphore: asyncio.Semaphore) -> List[DiscoveredServer]:
        found = []
        for ip in await self._resolve(hostname):
            async with semaphore:
                if await self.probe(ip):
                    found.append(DiscoveredServer(host=hostname, ip_address=ip))
        return found

    async def _probe_hostnames(self, semaphore: asyncio.Semaphore) -> List[DiscoveredServer]:
        batches: Tuple[List[DiscoveredServer], ...] = tuple(await asyncio.gather(
            *(self._probe_hostname(hostname, semaphore) for hostname in self.fallback_hostnames)
        ))
        return [server for batch in batches for server in batch]
