from __future__ import annotations

import logging
import re
import subprocess
from typing import Callable, List, Optional, Sequence

from .config import NodeRegistry
from .errors import AmbiguousInput, NoMatch
from .mac_map import Lease, StaticReservation, fetch_leases, fetch_static_reservations, is_ipv4
from .models import Device, Directory
from .rule_normalizer import STRICT_MAC_REGEX, is_mac, normalize_mac

logger = logging.getLogger(__name__)

# Given the candidate devices, return the chosen index or None to cancel.
Chooser = Callable[[Sequence[Device]], Optional[int]]

_ARP_MAC_REGEX = re.compile(r"(?:[0-9A-Fa-f]{1,2}:){5}[0-9A-Fa-f]{1,2}")

TOKEN_MAC = "mac"
TOKEN_IP = "ip"
TOKEN_NAME = "name"


def classify_token(token: str) -> str:
    s = token.strip()
    if STRICT_MAC_REGEX.match(s):
        return TOKEN_MAC
    if is_ipv4(s):
        return TOKEN_IP
    return TOKEN_NAME


def local_arp_lookup(ip: str) -> Optional[str]:
    """Ask the local ARP cache for the MAC behind ``ip``."""
    try:
        cp = subprocess.run(["arp", "-n", ip], capture_output=True, text=True, timeout=5, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("arp lookup for %s failed: %s", ip, exc)
        return None
    m = _ARP_MAC_REGEX.search(cp.stdout)
    return normalize_mac(m.group(0)) if m else None


def search_directory(directory: Directory, fragment: str) -> List[Device]:
    wanted = fragment.strip().lower()
    return [
        Device(mac=e.mac, hostname=e.hostname or None)
        for e in directory.entries.values()
        if wanted in (e.hostname or "").lower()
    ]


class DeviceLocator:
    """Turn an operator-supplied token into a Device.

    DHCP data is read from the primary router at most once per locator.
    """

    def __init__(
        self,
        executor,
        registry: NodeRegistry,
        directory_loader: Callable[[], Directory],
        chooser: Chooser,
        arp_lookup: Callable[[str], Optional[str]] = local_arp_lookup,
    ) -> None:
        self.executor = executor
        self.registry = registry
        self.directory_loader = directory_loader
        self.chooser = chooser
        self.arp_lookup = arp_lookup
        self._leases: Optional[List[Lease]] = None
        self._static: Optional[List[StaticReservation]] = None

    @property
    def leases(self) -> List[Lease]:
        if self._leases is None:
            self._leases = fetch_leases(self.executor, self.registry.primary)
        return self._leases

    @property
    def static(self) -> List[StaticReservation]:
        if self._static is None:
            self._static = fetch_static_reservations(self.executor, self.registry.primary)
        return self._static

    def locate(self, token: str) -> Optional[Device]:
        """Resolve ``token``; None means the operator cancelled the selection."""
        kind = classify_token(token)
        if kind == TOKEN_MAC:
            return self._by_mac(normalize_mac(token))
        if kind == TOKEN_IP:
            return self._by_ip(token.strip())
        return self._by_name(token)

    def _by_mac(self, mac: str) -> Device:
        device = Device(mac=mac)
        for lease in self.leases:
            if lease.mac == mac:
                device.ip = lease.ip or None
                device.hostname = lease.hostname or None
                return device
        for s in self.static:
            if s.mac == mac:
                device.ip = s.ip or None
                device.hostname = s.hostname or None
                break
        return device

    def _by_ip(self, ip: str) -> Device:
        for lease in self.leases:
            if lease.ip == ip:
                return Device(mac=lease.mac, ip=ip, hostname=lease.hostname or None)
        for s in self.static:
            if s.ip == ip:
                return Device(mac=s.mac, ip=ip, hostname=s.hostname or None)
        mac = self.arp_lookup(ip)
        if mac and is_mac(mac):
            logger.info("Resolved %s through local ARP", ip)
            return Device(mac=normalize_mac(mac), ip=ip)
        raise NoMatch(f"No device found matching: {ip}")

    def _by_name(self, fragment: str) -> Optional[Device]:
        matches = search_directory(self.directory_loader(), fragment)
        if not matches:
            raise NoMatch(f"Could not find hostname containing '{fragment}'")
        if len(matches) == 1:
            selected = matches[0]
        else:
            index = self.chooser(matches)
            if index is None:
                return None
            if not 0 <= index < len(matches):
                raise AmbiguousInput(f"Invalid selection: {index}")
            selected = matches[index]

        for lease in self.leases:
            if lease.mac == selected.mac:
                selected.ip = lease.ip or None
                break
        return selected
