from __future__ import annotations

import csv
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .config import NodeRegistry
from .errors import DirectoryMissing
from .models import Directory, DirectoryEntry, MacSource, Node
from .rule_normalizer import ZERO_MAC, is_mac, normalize_mac

logger = logging.getLogger(__name__)

STATIC_CONF_COMMAND = "cat /tmp/etc/dnsmasq.conf"
# Lease file locations differ between firmware builds; the first readable one wins.
LEASES_COMMAND = "cat /var/lib/misc/dnsmasq.leases 2>/dev/null || cat /tmp/dnsmasq.leases 2>/dev/null"
BASE_MAC_COMMAND = "nvram get et0macaddr"
RADIO_COMMAND = """
for band in 0 1 2; do
    hwaddr=$(nvram get wl${band}_hwaddr)
    nband=$(nvram get wl${band}_nband)
    ssid=$(nvram get wl${band}_ssid)
    [ -n "$hwaddr" ] && echo "wl${band}|${hwaddr}|${nband}|${ssid}|0"
    for sub in 1 2 3; do
        hwaddr=$(nvram get wl${band}.${sub}_hwaddr)
        ssid=$(nvram get wl${band}.${sub}_ssid)
        [ -n "$hwaddr" ] && echo "wl${band}.${sub}|${hwaddr}|${nband}|${ssid}|${sub}"
    done
done
"""

STATIC_PREFIX = "dhcp-host="
LEASE_NO_HOSTNAME = "*"
IPV4_REGEX = re.compile(r"^\d+\.\d+\.\d+\.\d+$")
# AiMesh backhaul networks use a hidden 32-character hex SSID
BACKHAUL_SSID_REGEX = re.compile(r"^[A-F0-9]{32}$")

BAND_NAMES = {1: "5G", 2: "2.4G", 4: "6G"}


@dataclass
class StaticReservation:
    mac: str
    hostname: str = ""
    ip: str = ""


@dataclass
class Lease:
    timestamp: str
    mac: str
    ip: str
    hostname: str = ""


@dataclass
class RadioInterface:
    iface: str
    hwaddr: str
    nband: str
    ssid: str
    subindex: int


def is_ipv4(value: str) -> bool:
    return bool(IPV4_REGEX.match((value or "").strip()))


def band_name(nband: object) -> str:
    try:
        return BAND_NAMES.get(int(str(nband).strip()), "WiFi")
    except ValueError:
        return "WiFi"


def parse_static_reservations(text: str) -> List[StaticReservation]:
    """Parse ``dhcp-host=MAC,hostname[,IP]`` (or ``MAC,IP,hostname``) lines."""
    result: List[StaticReservation] = []
    for line in (text or "").splitlines():
        s = line.strip()
        if not s.startswith(STATIC_PREFIX):
            continue
        fields = [f.strip() for f in s[len(STATIC_PREFIX):].split(",")]
        if not fields or not is_mac(fields[0]):
            logger.debug("Skipping static reservation: %r", s)
            continue
        rest = fields[1:3]
        hostname = next((f for f in rest if f and not is_ipv4(f)), "")
        ip = next((f for f in rest if is_ipv4(f)), "")
        result.append(StaticReservation(mac=normalize_mac(fields[0]), hostname=hostname, ip=ip))
    return result


def parse_leases(text: str) -> List[Lease]:
    """Parse dnsmasq lease lines: ``timestamp mac ip hostname client-id``."""
    result: List[Lease] = []
    for line in (text or "").splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[0].startswith("#"):
            continue
        if not is_mac(parts[1]):
            logger.debug("Skipping lease line: %r", line)
            continue
        hostname = parts[3] if len(parts) > 3 else ""
        if hostname == LEASE_NO_HOSTNAME:
            hostname = ""
        result.append(Lease(timestamp=parts[0], mac=normalize_mac(parts[1]), ip=parts[2], hostname=hostname))
    return result


def parse_radio_listing(text: str) -> List[RadioInterface]:
    radios: List[RadioInterface] = []
    for line in (text or "").splitlines():
        parts = line.strip().split("|")
        if len(parts) != 5 or not is_mac(parts[1]):
            continue
        try:
            subindex = int(parts[4])
        except ValueError:
            continue
        radios.append(
            RadioInterface(iface=parts[0], hwaddr=normalize_mac(parts[1]), nband=parts[2], ssid=parts[3], subindex=subindex)
        )
    return radios


def radio_label(node_label: str, radio: RadioInterface) -> str:
    label = f"{node_label}-{band_name(radio.nband)}"
    if BACKHAUL_SSID_REGEX.match(radio.ssid or ""):
        label += "-BH"
    if radio.subindex >= 2:
        label += f"-vap{radio.subindex}"
    return label


def infra_entries(node: Node, base_mac: Optional[str], radios: Iterable[RadioInterface]) -> List[Tuple[str, str]]:
    """(mac, label) pairs for a router's own interfaces, base MAC first."""
    entries: List[Tuple[str, str]] = []
    if base_mac and is_mac(base_mac):
        mac = normalize_mac(base_mac)
        if mac != ZERO_MAC:
            entries.append((mac, node.label))
    for radio in radios:
        if radio.hwaddr == ZERO_MAC:
            continue
        entries.append((radio.hwaddr, radio_label(node.label, radio)))
    return entries


def merge_directory(
    static: Sequence[StaticReservation],
    leases: Sequence[Lease],
    infra: Sequence[Tuple[str, str]],
) -> Directory:
    """Merge the three sources: static > lease > infra.

    Static reservations are authoritative. A lease adds an unknown address
    or fills a blank hostname but never overwrites a name. Infrastructure
    labels are only used for addresses neither DHCP source knows about.
    """
    directory = Directory()
    entries = directory.entries
    for s in static:
        if s.mac not in entries:
            entries[s.mac] = DirectoryEntry(mac=s.mac, hostname=s.hostname, source=MacSource.STATIC)
        elif not entries[s.mac].hostname and s.hostname:
            entries[s.mac].hostname = s.hostname

    added = updated = 0
    for lease in leases:
        existing = entries.get(lease.mac)
        if existing is None:
            entries[lease.mac] = DirectoryEntry(mac=lease.mac, hostname=lease.hostname, source=MacSource.LEASE)
            added += 1
        elif not existing.hostname and lease.hostname:
            existing.hostname = lease.hostname
            updated += 1

    infra_added = 0
    for mac, label in infra:
        if mac not in entries:
            entries[mac] = DirectoryEntry(mac=mac, hostname=label, source=MacSource.INFRA)
            infra_added += 1

    logger.info(
        "Directory merged: %d static, %d added and %d named from leases, %d infrastructure",
        len(static),
        added,
        updated,
        infra_added,
    )
    return directory


def fetch_static_reservations(executor, node: Node) -> List[StaticReservation]:
    res = executor.run(node.address, STATIC_CONF_COMMAND)
    if not res.ok:
        logger.warning("Could not read dnsmasq.conf from %s: %s", node.address, res.error or res.returncode)
        return []
    return parse_static_reservations(res.output)


def fetch_leases(executor, node: Node) -> List[Lease]:
    res = executor.run(node.address, LEASES_COMMAND)
    if not res.ok:
        logger.warning("Could not read DHCP leases from %s: %s", node.address, res.error or res.returncode)
        return []
    return parse_leases(res.output)


def fetch_infra_entries(executor, node: Node) -> List[Tuple[str, str]]:
    base = executor.run(node.address, BASE_MAC_COMMAND)
    if base.unreachable:
        logger.warning("Skipping infrastructure MACs for %s: %s", node.label, base.error)
        return []
    radios = executor.run(node.address, RADIO_COMMAND)
    radio_list = parse_radio_listing(radios.output) if radios.ok else []
    return infra_entries(node, base.output.strip() if base.ok else None, radio_list)


def build_directory(executor, registry: NodeRegistry) -> Directory:
    primary = registry.primary
    logger.info("Building MAC directory (DHCP data from %s)", primary.address)
    static = fetch_static_reservations(executor, primary)
    leases = fetch_leases(executor, primary)
    nodes = registry.sorted_nodes()
    with ThreadPoolExecutor(max_workers=len(nodes)) as pool:
        per_node = list(pool.map(lambda n: fetch_infra_entries(executor, n), nodes))
    infra = [pair for pairs in per_node for pair in pairs]
    return merge_directory(static, leases, infra)


def save_directory(directory: Directory, path: str) -> None:
    """Rewrite the cache file as ``mac<TAB>hostname`` lines.

    There is no locking: two concurrent rebuilds race and the last writer wins.
    """
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    df = pd.DataFrame(directory.to_rows(), columns=["mac", "hostname"])
    df.to_csv(path, sep="\t", header=False, index=False, quoting=csv.QUOTE_NONE, escapechar="\\")
    logger.info("Wrote %d directory entries to %s", len(df), path)


def load_directory(path: str) -> Directory:
    if not os.path.exists(path):
        raise DirectoryMissing(path)
    directory = Directory()
    if os.path.getsize(path) == 0:
        return directory
    df = pd.read_csv(
        path,
        sep="\t",
        header=None,
        names=["mac", "hostname"],
        dtype=str,
        keep_default_na=False,
        na_values=[],
        quoting=csv.QUOTE_NONE,
        escapechar="\\",
        engine="python",
    ).fillna("")
    # a line without a tab has no hostname column; read it as unnamed
    for mac, hostname in zip(df["mac"], df["hostname"]):
        if not mac or not is_mac(mac):
            continue
        key = normalize_mac(mac)
        if key not in directory.entries:
            directory.entries[key] = DirectoryEntry(mac=key, hostname=hostname.strip(), source=None)
    return directory


def load_or_build(path: str, executor, registry: NodeRegistry, refresh: bool = False) -> Directory:
    if not refresh:
        try:
            return load_directory(path)
        except DirectoryMissing:
            logger.info("MAC directory %s not found; building it", path)
    directory = build_directory(executor, registry)
    save_directory(directory, path)
    return directory
