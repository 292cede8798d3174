from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Node:
    address: str
    label: str
    model: str = ""
    is_primary: bool = False

    @property
    def description(self) -> str:
        if self.model:
            return f"{self.model} ({self.label})"
        return self.label


@dataclass(frozen=True)
class RawRule:
    chain: str
    table: str
    text: str


@dataclass(frozen=True)
class CanonicalRule:
    chain: str
    normalized_text: str

    def key(self) -> Tuple[str, str]:
        return (self.chain, self.normalized_text)


class RuleAction(str, Enum):
    DROP = "drop"
    ACCEPT = "accept"
    MARK = "mark"
    OTHER = "other"


@dataclass(frozen=True)
class ParsedRule:
    action: RuleAction
    source: Optional[str] = None
    dest: Optional[str] = None
    is_broadcast_dest: bool = False
    mark_value: Optional[str] = None
    source_negated: bool = False
    dest_negated: bool = False

    @property
    def has_source(self) -> bool:
        return self.source is not None

    @property
    def has_dest(self) -> bool:
        return self.dest is not None or self.is_broadcast_dest


class MacSource(str, Enum):
    STATIC = "static"
    LEASE = "lease"
    INFRA = "infra"


@dataclass
class DirectoryEntry:
    mac: str
    hostname: str
    source: Optional[MacSource] = None


@dataclass
class Directory:
    """Address-to-hostname mapping keyed by canonical MAC.

    An entry with an empty hostname is a known-but-unnamed device, which is
    distinct from the address being absent altogether.
    """

    entries: Dict[str, DirectoryEntry] = field(default_factory=dict)

    def __contains__(self, mac: str) -> bool:
        return mac in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, mac: str) -> Optional[DirectoryEntry]:
        return self.entries.get(mac)

    def hostname(self, mac: str) -> Optional[str]:
        entry = self.entries.get(mac)
        return entry.hostname if entry is not None else None

    def as_mapping(self) -> Dict[str, str]:
        return {mac: e.hostname for mac, e in self.entries.items()}

    def to_rows(self) -> List[Tuple[str, str]]:
        return [(e.mac, e.hostname) for e in self.entries.values()]


@dataclass
class Device:
    mac: str
    ip: Optional[str] = None
    hostname: Optional[str] = None


class BlockMode(str, Enum):
    DROP_SILENT = "drop"
    MARK_REJECT = "reject"
    NONE = "none"
