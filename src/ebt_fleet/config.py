from __future__ import annotations

import json
import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .models import Node

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EBT_FLEET_CONFIG"
DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_COMMAND_TIMEOUT = 20

_LABEL_REGEX = re.compile(r"\(([^)]+)\)")

# Used when no config file exists: one primary router and two mesh nodes.
DEFAULT_ROUTERS: Sequence[Mapping[str, str]] = (
    {"address": "10.10.3.1", "description": "RT-BE92U (Primary)", "ssh": "ssh -p 202 admin@10.10.3.1"},
    {"address": "10.10.3.2", "description": "AX86U (Mesh1)", "ssh": "ssh -p 202 admin@10.10.3.2"},
    {"address": "10.10.3.3", "description": "AX88U-Pro (Mesh2)", "ssh": "ssh -p 202 admin@10.10.3.3"},
)


def _app_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".ebt_fleet")


def default_config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR) or os.path.join(_app_dir(), "config.json")


def default_macmap_path() -> str:
    return os.path.join(_app_dir(), "macmap.tsv")


def split_description(description: str) -> Tuple[str, str]:
    """Split "RT-AX86U (Mesh1)" into ("RT-AX86U", "Mesh1").

    A description without parentheses is used whole as the label.
    """
    desc = description.strip()
    m = _LABEL_REGEX.search(desc)
    if not m:
        return "", desc
    model = desc[: m.start()].strip()
    return model, m.group(1).strip()


@dataclass(frozen=True)
class NodeRegistry:
    nodes: Tuple[Node, ...]
    degraded: bool = False

    @classmethod
    def from_nodes(cls, nodes: Iterable[Node]) -> "NodeRegistry":
        node_list = list(nodes)
        if not node_list:
            raise ConfigurationError("No routers configured")
        seen = set()
        for n in node_list:
            if n.address in seen:
                raise ConfigurationError(f"Duplicate router address: {n.address}")
            seen.add(n.address)

        primaries = [n for n in node_list if n.is_primary]
        degraded = len(primaries) != 1
        if not primaries:
            logger.warning(
                "No router is marked as primary; falling back to %s for DHCP data",
                node_list[0].address,
            )
        elif len(primaries) > 1:
            logger.warning(
                "Multiple routers marked as primary (%s); using %s",
                ", ".join(p.address for p in primaries),
                primaries[0].address,
            )
        return cls(nodes=tuple(node_list), degraded=degraded)

    @property
    def primary(self) -> Node:
        for n in self.nodes:
            if n.is_primary:
                return n
        return self.nodes[0]

    def sorted_nodes(self) -> List[Node]:
        return sorted(self.nodes, key=lambda n: address_sort_key(n.address))

    def resolve(self, name: str) -> Optional[Node]:
        """Find a node by address, short label or model name (case-insensitive)."""
        wanted = name.strip().lower()
        for n in self.nodes:
            if n.address == name.strip():
                return n
        for n in self.nodes:
            if n.label.lower() == wanted:
                return n
            if n.model and n.model.lower() == wanted:
                return n
        return None

    def names_help(self) -> str:
        return ", ".join(f"{n.label.lower()}/{n.address}" for n in self.sorted_nodes())


def address_sort_key(address: str) -> Tuple:
    parts = address.split(".")
    if len(parts) == 4 and all(p.isdigit() for p in parts):
        return (0, tuple(int(p) for p in parts))
    return (1, address)


@dataclass(frozen=True)
class Settings:
    registry: NodeRegistry
    ssh_commands: Dict[str, List[str]] = field(default_factory=dict)
    macmap_path: str = field(default_factory=default_macmap_path)
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT


_TRUE_WORDS = ("true", "yes", "on", "1")
_FALSE_WORDS = ("false", "no", "off", "0", "")


def _as_bool(value: object, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ConfigurationError(f"Expected a boolean for '{key}', got {value!r}")


def _node_from_entry(entry: Mapping[str, object]) -> Tuple[Node, List[str]]:
    address = str(entry.get("address", "")).strip()
    if not address:
        raise ConfigurationError(f"Router entry without address: {entry!r}")
    description = str(entry.get("description", "") or address)
    model, label = split_description(description)
    label = str(entry.get("label") or label)
    is_primary = _as_bool(entry.get("primary", "primary" in description.lower()), "primary")
    ssh = entry.get("ssh") or f"ssh {address}"
    ssh_argv = shlex.split(ssh) if isinstance(ssh, str) else [str(x) for x in ssh]  # type: ignore[union-attr]
    return Node(address=address, label=label, model=model, is_primary=is_primary), ssh_argv


def settings_from_dict(data: Mapping[str, object]) -> Settings:
    routers = data.get("routers") or DEFAULT_ROUTERS
    nodes: List[Node] = []
    ssh_commands: Dict[str, List[str]] = {}
    for entry in routers:  # type: ignore[union-attr]
        node, argv = _node_from_entry(entry)
        nodes.append(node)
        ssh_commands[node.address] = argv

    macmap = data.get("macmap_file")
    return Settings(
        registry=NodeRegistry.from_nodes(nodes),
        ssh_commands=ssh_commands,
        macmap_path=os.path.expanduser(str(macmap)) if macmap else default_macmap_path(),
        connect_timeout=int(data.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),  # type: ignore[arg-type]
        command_timeout=int(data.get("command_timeout", DEFAULT_COMMAND_TIMEOUT)),  # type: ignore[arg-type]
    )


def load_settings(path: Optional[str] = None) -> Settings:
    config_path = path or default_config_path()
    if not os.path.exists(config_path):
        logger.info("No config at %s; using built-in router table", config_path)
        return settings_from_dict({})
    with open(config_path, "r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {exc}") from exc
    logger.info("Loaded config from %s", config_path)
    return settings_from_dict(data)
