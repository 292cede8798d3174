from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from ebt_fleet.config import NodeRegistry
from ebt_fleet.models import Node
from ebt_fleet.remote import CommandResult


class FakeRouter:
    """Enough of ebtables and a shell to answer the commands we send."""

    def __init__(self, chains: Optional[Dict[str, List[str]]] = None, nat: str = "", files: Optional[Dict[str, str]] = None):
        self.chains: Dict[str, List[str]] = {"INPUT": [], "FORWARD": [], "OUTPUT": []}
        self.chains.update({k: list(v) for k, v in (chains or {}).items()})
        self.nat = nat
        self.files = dict(files or {})
        self.commands: List[str] = []

    def dump(self) -> str:
        lines = ["Bridge table: filter", ""]
        for chain, rules in self.chains.items():
            lines.append(f"Bridge chain: {chain}, entries: {len(rules)}, policy: ACCEPT")
            lines.extend(rules)
            lines.append("")
        return "\n".join(lines)

    def _ebtables(self, piece: str) -> int:
        parts = piece.replace("2>/dev/null", "").split()
        op, chain, rest = parts[1], parts[2], " ".join(parts[3:])
        rules = self.chains.setdefault(chain, [])
        if op == "-I":
            rules.insert(0, rest)
            return 0
        if op == "-D":
            if rest in rules:
                rules.remove(rest)
                return 0
            return 1
        return 2

    def handle(self, command: str) -> CommandResult:
        self.commands.append(command)
        if command == "ebtables -L":
            return CommandResult("", command, 0, output=self.dump())
        if command == "ebtables -t nat -L":
            return CommandResult("", command, 0, output=self.nat)
        if command in self.files:
            return CommandResult("", command, 0, output=self.files[command])
        if command.startswith("ebtables -"):
            rc = 0
            for piece in command.split(";"):
                rc = self._ebtables(piece.strip())
            return CommandResult("", command, rc)
        return CommandResult("", command, 1, error="not found")


class FakeExecutor:
    def __init__(self, routers: Dict[str, FakeRouter], unreachable: tuple = ()):
        self.routers = routers
        self.unreachable = set(unreachable)

    def run(self, address: str, command: str) -> CommandResult:
        if address in self.unreachable or address not in self.routers:
            return CommandResult(address, command, 255, error="connection timed out", unreachable=True)
        res = self.routers[address].handle(command)
        res.address = address
        return res


@pytest.fixture
def nodes() -> List[Node]:
    return [
        Node(address="10.0.0.1", label="Primary", model="RT-BE92U", is_primary=True),
        Node(address="10.0.0.2", label="Mesh1", model="AX86U"),
        Node(address="10.0.0.3", label="Mesh2", model="AX88U-Pro"),
    ]


@pytest.fixture
def registry(nodes) -> NodeRegistry:
    return NodeRegistry.from_nodes(nodes)
