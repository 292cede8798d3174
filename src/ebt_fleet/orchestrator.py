from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import address_sort_key
from .errors import NodeUnreachable
from .models import BlockMode, Node, ParsedRule, RawRule, RuleAction
from .rule_fetcher import FILTER_COMMAND, parse_dump
from .rule_normalizer import normalize_mac, parse_rule

logger = logging.getLogger(__name__)

# Packets carrying this mark are rejected by iptables rules installed at router
# startup (tcp-reset for TCP, icmp-port-unreachable otherwise).
REJECT_MARK = "0x100"

DROP_MATCHES: Tuple[Tuple[str, str], ...] = (
    ("FORWARD", "-s"),
    ("FORWARD", "-d"),
    ("INPUT", "-s"),
    ("OUTPUT", "-d"),
)
MARK_MATCHES: Tuple[Tuple[str, str], ...] = (
    ("FORWARD", "-s"),
    ("FORWARD", "-d"),
)


def drop_rules(mac: str) -> List[str]:
    return [f"{chain} {flag} {mac} -j DROP" for chain, flag in DROP_MATCHES]


def mark_rules(mac: str) -> List[str]:
    return [
        f"{chain} {flag} {mac} -j mark --mark-set {REJECT_MARK} --mark-target ACCEPT"
        for chain, flag in MARK_MATCHES
    ]


def cleanup_commands(mac: str) -> List[str]:
    """Delete both modes' rules; deleting a rule that is not there is harmless."""
    return [f"ebtables -D {rule} 2>/dev/null" for rule in drop_rules(mac) + mark_rules(mac)]


def block_commands(mac: str, mode: BlockMode) -> List[str]:
    mac = normalize_mac(mac)
    commands = cleanup_commands(mac)
    if mode == BlockMode.DROP_SILENT:
        commands += [f"ebtables -I {rule}" for rule in drop_rules(mac)]
    elif mode == BlockMode.MARK_REJECT:
        commands += [f"ebtables -I {rule}" for rule in mark_rules(mac)]
    return commands


@dataclass
class NodeOutcome:
    node: Node
    ok: bool
    error: Optional[str] = None


@dataclass
class NodeStatus:
    node: Node
    rules: List[RawRule] = field(default_factory=list)
    mode: Optional[BlockMode] = None
    error: Optional[str] = None

    @property
    def reachable(self) -> bool:
        return self.error is None


def apply_to_node(executor, node: Node, mac: str, mode: BlockMode) -> NodeOutcome:
    command = "; ".join(block_commands(mac, mode))
    res = executor.run(node.address, command)
    try:
        res.raise_for_unreachable()
    except NodeUnreachable as exc:
        return NodeOutcome(node=node, ok=False, error=exc.reason)
    # an unblock ends in a delete that may legitimately fail
    if mode != BlockMode.NONE and res.returncode != 0:
        return NodeOutcome(node=node, ok=False, error=res.error or f"exit status {res.returncode}")
    return NodeOutcome(node=node, ok=True)


def apply_block(executor, nodes: Iterable[Node], mac: str, mode: BlockMode) -> List[NodeOutcome]:
    """Apply ``mode`` for ``mac`` to every node independently.

    This is not a transaction: a node that fails is reported in its outcome
    and the others are still changed. Nothing is rolled back.
    """
    node_list = sorted(nodes, key=lambda n: address_sort_key(n.address))
    if not node_list:
        return []
    with ThreadPoolExecutor(max_workers=len(node_list)) as pool:
        outcomes = list(pool.map(lambda n: apply_to_node(executor, n, mac, mode), node_list))
    for o in outcomes:
        if o.ok:
            logger.info("Applied %s for %s on %s", mode.value, mac, o.node.address)
        else:
            logger.warning("Failed to apply %s for %s on %s: %s", mode.value, mac, o.node.address, o.error)
    return outcomes


def rules_for_mac(rules: Sequence[RawRule], mac: str) -> List[RawRule]:
    wanted = normalize_mac(mac)
    matched = []
    for rule in rules:
        parsed = parse_rule(rule.text)
        # "-s ! MAC" exempts the address rather than matching it
        if (parsed.source == wanted and not parsed.source_negated) or (
            parsed.dest == wanted and not parsed.dest_negated
        ):
            matched.append(rule)
    return matched


def _targets_address(parsed: ParsedRule) -> bool:
    return (parsed.source is not None and not parsed.source_negated) or (
        parsed.dest is not None and not parsed.dest_negated
    )


def derive_mode(rules: Sequence[RawRule]) -> BlockMode:
    parsed = [p for p in (parse_rule(r.text) for r in rules) if _targets_address(p)]
    if any(p.action == RuleAction.DROP for p in parsed):
        return BlockMode.DROP_SILENT
    if any(p.action == RuleAction.MARK and p.mark_value == REJECT_MARK for p in parsed):
        return BlockMode.MARK_REJECT
    return BlockMode.NONE


def node_status(executor, node: Node, mac: str) -> NodeStatus:
    res = executor.run(node.address, FILTER_COMMAND)
    if not res.ok:
        return NodeStatus(node=node, error=res.error or f"exit status {res.returncode}")
    matched = rules_for_mac(parse_dump(res.output), mac)
    return NodeStatus(node=node, rules=matched, mode=derive_mode(matched))


def mac_status(executor, nodes: Iterable[Node], mac: str) -> List[NodeStatus]:
    node_list = sorted(nodes, key=lambda n: address_sort_key(n.address))
    if not node_list:
        return []
    with ThreadPoolExecutor(max_workers=len(node_list)) as pool:
        return list(pool.map(lambda n: node_status(executor, n, mac), node_list))
