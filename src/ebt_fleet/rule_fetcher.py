from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .config import address_sort_key
from .errors import NodeUnreachable
from .models import Node, RawRule

logger = logging.getLogger(__name__)

FILTER_COMMAND = "ebtables -L"
NAT_COMMAND = "ebtables -t nat -L"

_CHAIN_HEADER = re.compile(r"^Bridge chain:\s*(?P<chain>[^,]+)")
_TABLE_HEADER = re.compile(r"^Bridge table:\s*(?P<table>\S+)")


@dataclass
class FetchResult:
    node: Node
    text: Optional[str] = None
    error: Optional[str] = None
    rules: List[RawRule] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.text is not None


def parse_dump(text: str, table: str = "filter") -> List[RawRule]:
    """Split an ebtables listing into chain-scoped rule lines.

    Rule lines start with ``-`` and belong to the most recent
    ``Bridge chain:`` header; anything before the first header is ignored.
    A ``Bridge table:`` header switches the table tag for following chains.
    """
    rules: List[RawRule] = []
    current_chain: Optional[str] = None
    current_table = table
    for line in (text or "").splitlines():
        s = line.strip()
        m_table = _TABLE_HEADER.match(s)
        if m_table:
            current_table = m_table.group("table")
            current_chain = None
            continue
        m_chain = _CHAIN_HEADER.match(s)
        if m_chain:
            current_chain = m_chain.group("chain").strip()
            continue
        if s.startswith("-") and current_chain:
            rules.append(RawRule(chain=current_chain, table=current_table, text=s))
    return rules


def fetch_raw(executor, node: Node) -> Tuple[Optional[str], Optional[str]]:
    """Return (filter, nat) listings; None marks a query that failed."""
    filt = executor.run(node.address, FILTER_COMMAND)
    nat = executor.run(node.address, NAT_COMMAND) if not filt.unreachable else filt
    return (filt.output if filt.ok else None, nat.output if nat.ok else None)


def fetch_node_rules(executor, node: Node) -> FetchResult:
    filt = executor.run(node.address, FILTER_COMMAND)
    try:
        filt.raise_for_unreachable()
    except NodeUnreachable as exc:
        logger.warning("Could not reach %s: %s", node.label, exc)
        return FetchResult(node=node, error=exc.reason)
    if not filt.ok:
        reason = filt.error or f"exit status {filt.returncode}"
        logger.warning("Could not fetch rules from %s (%s): %s", node.label, node.address, reason)
        return FetchResult(node=node, error=reason)

    rules = parse_dump(filt.output, table="filter")
    text = filt.output
    nat = executor.run(node.address, NAT_COMMAND)
    if nat.ok:
        rules.extend(parse_dump(nat.output, table="nat"))
        text = f"{filt.output}\n{nat.output}"
    else:
        logger.warning("NAT table query failed on %s: %s", node.address, nat.error or nat.returncode)
    return FetchResult(node=node, text=text, rules=rules)


def fetch_all(executor, nodes: Iterable[Node], max_workers: Optional[int] = None) -> List[FetchResult]:
    """Fetch every node in parallel; results come back sorted by address."""
    node_list = list(nodes)
    if not node_list:
        return []
    workers = max_workers or len(node_list)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda n: fetch_node_rules(executor, n), node_list))
    return sorted(results, key=lambda r: address_sort_key(r.node.address))
