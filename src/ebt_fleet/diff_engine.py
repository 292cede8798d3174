from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .models import Node, RawRule
from .rule_normalizer import normalize_rule

RuleKey = Tuple[str, str]

UNIQUE_IGNORED_NOTICE = "--unique ignored (only one router selected)"


@dataclass
class ClassifiedRule:
    rule: RawRule
    key: RuleKey
    is_common: bool


@dataclass
class NodeRules:
    node: Node
    rules: List[ClassifiedRule] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rules)

    @property
    def unique_count(self) -> int:
        return sum(1 for r in self.rules if not r.is_common)

    def visible_rules(self, unique_only: bool) -> List[ClassifiedRule]:
        if unique_only:
            return [r for r in self.rules if not r.is_common]
        return list(self.rules)

    def show_no_unique_notice(self, unique_only: bool) -> bool:
        """True when unique-only mode would otherwise print nothing for a node that has rules."""
        return unique_only and self.total > 0 and self.unique_count == 0


@dataclass
class RuleReport:
    nodes: List[NodeRules]
    common_keys: Set[RuleKey]
    unique_only: bool
    chain: Optional[str] = None
    notices: List[str] = field(default_factory=list)

    @property
    def active_count(self) -> int:
        return len(self.nodes)

    @property
    def common_count(self) -> int:
        return len(self.common_keys)


def rule_key(rule: RawRule) -> RuleKey:
    return normalize_rule(rule).key()


def _filter_chain(rules: Sequence[RawRule], chain: Optional[str]) -> List[RawRule]:
    if not chain:
        return list(rules)
    return [r for r in rules if r.chain == chain]


def count_rule_keys(key_sets: Sequence[Set[RuleKey]]) -> Counter:
    counts: Counter = Counter()
    for keys in key_sets:
        counts.update(keys)
    return counts


def common_rule_keys(key_sets: Sequence[Set[RuleKey]]) -> Set[RuleKey]:
    """Keys present in every set. Needs at least two sets to mean anything."""
    if len(key_sets) < 2:
        return set()
    counts = count_rule_keys(key_sets)
    return {k for k, c in counts.items() if c == len(key_sets)}


def build_report(
    rules_by_node: Mapping[Node, Sequence[RawRule]],
    chain: Optional[str] = None,
    unique_only: bool = False,
) -> RuleReport:
    """Classify every rule as common to all active nodes or unique to some.

    ``rules_by_node`` holds the nodes that returned data, each with its rules
    in dump order. Iteration order of the mapping is the display order.
    """
    notices: List[str] = []
    active = list(rules_by_node.keys())
    if len(active) == 1 and unique_only:
        notices.append(UNIQUE_IGNORED_NOTICE)
        unique_only = False

    filtered: Dict[Node, List[RawRule]] = {n: _filter_chain(rules_by_node[n], chain) for n in active}
    keyed: Dict[Node, List[Tuple[RawRule, RuleKey]]] = {
        n: [(r, rule_key(r)) for r in rules] for n, rules in filtered.items()
    }
    key_sets = [{k for _, k in keyed[n]} for n in active]
    common = common_rule_keys(key_sets)

    # one active node: nothing is flagged unique
    single = len(active) == 1
    nodes: List[NodeRules] = []
    for n in active:
        classified = [
            ClassifiedRule(rule=r, key=k, is_common=single or k in common)
            for r, k in keyed[n]
        ]
        nodes.append(NodeRules(node=n, rules=classified))
    return RuleReport(
        nodes=nodes,
        common_keys=common,
        unique_only=unique_only,
        chain=chain,
        notices=notices,
    )
