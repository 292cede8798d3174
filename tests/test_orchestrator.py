from __future__ import annotations

from ebt_fleet.models import BlockMode, RawRule
from ebt_fleet.orchestrator import (
    apply_block,
    block_commands,
    cleanup_commands,
    derive_mode,
    mac_status,
    rules_for_mac,
)

from conftest import FakeExecutor, FakeRouter

MAC = "aa:bb:cc:01:02:03"
BASELINE = {
    "FORWARD": ["-s 11:22:33:44:55:66 -j DROP", "-p IPv4 -j ACCEPT"],
    "INPUT": ["-d Broadcast -j ACCEPT"],
}


def _fleet(nodes, unreachable=()):
    routers = {n.address: FakeRouter(chains=BASELINE) for n in nodes}
    return FakeExecutor(routers, unreachable=unreachable), routers


def _snapshot(router):
    return {chain: set(rules) for chain, rules in router.chains.items()}


def test_block_commands_clean_up_before_insert():
    cmds = block_commands("AA:BB:CC:1:2:3", BlockMode.MARK_REJECT)
    cleanup = cleanup_commands(MAC)
    assert cmds[: len(cleanup)] == cleanup
    assert cmds[len(cleanup):] == [
        f"ebtables -I FORWARD -s {MAC} -j mark --mark-set 0x100 --mark-target ACCEPT",
        f"ebtables -I FORWARD -d {MAC} -j mark --mark-set 0x100 --mark-target ACCEPT",
    ]
    assert block_commands(MAC, BlockMode.NONE) == cleanup


def test_block_then_unblock_restores_rule_set(nodes):
    executor, routers = _fleet(nodes)
    before = {a: _snapshot(r) for a, r in routers.items()}

    outcomes = apply_block(executor, nodes, MAC, BlockMode.DROP_SILENT)
    assert all(o.ok for o in outcomes)
    for r in routers.values():
        assert f"-s {MAC} -j DROP" in r.chains["INPUT"]
        assert f"-d {MAC} -j DROP" in r.chains["OUTPUT"]

    outcomes = apply_block(executor, nodes, MAC, BlockMode.NONE)
    assert all(o.ok for o in outcomes)
    assert {a: _snapshot(r) for a, r in routers.items()} == before


def test_blocking_twice_does_not_duplicate(nodes):
    executor, routers = _fleet(nodes[:1])
    apply_block(executor, nodes[:1], MAC, BlockMode.DROP_SILENT)
    apply_block(executor, nodes[:1], MAC, BlockMode.DROP_SILENT)
    forward = routers[nodes[0].address].chains["FORWARD"]
    assert forward.count(f"-s {MAC} -j DROP") == 1


def test_switching_to_reject_removes_drop_rules(nodes):
    executor, routers = _fleet(nodes)
    apply_block(executor, nodes, MAC, BlockMode.DROP_SILENT)
    apply_block(executor, nodes, MAC, BlockMode.MARK_REJECT)
    for r in routers.values():
        all_rules = [rule for rules in r.chains.values() for rule in rules]
        assert not any(MAC in rule and "DROP" in rule for rule in all_rules)
        assert sum(1 for rule in all_rules if MAC in rule and "mark" in rule) == 2

    statuses = mac_status(executor, nodes, MAC)
    assert [s.mode for s in statuses] == [BlockMode.MARK_REJECT] * 3


def test_failure_on_one_node_does_not_stop_others(nodes):
    executor, routers = _fleet(nodes, unreachable=(nodes[1].address,))
    outcomes = apply_block(executor, nodes, MAC, BlockMode.DROP_SILENT)
    assert [o.node.address for o in outcomes] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    assert [o.ok for o in outcomes] == [True, False, True]
    assert f"-s {MAC} -j DROP" in routers[nodes[2].address].chains["FORWARD"]
    assert f"-s {MAC} -j DROP" not in routers[nodes[1].address].chains["FORWARD"]


def test_status_matches_mac_regardless_of_formatting(nodes):
    router = FakeRouter(chains={"FORWARD": ["-s AA:BB:CC:1:2:3 -j DROP", "-s 11:22:33:44:55:66 -j DROP"]})
    executor = FakeExecutor({nodes[0].address: router}, unreachable=(nodes[1].address,))
    statuses = mac_status(executor, nodes[:2], MAC)
    assert [r.text for r in statuses[0].rules] == ["-s AA:BB:CC:1:2:3 -j DROP"]
    assert statuses[0].mode == BlockMode.DROP_SILENT
    assert not statuses[1].reachable
    assert statuses[1].mode is None


def test_negated_match_is_not_a_block_of_that_mac():
    exempt = RawRule("FORWARD", "filter", f"-s ! {MAC} -j DROP")
    assert rules_for_mac([exempt], MAC) == []
    assert derive_mode([exempt]) == BlockMode.NONE
    assert derive_mode([RawRule("FORWARD", "filter", f"-d ! {MAC} -j mark --mark-set 0x100")]) == BlockMode.NONE


def test_unreachable_node_outcome_carries_reason(nodes):
    executor, _ = _fleet(nodes, unreachable=(nodes[0].address,))
    outcome = apply_block(executor, nodes[:1], MAC, BlockMode.NONE)[0]
    assert not outcome.ok
    assert outcome.error == "connection timed out"
