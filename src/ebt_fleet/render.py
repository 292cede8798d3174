from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .diff_engine import NodeRules, RuleReport
from .models import Directory, ParsedRule, RuleAction
from .orchestrator import NodeOutcome, NodeStatus
from .resolver import MacResolver
from .rule_normalizer import is_mac, mask_macs_in_text, parse_rule

COLORS: Dict[str, str] = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

RULE_LINE = "═" * 80
COMMON_MARKER = "● "
AIMESH_MARKS = ("0x5", "0x7")


class Painter:
    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def __call__(self, text: str, *styles: str) -> str:
        if not self.enabled or not styles:
            return text
        return "".join(COLORS[s] for s in styles) + text + COLORS["reset"]


def describe_rule(parsed: ParsedRule) -> str:
    if parsed.action == RuleAction.DROP:
        if parsed.source_negated:
            return "Block all except this source"
        if parsed.dest_negated:
            return "Block all except this dest"
        if parsed.has_source and parsed.has_dest:
            return "Block src→dst traffic"
        if parsed.has_source:
            return "Block from this source"
        if parsed.has_dest:
            return "Block to this dest"
        return "Drop packet"
    if parsed.action == RuleAction.ACCEPT:
        if parsed.is_broadcast_dest:
            return "Allow broadcast from src"
        return "Allow src→dst traffic"
    if parsed.action == RuleAction.MARK:
        if parsed.mark_value in AIMESH_MARKS:
            return "AiMesh traffic mark"
        return "Packet marking"
    return ""


def _lead_index(tokens: Sequence[str]) -> Optional[int]:
    """Index of the flag of the first address column: the source, else the dest."""
    for flag in ("-s", "-d"):
        for i, tok in enumerate(tokens[:-1]):
            if tok == flag and is_mac(tokens[i + 1]):
                return i
    return None


def lead_column_text(text: str, resolver: MacResolver) -> str:
    """Plain text of the first address column, used for alignment."""
    tokens = text.split()
    idx = _lead_index(tokens)
    if idx is None:
        return ""
    return f"{tokens[idx]} {resolver.display(tokens[idx + 1])}"


def format_rule(text: str, resolver: MacResolver, paint: Painter, pad_width: int = 0) -> str:
    """Render a rule with hostnames, colored actions and a trailing description."""
    parsed = parse_rule(text)
    tokens = text.split()
    lead = _lead_index(tokens)
    out: List[str] = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if tok in ("-s", "-d") and nxt is not None and is_mac(nxt):
            name = resolver.hostname(nxt)
            shown = paint(resolver.display_mac(nxt), "cyan")
            if name:
                shown += " " + paint(f"({name})", "dim")
            piece = f"{tok} {shown}"
            if i == lead:
                plain = f"{tok} {resolver.display(nxt)}"
                piece += " " * max(0, pad_width - len(plain))
            out.append(piece)
            i += 2
            continue
        if tok == "-j" and nxt in ("DROP", "ACCEPT"):
            out.append(paint(f"-j {nxt}", "red" if nxt == "DROP" else "green"))
            i += 2
            continue
        out.append(mask_macs_in_text(tok) if resolver.mask else tok)
        i += 1

    line = " ".join(out)
    desc = describe_rule(parsed)
    if desc:
        line += "  " + paint(f"# {desc}", "dim")
    return line


def header(title: str, paint: Painter) -> List[str]:
    return ["", paint(RULE_LINE, "bold", "blue"), paint(f"  {title}", "bold", "blue"), paint(RULE_LINE, "bold", "blue")]


def subheader(title: str, paint: Painter) -> List[str]:
    return ["", paint(f"── {title} ──", "yellow")]


def _node_title(node_rules: NodeRules, unique_only: bool) -> str:
    node = node_rules.node
    title = f"{node.description} ({node.address})"
    return f"{title} - UNIQUE RULES" if unique_only else title


def render_node(node_rules: NodeRules, report: RuleReport, resolver: MacResolver, paint: Painter) -> List[str]:
    visible = node_rules.visible_rules(report.unique_only)
    if not visible:
        if node_rules.show_no_unique_notice(report.unique_only):
            return header(_node_title(node_rules, True), paint) + ["  " + paint("(no unique rules)", "dim")]
        return []

    width = max(len(lead_column_text(r.rule.text, resolver)) for r in visible)
    lines = header(_node_title(node_rules, report.unique_only), paint)
    last_chain: Optional[str] = None
    show_marker = report.active_count > 1 and not report.unique_only
    for entry in visible:
        if entry.rule.chain != last_chain:
            lines += subheader(f"Chain: {entry.rule.chain}", paint)
            last_chain = entry.rule.chain
        prefix = paint(COMMON_MARKER, "dim") if show_marker and entry.is_common else "  "
        lines.append(prefix + format_rule(entry.rule.text, resolver, paint, width))
    return lines


def render_summary(report: RuleReport, paint: Painter) -> List[str]:
    lines = ["", paint("Summary:", "bold", "green")]
    multi = report.active_count > 1
    if multi:
        lines.append(f"  Common rules (all {report.active_count} routers): {report.common_count}")
    for nr in report.nodes:
        if multi:
            lines.append(f"  {nr.node.description} unique: {nr.unique_count}")
        else:
            lines.append(f"  {nr.node.description} total rules: {nr.total}")
    if report.unique_only:
        lines += ["", "  " + paint("(showing unique rules only)", "dim")]
    elif multi:
        lines += ["", "  " + paint(f"{COMMON_MARKER}= common rule (present on all selected routers)", "dim")]
    return lines


def render_report(report: RuleReport, resolver: MacResolver, paint: Painter) -> List[str]:
    lines = [paint(f"Note: {n}", "yellow") for n in report.notices]
    for nr in report.nodes:
        lines += render_node(nr, report, resolver, paint)
    lines += render_summary(report, paint)
    return lines


def render_directory(directory: Directory, paint: Painter, mask: bool = False) -> List[str]:
    resolver = MacResolver(directory, mask=mask)
    entries = sorted(directory.entries.values(), key=lambda e: (e.hostname, e.mac))
    lines = []
    for e in entries:
        mac = paint(f"{resolver.display_mac(e.mac):<20}", "cyan")
        lines.append(f"{mac} {e.hostname}" if e.hostname else f"{mac} {paint('(unnamed)', 'dim')}")
    return lines


def render_outcomes(outcomes: Sequence[NodeOutcome], paint: Painter) -> List[str]:
    lines = []
    for o in outcomes:
        if o.ok:
            lines.append(f"  → {o.node.label}")
        else:
            lines.append(f"  → {o.node.label} " + paint(f"FAILED: {o.error}", "red"))
    return lines


def render_status(statuses: Sequence[NodeStatus], device_info: str, paint: Painter, mask: bool = False) -> List[str]:
    lines = ["", paint(f"Current ebtables entries for {device_info}:", "bold", "cyan"), ""]
    for st in statuses:
        lines.append(paint(f"** {st.node.label} ({st.node.address})", "yellow"))
        if not st.reachable:
            lines.append("  " + paint(f"(unreachable: {st.error})", "red"))
        elif not st.rules:
            lines.append("  (no entries)")
        else:
            for r in st.rules:
                lines.append(mask_macs_in_text(r.text) if mask else r.text)
        lines.append("")
    return lines
