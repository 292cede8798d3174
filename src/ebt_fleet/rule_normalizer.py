from __future__ import annotations

import re
from typing import Optional

from .models import CanonicalRule, ParsedRule, RawRule, RuleAction

MAC_TOKEN_REGEX = re.compile(r"^[0-9A-Fa-f]{1,2}(?::[0-9A-Fa-f]{1,2}){5}$")
STRICT_MAC_REGEX = re.compile(r"^(?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")
_MAC_IN_TEXT_REGEX = re.compile(
    r"(?<![0-9A-Fa-f:])"
    r"([0-9A-Fa-f]{1,2}(?::[0-9A-Fa-f]{1,2}){3}):[0-9A-Fa-f]{1,2}:[0-9A-Fa-f]{1,2}"
    r"(?![0-9A-Fa-f:])"
)
ZERO_MAC = "00:00:00:00:00:00"

_ACTIONS = {
    "DROP": RuleAction.DROP,
    "ACCEPT": RuleAction.ACCEPT,
    "mark": RuleAction.MARK,
}


def is_mac(value: str) -> bool:
    return bool(MAC_TOKEN_REGEX.match((value or "").strip()))


def normalize_mac(value: str) -> str:
    """Return the lowercase, zero-padded form of a 6-group MAC address."""
    token = (value or "").strip()
    if not MAC_TOKEN_REGEX.match(token):
        raise ValueError(f"Not a MAC address: {value!r}")
    return ":".join(part.lower().zfill(2) for part in token.split(":"))


def mask_mac(mac: str) -> str:
    parts = mac.split(":")
    if len(parts) < 3:
        return mac
    return ":".join(parts[:-2] + ["xx", "xx"])


def mask_macs_in_text(text: str) -> str:
    return _MAC_IN_TEXT_REGEX.sub(lambda m: f"{m.group(1)}:xx:xx", text)


def _normalize_space(value: str) -> str:
    return " ".join((value or "").strip().split())


def normalize_rule_text(text: str) -> str:
    tokens = _normalize_space(text).split(" ")
    return " ".join(normalize_mac(t) if MAC_TOKEN_REGEX.match(t) else t for t in tokens)


def normalize_rule(rule: RawRule) -> CanonicalRule:
    return CanonicalRule(chain=rule.chain, normalized_text=normalize_rule_text(rule.text))


def _address_operand(token: Optional[str]) -> Optional[str]:
    if token is None:
        return None
    if MAC_TOKEN_REGEX.match(token):
        return normalize_mac(token)
    # masked forms such as 1:0:0:0:0:0/1:0:0:0:0:0 are kept verbatim
    if ":" in token:
        return token
    return None


def parse_rule(text: str) -> ParsedRule:
    """Classify a single rule line into a structured record."""
    tokens = _normalize_space(text).split(" ")
    action = RuleAction.OTHER
    source: Optional[str] = None
    dest: Optional[str] = None
    broadcast = False
    mark_value: Optional[str] = None
    negated = {"-s": False, "-d": False}

    i = 0
    while i < len(tokens):
        tok = tokens[i]
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if tok in ("-s", "-d") and nxt == "!" and i + 2 < len(tokens):
            nxt = tokens[i + 2]
            negated[tok] = True
            i += 1
        if tok == "-j" and nxt is not None:
            action = _ACTIONS.get(nxt, RuleAction.OTHER)
            i += 2
            continue
        if tok == "-s":
            source = _address_operand(nxt)
            i += 2
            continue
        if tok == "-d":
            if nxt is not None and nxt.lower() == "broadcast":
                broadcast = True
            else:
                dest = _address_operand(nxt)
            i += 2
            continue
        if tok in ("--mark-or", "--mark-set", "--mark-and", "--mark-xor") and nxt is not None:
            mark_value = nxt
            i += 2
            continue
        i += 1

    return ParsedRule(
        action=action,
        source=source,
        dest=dest,
        is_broadcast_dest=broadcast,
        mark_value=mark_value,
        source_negated=negated["-s"],
        dest_negated=negated["-d"],
    )
