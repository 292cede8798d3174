from __future__ import annotations

from typing import Optional

from .models import Directory
from .rule_normalizer import is_mac, mask_mac, normalize_mac


class MacResolver:
    def __init__(self, directory: Directory, mask: bool = False) -> None:
        self.directory = directory
        self.mask = mask

    def hostname(self, mac: str) -> Optional[str]:
        if not is_mac(mac):
            return None
        return self.directory.hostname(normalize_mac(mac))

    def display_mac(self, mac: str) -> str:
        return mask_mac(mac) if self.mask else mac

    def display(self, mac: str) -> str:
        """``mac (hostname)``, or just the MAC when no name is known."""
        name = self.hostname(mac)
        shown = self.display_mac(mac)
        return f"{shown} ({name})" if name else shown
