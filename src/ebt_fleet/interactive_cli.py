from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from .config import Settings
from .device_locator import DeviceLocator
from .errors import AmbiguousInput, NoMatch
from .mac_map import load_or_build
from .models import BlockMode, Device
from .orchestrator import apply_block, mac_status
from .render import Painter, render_outcomes, render_status
from .rule_normalizer import mask_mac


CHOICES = {
    "b": BlockMode.DROP_SILENT,
    "r": BlockMode.MARK_REJECT,
    "u": BlockMode.NONE,
}

DONE_MESSAGES = {
    BlockMode.DROP_SILENT: "Done. Device blocked at Layer 2 (silent DROP).",
    BlockMode.MARK_REJECT: "Done. Device blocked (REJECT mode - clients will receive RST/ICMP).",
    BlockMode.NONE: "Done. Device unblocked.",
}

InputFunc = Callable[[str], str]


def make_chooser(paint: Painter, mask: bool = False, read: InputFunc = input) -> Callable[[Sequence[Device]], Optional[int]]:
    """Numbered-menu chooser; reprompts until a valid number is entered."""

    def choose(candidates: Sequence[Device]) -> Optional[int]:
        print("")
        print(paint(f"Found {len(candidates)} matching device(s):", "bold"))
        print("")
        for i, d in enumerate(candidates, start=1):
            shown = mask_mac(d.mac) if mask else d.mac
            print(f"  {paint(f'{i:2d}', 'yellow')}) {shown:<20} {d.hostname or '(unnamed)'}")
        print("")
        print(f"   {paint('0', 'yellow')}) Cancel")
        print("")
        while True:
            try:
                selection = read(f"Select device [0-{len(candidates)}]: ").strip()
            except EOFError:
                return None
            if selection.isdigit() and 0 <= int(selection) <= len(candidates):
                n = int(selection)
                return None if n == 0 else n - 1
            print("Invalid selection; please try again.")

    return choose


def ask_block_mode(paint: Painter, read: InputFunc = input) -> Optional[BlockMode]:
    print("Options:")
    print(f"  {paint('e', 'yellow')} - Exit")
    print(f"  {paint('b', 'yellow')} - Block device (silent DROP)")
    print(f"  {paint('r', 'yellow')} - Block device (REJECT - sends RST/ICMP, faster client timeout)")
    print(f"  {paint('u', 'yellow')} - Unblock device")
    print("")
    try:
        choice = read("Enter choice [e/b/r/u]: ").strip().lower()
    except EOFError:
        return None
    return CHOICES.get(choice)


def print_device(device: Device, paint: Painter, mask: bool) -> None:
    shown = mask_mac(device.mac) if mask else device.mac
    print("")
    print(paint("Device Found:", "bold", "cyan"))
    print(f"  Hostname: {paint(device.hostname or 'unknown', 'green')}")
    print(f"  IP:       {paint(device.ip or 'unknown', 'green')}")
    print(f"  MAC:      {paint(shown, 'green')}")
    print("")


def run_block(
    settings: Settings,
    executor,
    token: str,
    mask: bool = False,
    paint: Optional[Painter] = None,
    read: InputFunc = input,
) -> int:
    paint = paint or Painter()
    registry = settings.registry

    def load_directory():
        print(paint(f"Searching for hostname matching '{token}'...", "cyan"))
        return load_or_build(settings.macmap_path, executor, registry)

    locator = DeviceLocator(
        executor,
        registry,
        directory_loader=load_directory,
        chooser=make_chooser(paint, mask=mask, read=read),
    )
    try:
        device = locator.locate(token)
    except (NoMatch, AmbiguousInput) as exc:
        print(paint(str(exc), "red"))
        return 1
    if device is None:
        print("Cancelled.")
        return 0

    print_device(device, paint, mask)
    mode = ask_block_mode(paint, read=read)
    if mode is None:
        print("Exiting.")
        return 0

    shown = mask_mac(device.mac) if mask else device.mac
    action = "Unblocking" if mode == BlockMode.NONE else "Blocking"
    print("")
    print(paint(f"{action} {shown} on all routers ({mode.value})...", "cyan"))
    outcomes = apply_block(executor, registry.nodes, device.mac, mode)
    for line in render_outcomes(outcomes, paint):
        print(line)

    failed: List[str] = [o.node.label for o in outcomes if not o.ok]
    if failed:
        print(paint(f"Not applied on: {', '.join(failed)}. Other routers were changed.", "red"))
    else:
        print(paint(DONE_MESSAGES[mode], "green"))

    device_info = f"{device.hostname or 'unknown'} ({device.ip or shown})"
    for line in render_status(mac_status(executor, registry.nodes, device.mac), device_info, paint, mask=mask):
        print(line)
    return 1 if len(failed) == len(outcomes) else 0
