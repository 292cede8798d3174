from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from .config import Settings, load_settings
from .diff_engine import build_report
from .errors import ConfigurationError, DirectoryMissing
from .interactive_cli import run_block
from .logging_config import configure_logging
from .mac_map import build_directory, load_directory, load_or_build, save_directory
from .models import Node
from .remote import SshExecutor
from .render import Painter, render_directory, render_report
from .resolver import MacResolver
from .rule_fetcher import fetch_all, fetch_raw
from .rule_normalizer import mask_macs_in_text


def _unknown_router(settings: Settings, name: str) -> int:
    print(f"Unknown router: {name}")
    print(f"Valid: {settings.registry.names_help()}")
    return 1


def report(settings: Settings, executor, args: argparse.Namespace, paint: Painter) -> int:
    registry = settings.registry
    selected: List[Node] = []
    for name in args.router or []:
        node = registry.resolve(name)
        if node is None:
            return _unknown_router(settings, name)
        if node not in selected:
            selected.append(node)
    nodes = selected or list(registry.nodes)

    print(paint("Fetching ebtables from routers...", "bold"))
    print("  Loading hostname cache...")
    directory = load_or_build(settings.macmap_path, executor, registry, refresh=args.refresh)

    results = fetch_all(executor, nodes)
    for r in results:
        if r.ok:
            print(f"  Fetched {r.node.address} ({r.node.description})")
        else:
            print(paint(f"  {r.node.address} ({r.node.description}) unreachable: {r.error}", "red"))

    rules_by_node = {r.node: r.rules for r in results if r.ok}
    if not rules_by_node:
        print(paint("No router returned any data.", "red"))
        return 1

    rpt = build_report(rules_by_node, chain=args.chain, unique_only=args.unique)
    resolver = MacResolver(directory, mask=args.maskmac)
    for line in render_report(rpt, resolver, paint):
        print(line)
    return 0


def raw(settings: Settings, executor, args: argparse.Namespace, paint: Painter) -> int:
    registry = settings.registry
    node = registry.resolve(args.target) if args.target else registry.primary
    if node is None:
        return _unknown_router(settings, args.target)

    print(f"Fetching ebtables from {node.address} ({node.description})...")
    filt, nat = fetch_raw(executor, node)
    for title, text in (("Filter Table", filt), ("NAT Table", nat)):
        print("")
        print(f"=== {title} ===")
        if text is None:
            print(paint("(query failed)", "red"))
        else:
            print(mask_macs_in_text(text) if args.maskmac else text.rstrip("\n"))
    return 0 if filt is not None else 1


def map_macs(settings: Settings, executor, args: argparse.Namespace, paint: Painter) -> int:
    print(paint("Building MAC mapping file...", "bold"))
    directory = build_directory(executor, settings.registry)
    save_directory(directory, settings.macmap_path)
    print(paint(f"MAC mapping complete: {len(directory)} entries in {settings.macmap_path}", "green"))
    return 0


def map_show(settings: Settings, executor, args: argparse.Namespace, paint: Painter) -> int:
    try:
        directory = load_directory(settings.macmap_path)
    except DirectoryMissing:
        print("MAC mapping file not found. Run 'ebt-fleet map-macs' first.")
        return 1
    print(paint(f"MAC Mapping File: {settings.macmap_path}", "bold"))
    print(paint(f"{len(directory)} entries", "dim"))
    print("")
    for line in render_directory(directory, paint, mask=args.maskmac):
        print(line)
    return 0


def block(settings: Settings, executor, args: argparse.Namespace, paint: Painter) -> int:
    return run_block(settings, executor, args.device, mask=args.maskmac, paint=paint)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ebt-fleet",
        description="Compare and manage ebtables MAC rules across mesh routers",
    )
    parser.add_argument("--config", help="Path to router config JSON")
    parser.add_argument("--no-color", "-n", action="store_true", help="Disable colored output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    p_report = sub.add_parser("report", help="Show and compare rules across routers")
    p_report.add_argument("--router", "-R", action="append", help="Include a router (repeatable)")
    p_report.add_argument("--chain", "-c", help="Only show this chain (INPUT, FORWARD, OUTPUT, ...)")
    p_report.add_argument("--unique", "-u", action="store_true", help="Only show rules not on every selected router")
    p_report.add_argument("--refresh", "-r", action="store_true", help="Rebuild the MAC mapping first")
    p_report.add_argument("--maskmac", "-m", action="store_true", help="Mask the last two octets of MACs")
    p_report.set_defaults(func=report)

    p_raw = sub.add_parser("raw", help="Raw ebtables output from one router")
    p_raw.add_argument("target", nargs="?", help="Router name or address (default: primary)")
    p_raw.add_argument("--maskmac", "-m", action="store_true")
    p_raw.set_defaults(func=raw)

    p_map = sub.add_parser("map-macs", help="Rebuild the MAC-to-hostname mapping")
    p_map.set_defaults(func=map_macs)

    p_show = sub.add_parser("map-show", help="Display the current MAC mapping")
    p_show.add_argument("--maskmac", "-m", action="store_true")
    p_show.set_defaults(func=map_show)

    p_block = sub.add_parser("block", help="Block or unblock a device on every router")
    p_block.add_argument("device", help="IP address, MAC address or hostname fragment")
    p_block.add_argument("--maskmac", "-m", action="store_true")
    p_block.set_defaults(func=block)
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        settings = load_settings(args.config)
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}")

    paint = Painter(enabled=not args.no_color and sys.stdout.isatty())
    executor = SshExecutor.from_settings(settings)
    rc = args.func(settings, executor, args, paint)
    if rc:
        raise SystemExit(rc)


if __name__ == "__main__":
    main()
