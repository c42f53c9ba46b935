#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path

import cargo_lock_hash


@dataclass(frozen=True)
class CacheEntry:
    name: str
    key: str
    paths: tuple[str, ...]


CACHE_ENTRY_NAMES = ("binaries", "metadata", "artifacts")


def resolve_cache_plan(runner_os: str, lock_hash: str) -> list[CacheEntry]:
    os_label = runner_os.strip()
    if not os_label:
        raise ValueError("runner os must be a non-empty string")
    lock_hash = lock_hash.strip()
    if not lock_hash:
        raise ValueError("artifacts cache entry requires a non-empty Cargo.lock hash")

    return [
        CacheEntry(
            name="binaries",
            key=f"{os_label}-binaries",
            paths=("~/.cargo/bin",),
        ),
        CacheEntry(
            name="metadata",
            key=f"{os_label}-metadata",
            paths=("~/.cargo/.crates.toml", "~/.cargo/.crates2.json"),
        ),
        CacheEntry(
            name="artifacts",
            key=cargo_lock_hash.cache_key(os_label, lock_hash),
            paths=("~/.cargo/registry", "~/.cargo/git", "target"),
        ),
    ]


def select_entries(entries: list[CacheEntry], name: str) -> list[CacheEntry]:
    key = name.strip().lower()
    if not key:
        return entries
    selected = [entry for entry in entries if entry.name == key]
    if not selected:
        supported = ", ".join(CACHE_ENTRY_NAMES)
        raise ValueError(f"unsupported cache entry '{name}' (supported: {supported})")
    return selected


def expand_paths(entry: CacheEntry, home: Path) -> list[Path]:
    expanded: list[Path] = []
    for raw in entry.paths:
        if raw == "~":
            expanded.append(home)
        elif raw.startswith("~/"):
            expanded.append(home / raw[2:])
        else:
            expanded.append(Path(raw))
    return expanded


def entry_payload(entry: CacheEntry) -> dict[str, object]:
    return {"name": entry.name, "key": entry.key, "paths": list(entry.paths)}


def emit_outputs(path: Path, entries: list[CacheEntry]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        for entry in entries:
            handle.write(f"{entry.name}_key={entry.key}\n")
            handle.write(f"{entry.name}_paths_json={json.dumps(list(entry.paths))}\n")


def append_summary(path: Path, entries: list[CacheEntry]) -> None:
    lines = ["### Cache Plan"]
    for entry in entries:
        lines.append(f"- {entry.name}: `{entry.key}`")
        lines.extend([f"  - `{raw}`" for raw in entry.paths])
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write("\n".join(lines))
        handle.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve deploy job cache keys and paths.")
    parser.add_argument("--runner-os", default="Linux", help="Runner OS label used as key prefix")
    parser.add_argument(
        "--lock-hash",
        default="",
        help="Precomputed Cargo.lock fingerprint (takes precedence over --lock-file)",
    )
    parser.add_argument(
        "--lock-file",
        default="Cargo.lock",
        help="Cargo.lock path used when --lock-hash is not set",
    )
    parser.add_argument(
        "--package",
        default=cargo_lock_hash.DEFAULT_PACKAGE,
        help="Crate whose version line is excluded from the fingerprint",
    )
    parser.add_argument(
        "--entry",
        default="",
        help="Restrict output to one entry (binaries|metadata|artifacts)",
    )
    parser.add_argument(
        "--output",
        default="",
        help="Optional GitHub output file path to write key=value fields",
    )
    parser.add_argument(
        "--summary",
        default="",
        help="Optional markdown summary file path append target",
    )
    parser.add_argument("--json", action="store_true", help="Print resolved plan JSON to stdout")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    lock_hash = args.lock_hash.strip()
    if not lock_hash:
        lock_hash = cargo_lock_hash.lock_file_fingerprint(Path(args.lock_file), args.package)

    entries = select_entries(resolve_cache_plan(args.runner_os, lock_hash), args.entry)

    if args.output.strip():
        emit_outputs(Path(args.output), entries)
    if args.summary.strip():
        append_summary(Path(args.summary), entries)
    if args.json or not args.output.strip():
        print(json.dumps({"entries": [entry_payload(entry) for entry in entries]}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
