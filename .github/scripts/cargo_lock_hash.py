#!/usr/bin/env python3
"""Derive the dependency-cache fingerprint of a Cargo.lock file.

The fingerprint ignores every `version = ` line and the line that follows the
tracked package's `name = "..."` entry, so bumping the site crate's own version
keeps the cargo registry/target cache warm.
"""

from __future__ import annotations

import argparse
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path


DEFAULT_PACKAGE = "laim"
VERSION_PREFIX = "version = "


@dataclass(frozen=True)
class LockFingerprint:
    lock_file: str
    package: str
    hash: str
    cache_key: str
    total_lines: int
    kept_lines: int


def package_marker(package: str) -> str:
    return f'name = "{package}"'


def read_lock_text(path: Path) -> str:
    # awk sees raw bytes: keep \r and round-trip non-UTF-8 bytes unchanged.
    return path.read_bytes().decode("utf-8", "surrogateescape")


def split_lock_lines(text: str) -> list[str]:
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def filter_lock_lines(lines: list[str], package: str) -> list[str]:
    marker = package_marker(package)
    kept: list[str] = []
    previous: str | None = None
    for line in lines:
        if previous != marker and not line.startswith(VERSION_PREFIX):
            kept.append(line)
        previous = line
    return kept


def hash_kept_lines(lines: list[str]) -> str:
    digest = hashlib.sha256()
    for line in lines:
        digest.update(line.encode("utf-8", "surrogateescape"))
        digest.update(b"\n")
    return digest.hexdigest()


def lock_fingerprint(text: str, package: str = DEFAULT_PACKAGE) -> str:
    return hash_kept_lines(filter_lock_lines(split_lock_lines(text), package))


def lock_file_fingerprint(path: Path, package: str = DEFAULT_PACKAGE) -> str:
    if not path.is_file():
        raise FileNotFoundError(f"lock file not found: {path}")
    return lock_fingerprint(read_lock_text(path), package)


def cache_key(runner_os: str, fingerprint: str) -> str:
    os_label = runner_os.strip()
    if not os_label:
        raise ValueError("runner os must be a non-empty string")
    if not fingerprint:
        raise ValueError("lock fingerprint must be a non-empty string")
    return f"{os_label}-cargo-{fingerprint}"


def build_fingerprint(path: Path, package: str, runner_os: str) -> LockFingerprint:
    if not path.is_file():
        raise FileNotFoundError(f"lock file not found: {path}")
    lines = split_lock_lines(read_lock_text(path))
    kept = filter_lock_lines(lines, package)
    fingerprint = hash_kept_lines(kept)
    return LockFingerprint(
        lock_file=str(path),
        package=package,
        hash=fingerprint,
        cache_key=cache_key(runner_os, fingerprint),
        total_lines=len(lines),
        kept_lines=len(kept),
    )


def render_summary(result: LockFingerprint) -> str:
    return "\n".join(
        [
            "### Cargo.lock Cache Key",
            f"- Lock file: `{result.lock_file}`",
            f"- Tracked package: {result.package}",
            f"- Lines hashed: {result.kept_lines}/{result.total_lines}",
            f"- Hash: `{result.hash}`",
            f"- Cache key: `{result.cache_key}`",
        ]
    )


def write_output(path: Path | None, result: LockFingerprint) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"hash={result.hash}\n")
        handle.write(f"cache_key={result.cache_key}\n")


def write_summary(path: Path | None, summary: str) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(summary)
        handle.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute a Cargo.lock cache fingerprint that ignores the tracked crate's own version."
    )
    parser.add_argument("--lock-file", default="Cargo.lock", help="Path to Cargo.lock")
    parser.add_argument(
        "--package",
        default=DEFAULT_PACKAGE,
        help="Crate whose version line is excluded from the fingerprint",
    )
    parser.add_argument(
        "--runner-os",
        default="Linux",
        help="Runner OS label used as the cache key prefix",
    )
    parser.add_argument(
        "--output",
        default="",
        help="Optional key=value output path (GitHub output format)",
    )
    parser.add_argument(
        "--summary",
        default="",
        help="Optional markdown summary output path",
    )
    parser.add_argument("--json", action="store_true", help="Emit result as JSON to stdout")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    package = args.package.strip()
    if not package:
        raise ValueError("--package must be a non-empty string")

    result = build_fingerprint(Path(args.lock_file), package, args.runner_os)

    if args.json:
        print(
            json.dumps(
                {
                    "lock_file": result.lock_file,
                    "package": result.package,
                    "hash": result.hash,
                    "cache_key": result.cache_key,
                    "total_lines": result.total_lines,
                    "kept_lines": result.kept_lines,
                },
                indent=2,
            )
        )
    else:
        print(result.hash)

    output_path = Path(args.output) if args.output.strip() else None
    summary_path = Path(args.summary) if args.summary.strip() else None
    write_output(output_path, result)
    write_summary(summary_path, render_summary(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
