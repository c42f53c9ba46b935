#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path


TRUNK_CRATE = "trunk"


@dataclass(frozen=True)
class InstallDecision:
    binary: str
    binary_exists: bool
    current: str
    upstream: str
    install: bool
    reason: str

    @property
    def needed(self) -> str:
        # Shell exit-status convention of `[ -f binary ]`: 0 present, 1 missing.
        return "0" if self.binary_exists else "1"


def default_cargo_home() -> Path:
    return Path.home() / ".cargo"


def trunk_binary_path(cargo_home: Path) -> Path:
    return cargo_home / "bin" / TRUNK_CRATE


def parse_upstream_version(search_output: str, crate: str = TRUNK_CRATE) -> str:
    pattern = re.compile(rf'^{re.escape(crate)} = "([^"]*)"')
    for line in search_output.splitlines():
        match = pattern.match(line)
        if match:
            return f"{crate} {match.group(1)}"
    return ""


def warn(message: str) -> None:
    print(f"[trunk-check] warning: {message}", file=sys.stderr)


def read_installed_version(binary: Path) -> str:
    # Like `$(trunk --version)` in a shell step: a failing binary reads as "".
    try:
        completed = subprocess.run(
            [str(binary), "--version"],
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        warn(f"could not run {binary} --version: {exc}")
        return ""
    if completed.returncode != 0:
        warn(
            f"{binary} --version exited with code {completed.returncode}: {completed.stderr.strip()}"
        )
        return ""
    return completed.stdout.strip()


def read_upstream_version(cargo: str, crate: str = TRUNK_CRATE) -> str:
    try:
        completed = subprocess.run(
            [cargo, "search", crate, "--limit", "1"],
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        warn(f"could not run {cargo} search {crate}: {exc}")
        return ""
    if completed.returncode != 0:
        warn(
            f"cargo search {crate} exited with code {completed.returncode}: {completed.stderr.strip()}"
        )
        return ""
    return parse_upstream_version(completed.stdout, crate)


def decide_install(binary: Path, binary_exists: bool, current: str, upstream: str) -> InstallDecision:
    if not binary_exists:
        return InstallDecision(
            binary=str(binary),
            binary_exists=False,
            current="",
            upstream="",
            install=True,
            reason="binary-missing",
        )
    if not current or current != upstream:
        return InstallDecision(
            binary=str(binary),
            binary_exists=True,
            current=current,
            upstream=upstream,
            install=True,
            reason="version-mismatch",
        )
    return InstallDecision(
        binary=str(binary),
        binary_exists=True,
        current=current,
        upstream=upstream,
        install=False,
        reason="up-to-date",
    )


def check_trunk(cargo_home: Path, cargo: str) -> InstallDecision:
    binary = trunk_binary_path(cargo_home)
    if not binary.is_file():
        return decide_install(binary, False, "", "")
    current = read_installed_version(binary)
    upstream = read_upstream_version(cargo)
    return decide_install(binary, True, current, upstream)


def install_trunk(cargo: str) -> int:
    print(f"[trunk-check] running: {cargo} install --force {TRUNK_CRATE}")
    completed = subprocess.run([cargo, "install", "--force", TRUNK_CRATE], check=False)
    return completed.returncode


def render_summary(decision: InstallDecision) -> str:
    return "\n".join(
        [
            "### Trunk Install Check",
            f"- Binary: `{decision.binary}`",
            f"- Binary present: {'true' if decision.binary_exists else 'false'}",
            f"- Installed version: {decision.current or 'none'}",
            f"- Upstream version: {decision.upstream or 'unknown'}",
            f"- Install: {'true' if decision.install else 'false'}",
            f"- Reason: {decision.reason}",
        ]
    )


def write_output(path: Path | None, decision: InstallDecision) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        f"needed={decision.needed}",
        f"current={decision.current}",
        f"upstream={decision.upstream}",
        f"install={'true' if decision.install else 'false'}",
        f"reason={decision.reason}",
    ]
    with path.open("a", encoding="utf-8") as handle:
        handle.write("\n".join(rows))
        handle.write("\n")


def write_summary(path: Path | None, summary: str) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(summary)
        handle.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check whether the cached trunk binary is present and current."
    )
    parser.add_argument(
        "--cargo-home",
        default="",
        help="Cargo home holding bin/trunk (default: ~/.cargo)",
    )
    parser.add_argument("--cargo", default="cargo", help="cargo executable used for search/install")
    parser.add_argument(
        "--install",
        action="store_true",
        help="Run `cargo install --force trunk` when the check says it is needed",
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
    parser.add_argument("--json", action="store_true", help="Emit decision as JSON to stdout")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cargo_home = Path(args.cargo_home) if args.cargo_home.strip() else default_cargo_home()

    decision = check_trunk(cargo_home, args.cargo)
    summary_text = render_summary(decision)
    if args.json:
        print(
            json.dumps(
                {
                    "binary": decision.binary,
                    "binary_exists": decision.binary_exists,
                    "needed": decision.needed,
                    "current": decision.current,
                    "upstream": decision.upstream,
                    "install": decision.install,
                    "reason": decision.reason,
                },
                indent=2,
            )
        )
    else:
        print(summary_text)

    write_output(Path(args.output) if args.output.strip() else None, decision)
    write_summary(Path(args.summary) if args.summary.strip() else None, summary_text)

    if args.install and decision.install:
        return 0 if install_trunk(args.cargo) == 0 else 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
