#!/usr/bin/env python3
"""Run the deploy helper unittest modules in parallel worker threads."""

from __future__ import annotations

import argparse
import concurrent.futures
import json
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


TIMEOUT_RETURN_CODE = 124


@dataclass(frozen=True)
class ModuleResult:
    path: str
    return_code: int
    duration_ms: int
    timed_out: bool
    stdout: str
    stderr: str


def discover_modules(start_dir: Path, pattern: str) -> list[Path]:
    if not start_dir.is_dir():
        raise ValueError(f"start directory does not exist: {start_dir}")
    return sorted(path for path in start_dir.glob(pattern) if path.is_file())


def run_module(module_path: Path, timeout_seconds: int | None = None) -> ModuleResult:
    start = time.perf_counter()
    try:
        completed = subprocess.run(
            [sys.executable, str(module_path)],
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        return ModuleResult(
            path=str(module_path),
            return_code=TIMEOUT_RETURN_CODE,
            duration_ms=int(round((time.perf_counter() - start) * 1000)),
            timed_out=True,
            stdout=exc.stdout if isinstance(exc.stdout, str) else "",
            stderr=f"module timed out after {timeout_seconds}s",
        )
    return ModuleResult(
        path=str(module_path),
        return_code=completed.returncode,
        duration_ms=int(round((time.perf_counter() - start) * 1000)),
        timed_out=False,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def run_modules(
    modules: Iterable[Path],
    workers: int,
    timeout_seconds: int | None = None,
) -> list[ModuleResult]:
    module_list = list(modules)
    if workers == 1:
        return [run_module(module_path, timeout_seconds) for module_path in module_list]

    results: list[ModuleResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(run_module, module_path, timeout_seconds)
            for module_path in module_list
        ]
        for future in concurrent.futures.as_completed(futures):
            results.append(future.result())
    return sorted(results, key=lambda item: item.path)


def write_report(path: Path, results: list[ModuleResult], workers: int) -> None:
    payload = {
        "workers": workers,
        "total": len(results),
        "failed": [result.path for result in results if result.return_code != 0],
        "modules": [
            {
                "path": result.path,
                "return_code": result.return_code,
                "duration_ms": result.duration_ms,
                "timed_out": result.timed_out,
            }
            for result in results
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run deploy helper unittest modules in parallel.",
    )
    parser.add_argument("--workers", type=int, default=4, help="parallel worker count (default: 4)")
    parser.add_argument("--start-dir", default=".github/scripts", help="module discovery directory")
    parser.add_argument("--pattern", default="test_*.py", help="module file glob pattern")
    parser.add_argument(
        "--timeout-seconds",
        type=int,
        default=0,
        help="per-module timeout in seconds (0 disables the timeout)",
    )
    parser.add_argument("--json-report", default="", help="optional JSON report output path")
    parser.add_argument("--quiet", action="store_true", help="suppress per-module summary output")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.workers <= 0:
        print("error: --workers must be greater than zero", file=sys.stderr)
        return 2
    if args.timeout_seconds < 0:
        print("error: --timeout-seconds must be >= 0", file=sys.stderr)
        return 2

    try:
        modules = discover_modules(Path(args.start_dir), args.pattern)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if not modules:
        print(
            f"error: no helper tests discovered in {args.start_dir} with pattern {args.pattern}",
            file=sys.stderr,
        )
        return 2

    timeout_seconds = args.timeout_seconds or None
    results = run_modules(modules, args.workers, timeout_seconds)
    failures = [result for result in results if result.return_code != 0]

    if args.json_report.strip():
        write_report(Path(args.json_report), results, args.workers)

    if not args.quiet:
        for result in results:
            timeout_note = " timed_out=true" if result.timed_out else ""
            print(
                f"[helper-tests] module={result.path} duration_ms={result.duration_ms} "
                f"rc={result.return_code}{timeout_note}",
            )
        print(
            f"[helper-tests] completed modules={len(results)} failures={len(failures)} workers={args.workers}",
        )

    if failures:
        for failure in failures:
            print(f"--- failure: {failure.path} ---", file=sys.stderr)
            if failure.stdout.strip():
                print(failure.stdout.rstrip(), file=sys.stderr)
            if failure.stderr.strip():
                print(failure.stderr.rstrip(), file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
