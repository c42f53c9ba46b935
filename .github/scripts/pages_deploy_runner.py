#!/usr/bin/env python3
"""Run the GitHub Pages deploy job locally, one step after another.

The step list mirrors .github/workflows/deploy.yml. Caching and the gh-pages
push stay with the hosted actions; this runner stops after the publish gate.
"""

from __future__ import annotations

import argparse
import json
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import cargo_lock_hash
import pages_publish_gate
import trunk_version_check


DEPLOY_RUN_SCHEMA_VERSION = 1
WASM_TARGET = "wasm32-unknown-unknown"
TOOLCHAIN = "nightly"
STEP_NAMES = (
    "lock-hash",
    "toolchain",
    "trunk-check",
    "trunk-install",
    "build",
    "publish-gate",
)


@dataclass(frozen=True)
class DeployConfig:
    repo_root: Path
    output_dir: Path
    lock_dir: Path
    package: str
    runner_os: str
    ref: str
    event_name: str
    workflow: str
    publish_dir: str
    cargo: str
    rustup: str
    trunk: str
    cargo_home: Path
    skip_toolchain: bool


@dataclass
class StepResult:
    name: str
    status: str
    exit_code: int
    duration_ms: int
    command: list[str] = field(default_factory=list)
    stdout_log: Path | None = None
    stderr_log: Path | None = None
    detail: str = ""


@dataclass
class DeployState:
    cache_key: str = ""
    lock_hash: str = ""
    install_decision: trunk_version_check.InstallDecision | None = None
    publish_decision: pages_publish_gate.PublishDecision | None = None
    publish_file_count: int = 0


def sanitize_name(raw: str) -> str:
    sanitized = "".join(ch if ch.isalnum() or ch in {"-", "_", "."} else "-" for ch in raw)
    sanitized = sanitized.strip("-.")
    return sanitized or "group"


def read_lock_pid(lock_path: Path) -> int | None:
    try:
        raw = lock_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return int(raw) if raw.isdigit() else None


def lock_holder_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def acquire_run_lock(lock_dir: Path, group: str) -> Path:
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_path = lock_dir / f"{sanitize_name(group)}.lock"
    for _ in range(2):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            pid = read_lock_pid(lock_path)
            # A lock without a pid may still be mid-write by its holder.
            if pid is None or lock_holder_alive(pid):
                break
            print(f"[pages-deploy] reclaiming stale lock {lock_path} (pid {pid} is gone)")
            lock_path.unlink(missing_ok=True)
            continue
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        return lock_path
    raise RuntimeError(
        f"another deploy run holds concurrency group '{group}' (lock: {lock_path})"
    )


def release_run_lock(lock_path: Path) -> None:
    lock_path.unlink(missing_ok=True)


def validate_output_dir(config: DeployConfig) -> None:
    # The output dir is wiped at the start of every run.
    output_dir = config.output_dir
    if output_dir == config.repo_root or output_dir in config.repo_root.parents:
        raise ValueError(f"--output-dir must not contain the repository root: {output_dir}")
    if output_dir == config.lock_dir or output_dir in config.lock_dir.parents:
        raise ValueError(f"--output-dir must not contain the lock directory: {config.lock_dir}")


def resolve_trunk(config: DeployConfig) -> str:
    if config.trunk.strip():
        return config.trunk
    binary = trunk_version_check.trunk_binary_path(config.cargo_home)
    return str(binary) if binary.is_file() else "trunk"


def run_command_step(
    index: int,
    name: str,
    command: list[str],
    config: DeployConfig,
) -> StepResult:
    steps_dir = config.output_dir / "steps"
    steps_dir.mkdir(parents=True, exist_ok=True)
    stdout_log = steps_dir / f"{index:02d}-{name}.stdout.log"
    stderr_log = steps_dir / f"{index:02d}-{name}.stderr.log"

    print(f"[pages-deploy] command: {shlex.join(command)}")
    started = time.perf_counter()
    try:
        completed = subprocess.run(
            command,
            cwd=config.repo_root,
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        duration_ms = int((time.perf_counter() - started) * 1000)
        stdout_log.write_text("", encoding="utf-8")
        stderr_log.write_text(f"{exc}\n", encoding="utf-8")
        if isinstance(exc, FileNotFoundError):
            exit_code, detail = 127, f"executable not found: {command[0]}"
        else:
            exit_code, detail = 126, f"executable not runnable: {command[0]}"
        return StepResult(
            name=name,
            status="failed",
            exit_code=exit_code,
            duration_ms=duration_ms,
            command=command,
            stdout_log=stdout_log,
            stderr_log=stderr_log,
            detail=detail,
        )
    duration_ms = int((time.perf_counter() - started) * 1000)

    stdout_log.write_text(completed.stdout, encoding="utf-8")
    stderr_log.write_text(completed.stderr, encoding="utf-8")
    detail = "" if completed.returncode == 0 else f"exited with code {completed.returncode}"
    return StepResult(
        name=name,
        status="passed" if completed.returncode == 0 else "failed",
        exit_code=completed.returncode,
        duration_ms=duration_ms,
        command=command,
        stdout_log=stdout_log,
        stderr_log=stderr_log,
        detail=detail,
    )


def run_internal_step(name: str, action: Callable[[], str]) -> StepResult:
    started = time.perf_counter()
    try:
        detail = action()
    except (ValueError, RuntimeError, OSError) as exc:
        return StepResult(
            name=name,
            status="failed",
            exit_code=1,
            duration_ms=int((time.perf_counter() - started) * 1000),
            detail=str(exc),
        )
    return StepResult(
        name=name,
        status="passed",
        exit_code=0,
        duration_ms=int((time.perf_counter() - started) * 1000),
        detail=detail,
    )


def skipped_step(name: str, detail: str) -> StepResult:
    return StepResult(name=name, status="skipped", exit_code=0, duration_ms=0, detail=detail)


def run_deploy(config: DeployConfig) -> tuple[list[StepResult], DeployState]:
    state = DeployState()

    def lock_hash_step() -> str:
        fingerprint = cargo_lock_hash.build_fingerprint(
            config.repo_root / "Cargo.lock",
            config.package,
            config.runner_os,
        )
        state.lock_hash = fingerprint.hash
        state.cache_key = fingerprint.cache_key
        return f"cache_key={fingerprint.cache_key}"

    def trunk_check_step() -> str:
        decision = trunk_version_check.check_trunk(config.cargo_home, config.cargo)
        state.install_decision = decision
        return f"install={'true' if decision.install else 'false'} reason={decision.reason}"

    def publish_gate_step() -> str:
        decision = pages_publish_gate.resolve_publish_decision(
            config.ref,
            config.event_name,
            workflow=config.workflow,
        )
        state.publish_decision = decision
        if not decision.publish:
            return f"publish=false reason={decision.reason}"
        files = pages_publish_gate.inventory_publish_dir(config.repo_root / config.publish_dir)
        state.publish_file_count = len(files)
        return f"publish=true files={len(files)}"

    def build_step(index: int, name: str) -> StepResult:
        if name == "lock-hash":
            return run_internal_step(name, lock_hash_step)
        if name == "toolchain":
            if config.skip_toolchain:
                return skipped_step(name, "toolchain install skipped by flag")
            command = [config.rustup, "target", "add", WASM_TARGET, "--toolchain", TOOLCHAIN]
            return run_command_step(index, name, command, config)
        if name == "trunk-check":
            return run_internal_step(name, trunk_check_step)
        if name == "trunk-install":
            decision = state.install_decision
            if decision is None or not decision.install:
                return skipped_step(name, "trunk is up to date")
            command = [config.cargo, "install", "--force", trunk_version_check.TRUNK_CRATE]
            return run_command_step(index, name, command, config)
        if name == "build":
            return run_command_step(index, name, [resolve_trunk(config), "build", "--release"], config)
        if name == "publish-gate":
            return run_internal_step(name, publish_gate_step)
        raise ValueError(f"unknown deploy step '{name}'")

    results: list[StepResult] = []
    total = len(STEP_NAMES)
    for index, name in enumerate(STEP_NAMES, start=1):
        print(f"[pages-deploy] [{index}/{total}] {name}")
        result = build_step(index, name)
        results.append(result)
        suffix = f" {result.detail}" if result.detail else ""
        print(
            f"[pages-deploy] {result.status.upper()} {name} "
            f"exit={result.exit_code} duration_ms={result.duration_ms}{suffix}"
        )
        if result.status == "failed":
            print("[pages-deploy] stopping after first failure")
            break
    return results, state


def build_report(
    config: DeployConfig,
    group: str,
    results: list[StepResult],
    state: DeployState,
    duration_ms: int,
) -> dict[str, object]:
    failed = [result.name for result in results if result.status == "failed"]
    publish = state.publish_decision
    return {
        "schema_version": DEPLOY_RUN_SCHEMA_VERSION,
        "overall": {
            "status": "failed" if failed else "passed",
            "completed_steps": len(results),
            "total_steps": len(STEP_NAMES),
            "failed_steps": failed,
        },
        "duration_ms": duration_ms,
        "repo_root": str(config.repo_root),
        "concurrency_group": group,
        "cache_key": state.cache_key,
        "lock_hash": state.lock_hash,
        "publish": {
            "publish": publish.publish if publish is not None else False,
            "reason": publish.reason if publish is not None else "not-evaluated",
            "file_count": state.publish_file_count,
        },
        "steps": [
            {
                "name": result.name,
                "status": result.status,
                "exit_code": result.exit_code,
                "duration_ms": result.duration_ms,
                "command": result.command,
                "stdout_log": (
                    result.stdout_log.relative_to(config.output_dir).as_posix()
                    if result.stdout_log is not None
                    else None
                ),
                "stderr_log": (
                    result.stderr_log.relative_to(config.output_dir).as_posix()
                    if result.stderr_log is not None
                    else None
                ),
                "detail": result.detail,
            }
            for result in results
        ],
    }


def append_summary(path: Path, report: dict[str, object]) -> None:
    overall = report["overall"]
    publish = report["publish"]
    lines = [
        "### Pages Deploy",
        f"- Status: {overall['status']}",
        f"- Concurrency group: {report['concurrency_group']}",
        f"- Cache key: {report['cache_key'] or 'none'}",
        f"- Publish: {'true' if publish['publish'] else 'false'} ({publish['reason']})",
        "- Steps:",
    ]
    for step in report["steps"]:
        lines.append(f"  - {step['name']}: {step['status']}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write("\n".join(lines))
        handle.write("\n")


def write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def resolve_path(root: Path, raw: str) -> Path:
    candidate = Path(raw)
    if candidate.is_absolute():
        return candidate.resolve()
    return (root / candidate).resolve()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the trunk build and pages publish gate the way the deploy workflow does."
    )
    parser.add_argument("--repo-root", default=".", help="Repository root holding Cargo.lock")
    parser.add_argument(
        "--output-dir",
        default=".pages-deploy/run",
        help="Directory where step logs and report.json are written",
    )
    parser.add_argument(
        "--lock-dir",
        default=".pages-deploy/locks",
        help="Directory holding per-concurrency-group lock files",
    )
    parser.add_argument(
        "--package",
        default=cargo_lock_hash.DEFAULT_PACKAGE,
        help="Crate whose version line is excluded from the cache fingerprint",
    )
    parser.add_argument("--runner-os", default="Linux", help="Runner OS label for cache keys")
    parser.add_argument("--ref", default="refs/heads/master", help="Ref being deployed")
    parser.add_argument("--event-name", default="workflow_dispatch", help="Triggering event")
    parser.add_argument(
        "--workflow",
        default=pages_publish_gate.DEFAULT_WORKFLOW,
        help="Workflow name used in the concurrency group",
    )
    parser.add_argument("--publish-dir", default="dist", help="trunk output directory")
    parser.add_argument("--cargo", default="cargo", help="cargo executable")
    parser.add_argument("--rustup", default="rustup", help="rustup executable")
    parser.add_argument(
        "--trunk",
        default="",
        help="trunk executable (default: <cargo-home>/bin/trunk when present, else trunk)",
    )
    parser.add_argument("--cargo-home", default="", help="Cargo home (default: ~/.cargo)")
    parser.add_argument(
        "--skip-toolchain",
        action="store_true",
        help="Do not add the wasm32 target to the nightly toolchain",
    )
    parser.add_argument(
        "--summary",
        default="",
        help="Optional markdown summary file path append target",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    repo_root = Path(args.repo_root).resolve()
    cargo_home = (
        Path(args.cargo_home).resolve()
        if args.cargo_home.strip()
        else trunk_version_check.default_cargo_home()
    )
    config = DeployConfig(
        repo_root=repo_root,
        output_dir=resolve_path(repo_root, args.output_dir),
        lock_dir=resolve_path(repo_root, args.lock_dir),
        package=args.package.strip(),
        runner_os=args.runner_os,
        ref=args.ref,
        event_name=args.event_name,
        workflow=args.workflow,
        publish_dir=args.publish_dir,
        cargo=args.cargo,
        rustup=args.rustup,
        trunk=args.trunk,
        cargo_home=cargo_home,
        skip_toolchain=args.skip_toolchain,
    )
    if not config.package:
        raise ValueError("--package must be a non-empty string")
    validate_output_dir(config)

    group = pages_publish_gate.concurrency_group(config.workflow, config.ref.strip())
    lock_path = acquire_run_lock(config.lock_dir, group)
    try:
        if config.output_dir.exists():
            shutil.rmtree(config.output_dir)
        config.output_dir.mkdir(parents=True, exist_ok=True)
        print(f"[pages-deploy] concurrency group: {group}")

        started = time.perf_counter()
        results, state = run_deploy(config)
        duration_ms = int((time.perf_counter() - started) * 1000)
    finally:
        release_run_lock(lock_path)

    report = build_report(config, group, results, state, duration_ms)
    report_path = config.output_dir / "report.json"
    write_json(report_path, report)
    if args.summary.strip():
        append_summary(Path(args.summary), report)

    overall = report["overall"]
    print(
        f"[pages-deploy] summary: status={overall['status']} "
        f"steps={overall['completed_steps']}/{overall['total_steps']} duration_ms={duration_ms}"
    )
    print(f"[pages-deploy] report={report_path}")
    return 0 if overall["status"] == "passed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
