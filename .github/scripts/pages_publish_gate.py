#!/usr/bin/env python3

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from dataclasses import dataclass
from pathlib import Path


DEFAULT_PUBLISH_REF = "refs/heads/master"
DEFAULT_WORKFLOW = "Deploy to GitHub Pages"
TRIGGER_EVENTS = {"push", "workflow_dispatch"}


@dataclass(frozen=True)
class PublishDecision:
    ref: str
    event_name: str
    publish_ref: str
    concurrency_group: str
    publish: bool
    reason: str


@dataclass(frozen=True)
class PublishFile:
    relative_path: str
    bytes: int
    sha256: str


def concurrency_group(workflow: str, ref: str) -> str:
    return f"{workflow}-{ref}"


def resolve_publish_decision(
    ref: str,
    event_name: str,
    workflow: str = DEFAULT_WORKFLOW,
    publish_ref: str = DEFAULT_PUBLISH_REF,
) -> PublishDecision:
    ref = (ref or "").strip()
    event = (event_name or "").strip().lower()
    if event and event not in TRIGGER_EVENTS:
        supported = ", ".join(sorted(TRIGGER_EVENTS))
        raise ValueError(f"unsupported trigger event '{event_name}' (supported: {supported})")

    publish = ref == publish_ref
    return PublishDecision(
        ref=ref,
        event_name=event,
        publish_ref=publish_ref,
        concurrency_group=concurrency_group(workflow, ref),
        publish=publish,
        reason="publish-ref-match" if publish else "non-publish-ref",
    )


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(1024 * 1024)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def inventory_publish_dir(publish_dir: Path) -> list[PublishFile]:
    if not publish_dir.exists():
        raise ValueError(f"publish directory does not exist: {publish_dir}")
    if not publish_dir.is_dir():
        raise ValueError(f"publish directory is not a directory: {publish_dir}")

    files = [
        PublishFile(
            relative_path=path.relative_to(publish_dir).as_posix(),
            bytes=path.stat().st_size,
            sha256=file_sha256(path),
        )
        for path in sorted(publish_dir.rglob("*"))
        if path.is_file()
    ]
    if not files:
        raise ValueError(f"publish directory is empty: {publish_dir}")
    return files


def emit_outputs(path: Path, decision: PublishDecision, files: list[PublishFile]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"publish={'true' if decision.publish else 'false'}",
        f"reason={decision.reason}",
        f"concurrency_group={decision.concurrency_group}",
        f"file_count={len(files)}",
    ]
    with path.open("a", encoding="utf-8") as handle:
        for line in lines:
            handle.write(f"{line}\n")


def append_summary(path: Path, decision: PublishDecision, files: list[PublishFile]) -> None:
    lines = [
        "### Pages Publish Gate",
        f"- Ref: {decision.ref or 'none'}",
        f"- Event: {decision.event_name or 'none'}",
        f"- Publish ref: {decision.publish_ref}",
        f"- Concurrency group: {decision.concurrency_group}",
        f"- Publish: {'true' if decision.publish else 'false'}",
        f"- Reason: {decision.reason}",
    ]
    if files:
        total_bytes = sum(item.bytes for item in files)
        lines.append(f"- Files: {len(files)} ({total_bytes} bytes)")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write("\n".join(lines))
        handle.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Decide whether the built site is published to the pages branch."
    )
    parser.add_argument("--ref", default="", help="GitHub ref that triggered the run")
    parser.add_argument("--event-name", default="", help="GitHub event name")
    parser.add_argument("--workflow", default=DEFAULT_WORKFLOW, help="GitHub workflow name")
    parser.add_argument(
        "--publish-ref",
        default=DEFAULT_PUBLISH_REF,
        help="Only this ref publishes the site",
    )
    parser.add_argument(
        "--publish-dir",
        default="dist",
        help="Directory whose contents are pushed to the pages branch",
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
    parser.add_argument("--json", action="store_true", help="Print decision JSON to stdout")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    decision = resolve_publish_decision(
        args.ref,
        args.event_name,
        workflow=args.workflow,
        publish_ref=args.publish_ref,
    )

    files: list[PublishFile] = []
    error = ""
    if decision.publish:
        try:
            files = inventory_publish_dir(Path(args.publish_dir))
        except ValueError as exc:
            error = str(exc)

    if args.output.strip():
        emit_outputs(Path(args.output), decision, files)
    if args.summary.strip():
        append_summary(Path(args.summary), decision, files)
    if args.json or not args.output.strip():
        print(
            json.dumps(
                {
                    "ref": decision.ref,
                    "event_name": decision.event_name,
                    "publish_ref": decision.publish_ref,
                    "concurrency_group": decision.concurrency_group,
                    "publish": decision.publish,
                    "reason": decision.reason,
                    "files": [
                        {
                            "relative_path": item.relative_path,
                            "bytes": item.bytes,
                            "sha256": item.sha256,
                        }
                        for item in files
                    ],
                },
                indent=2,
            )
        )

    if error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
