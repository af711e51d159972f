"""
Cross-check a bake plan against its rule trace.

    python -m htmlbake.rules_check [output/debug]

Works on the debug dump (camelCase dicts) or directly on CaptureTask /
RuleTraceRecord objects. Exit status 1 when any issue is found.
"""

import json
import os
import sys
from typing import List, Tuple

from htmlbake.models import (
    BACKGROUND_STACK,
    CLONE,
    IN_PLACE,
    MODIFIER_REASONS,
    RANGE_PART,
    camel_case,
    to_debug_dict,
)

CLIP_REASON_PREFIXES = ("ancestor-rounded-clip:", "ancestor-clip-outside:")
ICON_EXCEPTION = "icon-glyph-context-exception"

# Flags whose token may legitimately come from another rule without the flag itself.
_WARN_ONLY_ORPHAN_TOKENS = {
    "suppress_ancestor_paint",
    "preserve_own_text_geometry",
    "preserve_scene_underlay",
    "suppress_underlay_faint_border",
}


def _as_dict(item) -> dict:
    return item if isinstance(item, dict) else to_debug_dict(item)


def validate(tasks, trace) -> Tuple[List[str], List[str]]:
    """Return (issues, warnings) as human-readable lines."""
    issues = []
    warnings = []
    tasks = [_as_dict(t) for t in (tasks or [])]
    trace_by_node = {}
    for record in trace or []:
        record = _as_dict(record)
        if record.get("nodeId"):
            trace_by_node[record["nodeId"]] = record

    for task in tasks:
        label = f"Task {task.get('outputName') or task.get('id')}"
        reasons = list(task.get("reasons") or [])
        mode = task.get("mode") or ""

        if not reasons:
            issues.append(f"{label}: reasons is empty.")

        for name, token in MODIFIER_REASONS.items():
            flag = camel_case(name)
            if task.get(flag) and token not in reasons:
                issues.append(f"{label}: {flag}=true but missing reason {token}.")
            elif not task.get(flag) and token in reasons and name in _WARN_ONLY_ORPHAN_TOKENS:
                warnings.append(f"{label}: reason {token} exists but {flag} is false.")

        if task.get("rotationBaked") and mode != IN_PLACE:
            issues.append(f"{label}: rotationBaked=true requires mode=inPlace.")
        if task.get("suppressUnderlayFaintBorder") and not task.get("preserveSceneUnderlay"):
            issues.append(f"{label}: suppressUnderlayFaintBorder=true requires preserveSceneUnderlay=true.")

        part = task.get("rangePart") or ""
        if part:
            if f"range-part:{part}" not in reasons:
                issues.append(f"{label}: rangePart={part} but missing reason range-part:{part}.")
            if mode != RANGE_PART:
                issues.append(f"{label}: rangePart is set but mode is not rangePart.")
            if not task.get("captureSourceNodeId"):
                issues.append(f"{label}: rangePart task missing captureSourceNodeId.")

        if mode == BACKGROUND_STACK and "background-stack-composite" not in reasons:
            issues.append(f"{label}: backgroundStack mode missing reason background-stack-composite.")

        has_clip_reason = any(r.startswith(CLIP_REASON_PREFIXES) for r in reasons)
        if mode == CLONE and has_clip_reason and ICON_EXCEPTION not in reasons:
            warnings.append(f"{label}: clone mode with clip-related reason.")

        node_id = task.get("nodeId") or ""
        record = trace_by_node.get(node_id)
        if record is None:
            issues.append(f"{label}: missing node trace for {node_id}.")
            continue
        for flag in ("preserveSceneUnderlay", "suppressUnderlayFaintBorder"):
            if bool(record.get(flag)) != bool(task.get(flag)):
                issues.append(
                    f"{label}: trace {flag} mismatch (task={bool(task.get(flag))}, trace={bool(record.get(flag))})."
                )

    return issues, warnings


def report(issues: List[str], warnings: List[str], checked: int, traced: int) -> bool:
    if issues:
        print(f"[rules-check] failed. issues={len(issues)}")
        for issue in issues:
            print(f"- {issue}")
        return False
    if warnings:
        print(f"[rules-check] warnings={len(warnings)}")
        for warning in warnings:
            print(f"- {warning}")
    print(f"[rules-check] ok. checked={checked} tasks, trace={traced} nodes.")
    return True


def check_debug_dir(debug_dir: str) -> bool:
    plan_path = os.path.join(debug_dir, "bake_plan.json")
    trace_path = os.path.join(debug_dir, "rules_trace.json")
    for path in (plan_path, trace_path):
        if not os.path.exists(path):
            print(f"[rules-check] missing: {path}")
            return False

    with open(plan_path, "r", encoding="utf-8") as f:
        tasks = json.load(f)
    with open(trace_path, "r", encoding="utf-8") as f:
        trace = json.load(f)

    issues, warnings = validate(tasks, trace)
    return report(issues, warnings, len(tasks), len({r.get("nodeId") for r in trace}))


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    debug_dir = os.path.abspath(argv[0] if argv else os.path.join("output", "debug"))
    return 0 if check_debug_dir(debug_dir) else 1


if __name__ == "__main__":
    sys.exit(main())
