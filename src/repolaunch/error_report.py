import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .guidance import Remediation

_FILE_REF_PATTERN = re.compile(
    r"((?:[A-Za-z]:)?[\\/][^\s:\]\)\(\[\{\}<>\"']+\.(?:java|kt|kts|gradle|js|mjs|ts|tsx|json|yml|yaml|properties))"
)
_ERROR_PATTERN = re.compile(r"error|failed|exception|caused by", re.IGNORECASE)


@dataclass
class ErrorReportConfig:
    max_log_lines: int = 200
    max_log_chars: int = 12000
    max_error_lines: int = 20
    max_files: int = 6


def _truncate_text(value: str, *, max_chars: int) -> str:
    s = value or ""
    if max_chars <= 0:
        return ""
    if len(s) <= max_chars:
        return s
    return s[-max_chars:]


def extract_file_refs(text: str) -> List[str]:
    refs: List[str] = []
    seen = set()
    for m in _FILE_REF_PATTERN.finditer(text or ""):
        p = (m.group(1) or "").strip()
        if p and p not in seen:
            seen.add(p)
            refs.append(p)
    return refs


def build_error_context(
    *,
    workspace: Optional[Path],
    logs: Optional[Iterable[str]] = None,
    last_error_lines: Optional[Iterable[str]] = None,
    config: Optional[ErrorReportConfig] = None,
) -> Dict[str, Any]:
    cfg = config or ErrorReportConfig()

    logs_list = [str(x) for x in (logs or [])]
    log_tail = logs_list[-cfg.max_log_lines:] if cfg.max_log_lines > 0 else []
    log_text = _truncate_text("\n".join(log_tail), max_chars=cfg.max_log_chars)

    error_lines = [line for line in logs_list if _ERROR_PATTERN.search(line)]
    error_lines = error_lines[-cfg.max_error_lines:]

    files = extract_file_refs(log_text)
    if workspace is not None:
        ws = str(Path(workspace))
        in_workspace = [f for f in files if f.startswith(ws)]
        files = in_workspace + [f for f in files if f not in in_workspace]

    return {
        "logs_tail": log_text.splitlines(),
        "error_lines": error_lines,
        "last_error_lines": [str(x) for x in (last_error_lines or [])],
        "files": files[: cfg.max_files],
        "workspace": str(workspace) if workspace else None,
    }


def render_error_report_md(context: Dict[str, Any], *, meta: Optional[Dict[str, Any]] = None) -> str:
    ctx = dict(context or {})
    meta_d = dict(meta or {})

    title = str(meta_d.get("title") or "Launch Error Report")
    generated = datetime.now(timezone.utc).isoformat()
    guidance: Optional[Remediation] = meta_d.get("guidance")

    def fence(body: str) -> List[str]:
        return ["```text", body or "", "```"]

    lines: List[str] = [
        f"# {title}",
        f"Generated: {generated}",
        "",
        "## Summary",
    ]
    if meta_d.get("message"):
        lines.append(f"- **Message:** {meta_d['message']}")
    if meta_d.get("step"):
        lines.append(f"- **Failed during:** `{meta_d['step']}`")
    if meta_d.get("profile"):
        lines.append(f"- **Profile:** `{meta_d['profile']}`")
    if ctx.get("workspace"):
        lines.append(f"- **Workspace:** `{ctx['workspace']}`")

    if ctx.get("last_error_lines"):
        lines.append("")
        lines.append("## Main errors")
        lines.append("")
        lines.extend(fence("\n".join(ctx["last_error_lines"])))

    if guidance is not None:
        lines.append("")
        lines.append(f"## Suggested fix: {guidance.title}")
        lines.append("")
        for step in guidance.steps:
            lines.append(f"- {step}")
        for label, url in guidance.links:
            lines.append(f"- [{label}]({url})")

    lines.append("")
    lines.append("## Error lines")
    lines.append("")
    lines.extend(fence("\n".join(ctx.get("error_lines") or []) or "(none)"))

    lines.append("")
    lines.append("## Logs (tail)")
    lines.append("")
    lines.extend(fence("\n".join(ctx.get("logs_tail") or []) or "(empty)"))

    files = ctx.get("files") or []
    if files:
        lines.append("")
        lines.append("## Files referenced")
        lines.append("")
        lines.extend(f"- `{f}`" for f in files)

    return "\n".join(lines) + "\n"


def write_error_report(report_dir: Path, markdown: str) -> Path:
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    path = report_dir / f"launch-error-{stamp}.md"
    path.write_text(markdown, encoding="utf-8")
    return path
