"""Out-of-band storage for oversized tool output.

A result longer than ``tool_result_max_chars_for_model`` is written to
``<artifact_dir>/<tool>-<UTC timestamp>-<sha12>.log`` behind a ``# key=value``
header. The model sees a bounded preview plus a reference line; the session
record keeps the full text with the reference appended.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from hashlib import sha256
from pathlib import Path

from agentic_diagnostics.config import EngineConfig
from agentic_diagnostics.logger import get_logger
from agentic_diagnostics.orchestration.langgraph.result_cache import ArtifactCache, ArtifactRef

PREVIEW_MAX_LINES = 12
PREVIEW_MIN_LINES = 4
PREVIEW_DEFAULT_COLS = 160
PREVIEW_MIN_COLS = 60
PREVIEW_MAX_COLS = 200


def sanitize_for_filename(name: str) -> str:
    chars = [ch if ("a" <= ch <= "z" or "0" <= ch <= "9") else "-" for ch in name.strip().lower()]
    out = "".join(chars).strip("-")
    return out or "tool"


def artifact_note(path: str, digest: str) -> str:
    if digest.strip():
        return f"[full tool output saved: {path} sha256={digest}]"
    return f"[full tool output saved: {path}]"


def append_artifact_reference(result: str, path: str, digest: str) -> str:
    if not path.strip():
        return result
    note = artifact_note(path, digest)
    if note in result:
        return result
    base = result.rstrip("\n")
    if not base.strip():
        return note
    return f"{base}\n\n{note}"


def compact_for_model(
    tool_name: str,
    result: str,
    path: str,
    digest: str,
    max_chars: int,
    max_lines: int = 0,
    max_line_len: int = 0,
) -> str:
    """Bounded preview of ``result`` for the model's context; short results pass through."""
    if max_chars <= 0:
        return result
    trimmed = result.strip()
    if not trimmed or len(trimmed) <= max_chars:
        return result

    line_cap = PREVIEW_MAX_LINES
    if 0 < max_lines < line_cap:
        line_cap = max_lines
    line_cap = max(line_cap, PREVIEW_MIN_LINES)

    cols = max_line_len if max_line_len > 0 else PREVIEW_DEFAULT_COLS
    cols = min(max(cols, PREVIEW_MIN_COLS), PREVIEW_MAX_COLS)

    raw = trimmed.encode("utf-8")
    lines = trimmed.split("\n")
    out = [
        f"[tool output truncated for model: tool={tool_name.strip()} bytes={len(raw)} "
        f"lines={len(lines)} sha256={sha256(raw).digest()[:6].hex()}]"
    ]
    if path.strip():
        out.append(artifact_note(path, digest))
    size = sum(len(item) + 1 for item in out)
    for idx, line in enumerate(lines):
        if idx >= line_cap:
            out.append("...")
            break
        line = line.rstrip("\r")
        if len(line) > cols:
            line = line[:cols] + "..."
        out.append(line)
        size += len(line) + 1
        if size >= max_chars:
            break

    text = "\n".join(out).strip()
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."


class ArtifactStore:
    def __init__(self, config: EngineConfig, now: Callable[[], datetime] | None = None) -> None:
        self.config = config
        self.directory = Path(config.artifact_dir).expanduser()
        self._now = now or (lambda: datetime.now(UTC))
        self.logger = get_logger("artifacts")

    def persist(self, tool_name: str, signature: str, result: str) -> ArtifactRef | None:
        """Write ``result`` when it exceeds the model threshold; ``None`` otherwise."""
        max_chars = self.config.tool_result_max_chars_for_model
        trimmed = result.strip()
        if max_chars <= 0 or not trimmed or len(trimmed) <= max_chars:
            return None

        self.directory.mkdir(parents=True, exist_ok=True)
        now = self._now()
        digest = sha256(f"{signature}\n{trimmed}".encode()).hexdigest()
        filename = (
            f"{sanitize_for_filename(tool_name)}-{now.strftime('%Y%m%dT%H%M%S.%f')}Z-{digest[:12]}.log"
        )
        path = self.directory / filename

        header = (
            f"# tool={tool_name.strip()}\n"
            f"# timestamp={now.isoformat()}\n"
            f"# signature={signature}\n"
            f"# sha256={digest}\n\n"
        )
        body = result if result.endswith("\n") else result + "\n"
        path.write_text(header + body, encoding="utf-8")
        self.logger.info("ARTIFACT SAVED tool=%s path=%s bytes=%s", tool_name, path, len(trimmed))
        return ArtifactRef(path=str(path), sha256=digest)

    def resolve(
        self,
        tool_name: str,
        signature: str,
        result: str,
        cache: ArtifactCache,
    ) -> ArtifactRef | None:
        """Reuse this turn's artifact for ``signature`` or persist a new one.

        Write failures are logged and the result stays inline.
        """
        cached = cache.get(signature)
        if cached is not None:
            return cached
        try:
            ref = self.persist(tool_name, signature, result)
        except OSError as exc:
            self.logger.warning("ARTIFACT PERSIST FAILED tool=%s error=%s", tool_name, exc)
            return None
        if ref is not None:
            cache.put(signature, ref)
        return ref

    def model_view(self, tool_name: str, result: str, ref: ArtifactRef | None) -> str:
        return compact_for_model(
            tool_name,
            result,
            ref.path if ref else "",
            ref.sha256 if ref else "",
            self.config.tool_result_max_chars_for_model,
            self.config.tool_output_max_lines,
            self.config.tool_output_max_line_len,
        )
