# upsweep/run_log.py
from __future__ import annotations
import io
import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

log = logging.getLogger("upsweep")


def setup_logging(verbose: bool, console: Optional[Console] = None) -> None:
    """Debug output for -v; warnings only otherwise."""
    handler = RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=verbose)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    log.handlers[:] = [handler]
    log.setLevel(logging.DEBUG if verbose else logging.WARNING)
    log.propagate = False


# ~/.upsweep/logs
def _logs_dir() -> Path:
    return Path(os.path.expanduser("~")) / ".upsweep" / "logs"

# argv and configured commands are logged as given; secrets in them are masked
_SECRET_PATTERNS = [
    (re.compile(r"(?i)\b([A-Z0-9_]*(?:TOKEN|SECRET|PASSWORD|PASSWD|API_?KEY)[A-Z0-9_]*)=(\S+)"), r"\1=***"),
    (re.compile(r"(?i)(--(?:token|password|api-key)[= ])(\S+)"), r"\1***"),
    (re.compile(r"(\w+://[^/\s:@]+):[^@\s/]+@"), r"\1:***@"),
    (re.compile(r"\b(ghp|gho|ghs|glpat)[-_][A-Za-z0-9_-]{20,}"), "***"),
    (re.compile(r"(?i)authorization:\s*bearer\s+\S+"), "Authorization: Bearer ***"),
]

def now_utc_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def mask(text: str) -> str:
    for pat, repl in _SECRET_PATTERNS:
        text = pat.sub(repl, text)
    return text

def _masked(value: Any) -> Any:
    if isinstance(value, str):
        return mask(value)
    if isinstance(value, dict):
        return {k: _masked(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_masked(v) for v in value]
    return value

class JsonlLogger:
    """Run events appended to ~/.upsweep/logs/YYYY-MM-DD.jsonl, one object per line."""
    def __init__(self, dirpath: Path | None = None):
        self.dir = dirpath or _logs_dir()

    def write(self, event: Dict[str, Any]) -> None:
        record = {"ts": now_utc_iso(), **_masked(event)}
        try:
            self.dir.mkdir(parents=True, exist_ok=True)
            with io.open(self.dir / f"{record['ts'][:10]}.jsonl", "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError as e:
            log.debug("Cannot write run log: %s", e)


class NullLogger(JsonlLogger):
    def __init__(self):
        super().__init__(Path(os.devnull))

    def write(self, event: Dict[str, Any]) -> None:
        pass
