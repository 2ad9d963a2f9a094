"""
Shared state for Discord Rich Presence.
The statusline integration writes Claude Code's statusline JSON to the Live
Status Record file; the presence daemon reads it back as its primary source.
"""

import json
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

# ═══════════════════════════════════════════════════════════════
# Directory Setup
# ═══════════════════════════════════════════════════════════════

if sys.platform == "win32":
    _appdata = os.environ.get("APPDATA")
    if _appdata:
        DATA_DIR = Path(_appdata) / "cc-discord-rpc"
    else:
        DATA_DIR = Path.home() / ".cc-discord-rpc"
else:
    DATA_DIR = Path.home() / ".local" / "share" / "cc-discord-rpc"

LOG_FILE = DATA_DIR / "daemon.log"

# Claude Code directories
CLAUDE_DIR = Path(os.environ.get("CLAUDE_CONFIG_DIR") or Path.home() / ".claude")
PROJECTS_DIR = CLAUDE_DIR / "projects"

DATA_FILE_NAME = "discord-presence-data.json"
DATA_FILE = CLAUDE_DIR / DATA_FILE_NAME


# ═══════════════════════════════════════════════════════════════
# Live Status Record
# ═══════════════════════════════════════════════════════════════

def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _text(value) -> str:
    return value if isinstance(value, str) else ""


def _int(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _float(value) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


@dataclass(frozen=True)
class StatusRecord:
    """The fields of Claude Code's statusline JSON that presence uses."""

    session_id: str = ""
    cwd: str = ""
    model_id: str = ""
    model_display_name: str = ""
    current_dir: str = ""
    project_dir: str = ""
    total_cost_usd: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "StatusRecord":
        model = _section(data, "model")
        workspace = _section(data, "workspace")
        cost = _section(data, "cost")
        context = _section(data, "context_window")
        return cls(
            session_id=_text(data.get("session_id")),
            cwd=_text(data.get("cwd")),
            model_id=_text(model.get("id")),
            model_display_name=_text(model.get("display_name")),
            current_dir=_text(workspace.get("current_dir")),
            project_dir=_text(workspace.get("project_dir")),
            total_cost_usd=_float(cost.get("total_cost_usd")),
            total_input_tokens=_int(context.get("total_input_tokens")),
            total_output_tokens=_int(context.get("total_output_tokens")),
        )

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


def read_status_record(path: Path = None) -> StatusRecord | None:
    """
    Read the Live Status Record.

    Returns:
        StatusRecord, or None when the file is missing, unparseable or has no
        session id
    """
    path = DATA_FILE if path is None else path
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None

    record = StatusRecord.from_dict(data)
    if not record.session_id:
        return None
    return record


def write_status_record(content: str, path: Path = None, logger=None) -> bool:
    """
    Write raw statusline JSON to the Live Status Record using an atomic
    temp-file + rename, so readers never see a partial file.

    Args:
        content: JSON text as received from Claude Code
        path: Destination, defaults to DATA_FILE
        logger: Optional logging function for warnings

    Returns:
        True if the record was written
    """
    path = Path(DATA_FILE if path is None else path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
    except OSError as e:
        if logger:
            logger(f"Warning: Could not write status record: {e}")
        return False

    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        # shutil.move handles cross-platform atomic rename (including Windows overwrite)
        shutil.move(tmp_path, path)
    except OSError as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if logger:
            logger(f"Warning: Could not write status record: {e}")
        return False
    return True
