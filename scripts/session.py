"""
Session data for Discord Rich Presence.
Derives the current Claude Code session from the Live Status Record, falling
back to the most recent JSONL transcript under ~/.claude/projects.
"""

import json
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from state import PROJECTS_DIR, StatusRecord, read_status_record

# Model display names - add new model IDs here when released
MODEL_DISPLAY = {
    "claude-opus-4-5-20251101": "Opus 4.5",
    "claude-sonnet-4-5-20241022": "Sonnet 4.5",
    "claude-sonnet-4-20250514": "Sonnet 4",
    "claude-haiku-4-5-20241022": "Haiku 4.5",
}

# Model pricing per 1M tokens (input, output)
# Update these when new models are released: https://www.anthropic.com/pricing
MODEL_PRICING = {
    "claude-opus-4-5-20251101": (15.00, 75.00),
    "claude-sonnet-4-5-20241022": (3.00, 15.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-haiku-4-5-20241022": (1.00, 5.00),
}

# Unknown models are priced like this one
DEFAULT_PRICING_MODEL = "claude-sonnet-4-20250514"

UNKNOWN_PROJECT = "Unknown Project"

STATUSLINE_HELP_URL = "https://github.com/tsanva/cc-discord-presence#statusline-setup"


@dataclass(frozen=True)
class SessionSnapshot:
    """Source-agnostic summary of the active session."""

    project_name: str
    project_path: str
    git_branch: str
    model_name: str
    total_tokens: int
    total_cost: float
    start_time: datetime


@dataclass
class SourceState:
    """
    Which data source produced the last snapshot.

    Only used to avoid repeating notices; snapshots never depend on it.
    """

    session_start: datetime = field(default_factory=datetime.now)
    using_fallback: bool = False
    nudge_shown: bool = False


@dataclass(frozen=True)
class TranscriptFile:
    path: Path
    project_path: str
    mtime: float


# ═══════════════════════════════════════════════════════════════
# Pricing & Formatting
# ═══════════════════════════════════════════════════════════════

def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD for the given token usage."""
    pricing = MODEL_PRICING.get(model_id) or MODEL_PRICING[DEFAULT_PRICING_MODEL]
    input_price, output_price = pricing
    return input_tokens / 1_000_000 * input_price + output_tokens / 1_000_000 * output_price


def format_model_name(model_id: str) -> str:
    """Convert model ID to display name."""
    if model_id in MODEL_DISPLAY:
        return MODEL_DISPLAY[model_id]
    if "opus" in model_id:
        return "Opus"
    if "sonnet" in model_id:
        return "Sonnet"
    if "haiku" in model_id:
        return "Haiku"
    return "Claude"


def format_number(n: int) -> str:
    """Format token count for display (e.g., 12.5K, 1.2M)."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


def project_name_for(project_path: str) -> str:
    name = os.path.basename(project_path.rstrip("/\\")) if project_path else ""
    if not name or name == ".":
        return UNKNOWN_PROJECT
    return name


# ═══════════════════════════════════════════════════════════════
# Git
# ═══════════════════════════════════════════════════════════════

def _git(project_path: str, *args) -> str:
    # ValueError: a path with an embedded NUL byte never reaches git
    try:
        result = subprocess.run(
            ["git", "-C", project_path, *args],
            capture_output=True, text=True, timeout=5
        )
    except (OSError, ValueError, subprocess.SubprocessError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def get_git_branch(project_path: str) -> str:
    """Get current git branch name, or "" outside a repository."""
    if not project_path:
        return ""
    branch = _git(project_path, "rev-parse", "--abbrev-ref", "HEAD")
    # No commits yet: rev-parse prints HEAD, the branch only exists as a symbolic ref
    if branch == "HEAD":
        branch = _git(project_path, "symbolic-ref", "--short", "HEAD") or branch
    return branch


# ═══════════════════════════════════════════════════════════════
# Project Path Encoding
# ═══════════════════════════════════════════════════════════════

_DASH_PLACEHOLDER = "\x00"


def encode_project_path(path: str) -> str:
    """Encode a project path the way ~/.claude/projects names its directories."""
    return path.replace("-", "--").replace("/", "-")


def decode_project_path(encoded: str) -> str:
    """
    Decode a ~/.claude/projects directory name back into a path.

    "/" is stored as "-" and a literal "-" as "--", so escaped dashes must be
    set aside before single dashes become separators.
    Example: -Users-foo-my--project -> /Users/foo/my-project
    """
    path = encoded.replace("--", _DASH_PLACEHOLDER)
    path = path.replace("-", "/")
    return path.replace(_DASH_PLACEHOLDER, "-")


# ═══════════════════════════════════════════════════════════════
# Transcript Fallback
# ═══════════════════════════════════════════════════════════════

def find_most_recent_transcript(projects_dir: Path = None) -> TranscriptFile | None:
    """Find the most recently modified JSONL file in the projects tree."""
    projects_dir = Path(PROJECTS_DIR if projects_dir is None else projects_dir)
    if not projects_dir.is_dir():
        return None

    newest = None
    # os.walk skips directories that vanish or cannot be listed mid-walk
    for dirpath, _dirnames, filenames in os.walk(projects_dir):
        for name in filenames:
            if not name.endswith(".jsonl"):
                continue
            path = Path(dirpath) / name
            try:
                if not path.is_file():
                    continue
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if newest is None or mtime > newest.mtime:
                newest = _transcript_file(projects_dir, path, mtime)

    return newest


def _transcript_file(projects_dir: Path, path: Path, mtime: float) -> TranscriptFile:
    # ~/.claude/projects/<encoded-path>/<session>.jsonl
    parts = path.relative_to(projects_dir).parts
    project_path = decode_project_path(parts[0]) if len(parts) > 1 else ""
    return TranscriptFile(path=path, project_path=project_path, mtime=mtime)


def _usage_count(usage: dict, key: str) -> int:
    value = usage.get(key, 0)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def aggregate(log_path: Path, fallback_project_path: str = "",
              start_time: datetime = None) -> SessionSnapshot | None:
    """
    Rebuild session totals from a JSONL transcript.

    Returns None when the transcript has no assistant message with a model,
    so an empty or user-only conversation shows no presence.
    """
    total_input = 0
    total_output = 0
    last_model = ""
    project_path = ""

    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(msg, dict):
                    continue

                cwd = msg.get("cwd")
                if cwd and isinstance(cwd, str) and not project_path:
                    project_path = cwd

                if msg.get("type") != "assistant":
                    continue
                message = msg.get("message")
                if not isinstance(message, dict):
                    continue
                model = message.get("model")
                if not model or not isinstance(model, str):
                    continue

                last_model = model
                usage = message.get("usage")
                if isinstance(usage, dict):
                    total_input += _usage_count(usage, "input_tokens")
                    total_output += _usage_count(usage, "output_tokens")
    except OSError:
        return None

    if not last_model:
        return None

    project_path = project_path or fallback_project_path
    return SessionSnapshot(
        project_name=project_name_for(project_path),
        project_path=project_path,
        git_branch=get_git_branch(project_path),
        model_name=format_model_name(last_model),
        total_tokens=total_input + total_output,
        total_cost=calculate_cost(last_model, total_input, total_output),
        # Elapsed time counts from daemon start, not from the conversation's first message
        start_time=start_time or datetime.now(),
    )


# ═══════════════════════════════════════════════════════════════
# Source Selection
# ═══════════════════════════════════════════════════════════════

def snapshot_from_record(record: StatusRecord, start_time: datetime) -> SessionSnapshot:
    """Build a snapshot from statusline data, keeping its totals as-is."""
    project_path = record.project_dir or record.cwd
    return SessionSnapshot(
        project_name=project_name_for(project_path),
        project_path=project_path,
        git_branch=get_git_branch(project_path),
        model_name=record.model_display_name,
        total_tokens=record.total_tokens,
        total_cost=record.total_cost_usd,
        start_time=start_time,
    )


def read_session(source_state: SourceState, logger=None,
                 data_file: Path = None, projects_dir: Path = None) -> SessionSnapshot | None:
    """
    Read the current session: statusline data first, then the JSONL fallback.

    Args:
        source_state: Tracks fallback mode for one-time notices
        logger: Optional logging function for notices
        data_file: Live Status Record path, defaults to state.DATA_FILE
        projects_dir: Transcript root, defaults to state.PROJECTS_DIR

    Returns:
        SessionSnapshot, or None when neither source has an active session
    """
    record = read_status_record(data_file)
    if record is not None:
        if source_state.using_fallback:
            source_state.using_fallback = False
            if logger:
                logger("Now using statusline data (more accurate)")
        return snapshot_from_record(record, source_state.session_start)

    transcript = find_most_recent_transcript(projects_dir)
    if transcript is None:
        return None

    if not source_state.using_fallback and not source_state.nudge_shown:
        source_state.using_fallback = True
        source_state.nudge_shown = True
        if logger:
            logger("Tip: For more accurate token/cost data, configure the statusline wrapper.")
            logger(f"See: {STATUSLINE_HELP_URL}")

    return aggregate(transcript.path, transcript.project_path, source_state.session_start)
