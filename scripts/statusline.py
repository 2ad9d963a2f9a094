#!/usr/bin/env python3
"""
Claude Code statusline that feeds Discord Rich Presence.

Saves the statusline JSON Claude Code passes on stdin as the Live Status
Record (~/.claude/discord-presence-data.json), then prints a compact status
bar: model › tokens › cost › branch.

Setup in ~/.claude/settings.json:
{
  "statusLine": {
    "type": "command",
    "command": "cc-discord-statusline"
  }
}
"""
import json
import sys

from session import format_number, get_git_branch
from state import StatusRecord, write_status_record

# Fix Windows console encoding for Unicode characters
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding='utf-8')


class C:
    """ANSI color codes"""
    RESET = '\x1b[0m'
    BOLD = '\x1b[1m'
    WHITE = '\x1b[97m'
    GRAY = '\x1b[90m'
    BLUE = '\x1b[94m'
    GREEN = '\x1b[92m'


def warn(message: str):
    print(f"[statusline] {message}", file=sys.stderr)


def truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis"""
    if len(s) <= max_len:
        return s
    return s[:max_len - 1] + '…'


def render(record: StatusRecord, git_branch: str = "") -> str:
    """Build the status bar for one statusline payload."""
    parts = []

    if record.model_display_name:
        parts.append(f"{C.BLUE}{C.BOLD}{record.model_display_name}{C.RESET}")

    if record.total_tokens > 0:
        parts.append(f"{C.WHITE}{format_number(record.total_tokens)} tokens{C.RESET}")

    if record.total_cost_usd > 0:
        parts.append(f"{C.GREEN}${record.total_cost_usd:.2f}{C.RESET}")

    if git_branch:
        parts.append(f"{C.GRAY}{truncate(git_branch, 16)}{C.RESET}")

    return f"{C.GRAY}  ›  {C.RESET}".join(parts)


def main(stdin=None, data_file=None):
    stdin = sys.stdin if stdin is None else stdin
    try:
        content = stdin.read()
        data = json.loads(content)
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError, OSError) as e:
        warn(f"Error reading input: {e}")
        print("")
        return
    if not isinstance(data, dict):
        warn("Error reading input: expected a JSON object")
        print("")
        return

    write_status_record(content, data_file, logger=warn)

    record = StatusRecord.from_dict(data)
    print(render(record, get_git_branch(record.current_dir or record.cwd)))


if __name__ == "__main__":
    main()
