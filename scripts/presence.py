#!/usr/bin/env python3
"""
Discord Rich Presence for Claude Code
Connects to Discord over local IPC and keeps the presence in sync with the
active Claude Code session (project, branch, model, tokens, cost).
"""

import os
import queue
import signal
import sys
import time
from datetime import datetime

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from discord_ipc import Activity, FrameIOError, IpcClient, IpcError
from session import SourceState, format_number, read_session
from state import CLAUDE_DIR, DATA_DIR, DATA_FILE_NAME, LOG_FILE

# Discord Application ID for "Clawd Code"
CLIENT_ID = "1455326944060248250"

# Polling interval (seconds), also the fallback when file watching is unavailable
POLL_INTERVAL = 3.0

LARGE_TEXT = "Clawd Code - Discord Rich Presence for Claude Code"

BANNER = """
╔═══════════════════════════════════════════════════════════╗
║     Clawd Code - Discord Rich Presence                    ║
║     Show your Claude Code session on Discord!             ║
╚═══════════════════════════════════════════════════════════╝"""

_WATCH_TRIGGER = "watch"
_STOP = "stop"

# Opened/closed events fire when we read the file ourselves
_CHANGE_EVENTS = (EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED)


def log(message: str):
    """Print message and append it to the log file."""
    print(message, flush=True)
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(LOG_FILE, "a", encoding="utf-8") as f:
        f.write(f"[{timestamp}] {message}\n")


def build_activity(session) -> Activity:
    """Render a session snapshot as a Discord activity."""
    # Build details line: "Working on: project (branch)"
    details = f"Working on: {session.project_name}"
    if session.git_branch:
        details = f"Working on: {session.project_name} ({session.git_branch})"

    # Build state line: model | tokens | cost
    state_line = (f"{session.model_name} | {format_number(session.total_tokens)} tokens"
                  f" | ${session.total_cost:.4f}")

    return Activity(
        details=details,
        state=state_line,
        large_text=LARGE_TEXT,
        start_time=session.start_time,
    )


# ═══════════════════════════════════════════════════════════════
# Update Scheduler
# ═══════════════════════════════════════════════════════════════

class StatusFileHandler(FileSystemEventHandler):
    """Queues a trigger whenever the Live Status Record changes."""

    def __init__(self, triggers: queue.Queue, file_name: str = DATA_FILE_NAME):
        super().__init__()
        self._triggers = triggers
        self._file_name = file_name

    def _matches(self, path) -> bool:
        return bool(path) and os.path.basename(os.fsdecode(path)) == self._file_name

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in _CHANGE_EVENTS:
            return
        if self._matches(event.src_path) or self._matches(getattr(event, "dest_path", "")):
            self._triggers.put(_WATCH_TRIGGER)


class UpdateScheduler:
    """
    Serialized update loop.

    File events and the poll timer feed one queue; every trigger re-derives
    the whole session, so duplicate or out-of-order triggers are harmless.
    """

    def __init__(self, client, source_state: SourceState, watch_dir=CLAUDE_DIR,
                 interval: float = POLL_INTERVAL, logger=log, reader=read_session,
                 observer_factory=Observer):
        self.client = client
        self.source_state = source_state
        self.watch_dir = watch_dir
        self.interval = interval
        self._logger = logger
        self._reader = reader
        self._observer_factory = observer_factory
        self._triggers = queue.Queue()
        self._stopped = False
        self._last_sent = None

    def refresh(self):
        """Read the session and publish it if it changed. Returns the snapshot."""
        session = self._reader(self.source_state, self._logger)
        if session is None:
            return None

        activity = build_activity(session)
        if activity == self._last_sent:
            return session
        try:
            self.client.publish(activity)
        except FrameIOError as e:
            self._logger(f"Error updating presence: {e}")
            return session
        self._last_sent = activity
        return session

    def _start_watch(self):
        try:
            observer = self._observer_factory()
            observer.schedule(StatusFileHandler(self._triggers), str(self.watch_dir), recursive=False)
            observer.start()
        except OSError as e:
            self._logger(f"Watcher error: {e}")
            self._logger("Using polling mode for session tracking")
            return None
        return observer

    def _drain(self):
        """Coalesce queued triggers so a burst of events costs one refresh."""
        while True:
            try:
                trigger = self._triggers.get_nowait()
            except queue.Empty:
                return
            if trigger == _STOP:
                self._stopped = True

    def run(self):
        """Loop until stop() is called."""
        observer = self._start_watch()
        next_tick = time.monotonic() + self.interval
        try:
            while not self._stopped:
                timeout = max(0.0, next_tick - time.monotonic())
                try:
                    trigger = self._triggers.get(timeout=timeout)
                except queue.Empty:
                    next_tick = time.monotonic() + self.interval
                else:
                    if trigger == _STOP:
                        break
                    self._drain()
                if self._stopped:
                    break
                self.refresh()
        finally:
            if observer is not None:
                observer.stop()
                observer.join()

    def stop(self):
        self._stopped = True
        self._triggers.put(_STOP)


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════

def cmd_run():
    """Handle 'run' command - connect to Discord and keep presence updated."""
    print(BANNER)

    # Handle graceful shutdown, including a Ctrl+C while still connecting
    def shutdown(signum, frame):
        log("Shutting down...")
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    log("Connecting to Discord...")
    client = IpcClient(CLIENT_ID)
    scheduler = None
    try:
        try:
            client.connect()
        except IpcError as e:
            log(f"Failed to connect to Discord: {e}")
            log("Make sure Discord is running and try again.")
            sys.exit(1)
        log("Discord RPC connected!")

        source_state = SourceState()
        scheduler = UpdateScheduler(client, source_state)

        # Show an already-active session before waiting for the first trigger
        session = scheduler.refresh()
        if session is not None:
            source = "JSONL fallback" if source_state.using_fallback else "statusline data"
            log(f"Found active session: {session.project_name} (using {source})")
        else:
            log("Waiting for Claude Code session...")

        log("Discord Rich Presence is now active! Press Ctrl+C to stop.")
        scheduler.run()
    finally:
        if scheduler is not None:
            scheduler.stop()
        client.close()
        log("Daemon stopped")


def cmd_status():
    """Handle 'status' command - show the session presence would display."""
    source_state = SourceState()
    session = read_session(source_state)

    if session is None:
        print("No active session")
        return

    source = "JSONL fallback" if source_state.using_fallback else "statusline data"
    print(f"Source: {source}")
    print(f"Project: {session.project_name}")
    if session.project_path:
        print(f"Path: {session.project_path}")
    if session.git_branch:
        print(f"Branch: {session.git_branch}")
    if session.model_name:
        print(f"Model: {session.model_name}")
    print(f"Tokens: {format_number(session.total_tokens)}")
    print(f"Cost: ${session.total_cost:.4f}")


def main():
    command = sys.argv[1] if len(sys.argv) > 1 else "run"

    if command == "run":
        cmd_run()
    elif command == "status":
        cmd_status()
    else:
        print(f"Unknown command: {command}")
        print("Usage: presence.py [run|status]")
        sys.exit(1)


if __name__ == "__main__":
    main()
