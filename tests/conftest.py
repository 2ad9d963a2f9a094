import io
import json
import os

import pytest

import discord_ipc
import session


class FakeChannel:
    """In-memory channel: frames queued with add_frame() are what reads return."""

    def __init__(self, write_error=None, read_error=None):
        self.incoming = io.BytesIO()
        self.outgoing = io.BytesIO()
        self.write_error = write_error
        self.read_error = read_error
        self.closed = False

    def add_frame(self, opcode, payload: bytes):
        pos = self.incoming.tell()
        self.incoming.seek(0, io.SEEK_END)
        self.incoming.write(discord_ipc.encode(opcode, payload))
        self.incoming.seek(pos)

    def read(self, size):
        if self.read_error is not None:
            raise self.read_error
        return discord_ipc._read_exact(self.incoming.read, size)

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        self.outgoing.write(data)

    def close(self):
        self.closed = True

    def frames(self):
        """Split everything written so far into (opcode, payload) pairs."""
        data = self.outgoing.getvalue()
        frames = []
        while data:
            opcode, length = discord_ipc.HEADER.unpack(data[:8])
            frames.append((opcode, data[8:8 + length]))
            data = data[8 + length:]
        return frames


@pytest.fixture
def channel():
    ch = FakeChannel()
    ch.add_frame(discord_ipc.OP_FRAME, b'{"cmd":"DISPATCH","evt":"READY"}')
    return ch


@pytest.fixture
def no_git(monkeypatch):
    monkeypatch.setattr(session, "get_git_branch", lambda path: "")


def write_jsonl(path, records, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record if isinstance(record, str) else json.dumps(record))
            f.write("\n")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def assistant(model, input_tokens=0, output_tokens=0, cwd=None):
    record = {
        "type": "assistant",
        "message": {
            "model": model,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        },
    }
    if cwd is not None:
        record["cwd"] = cwd
    return record


def user(text="hi", cwd=None):
    record = {"type": "user", "message": {"role": "user", "content": text}}
    if cwd is not None:
        record["cwd"] = cwd
    return record


STATUS_RECORD = {
    "session_id": "abc123",
    "cwd": "/home/dev/fallback-dir",
    "model": {"id": "claude-opus-4-5-20251101", "display_name": "Opus 4.5"},
    "workspace": {"current_dir": "/home/dev/my-project/src", "project_dir": "/home/dev/my-project"},
    "cost": {"total_cost_usd": 1.2345},
    "context_window": {"total_input_tokens": 12000, "total_output_tokens": 3400},
}
