"""
Discord IPC client for Rich Presence.
Finds the local Discord IPC endpoint, performs the handshake and sends
SET_ACTIVITY commands using Discord's length-prefixed frame format.
"""

import json
import os
import socket
import struct
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

# Opcodes for Discord IPC
OP_HANDSHAKE = 0
OP_FRAME = 1

# Frame header: [opcode:uint32 LE][length:uint32 LE]
HEADER = struct.Struct("<II")

# Larger lengths mean a corrupt header; Discord frames are a few KiB
MAX_FRAME_SIZE = 64 * 1024
READ_CHUNK_SIZE = 4096

IPC_NAME = "discord-ipc-{}"
MAX_IPC_INDEX = 10

# Relative to each candidate directory: standard, snap and flatpak installs
SOCKET_SUBPATHS = (
    "",
    "snap.discord",
    "app/com.discordapp.Discord",
)
SOCKET_DIR_VARS = ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP")


# ═══════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════

class IpcError(Exception):
    """Base class for Discord IPC failures."""


class TransportNotFound(IpcError):
    """No Discord IPC endpoint could be opened."""


class HandshakeFailed(IpcError):
    """Handshake frame could not be sent or acknowledged."""


class NotConnected(IpcError):
    """Operation requires a completed handshake."""


class FrameIOError(IpcError):
    """Short read/write or channel error during a frame exchange."""


# ═══════════════════════════════════════════════════════════════
# Channels
# ═══════════════════════════════════════════════════════════════

def _read_exact(read, size: int) -> bytes:
    """Call `read` until `size` bytes arrive; EOF or OSError raise FrameIOError."""
    chunks = []
    remaining = size
    try:
        while remaining > 0:
            chunk = read(min(remaining, READ_CHUNK_SIZE))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
    except OSError as e:
        raise FrameIOError(f"read failed: {e}") from e
    if remaining:
        raise FrameIOError(f"short read: got {size - remaining} of {size} bytes")
    return b"".join(chunks)


class UnixSocketChannel:
    """Channel over a Unix domain socket (Linux, macOS)."""

    def __init__(self, sock: socket.socket, path: str = ""):
        self._sock = sock
        self.path = path

    @classmethod
    def open(cls, path: str) -> "UnixSocketChannel":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(path)
        except OSError:
            sock.close()
            raise
        return cls(sock, path)

    def read(self, size: int) -> bytes:
        return _read_exact(self._sock.recv, size)

    def write(self, data: bytes):
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise FrameIOError(f"write failed: {e}") from e

    def close(self):
        self._sock.close()


class NamedPipeChannel:
    """Channel over a Windows named pipe."""

    def __init__(self, pipe, path: str = ""):
        self._pipe = pipe
        self.path = path

    @classmethod
    def open(cls, path: str) -> "NamedPipeChannel":
        return cls(open(path, "r+b", buffering=0), path)

    def read(self, size: int) -> bytes:
        return _read_exact(self._pipe.read, size)

    def write(self, data: bytes):
        try:
            self._pipe.write(data)
            self._pipe.flush()
        except OSError as e:
            raise FrameIOError(f"write failed: {e}") from e

    def close(self):
        self._pipe.close()


# ═══════════════════════════════════════════════════════════════
# Transport Resolver
# ═══════════════════════════════════════════════════════════════

def socket_dirs(environ=None) -> list[str]:
    """Candidate directories for Discord's IPC socket, in priority order."""
    if environ is None:
        environ = os.environ
    dirs = [environ.get(var, "") for var in SOCKET_DIR_VARS]
    dirs.append("/tmp")
    return [d for d in dirs if d]


def socket_candidates(index: int, environ=None) -> list[str]:
    """All socket paths to probe for one IPC index."""
    name = IPC_NAME.format(index)
    paths = []
    for directory in socket_dirs(environ):
        for subpath in SOCKET_SUBPATHS:
            if subpath:
                paths.append(os.path.join(directory, subpath, name))
            else:
                paths.append(os.path.join(directory, name))
    return paths


def pipe_path(index: int) -> str:
    return "\\\\.\\pipe\\" + IPC_NAME.format(index)


def _connect_unix(environ=None):
    for i in range(MAX_IPC_INDEX):
        for path in socket_candidates(i, environ):
            if not os.path.exists(path):
                continue
            try:
                return UnixSocketChannel.open(path)
            except OSError:
                continue
    raise TransportNotFound("Discord IPC socket not found. Make sure Discord is running")


def _connect_pipe(environ=None):
    for i in range(MAX_IPC_INDEX):
        try:
            return NamedPipeChannel.open(pipe_path(i))
        except OSError:
            continue
    raise TransportNotFound("Discord IPC pipe not found. Make sure Discord is running")


def resolve_and_connect(environ=None):
    """Open the lowest-index Discord IPC endpoint that accepts a connection."""
    if sys.platform == "win32":
        return _connect_pipe(environ)
    return _connect_unix(environ)


# ═══════════════════════════════════════════════════════════════
# Protocol Framer
# ═══════════════════════════════════════════════════════════════

def encode(opcode: int, payload: bytes) -> bytes:
    """Build a frame: 8-byte little-endian (opcode, length) header + payload."""
    return HEADER.pack(opcode, len(payload)) + payload


def encode_json(opcode: int, data: dict) -> bytes:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return encode(opcode, payload)


def decode(channel) -> bytes:
    """Read one frame from the channel and return its payload."""
    header = channel.read(HEADER.size)
    if len(header) != HEADER.size:
        raise FrameIOError(f"short header: {len(header)} bytes")
    _opcode, length = HEADER.unpack(header)
    if length > MAX_FRAME_SIZE:
        raise FrameIOError(f"frame length {length} exceeds {MAX_FRAME_SIZE} bytes")
    payload = channel.read(length)
    if len(payload) != length:
        raise FrameIOError(f"short payload: got {len(payload)} of {length} bytes")
    return payload


# ═══════════════════════════════════════════════════════════════
# Activity
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Activity:
    """Rich Presence activity. Empty fields are left out of the payload."""

    details: str = ""
    state: str = ""
    large_image: str = ""
    large_text: str = ""
    small_image: str = ""
    small_text: str = ""
    start_time: datetime | None = None

    def to_payload(self) -> dict:
        data = {}
        if self.details:
            data["details"] = self.details
        if self.state:
            data["state"] = self.state

        assets = {}
        for key in ("large_image", "large_text", "small_image", "small_text"):
            value = getattr(self, key)
            if value:
                assets[key] = value
        if assets:
            data["assets"] = assets

        if self.start_time is not None:
            data["timestamps"] = {"start": int(self.start_time.timestamp())}
        return data


# ═══════════════════════════════════════════════════════════════
# IPC Session Client
# ═══════════════════════════════════════════════════════════════

class ClientState(Enum):
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSED = "closed"


class IpcClient:
    """
    One Discord IPC connection.

    Usage:
        with IpcClient(CLIENT_ID) as client:
            client.connect()
            client.publish(Activity(details="Working on: repo"))
    """

    def __init__(self, client_id: str, resolver=resolve_and_connect):
        self.client_id = client_id
        self.state = ClientState.DISCONNECTED
        self._resolver = resolver
        self._channel = None

    def connect(self):
        """Open the channel and complete the handshake."""
        if self.state is not ClientState.DISCONNECTED:
            raise IpcError(f"cannot connect from state {self.state.value}")

        self.state = ClientState.HANDSHAKING
        try:
            self._channel = self._resolver()
        except TransportNotFound:
            self.state = ClientState.DISCONNECTED
            raise

        try:
            self._channel.write(encode_json(OP_HANDSHAKE, {"v": 1, "client_id": self.client_id}))
            # Acknowledgement content (READY dispatch) is not inspected
            decode(self._channel)
        except FrameIOError as e:
            self.close()
            raise HandshakeFailed(f"handshake failed: {e}") from e

        self.state = ClientState.READY

    def publish(self, activity: Activity):
        """Send SET_ACTIVITY without waiting for a response."""
        if self.state is not ClientState.READY:
            raise NotConnected("not connected")

        payload = {
            "cmd": "SET_ACTIVITY",
            "args": {
                "pid": os.getpid(),
                "activity": activity.to_payload(),
            },
            "nonce": str(time.time_ns()),
        }
        self._channel.write(encode_json(OP_FRAME, payload))

    def close(self):
        if self._channel is not None:
            channel, self._channel = self._channel, None
            try:
                channel.close()
            except OSError:
                pass
        self.state = ClientState.CLOSED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
