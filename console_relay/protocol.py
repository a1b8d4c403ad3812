"""Newline-delimited JSON framing for relay messages."""

import json

# asyncio stream limit: a single frame may not exceed this many bytes
MAX_FRAME_SIZE = 1024 * 1024

MESSAGE_TYPES = ("hello", "log", "config")


def encode_message(message: dict) -> bytes:
    """Serialize one message as a compact JSON line."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


def decode_message(line: bytes) -> dict | None:
    """Parse one frame. Returns None for anything that is not a typed JSON object."""
    try:
        message = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(message, dict):
        return None
    if not isinstance(message.get("type"), str):
        return None
    return message


def hello_message(metadata: dict) -> dict:
    return {"type": "hello", "client": metadata}


def config_message(config: dict) -> dict:
    return {"type": "config", "config": config}
