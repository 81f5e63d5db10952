"""Line-framed JSON messages exchanged during negentropy event sync."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import BinaryIO, Sequence

from .nostr import Filter

log = logging.getLogger(__name__)

NEGENTROPY_PROTOCOL = "/negentropy/1.0.0"
FRAME_SIZE_LIMIT = 4096
ID_SIZE = 32


class MessageType(str, Enum):
    """The kinds of message in a sync conversation."""

    OPEN = "NEG-OPEN"
    MSG = "NEG-MSG"
    ERR = "NEG-ERR"
    CLOSE = "NEG-CLOSE"
    HAVE = "NEG-HAVE"
    NEED = "NEG-NEED"


def _compact(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


def encode_message(
    msg_type: MessageType | str,
    filter: Filter | None = None,
    msg_bytes: bytes = b"",
    err_msg: str = "",
    need_ids: Sequence[str] = (),
    have_bytes: bytes = b"",
) -> str:
    """Build the JSON array for one message; raise ValueError for an unknown type."""
    kind = MessageType(msg_type)
    parts = [kind.value, "N"]
    hex_msg = bytes(msg_bytes).hex()
    if kind is MessageType.OPEN:
        parts += [_compact((filter or Filter()).to_dict()), chr(ID_SIZE), hex_msg]
    elif kind is MessageType.MSG:
        parts.append(hex_msg)
    elif kind is MessageType.ERR:
        parts.append(err_msg)
    elif kind is MessageType.HAVE:
        parts.append(bytes(have_bytes).decode("utf-8"))
    elif kind is MessageType.NEED:
        parts.append(_compact(list(need_ids)))
    return _compact(parts)


def decode_message(line: str | bytes) -> tuple[MessageType, list[str]]:
    """Split a received line into its type and the fields after the subscription marker."""
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    try:
        parts = json.loads(line.strip())
    except ValueError as exc:
        raise ValueError(f"invalid negentropy message: {exc}") from exc
    if not isinstance(parts, list) or not parts or not all(isinstance(p, str) for p in parts):
        raise ValueError("negentropy message must be a non-empty array of strings")
    return MessageType(parts[0]), parts[2:]


def send_message(
    stream: BinaryIO,
    host_id: str,
    msg_type: MessageType | str,
    filter: Filter | None = None,
    msg_bytes: bytes = b"",
    err_msg: str = "",
    need_ids: Sequence[str] = (),
    have_bytes: bytes = b"",
) -> None:
    """Write one message, newline terminated, to a binary stream."""
    line = encode_message(msg_type, filter, msg_bytes, err_msg, need_ids, have_bytes)
    log.info("%s sent: %s", host_id, MessageType(msg_type).value)
    stream.write((line + "\n").encode("utf-8"))