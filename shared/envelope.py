from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
import json

from shared.errors import ProtocolError
from shared.utils import generate_request_id

# inbound 'type' marker for control-plane frames; never delivered as results
CONTROL_MESSAGE_TYPE = "x-fal-message"
ERROR_STATUS = "error"


@dataclass
class OutboundFrame:
    """
    Outbound wire envelope: the caller's payload merged with a request id.
    {
    "request_id": "UUID",
    ...payload fields
    }

    The request id is written first; a payload that carries its own
    'request_id' overrides the generated one.
    """
    payload: Dict[str, Any]
    request_id: str = field(default_factory=generate_request_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert frame to the dictionary written on the wire"""
        return {"request_id": self.request_id, **self.payload}

    def to_json(self) -> str:
        """Convert frame to JSON string"""
        return json.dumps(self.to_dict(), separators=(',', ':'))


def frame_outbound(payload: Dict[str, Any], request_id: Optional[str] = None) -> OutboundFrame:
    """Helper to create a new frame with a fresh request id (unless one is provided)"""
    if not isinstance(payload, dict):
        raise TypeError(f"payload must be a dict, got {type(payload).__name__}")
    if request_id is None:
        return OutboundFrame(payload=payload)
    return OutboundFrame(payload=payload, request_id=request_id)


def parse_inbound(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse an inbound frame into a dict, raising ProtocolError for anything else"""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8 frame: {e}", 400)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}", 400, body=raw)
    if not isinstance(data, dict):
        raise ProtocolError("Inbound frame must be a JSON object", 400, body=data)
    return data


def is_result_message(data: Dict[str, Any]) -> bool:
    """
    Only result data reaches the caller.

    Frames with an error status and control-plane frames are not results.
    """
    return data.get("status") != ERROR_STATUS and data.get("type") != CONTROL_MESSAGE_TYPE
