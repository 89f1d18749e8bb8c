"""
Request/response boundary of the lattice kernel.

Inbound message:
    {"type": "compute", "requestId": <opaque>, "payload": {...}}

Outbound message (exactly one per compute request, same requestId):
    {"type": "result", "requestId": ..., "result": {...}}
    {"type": "error", "requestId": ..., "error": {"message": str, "stack": str | None}}

Messages of any other type are ignored. Any failure escaping the kernel is
caught here once and turned into the error message; the host loop keeps
running.
"""

import json
import logging
import traceback
from collections.abc import Mapping
from typing import Any, Dict, Optional, TextIO

from lattice_kernel.kernel import compute_lattice

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Unknown worker error"


def serialize_error(error: Any) -> Dict[str, Optional[str]]:
    """
    Structured failure payload for an exception (or a bare message).

    Examples:
        >>> serialize_error(None)
        {'message': 'Unknown worker error', 'stack': None}
        >>> serialize_error("boom")
        {'message': 'boom', 'stack': None}
    """
    if not error:
        return {"message": DEFAULT_ERROR_MESSAGE, "stack": None}
    if isinstance(error, str):
        return {"message": error, "stack": None}
    message = str(error) or type(error).__name__ or DEFAULT_ERROR_MESSAGE
    stack = None
    if isinstance(error, BaseException) and error.__traceback__ is not None:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return {"message": message, "stack": stack}


def handle_message(message: Any) -> Optional[Dict[str, Any]]:
    """
    Process one inbound message.

    Args:
        message: Decoded message object

    Returns:
        The response message, or None when the message is not a compute request
    """
    data = message if isinstance(message, Mapping) else {}
    if data.get("type") != "compute":
        return None
    request_id = data.get("requestId")
    try:
        result = compute_lattice(data.get("payload") or {})
    except Exception as error:
        logger.exception(f"Compute request {request_id!r} failed")
        return {"type": "error", "requestId": request_id, "error": serialize_error(error)}
    return {"type": "result", "requestId": request_id, "result": result}


def serve(in_stream: TextIO, out_stream: TextIO) -> int:
    """
    JSON-lines loop: one message per input line, one response per compute request.

    A line that is not valid JSON is answered with an uncorrelated error
    message (requestId None).

    Returns:
        Number of responses written
    """
    responses = 0
    for line in in_stream:
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError as error:
            logger.warning(f"Discarding undecodable message: {error}")
            response = {"type": "error", "requestId": None, "error": serialize_error(error)}
        else:
            response = handle_message(message)
        if response is None:
            continue
        out_stream.write(encode_response(response) + "\n")
        out_stream.flush()
        responses += 1
    return responses


def encode_response(response: Dict[str, Any]) -> str:
    """
    JSON text of a response.

    A response that cannot be encoded (e.g. a self-referencing meta list)
    is replaced by an error message with the same requestId.
    """
    try:
        return json.dumps(response, default=repr)
    except (TypeError, ValueError) as error:
        request_id = response.get("requestId")
        logger.exception(f"Response for request {request_id!r} could not be encoded")
        return json.dumps(
            {"type": "error", "requestId": request_id, "error": serialize_error(error)},
            default=repr,
        )
