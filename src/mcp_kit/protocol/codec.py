"""
JSON-RPC 2.0 wire codec.

Parses raw text into typed messages and renders messages back to compact
JSON. Batches are supported in both directions; an invalid element inside a
batch is returned as an ``InvalidRequestError`` in its position so that the
caller can answer it individually.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from .exceptions import InvalidRequestError, MCPError, ParseError
from .messages import (
    JSONRPC_VERSION,
    ErrorObject,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)

logger = logging.getLogger(__name__)

ParsedItem = Union[JSONRPCMessage, InvalidRequestError]


def parse_message(raw: Union[str, bytes]) -> Union[ParsedItem, List[ParsedItem]]:
    """
    Parse a single message or a batch.

    Args:
        raw: JSON text received from a transport

    Returns:
        A message model, or a list for batch input

    Raises:
        ParseError: If ``raw`` is not valid JSON
        InvalidRequestError: If a non-batch message is malformed or a batch is empty
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Message is not valid UTF-8: {e}")

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"Parse error: {e.msg}")

    if isinstance(payload, list):
        if not payload:
            raise InvalidRequestError("Invalid Request: empty batch")
        items: List[ParsedItem] = []
        for element in payload:
            try:
                items.append(parse_object(element))
            except InvalidRequestError as e:
                items.append(e)
        return items

    return parse_object(payload)


def parse_object(obj: Any) -> JSONRPCMessage:
    """Classify and validate one decoded JSON value."""
    if not isinstance(obj, dict):
        raise InvalidRequestError("Invalid Request: message must be an object")

    request_id = obj.get("id")
    if obj.get("jsonrpc") != JSONRPC_VERSION:
        raise _invalid("Invalid Request: jsonrpc must be \"2.0\"", request_id)

    try:
        if "method" in obj:
            if not isinstance(obj["method"], str):
                raise _invalid("Invalid Request: method must be a string", request_id)
            if "id" in obj:
                return JSONRPCRequest.model_validate(obj)
            return JSONRPCNotification.model_validate(obj)
        if "error" in obj:
            return JSONRPCErrorResponse.model_validate(obj)
        if "result" in obj:
            return JSONRPCResponse.model_validate(obj)
    except ValidationError as e:
        raise _invalid(
            "Invalid Request",
            request_id,
            data=e.errors(include_url=False, include_context=False, include_input=False),
        )

    raise _invalid("Invalid Request: missing method, result or error", request_id)


def _invalid(message: str, request_id: Any, data: Optional[Any] = None) -> InvalidRequestError:
    error = InvalidRequestError(message, data=data)
    # Only echo ids that are themselves valid
    error.request_id = request_id if isinstance(request_id, (str, int)) and not isinstance(request_id, bool) else None
    return error


def success_response(request_id: Union[str, int], result: Any) -> JSONRPCResponse:
    """Build a success response, dumping pydantic results to plain JSON data; None stays null."""
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONRPCResponse(id=request_id, result=result)


def error_response(request_id: Optional[Union[str, int]], error: MCPError) -> JSONRPCErrorResponse:
    """Build an error response from an ``MCPError``."""
    return JSONRPCErrorResponse(
        id=request_id,
        error=ErrorObject(code=error.code, message=error.message, data=error.data),
    )


def message_to_dict(message: JSONRPCMessage) -> Dict[str, Any]:
    """Render a message as a JSON-compatible dict."""
    if isinstance(message, JSONRPCResponse):
        return {"jsonrpc": message.jsonrpc, "id": message.id, "result": _jsonable(message.result)}
    if isinstance(message, JSONRPCErrorResponse):
        return {
            "jsonrpc": message.jsonrpc,
            "id": message.id,
            "error": message.error.model_dump(mode="json", exclude_none=True),
        }
    return message.model_dump(mode="json", exclude_none=True)


def encode_message(message: Union[JSONRPCMessage, List[JSONRPCMessage]]) -> str:
    """Encode a message or batch as compact JSON text."""
    if isinstance(message, list):
        payload: Any = [message_to_dict(m) for m in message]
    else:
        payload = message_to_dict(message)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value
