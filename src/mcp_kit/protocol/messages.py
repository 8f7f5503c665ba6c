"""JSON-RPC 2.0 message models."""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

JSONRPC_VERSION = "2.0"

RequestId = Union[StrictStr, StrictInt]
Params = Optional[Union[Dict[str, Any], List[Any]]]


class JSONRPCRequest(BaseModel):
    """A request that expects a response."""

    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: StrictStr
    params: Params = None

    def params_dict(self) -> Dict[str, Any]:
        """Return params as a dict; positional params are not used by MCP."""
        if isinstance(self.params, dict):
            return self.params
        return {}


class JSONRPCNotification(BaseModel):
    """A one-way message; the receiver never answers."""

    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: StrictStr
    params: Params = None

    def params_dict(self) -> Dict[str, Any]:
        if isinstance(self.params, dict):
            return self.params
        return {}


class ErrorObject(BaseModel):
    """The error member of an error response."""

    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCResponse(BaseModel):
    """A successful response."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    result: Any = None


class JSONRPCErrorResponse(BaseModel):
    """An error response. ``id`` is null when the request id was unreadable."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[RequestId] = None
    error: ErrorObject = Field(...)


JSONRPCMessage = Union[JSONRPCRequest, JSONRPCNotification, JSONRPCResponse, JSONRPCErrorResponse]
