# models/results.py

"""
Tagged results for server-side procedures that answer with
``{success, data?, error?, code?}``.

    result = parse_rpc_result(raw)
    if isinstance(result, RpcFailure):
        ...
"""

from typing import Any, Generic, Literal, Optional, TypeVar, Union
from pydantic import BaseModel


T = TypeVar("T")


class RpcSuccess(BaseModel, Generic[T]):
    success: Literal[True] = True
    data: Optional[T] = None
    message: Optional[str] = None


class RpcFailure(BaseModel):
    success: Literal[False] = False
    error: str = "Unknown error"
    code: Optional[str] = None


RpcResult = Union[RpcSuccess[Any], RpcFailure]


def parse_rpc_result(raw: Any) -> RpcResult:
    """
    Interpret a raw procedure result.

    Anything that is not a dict carrying ``success: true`` is a failure,
    so a missing or malformed answer can never pass as success.
    """
    if not isinstance(raw, dict):
        return RpcFailure(error="Malformed response from server", code="MALFORMED_RESPONSE")

    if raw.get("success") is True:
        # Procedures either nest their payload under "data" or return it flat
        data = raw.get("data")
        if data is None:
            data = {k: v for k, v in raw.items() if k not in ("success", "message")} or None
        return RpcSuccess(data=data, message=raw.get("message"))

    return RpcFailure(error=raw.get("error") or "Unknown error", code=raw.get("code"))
