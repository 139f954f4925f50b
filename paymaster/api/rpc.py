"""
JSON-RPC API

Paymaster methods served over JSON-RPC 2.0 on POST ``/`` and ``/rpc``.
Sponsorship failures map to stable numeric codes with the error kind and
details in ``error.data``.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ModelValidationError

from ..core.errors import ErrorKind, SponsorshipError, ValidationError
from ..core.userop import parse_bytes
from ..service import SponsorshipService

logger = logging.getLogger(__name__)

router = APIRouter()

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ERROR_CODES: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: INVALID_PARAMS,
    ErrorKind.POLICY_REJECTED: -32001,
    ErrorKind.INSUFFICIENT_DEPOSIT: -32002,
    ErrorKind.UPSTREAM_TIMEOUT: -32003,
    ErrorKind.UPSTREAM_UNAVAILABLE: -32004,
    ErrorKind.SIGNING_UNAVAILABLE: -32005,
    ErrorKind.FORMAT: INVALID_PARAMS,
    ErrorKind.RESERVATION: INTERNAL_ERROR,
    ErrorKind.INTERNAL_INVARIANT: INTERNAL_ERROR,
}


# =============================================================================
# Envelope Models
# =============================================================================


class JsonRpcRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jsonrpc: str = Field(..., pattern=r"^2\.0$")
    method: str = Field(..., min_length=1)
    params: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)
    id: Union[int, str, None] = None


def _result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _sponsorship_error(request_id: Any, exc: SponsorshipError) -> Dict[str, Any]:
    return _error(request_id, ERROR_CODES.get(exc.kind, INTERNAL_ERROR), exc.reason, exc.to_dict())


# =============================================================================
# Methods
# =============================================================================


def _positional(params: Union[List[Any], Dict[str, Any]], names: List[str], required: int) -> List[Any]:
    """Accept positional params, or named params keyed by ``names``."""
    if isinstance(params, dict):
        values = [params.get(name) for name in names]
        while values and values[-1] is None:
            values.pop()
    else:
        values = list(params)
        if len(values) > len(names):
            raise ValidationError("params", "arity", f"Expected at most {len(names)} params")
    if len(values) < required:
        raise ValidationError(
            names[len(values)],
            "presence",
            f"Expected at least {required} params ({', '.join(names[:required])})",
        )
    return values + [None] * (len(names) - len(values))


def _hex(value: int) -> str:
    return hex(value)


async def sponsor_user_operation(service: SponsorshipService, params: Any) -> Dict[str, Any]:
    user_op, entry_point, _context = _positional(params, ["userOp", "entryPoint", "context"], 1)
    if entry_point is not None and not isinstance(entry_point, str):
        raise ValidationError("entryPoint", "format", "entryPoint must be a hex address string")
    result = await service.pipeline.sponsor(user_op, entry_point)
    return result.to_rpc()


async def verify_paymaster_and_data(service: SponsorshipService, params: Any) -> Dict[str, Any]:
    user_op, payload = _positional(params, ["userOp", "paymasterAndData"], 2)
    data = parse_bytes(payload, "paymasterAndData")
    return service.pipeline.verify(user_op, data).to_rpc()


async def get_deposit_status(service: SponsorshipService, params: Any) -> Dict[str, Any]:
    snapshot = service.ledger.snapshot()
    return {name: _hex(value) for name, value in snapshot.to_dict().items()}


async def supported_entry_points(service: SponsorshipService, params: Any) -> List[str]:
    return service.entry_points


async def chain_id(service: SponsorshipService, params: Any) -> str:
    return _hex(service.settings.chain_id)


METHODS: Dict[str, Callable[[SponsorshipService, Any], Awaitable[Any]]] = {
    "pm_sponsorUserOperation": sponsor_user_operation,
    "pm_verifyPaymasterAndData": verify_paymaster_and_data,
    "pm_getDepositStatus": get_deposit_status,
    "pm_supportedEntryPoints": supported_entry_points,
    "eth_chainId": chain_id,
}


# =============================================================================
# Dispatch
# =============================================================================


async def dispatch(service: SponsorshipService, payload: Any) -> Dict[str, Any]:
    """Handle one JSON-RPC request object and return the response object."""
    request_id = payload.get("id") if isinstance(payload, dict) else None
    try:
        call = JsonRpcRequest.model_validate(payload)
    except ModelValidationError as exc:
        return _error(request_id, INVALID_REQUEST, "Invalid request", {"errors": exc.errors(include_url=False, include_context=False)})

    handler = METHODS.get(call.method)
    if handler is None:
        return _error(call.id, METHOD_NOT_FOUND, f"Method not found: {call.method}")

    try:
        return _result(call.id, await handler(service, call.params))
    except SponsorshipError as exc:
        return _sponsorship_error(call.id, exc)
    except Exception:
        logger.exception("Unhandled error in %s", call.method)
        return _error(
            call.id,
            INTERNAL_ERROR,
            "Internal error",
            {"kind": "internal_error", "reason": "Internal error"},
        )


def _describe(response: Dict[str, Any]) -> Optional[str]:
    error = response.get("error")
    if not error:
        return None
    return (error.get("data") or {}).get("kind") or str(error["code"])


@router.post("/")
@router.post("/rpc")
async def json_rpc(request: Request) -> JSONResponse:
    """JSON-RPC 2.0 endpoint; accepts single and batch requests."""
    service: SponsorshipService = request.app.state.service

    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        request.state.rpc_error = "parse_error"
        return JSONResponse(_error(None, PARSE_ERROR, "Parse error"))

    if isinstance(payload, list):
        if not payload:
            request.state.rpc_error = "invalid_request"
            return JSONResponse(_error(None, INVALID_REQUEST, "Empty batch"))
        request.state.rpc_method = ",".join(
            str(item.get("method")) for item in payload if isinstance(item, dict)
        )
        responses = [await dispatch(service, item) for item in payload]
        errors = [kind for kind in map(_describe, responses) if kind]
        if errors:
            request.state.rpc_error = ",".join(errors)
        return JSONResponse(responses)

    if isinstance(payload, dict):
        request.state.rpc_method = payload.get("method")
    response = await dispatch(service, payload)
    request.state.rpc_error = _describe(response)
    return JSONResponse(response)
