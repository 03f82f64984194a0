from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from fastapi.concurrency import run_in_threadpool

from remitdesk.api.auth import get_principal_id, require_api_key
from remitdesk.api.normalize import normalize_callback_payload, split_tool_call
from remitdesk.api.schemas import CallbackAck, ToolCallRequest
from remitdesk.core.errors import InvalidCallbackPayload
from remitdesk.core.orchestrator import Services, call_tool, get_services, list_tools
from remitdesk.observability.logging import log

router = APIRouter()

CALLBACK_CHANNELS = ("voice", "text", "remittance")


@router.post("/mcp/messages", dependencies=[Depends(require_api_key)])
async def mcp_messages(
    req: ToolCallRequest,
    principal_id: str = Depends(get_principal_id),
    svc: Services = Depends(get_services),
):
    """Tool-call envelope. Outcome codes (200/400/401/404/6xx) travel in the body."""
    if req.method == "tools/list":
        result: Any = {"tools": list_tools()}
    else:
        name, arguments = split_tool_call(req.method, req.params)
        result = await run_in_threadpool(call_tool, svc, principal_id, name, arguments)

    if req.jsonrpc:
        return {"jsonrpc": req.jsonrpc, "id": req.id, "result": result}
    return result


@router.post("/callback/{channel}", response_model=CallbackAck)
async def provider_callback(
    channel: str,
    payload: Any = Body(None),
    x_callback_token: str = Header(default="", alias="x-callback-token"),
    svc: Services = Depends(get_services),
):
    if channel not in CALLBACK_CHANNELS:
        raise HTTPException(status_code=404, detail="Unknown callback channel")

    event = normalize_callback_payload(payload)
    try:
        ack = await run_in_threadpool(svc.reconciler.apply_callback, channel, event, x_callback_token or None)
    except InvalidCallbackPayload as e:
        return JSONResponse(status_code=400, content=e.to_response())
    log(event="callback_acked", channel=channel, orderNo=ack.get("orderNo"), result=ack.get("result"))
    return ack
