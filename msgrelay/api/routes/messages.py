"""Anthropic-compatible Messages API endpoint backed by a chat-completions upstream."""

import json
import logging
import secrets
import time
from typing import Any, Mapping, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ...core import CancellationToken, IteratorByteSource, UpstreamClient, describe_httpx_error
from ...core.exceptions import (
    AggregatorOverflowError,
    InvalidRequestError,
    UpstreamStreamError,
)
from ...core.registry import get_settings
from ...messages import (
    STREAM_HEADERS,
    ResponseAssembler,
    messages_to_chat_completions,
    stream_unified_result,
    unified_result_to_message,
)

logger = logging.getLogger("msgrelay")


def new_request_id() -> str:
    return f"req_{secrets.token_hex(8)}_{time.time_ns()}"


def _anthropic_error_response(
    message: str,
    *,
    error_type: str = "invalid_request_error",
    status_code: int = 400,
    error_code: Optional[str] = None,
    param: Optional[str] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"type": error_type, "message": message}
    if error_code:
        error["code"] = error_code
    if param:
        error["param"] = param
    payload = {"type": "error", "error": error}
    return JSONResponse(payload, status_code=status_code)


async def messages_endpoint(request: Request) -> Response:
    """POST /v1/messages - Anthropic Messages API compatible endpoint.

    The upstream is always streamed. Its response is assembled completely
    before anything is sent back, so every failure up to that point still
    gets a proper error status.
    """
    req_id = new_request_id()
    start_time = time.perf_counter()
    settings = get_settings()

    client_host = request.client.host if request.client else "unknown"
    logger.info(
        f"[{req_id}] Messages API request from {client_host}, "
        f"Content-Length: {request.headers.get('content-length', 'not-set')}"
    )

    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as exc:
        logger.warning(f"[{req_id}] Invalid JSON payload: {exc}")
        return _anthropic_error_response("Invalid JSON payload", error_code="invalid_json")

    if not isinstance(payload, Mapping):
        return _anthropic_error_response(
            "Request body must be a JSON object",
            error_code="invalid_json_shape",
        )

    model_name = payload.get("model")
    if not isinstance(model_name, str) or not model_name:
        return _anthropic_error_response(
            "You must provide a model parameter",
            error_code="missing_parameter",
            param="model",
        )

    is_stream = bool(payload.get("stream"))

    try:
        openai_payload = messages_to_chat_completions(
            payload,
            model_map=settings.model_map,
            system_prompt=settings.system_prompt,
        )
    except InvalidRequestError as exc:
        logger.warning(f"[{req_id}] Rejected request: {exc}")
        return _anthropic_error_response(str(exc), error_code=exc.code)

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            f"[{req_id}] Translated request: model={openai_payload.get('model')}, "
            f"messages_count={len(openai_payload.get('messages', []))}, "
            f"tools={len(openai_payload.get('tools', []))}, client_stream={is_stream}"
        )

    if not settings.upstream_api_key:
        logger.error(f"[{req_id}] upstream.api_key is not configured")
        return _anthropic_error_response(
            "Upstream API key is not configured",
            error_type="api_error",
            status_code=500,
            error_code="upstream_key_missing",
        )

    upstream_body = json.dumps(openai_payload, ensure_ascii=False).encode("utf-8")
    client = UpstreamClient(settings)
    assembler = ResponseAssembler(
        req_id,
        timeout=settings.processing_timeout,
        max_tool_calls=settings.max_tool_calls,
        placeholder_text=settings.placeholder_text,
    )

    try:
        async with client.open_stream(upstream_body, request.headers, req_id) as upstream:
            if upstream.status_code != 200:
                error_body = await upstream.aread()
                logger.warning(
                    f"[{req_id}] Upstream returned {upstream.status_code}: "
                    f"{error_body[:500].decode('utf-8', errors='replace')}"
                )
                return Response(
                    content=error_body,
                    status_code=upstream.status_code,
                    media_type="application/json",
                )

            token = CancellationToken.with_timeout(settings.processing_timeout)
            result = await assembler.assemble(IteratorByteSource(upstream.aiter_bytes()), token)
    except UpstreamStreamError as exc:
        logger.error(f"[{req_id}] Upstream stream failed: {exc}")
        return _anthropic_error_response(
            f"Stream processing failed: {exc}",
            error_type="api_error",
            status_code=500,
            error_code="stream_processing_failed",
        )
    except AggregatorOverflowError as exc:
        logger.error(f"[{req_id}] {exc}")
        return _anthropic_error_response(
            str(exc),
            error_type="api_error",
            status_code=500,
            error_code="too_many_tool_calls",
        )
    except httpx.HTTPError as exc:
        detail = describe_httpx_error(exc, client.url)
        logger.error(f"[{req_id}] Upstream request failed: {detail}")
        return _anthropic_error_response(
            f"Upstream request failed: {detail}",
            error_type="api_error",
            status_code=502,
            error_code="upstream_unavailable",
        )

    elapsed = time.perf_counter() - start_time
    logger.info(
        f"[{req_id}] Upstream response assembled in {elapsed:.3f}s: "
        f"stop_reason={result.stop_reason}, blocks={len(result.content)}, "
        f"tool_call={result.is_tool_call}, stream={is_stream}"
    )

    if is_stream:
        return StreamingResponse(
            stream_unified_result(result, chunk_bytes=settings.chunk_bytes, request_id=req_id),
            headers=STREAM_HEADERS,
            media_type="text/event-stream",
        )
    return JSONResponse(unified_result_to_message(result))
