"""
Similarity endpoints.

POST /similarity returns the final score. The /ws WebSocket carries the
message protocol: each inbound {text, url} message is answered with the
event sequence initiate, progress*, ready, complete | error.
"""

from __future__ import annotations

import json
from contextlib import aclosing

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from similarity_service.core.state import get_app_state
from similarity_service.logging import get_logger
from similarity_service.schemas import (
    CompleteEvent,
    ErrorEvent,
    ProgressMessage,
    SimilarityRequest,
)

router = APIRouter()


@router.post("/similarity", response_model=CompleteEvent)
async def compute_similarity(request: SimilarityRequest) -> CompleteEvent:
    """
    Compute the cosine similarity between a text and an image.

    Loads the model on first use. Concurrent requests are processed one
    at a time.

    Args:
        request: Text and image URL

    Returns:
        Completion event with the score
    """
    state = get_app_state()
    return await state.controller.compute(request)


def _parse_message(raw: str) -> SimilarityRequest | ErrorEvent:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        return ErrorEvent(error=f"Message is not valid JSON: {e.msg}", code="invalid_request")
    try:
        return SimilarityRequest.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) or "message" for err in e.errors())
        return ErrorEvent(error=f"Invalid request fields: {fields}", code="invalid_request")


@router.websocket("/ws")
async def similarity_socket(websocket: WebSocket) -> None:
    """
    Message-passing boundary for similarity requests.

    Progress of transfers with unknown length (total == 0) is not relayed.
    A malformed message gets a single error event; the socket stays open.
    """
    logger = get_logger()
    state = get_app_state()
    await websocket.accept()

    try:
        while True:
            raw = await websocket.receive_text()
            parsed = _parse_message(raw)
            if isinstance(parsed, ErrorEvent):
                await websocket.send_json(parsed.model_dump())
                continue

            async with aclosing(state.controller.stream(parsed)) as events:
                async for event in events:
                    if isinstance(event, ProgressMessage) and event.progress.total <= 0:
                        continue
                    await websocket.send_json(event.model_dump())
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
