"""
Chat routes - message history, sending and the live SSE feed.
"""

import json
import logging
import time
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from typing import List, Optional

from shopsphere.errors import MarketplaceError
from shopsphere.identity import Identity
from shopsphere.models import Message, MessageCreate
from shopsphere.services.messaging import ChatService
from .dependencies import get_chat_service, get_identity

logger = logging.getLogger(__name__)

router = APIRouter()

KEEPALIVE_SECONDS = 30.0


@router.get("/negotiations/{negotiation_id}/messages", response_model=List[Message])
async def list_messages(
    negotiation_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    chat: ChatService = Depends(get_chat_service)
):
    """
    Full message history of a negotiation, oldest first.
    """
    try:
        return await chat.fetch_history(identity, negotiation_id)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to load messages for {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load messages")


@router.post("/negotiations/{negotiation_id}/messages", response_model=Message, status_code=201)
async def send_message(
    negotiation_id: str,
    body: MessageCreate,
    identity: Optional[Identity] = Depends(get_identity),
    chat: ChatService = Depends(get_chat_service)
):
    """
    Send a message to the other party of the negotiation.
    """
    try:
        return await chat.send_message(identity, negotiation_id, body.content)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to send message in {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to send message")


@router.get("/negotiations/{negotiation_id}/stream")
async def stream_messages(
    negotiation_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    chat: ChatService = Depends(get_chat_service)
):
    """
    SSE feed of a negotiation's chat.

    Emits one ``history`` event with every stored message, then a ``message``
    event per new message and a ``keepalive`` when the line is quiet.
    """
    try:
        feed = await chat.open_feed(identity, negotiation_id)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to open feed for {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to open chat")

    async def event_generator():
        try:
            history = [message.model_dump(mode="json") for message in feed.snapshot()]
            yield "event: history\n"
            yield f"data: {json.dumps(history)}\n\n"

            async for message in feed.updates(timeout=KEEPALIVE_SECONDS):
                if message is None:
                    yield "event: keepalive\n"
                    yield f'data: {{"timestamp": {time.time()}}}\n\n'
                    continue
                yield "event: message\n"
                yield f"data: {message.model_dump_json()}\n\n"

        except Exception as e:
            logger.error(f"Stream error for {negotiation_id}: {e}")
            yield "event: error\n"
            yield f"data: {json.dumps({'message': str(e)})}\n\n"
        finally:
            await feed.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
