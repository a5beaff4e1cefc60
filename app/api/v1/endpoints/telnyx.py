"""Telnyx voice webhooks for blocked numbers.

Always answer 200 with a list of voice actions, even on a malformed event.
"""

import logging

from fastapi import APIRouter, Request

from app.services.telnyx_blocking import handle_blocked_call, handle_blocked_call_failover

router = APIRouter()
logger = logging.getLogger(__name__)


async def _read_event(request: Request):
    try:
        return await request.json()
    except ValueError:
        logger.warning("Telnyx webhook with invalid JSON body")
        return None


@router.post("/blocked-call-handler")
async def blocked_call_handler(request: Request):
    event = await _read_event(request)
    return handle_blocked_call(event)


@router.post("/blocked-call-failover")
async def blocked_call_failover(request: Request):
    event = await _read_event(request)
    return handle_blocked_call_failover(event)
