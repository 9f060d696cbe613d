from __future__ import annotations

import asyncio
import json
import logging

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from leafcare.agent import LeafCareAgent
from leafcare.config import settings
from leafcare.core.cancellation import CancellationToken

logger = logging.getLogger(__name__)

UNPARSEABLE_BODY_ERROR = "Request body was not valid JSON; returned generic fallback recommendations."
DISCONNECT_POLL_S = 0.25

app = FastAPI(
    title="Leaf Care Recommendation API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

agent: LeafCareAgent | None = None


@app.on_event("startup")
def startup_event():
    global agent
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    logger.info("🌱 Initializing Leaf Care agent...")
    agent = LeafCareAgent.from_settings(settings)
    logger.info("✅ Leaf Care agent ready")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/recommendations")
async def recommendations(request: Request):
    if agent is None:
        raise HTTPException(status_code=500, detail="Agent not initialized")

    raw = await request.body()
    try:
        payload = json.loads(raw) if raw.strip() else None
    except ValueError:
        # Still answer with something usable; never a 4xx for a bad body.
        logger.warning("Recommendation request body is not valid JSON (%s bytes)", len(raw))
        body = await run_in_threadpool(agent.recommend, None)
        body["error"] = UNPARSEABLE_BODY_ERROR
        return body

    token = CancellationToken()
    task = asyncio.ensure_future(run_in_threadpool(agent.recommend, payload, token))

    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_S)
        if done:
            break
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling recommendation")
            token.cancel()
            break

    result = await task
    if result is None:
        return Response(status_code=204)
    return result
