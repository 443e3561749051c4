import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from agent import ChatAgent, build_agent, is_verdict
from config import get_settings

logger = logging.getLogger(__name__)


# Pydantic models
class ChatRequest(BaseModel):
    user_id: str
    message: str


class StartRequest(BaseModel):
    user_id: str


class ChatResponse(BaseModel):
    response: str
    user_id: str
    ask_feedback: bool = False


class FeedbackRequest(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)


class FeedbackResponse(BaseModel):
    status: str
    message: str


class HistoryResponse(BaseModel):
    messages: List[Dict[str, Any]]
    total_count: int
    topic: str
    last_seen: Optional[datetime]
    window_stats: Dict[str, int]


# Global instance
agent: Optional[ChatAgent] = None  # Built at startup


def get_agent() -> ChatAgent:
    """Lazy initialization of the conversation core."""
    global agent
    if agent is None:
        agent = build_agent(get_settings())
    return agent


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to serve without credentials: build_agent raises
    get_agent()
    logger.info("NZT core online")
    try:
        yield
    finally:
        await get_agent().close()
        logger.info("NZT core stopped, memory flushed")


app = FastAPI(title="NZT chat", version="3.0.0", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest):
    """Send a message and get the reply. Provider failures come back as an apology, never an error."""
    response = await get_agent().handle_turn(request.user_id, request.message)
    return ChatResponse(
        response=response,
        user_id=request.user_id,
        ask_feedback=is_verdict(response),
    )


@app.post("/api/start", response_model=ChatResponse)
async def start(request: StartRequest):
    """Start over: clear the conversation and get the opening message."""
    response = await get_agent().start_user(request.user_id)
    return ChatResponse(response=response, user_id=request.user_id)


@app.post("/api/reset/{user_id}")
async def reset(user_id: str):
    """Clear a user's conversation history."""
    try:
        await get_agent().reset_user(user_id)
        return {"status": "reset", "user_id": user_id}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/history/{user_id}", response_model=HistoryResponse)
async def get_history(user_id: str, limit: int = 50, offset: int = 0):
    """Get conversation history with pagination."""
    core = get_agent()
    record = core.store.get(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No conversation for user {user_id}")

    try:
        messages = [turn.model_dump() for turn in record.history]
        return HistoryResponse(
            messages=messages[offset:offset + limit],
            total_count=len(messages),
            topic=record.topic,
            last_seen=record.last_seen,
            window_stats=core.store.window.get_window_stats(record.history),
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/feedback", response_model=FeedbackResponse)
async def feedback(request: FeedbackRequest):
    """Record a rating for a verdict."""
    message = get_agent().record_feedback(request.user_id, request.rating)
    return FeedbackResponse(status="recorded", message=message)


@app.get("/api/health")
async def health_check():
    """Health check endpoint with credential pool status."""
    pool = get_agent().controller.pool
    return {
        "status": "healthy" if len(pool) else "degraded",
        "credentials": len(pool),
        "rotations": pool.rotations,
        "evictions": pool.evictions,
        "keys": pool.snapshot(),
        "active_sessions": len(get_agent().sessions),
    }


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness line for uptime pingers."""
    return "NZT Core Online v3.0"
