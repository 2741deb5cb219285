"""FastAPI mock chat-completion server for testing the summarization pipeline."""

import asyncio
import itertools
import os
import random
from typing import Dict, Iterable, List, Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatCompletionRequest(BaseModel):
    """Subset of the chat-completion request the pipeline sends."""
    model: str
    messages: List[ChatMessage]
    max_tokens: int = Field(default=800, gt=0)
    temperature: float = 0.2
    top_p: Optional[float] = None


def mock_summary(request: ChatCompletionRequest) -> str:
    """Deterministic summary text derived from the user message."""
    user_text = next((m.content for m in request.messages if m.role == "user"), "")
    document = user_text.split("\n\n", 1)[-1]
    words = document.split()
    budget = max(5, min(len(words), request.max_tokens // 10))
    excerpt = " ".join(words[:budget])
    return f"Summary ({request.model}, {len(words)} words in source): {excerpt}"


def create_mock_app(
    name: str = "mock-llm",
    api_key: Optional[str] = None,
    error_rate: float = 0.0,
    status_sequence: Optional[Iterable[int]] = None,
    retry_after: Optional[float] = None,
    extra_latency_ms: int = 0,
    random_seed: Optional[int] = None,
) -> FastAPI:
    """
    Create a FastAPI mock chat-completion server with configurable behavior.

    Args:
        name: Server name reported by /health
        api_key: Expected bearer credential; None accepts any caller
        error_rate: Probability of returning 5xx errors (0.0-1.0)
        status_sequence: Scripted status codes for successive calls; 200
            entries succeed, anything else fails. Exhausted sequences succeed.
        retry_after: Retry-After seconds sent with scripted 429/503 responses
        extra_latency_ms: Additional latency in milliseconds
        random_seed: Seed for deterministic error injection

    Returns:
        FastAPI application. ``app.state.calls`` counts completion calls and
        ``app.state.requests`` keeps their bodies.
    """
    app = FastAPI(title=f"Mock Chat Completions - {name}")
    rng = random.Random(random_seed)
    scripted = iter(status_sequence or ())
    counter = itertools.count(1)

    app.state.calls = 0
    app.state.requests = []

    @app.post("/v1/chat/completions")
    async def chat_completions(
        request: ChatCompletionRequest,
        authorization: Optional[str] = Header(default=None),
    ):
        """Answer a chat-completion request."""
        app.state.calls += 1
        app.state.requests.append(request.model_dump())

        if extra_latency_ms > 0:
            await asyncio.sleep(extra_latency_ms / 1000.0)

        if api_key is not None and authorization != f"Bearer {api_key}":
            raise HTTPException(status_code=401, detail="Invalid API key")

        status = next(scripted, 200)
        if status != 200:
            headers: Dict[str, str] = {}
            if retry_after is not None and status in (429, 503):
                headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=status,
                content={"error": {"message": f"Scripted status {status}", "type": "mock_error"}},
                headers=headers,
            )

        if rng.random() < error_rate:
            error_code = rng.choice([500, 502, 503])
            raise HTTPException(status_code=error_code, detail="Simulated error")

        content = mock_summary(request)
        prompt_tokens = sum(len(m.content) for m in request.messages) // 4
        completion_tokens = len(content) // 4
        return {
            "id": f"chatcmpl-{name}-{next(counter)}",
            "object": "chat.completion",
            "model": request.model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": content},
                    "finish_reason": "stop",
                }
            ],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name, "calls": app.state.calls}

    return app


def create_app() -> FastAPI:
    """
    Factory function for uvicorn --factory.

    Reads MOCK_API_KEY, ERROR_RATE, EXTRA_LATENCY_MS and RANDOM_SEED from the
    environment.
    """
    seed = os.getenv("RANDOM_SEED")
    return create_mock_app(
        name=os.getenv("SERVER_NAME", "mock-llm"),
        api_key=os.getenv("MOCK_API_KEY"),
        error_rate=float(os.getenv("ERROR_RATE", 0.0)),
        extra_latency_ms=int(os.getenv("EXTRA_LATENCY_MS", 0)),
        random_seed=int(seed) if seed is not None else None,
    )


def serve(host: str = "127.0.0.1", port: int = 8001) -> None:
    """Run the mock server until interrupted."""
    uvicorn.run("docsum.mock_servers.app:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    serve(port=int(os.getenv("PORT", 8001)))
