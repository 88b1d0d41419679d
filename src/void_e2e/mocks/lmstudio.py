"""Mock LM Studio server for e2e testing.

Implements the OpenAI-compatible endpoints void-server calls on LM Studio:
- GET  /v1/models: fixed model catalog
- POST /v1/chat/completions: canned reply, single-shot or streamed (SSE)
- POST /v1/embeddings: one fixed-length vector per input

The reply is picked by keyword from the last message, so a scenario controls
what the "model" says by what it sends: "memory", "error" and "hello" each
select their own canned reply.

Streaming is built from a plain generator of chunks (iter_completion_chunks)
so it can be checked without waiting; paced() adds the inter-chunk delay only
when serving over HTTP.
"""
from __future__ import annotations

import json
import os
import random
import time
import uuid
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar
from urllib.parse import urlparse

from flask import Flask, Response, jsonify, request

from void_e2e.mocks.server import MockHTTPServer

T = TypeVar("T")

LLM_MODEL = "mock-llm-model"
EMBEDDING_MODEL = "mock-embedding-model"

MOCK_MODELS: List[Dict[str, Any]] = [
    {"id": LLM_MODEL, "object": "model", "owned_by": "test"},
    {"id": EMBEDDING_MODEL, "object": "model", "owned_by": "test"},
]

# Checked in order against the lower-cased last message
CANNED_REPLIES = (
    ("memory", "I have processed your memory-related request."),
    ("error", "Simulated error response for testing."),
    ("hello", "Hello! This is a mock AI response for testing purposes."),
)

EMBEDDING_DIMENSIONS = 1536
DEFAULT_CHUNK_DELAY = 0.05
DEFAULT_PORT = 1235
DEFAULT_BIND_HOST = "0.0.0.0"
DONE_MARKER = "[DONE]"


def last_message_text(messages: Optional[List[Dict[str, Any]]]) -> str:
    if not messages or not isinstance(messages[-1], dict):
        return ""
    content = messages[-1].get("content") or ""
    if isinstance(content, list):
        # Multi-part content: keep the text parts
        content = " ".join(
            str(part.get("text") or "") for part in content if isinstance(part, dict)
        )
    return str(content)


def pick_reply(messages: Optional[List[Dict[str, Any]]]) -> str:
    """Choose the canned reply for a conversation."""
    text = last_message_text(messages)
    lowered = text.lower()
    for keyword, reply in CANNED_REPLIES:
        if keyword in lowered:
            return reply
    return f'Mock response to: "{text[:50]}..."'


def split_words(content: str) -> List[str]:
    """Split on spaces so that ''.join(result) == content."""
    words = content.split(" ")
    return [words[0]] + [" " + word for word in words[1:]]


def completion_response(content: str, model: str = LLM_MODEL) -> Dict[str, Any]:
    return {
        "id": f"mock-{uuid.uuid4().hex[:12]}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }


def iter_completion_chunks(content: str, model: str = LLM_MODEL) -> Iterator[Dict[str, Any]]:
    """Yield chat.completion.chunk payloads for content, one word per chunk.

    The last payload has an empty delta and finish_reason "stop". Calling
    again starts a fresh sequence.
    """
    completion_id = f"mock-{uuid.uuid4().hex[:12]}"
    created = int(time.time())

    def chunk(delta: Dict[str, str], finish_reason: Optional[str]) -> Dict[str, Any]:
        return {
            "id": completion_id,
            "object": "chat.completion.chunk",
            "created": created,
            "model": model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    for piece in split_words(content):
        yield chunk({"content": piece}, None)
    yield chunk({}, "stop")


def iter_sse_events(chunks: Iterable[Dict[str, Any]]) -> Iterator[str]:
    """Frame chunks as server-sent events, terminated by the [DONE] marker."""
    for payload in chunks:
        yield f"data: {json.dumps(payload)}\n\n"
    yield f"data: {DONE_MARKER}\n\n"


def paced(items: Iterable[T], delay: float,
          sleep: Callable[[float], None] = time.sleep) -> Iterator[T]:
    """Re-yield items with `delay` seconds between consecutive ones."""
    first = True
    for item in items:
        if not first and delay > 0:
            sleep(delay)
        first = False
        yield item


def stream_text(events: Iterable[str]) -> str:
    """Reassemble the reply text from SSE events, dropping the end marker."""
    parts: List[str] = []
    for event in events:
        for line in event.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == DONE_MARKER:
                return "".join(parts)
            payload = json.loads(data)
            for choice in payload.get("choices", []):
                parts.append(choice.get("delta", {}).get("content", ""))
    return "".join(parts)


def embed(inputs: Iterable[str], dimensions: int = EMBEDDING_DIMENSIONS) -> List[List[float]]:
    """One pseudo-random vector per input, in input order.

    Values are seeded by the input text, so the same text always embeds to
    the same vector.
    """
    vectors = []
    for text in inputs:
        rng = random.Random(str(text))
        vectors.append([rng.uniform(-1.0, 1.0) for _ in range(dimensions)])
    return vectors


def _error(message: str, status: int, error_type: str = "invalid_request_error"):
    return jsonify({"error": {"message": message, "type": error_type}}), status


def create_mock_lmstudio_app(chunk_delay: float = DEFAULT_CHUNK_DELAY) -> Flask:
    """Create the mock LM Studio Flask app."""
    app = Flask(__name__)
    app.config["TESTING"] = True

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    @app.route("/v1/models", methods=["GET"])
    def list_models():
        return jsonify({"object": "list", "data": MOCK_MODELS})

    @app.route("/v1/chat/completions", methods=["POST"])
    def chat_completions():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _error("Request body must be a JSON object", 400)

        messages = body.get("messages")
        if messages is not None and not isinstance(messages, list):
            return _error("'messages' must be a list", 400)
        if messages and not all(isinstance(m, dict) for m in messages):
            return _error("Each message must be a JSON object", 400)

        model = body.get("model") or LLM_MODEL
        content = pick_reply(messages)

        if not body.get("stream"):
            return jsonify(completion_response(content, model))

        events = paced(iter_sse_events(iter_completion_chunks(content, model)), chunk_delay)
        return Response(
            events,
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.route("/v1/embeddings", methods=["POST"])
    def embeddings():
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or "input" not in body:
            return _error("'input' is required", 400)

        raw = body["input"]
        inputs = raw if isinstance(raw, list) else [raw]
        vectors = embed(inputs)
        return jsonify({
            "object": "list",
            "data": [
                {"object": "embedding", "index": index, "embedding": vector}
                for index, vector in enumerate(vectors)
            ],
            "model": body.get("model") or EMBEDDING_MODEL,
            "usage": {"prompt_tokens": len(inputs) * 10, "total_tokens": len(inputs) * 10},
        })

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok", "service": "mock-lmstudio"})

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    return app


def default_port() -> int:
    """Port for the mock, offset per pytest-xdist worker (gw0, gw1, ...)."""
    port = int(os.getenv("E2E_MOCK_LMSTUDIO_PORT", str(DEFAULT_PORT)))
    worker = os.getenv("PYTEST_XDIST_WORKER", "")
    if port and worker.startswith("gw") and worker[2:].isdigit():
        port += int(worker[2:])
    return port


def default_bind_host() -> str:
    return os.getenv("E2E_MOCK_LMSTUDIO_BIND", DEFAULT_BIND_HOST)


def advertised_host(locator: Optional[str] = None) -> Optional[str]:
    """Host the application under test should use to reach the mock.

    E2E_MOCK_LMSTUDIO_HOST wins; otherwise the host of the configured LM
    Studio locator (host.docker.internal for the docker stack).
    """
    override = os.getenv("E2E_MOCK_LMSTUDIO_HOST")
    if override:
        return override
    if locator:
        return urlparse(locator).hostname
    return None


class MockLmStudioServer(MockHTTPServer):
    """The inference-backend adapter: mock LM Studio served over HTTP."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 chunk_delay: float = DEFAULT_CHUNK_DELAY):
        super().__init__(
            "lmstudio",
            create_mock_lmstudio_app(chunk_delay),
            host=default_bind_host() if host is None else host,
            port=default_port() if port is None else port,
        )

    @property
    def endpoint(self) -> str:
        """Base URL for clients in this process."""
        return f"{self.url}/v1"

    def endpoint_for(self, host: Optional[str]) -> str:
        """Base URL for a client that reaches this machine as `host`."""
        return f"http://{host or self.local_host}:{self.port}/v1"

    def reset(self) -> None:
        # Stateless: every reply is derived from the request.
        pass


def main() -> None:
    """Serve the mock standalone, e.g. for a docker-compose CI stack."""
    port = default_port()
    print(f"Mock LM Studio server running on http://localhost:{port}/v1")
    print("Endpoints:")
    print("  GET  /v1/models")
    print("  POST /v1/chat/completions   (stream: true for SSE)")
    print("  POST /v1/embeddings")
    create_mock_lmstudio_app().run(host=default_bind_host(), port=port, threaded=True)


if __name__ == "__main__":
    main()
