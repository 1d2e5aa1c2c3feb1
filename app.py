import json
import time
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from agent import AssistantAgent
from config.settings import settings
from errors import AdmissionConflict, RemoteServiceError
from metrics import REQUEST_COUNTER, REQUEST_LATENCY
from models import ErrorResponse, PromptRequest
from tools import build_registry
from utils import get_backend_class


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "level": record.levelname,
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "msg": record.getMessage(),
            "logger": record.name,
        }
        if hasattr(record, "extra_data"):
            base.update(getattr(record, "extra_data"))
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base)


handler = logging.StreamHandler()
if settings.logging.json_logging:
    handler.setFormatter(JsonFormatter())
else:
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
logger = logging.getLogger("app")
logger.setLevel(settings.logging.level)
logger.addHandler(handler)
logger.propagate = False

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

_agent: Optional[AssistantAgent] = None


def get_agent() -> AssistantAgent:
    global _agent
    if _agent is None:
        backend_cls = get_backend_class(settings.modules.backend_name)
        _agent = AssistantAgent(backend=backend_cls(), tools=build_registry(), settings=settings)
        logger.info(f"Using {settings.modules.backend_name}")
    return _agent


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _agent is not None:
        await _agent.drain()


app = FastAPI(title="Assistant Run Gateway", version="1.0.0", lifespan=lifespan)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(message=message).model_dump())


@app.get("/healthz", response_class=PlainTextResponse)
def healthz():
    return "ok"


@app.get("/metrics")
def metrics():
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/prompt-stream")
async def prompt_stream(req: PromptRequest, agent: AssistantAgent = Depends(get_agent)):
    request_id = str(uuid.uuid4())
    start = time.time()

    if not req.session_id:
        REQUEST_COUNTER.labels(status="400").inc()
        return error_response(400, "sessionId is required")
    if not req.message:
        REQUEST_COUNTER.labels(status="400").inc()
        return error_response(400, "message is required")

    extra = {"extra_data": {"request_id": request_id, "session_id": req.session_id}}
    try:
        channel = await agent.start_turn(request_id, req.session_id, req.message)
    except AdmissionConflict as e:
        REQUEST_COUNTER.labels(status="409").inc()
        logger.warning(f"Admission conflict: {e}", extra=extra)
        return error_response(409, "A run is already active. Please try again later.")
    except RemoteServiceError:
        REQUEST_COUNTER.labels(status="500").inc()
        logger.exception("Error calling OpenAI API", extra=extra)
        return error_response(500, "Error communicating with OpenAI")
    finally:
        REQUEST_LATENCY.observe(time.time() - start)

    REQUEST_COUNTER.labels(status="200").inc()
    logger.info("Opened prompt stream", extra=extra)
    return StreamingResponse(channel, media_type="text/event-stream", headers=STREAM_HEADERS)


if __name__ == "__main__":
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)
