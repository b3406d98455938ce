"""
Single-hop simulators. No state, no downstream calls: each one just
misbehaves on request.
"""
import asyncio
import resource
import sys
import time
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

router = APIRouter()

STARTED_AT = time.monotonic()

# Statuses that must not carry a body.
BODYLESS = {204, 205, 304}


class SimulatedFatalError(RuntimeError):
    pass


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def int_or(value, default):
    """Junk query values mean "use the default", the way load generators expect."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@router.get("/delay")
async def delay(delay: str = "1000"):
    """Sleeps for ?delay= milliseconds. Doesn't block anyone else."""
    delay = max(int_or(delay, 1000), 0)
    start = time.monotonic()
    await asyncio.sleep(delay / 1000)
    actual = int((time.monotonic() - start) * 1000)
    return {
        "message": f"Response delayed by {delay}ms",
        "requestedDelay": delay,
        "actualDelay": actual,
        "timestamp": now_iso(),
    }


@router.get("/error")
def error(kind: str = Query("", alias="type")):
    try:
        if kind == "fatal":
            raise SimulatedFatalError("Fatal error occurred")
        if kind == "handled":
            return JSONResponse(
                status_code=400,
                content={"error": "Handled error", "message": "This is a handled error"},
            )
        return {"message": "No error triggered"}
    except SimulatedFatalError as exc:
        return JSONResponse(
            status_code=500,
            content={"error": "Unhandled error", "message": str(exc)},
        )


@router.get("/status")
def status(code: str = "200"):
    """Answers with whatever status code you ask for."""
    code = int_or(code, 200)
    if not 200 <= code <= 599:
        raise HTTPException(status_code=422, detail=f"code must be between 200 and 599, got {code}")
    if code in BODYLESS:
        return Response(status_code=code)

    body = {"status": code, "timestamp": now_iso()}
    if code < 300:
        body["message"] = f"Successful response with code {code}"
    elif code < 400:
        body["message"] = f"Redirection with code {code}"
    elif code < 500:
        body["error"] = f"Client error {code}"
        body["message"] = f"Simulated client error code {code}"
    else:
        body["error"] = f"Server error {code}"
        body["message"] = f"Simulated server error code {code}"
    return JSONResponse(status_code=code, content=body)


def max_rss_bytes():
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes.
    return rss if sys.platform == "darwin" else rss * 1024


@router.get("/health")
def health(request: Request):
    settings = request.app.state.settings
    return {
        "status": "up",
        "instance": settings.instance_id,
        "name": settings.instance_name,
        "timestamp": now_iso(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "memoryUsage": {"maxRss": max_rss_bytes()},
    }
