"""
HTTP wrapper around the enrichment orchestrator.

    GET  /            health check
    POST /run-agent   {"address": "..."} -> {success, message, data, timestamp}
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from postbuy.errors import ConfigurationError
from postbuy.logging import setup_default_logging
from postbuy.orchestrator import run_all

setup_default_logging()


class RunAgentRequest(BaseModel):
    address: str | None = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Post-buy enrichment server starting up...")
    yield
    logger.info("Post-buy enrichment server shutting down...")


app = FastAPI(
    title="Post-Buy Enrichment",
    description="Runs the property enrichment tasks for one address",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.runner = run_all


@app.get("/")
async def health():
    return {"status": "ok", "service": "post-buy-enrichment", "timestamp": _timestamp()}


@app.post("/run-agent")
async def run_agent(body: RunAgentRequest):
    address = (body.address or "").strip()
    if not address:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Address is required", "timestamp": _timestamp()},
        )

    logger.info(f"Enrichment requested for '{address}'")
    try:
        report = await app.state.runner(address)
    except ConfigurationError as exc:
        logger.error(str(exc))
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": str(exc), "timestamp": _timestamp()},
        )

    return JSONResponse(
        status_code=200 if report.overall_success else 500,
        content={
            "success": report.overall_success,
            "message": report.message,
            "data": report.to_dict(),
            "timestamp": _timestamp(),
        },
    )
