"""
NYC Open Data MCP Server (HTTP API)

FastAPI application exposing the same tools as the MCP stdio server over HTTP.

Features:
- 311 complaint search and trend analysis
- HPD housing violation severity
- DOT street closures with de-duplication
- Generic tool invocation endpoint mirroring MCP tools/call
- Auto-generated OpenAPI documentation
- CORS support for web clients

Run with:
    uvicorn mcp_server:app --reload
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings
from core.envelope import ErrorType
from mcp_tools.context import ToolContext
from mcp_tools.housing_tools import HPDViolationParams, search_hpd_violations
from mcp_tools.registry import TOOL_DEFINITIONS, TOOL_HANDLERS
from mcp_tools.service_request_tools import (
    Search311Params,
    Trends311Params,
    analyze_311_trends,
    search_311_complaints,
)
from mcp_tools.street_closure_tools import StreetClosureParams, search_street_closures

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Error envelope type -> HTTP status
ERROR_STATUS = {
    ErrorType.INVALID_INPUT.value: 400,
    ErrorType.VALIDATION_ERROR.value: 400,
    ErrorType.NOT_FOUND.value: 404,
    ErrorType.RATE_LIMIT.value: 429,
    ErrorType.TIMEOUT.value: 504,
    ErrorType.API_ERROR.value: 502,
}


# ============================================================================
# Application Lifecycle
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the shared tool context (query cache, rate tracker, geo memo,
    dataset connectors) on startup.
    """
    # Startup
    logger.info("🚀 Starting NYC Open Data MCP Server...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Socrata base URL: {settings.nyc_data_api_base_url}")

    app.state.context = ToolContext.from_settings(settings)
    if not settings.has_api_token:
        logger.warning("⚠️  No Socrata app token configured; anonymous rate limits apply")

    yield

    # Shutdown
    app.state.context.service_requests.session.close()
    logger.info("👋 Shutting down NYC Open Data MCP Server...")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="NYC Open Data MCP Server",
    description="""
    MCP (Model Context Protocol) Server for NYC Open Data.

    Provides unified access to:
    - 311 service requests
    - HPD housing maintenance code violations
    - DOT street closures

    Every endpoint returns the standard envelope:
    success, source, event_type, window, count, records, meta, insights.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ============================================================================
# CORS Middleware
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_context(request: Request) -> ToolContext:
    """Tool context built at startup."""
    return request.app.state.context


def envelope_response(envelope: Dict[str, Any]) -> JSONResponse:
    """Return an envelope with an HTTP status matching its error type."""
    if envelope.get("success"):
        status_code = 200
    else:
        status_code = ERROR_STATUS.get(envelope["error"]["type"], 500)
    return JSONResponse(status_code=status_code, content=json.loads(json.dumps(envelope, default=str)))


# ============================================================================
# Root & Health Endpoints
# ============================================================================

@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with server information."""
    return {
        "name": "NYC Open Data MCP Server",
        "version": "1.0.0",
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
        "endpoints": {
            "311": "/api/311",
            "hpd": "/api/hpd",
            "dot": "/api/dot",
            "tools": "/api/tools",
            "health": "/health"
        }
    }


@app.get("/health", tags=["Health"])
async def health_check(context: ToolContext = Depends(get_context)):
    """Health check endpoint with cache and rate-limit status."""
    return {
        "status": "healthy",
        "environment": settings.environment,
        "query_cache": context.requester.cache_stats(),
        "geo_cache": context.geo.stats(),
        "rate_limit_info": context.requester.rate_info(),
    }


# ============================================================================
# Tool Endpoints (MCP mirror)
# ============================================================================

@app.get("/api/tools", tags=["Tools"])
async def list_tools():
    """List tool definitions, as returned by MCP tools/list."""
    return {"tools": TOOL_DEFINITIONS}


@app.post("/api/tools/{name}", tags=["Tools"])
async def call_tool(
    name: str,
    arguments: Optional[Dict[str, Any]] = Body(default=None),
    context: ToolContext = Depends(get_context),
):
    """Invoke a tool by name, as MCP tools/call does."""
    if name not in TOOL_HANDLERS:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")

    result = await TOOL_HANDLERS[name](arguments or {}, context)
    return envelope_response(json.loads(result))


# ============================================================================
# 311 Service Requests Endpoints
# ============================================================================

@app.get("/api/311/complaints", tags=["311 Services"])
async def get_311_complaints(
    complaint_type: Optional[str] = Query(None, description="Exact complaint type"),
    borough: Optional[str] = Query(None, description="Borough name or code"),
    start_date: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    days: Optional[int] = Query(None, description="Number of days to look back"),
    limit: int = Query(100, description="Maximum results"),
    skip_cache: bool = Query(False, description="Bypass the query cache"),
    context: ToolContext = Depends(get_context),
):
    """Search 311 complaints with neighborhood enrichment."""
    params = Search311Params(
        complaint_type=complaint_type,
        borough=borough,
        start_date=start_date,
        end_date=end_date,
        days=days,
        limit=limit,
        skip_cache=skip_cache,
    )
    return envelope_response(await search_311_complaints(params, context))


@app.get("/api/311/trends", tags=["311 Services"])
async def get_311_trends(
    complaint_type: Optional[str] = Query(None, description="Exact complaint type"),
    borough: Optional[str] = Query(None, description="Borough name or code"),
    group_by: str = Query("day", description="day, week or month"),
    days: int = Query(90, description="Number of days to analyze"),
    context: ToolContext = Depends(get_context),
):
    """Timeline and trend of 311 complaint volume."""
    params = Trends311Params(complaint_type=complaint_type, borough=borough, group_by=group_by, days=days)
    return envelope_response(await analyze_311_trends(params, context))


# ============================================================================
# HPD Violations Endpoints
# ============================================================================

@app.get("/api/hpd/violations", tags=["HPD Housing"])
async def get_hpd_violations(
    borough: Optional[str] = Query(None, description="Borough name or code"),
    status: Optional[str] = Query(None, description="Violation status"),
    days: int = Query(365, description="Number of days of inspections"),
    limit: int = Query(100, description="Maximum violations in raw mode"),
    aggregated: bool = Query(True, description="Aggregate on the server"),
    context: ToolContext = Depends(get_context),
):
    """HPD violation severity mix, hazard index and borough breakdown."""
    params = HPDViolationParams(borough=borough, status=status, days=days, limit=limit, aggregated=aggregated)
    return envelope_response(await search_hpd_violations(params, context))


# ============================================================================
# DOT Street Closures Endpoints
# ============================================================================

@app.get("/api/dot/closures", tags=["DOT Transportation"])
async def get_street_closures(
    borough: Optional[str] = Query(None, description="Borough name or code"),
    work_type: Optional[str] = Query(None, description="Text to match in the closure purpose"),
    limit: int = Query(1000, description="Maximum raw rows before merging"),
    active_only: bool = Query(True, description="Only closures active today"),
    context: ToolContext = Depends(get_context),
):
    """De-duplicated DOT street closures."""
    params = StreetClosureParams(borough=borough, work_type=work_type, limit=limit, active_only=active_only)
    return envelope_response(await search_street_closures(params, context))


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Custom 500 handler."""
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "type": ErrorType.API_ERROR.value,
                "message": "An unexpected error occurred",
                "details": {},
                "guidance": "Retry the request later",
            }
        }
    )


# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mcp_server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )
