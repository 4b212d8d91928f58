#!/usr/bin/env python3
"""
NYC Open Data MCP Protocol Server

Exposes the NYC Open Data tools (311 complaints and trends, HPD violations,
DOT street closures) to MCP clients over stdio. Every tool answers with the
standard JSON envelope, including on failure, so a client never has to parse
free-form error text.

Usage:
    python mcp_protocol_server.py

Configuration:
    Set environment variables in .env file:
    - SOCRATA_APP_TOKEN: Socrata app token (optional, higher rate limits)
    - LOG_LEVEL: Logging level (default: INFO)
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict

# MCP SDK imports
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from config.settings import settings
from core.envelope import ErrorType, error_envelope
from mcp_tools.context import get_default_context
from mcp_tools.registry import TOOL_DEFINITIONS, TOOL_HANDLERS

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('/tmp/nyc_open_data_mcp.log'),  # Log to file
        logging.StreamHandler(sys.stderr)  # Also log to stderr (not stdout!)
    ]
)
logger = logging.getLogger(__name__)


# ============================================================================
# MCP Server Setup
# ============================================================================

# Create the MCP server instance
app = Server("nyc-open-data")

logger.info("NYC Open Data MCP Server initializing...")


# ============================================================================
# MCP Protocol Handlers
# ============================================================================

@app.list_tools()
async def list_tools() -> list[Tool]:
    """
    Handle the 'tools/list' request from Claude.

    Returns:
        List of Tool objects that Claude can call
    """
    logger.info("Client requested tool list")

    tools = [
        Tool(
            name=definition["name"],
            description=definition["description"],
            inputSchema=definition["inputSchema"]
        )
        for definition in TOOL_DEFINITIONS
    ]

    logger.info(f"Returning {len(tools)} tools to client")
    return tools


@app.call_tool()
async def call_tool(name: str, arguments: Dict[str, Any]) -> list[TextContent]:
    """
    Handle the 'tools/call' request from Claude.

    Args:
        name: The name of the tool to call
        arguments: Dictionary of parameters for the tool

    Returns:
        List containing a TextContent with the tool's JSON envelope
    """
    logger.info(f"Client called tool: {name} with arguments: {arguments}")

    # Check if tool exists
    if name not in TOOL_HANDLERS:
        logger.error(f"Unknown tool: {name}")
        envelope = error_envelope(
            ErrorType.NOT_FOUND,
            f"Unknown tool: {name}",
            details={"available_tools": sorted(TOOL_HANDLERS)},
            guidance="Call tools/list to see the available tools",
        )
        return [TextContent(type="text", text=json.dumps(envelope, indent=2))]

    # Handlers turn every failure into an error envelope
    result = await TOOL_HANDLERS[name](arguments or {}, get_default_context())

    logger.info(f"Tool {name} executed")
    return [TextContent(type="text", text=result)]


# ============================================================================
# Server Lifecycle
# ============================================================================

async def main():
    """
    Serve MCP requests on stdin/stdout until the client disconnects.
    """
    logger.info("Starting NYC Open Data MCP Server...")
    logger.info(f"Registered {len(TOOL_HANDLERS)} tools")
    if not settings.has_api_token:
        logger.warning("No Socrata app token configured; using the shared anonymous rate limit")

    try:
        # stdout carries JSON-RPC; logs go to stderr and the log file
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Server ready and waiting for requests")
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options()
            )
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        sys.exit(1)


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
