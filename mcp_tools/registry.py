"""
Tool registry shared by the MCP stdio server and the HTTP API.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp_tools.context import ToolContext
from mcp_tools.housing_tools import handle_search_hpd_violations, search_hpd_violations_tool
from mcp_tools.service_request_tools import (
    analyze_311_trends_tool,
    handle_analyze_311_trends,
    handle_search_311_complaints,
    search_311_complaints_tool,
)
from mcp_tools.street_closure_tools import handle_search_street_closures, search_street_closures_tool

Handler = Callable[[Dict[str, Any], Optional[ToolContext]], Awaitable[str]]

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    # 311 tools
    search_311_complaints_tool(),
    analyze_311_trends_tool(),

    # HPD tools
    search_hpd_violations_tool(),

    # DOT tools
    search_street_closures_tool(),
]

# Map tool names to their handler functions
TOOL_HANDLERS: Dict[str, Handler] = {
    "search_311_complaints": handle_search_311_complaints,
    "analyze_311_trends": handle_analyze_311_trends,
    "search_hpd_violations": handle_search_hpd_violations,
    "search_street_closures": handle_search_street_closures,
}
