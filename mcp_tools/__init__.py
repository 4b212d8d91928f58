"""
MCP Tools Package

This package contains tool definitions and handlers for the NYC Open Data MCP Server.
Each module defines tools that Claude (or other LLMs) can call to query NYC's public datasets.

Modules:
- service_request_tools: Tools for 311 complaint search and trend analysis
- housing_tools: Tools for HPD housing maintenance code violations
- street_closure_tools: Tools for DOT street closures
- registry: Name -> definition/handler maps used by both servers
"""

__all__ = [
    "service_request_tools",
    "housing_tools",
    "street_closure_tools",
    "registry",
]
