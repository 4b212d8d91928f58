"""
Plumbing shared by every tool module: parameter records, the JSON
response format and the handler wrapper that turns any failure into an
error envelope.
"""

import json
import logging
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

from core.envelope import ErrorType, error_envelope, upstream_error_envelope
from core.errors import OpenDataError
from mcp_tools.context import ToolContext, get_default_context

logger = logging.getLogger(__name__)

P = TypeVar("P", bound="ToolParams")


@dataclass
class ToolParams:
    """Base for per-tool parameter records; unknown argument keys are ignored."""

    @classmethod
    def from_arguments(cls: Type[P], arguments: Optional[Dict[str, Any]]) -> P:
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (arguments or {}).items() if k in names})


def to_json(envelope: Dict[str, Any]) -> str:
    return json.dumps(envelope, indent=2, default=str)


def failure_envelope(exc: BaseException, context: ToolContext) -> Dict[str, Any]:
    """Error envelope for an exception raised while querying."""
    return upstream_error_envelope(exc, context.requester.rate_info())


async def run_tool(
    name: str,
    operation: Callable[[Any, ToolContext], Awaitable[Dict[str, Any]]],
    params_cls: Type[ToolParams],
    arguments: Optional[Dict[str, Any]],
    context: Optional[ToolContext] = None,
) -> str:
    """
    Execute a tool operation and serialize its envelope.

    Operations return error envelopes for expected failures; anything that
    still escapes is logged here and reported as an API_ERROR envelope.
    """
    context = context or get_default_context()
    logger.info(f"Running {name} with arguments: {arguments}")

    try:
        envelope = await operation(params_cls.from_arguments(arguments), context)
    except OpenDataError as e:
        logger.error(f"Error in {name}: {e}", exc_info=True)
        envelope = failure_envelope(e, context)
    except Exception as e:
        logger.error(f"Unexpected error in {name}: {e}", exc_info=True)
        envelope = error_envelope(
            ErrorType.API_ERROR,
            f"Error executing {name}: {e}",
            details={"exception": e.__class__.__name__},
            guidance="Retry the request; if it keeps failing, narrow the query.",
        )

    if envelope.get("success"):
        logger.info(f"{name} returned {envelope.get('count')} (records: {len(envelope.get('records', []))})")
    else:
        logger.info(f"{name} failed: {envelope['error']['type']}")
    return to_json(envelope)
