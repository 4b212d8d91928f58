"""
Verify Tools Against the Live NYC Open Data API

This script calls every tool once against the real Socrata API and reports
what came back, including how many repeated rows were removed. It exits
with status 1 if any tool returns an error envelope.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import settings
from mcp_tools.context import ToolContext
from mcp_tools.registry import TOOL_HANDLERS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# One small query per tool
CHECKS = {
    "search_311_complaints": {"borough": "BROOKLYN", "days": 7, "limit": 200},
    "analyze_311_trends": {"days": 30, "group_by": "day"},
    "search_hpd_violations": {"borough": "BRONX", "days": 90},
    "search_street_closures": {"borough": "MANHATTAN", "limit": 500},
}


def duplicates_removed(meta: Dict[str, Any]) -> int:
    """Duplicate count wherever the tool reports it."""
    if "duplicates_removed" in meta:
        return meta["duplicates_removed"]
    if "duplicates_merged" in meta:
        return meta["duplicates_merged"]
    return (meta.get("deduplication") or {}).get("duplicates_removed", 0)


async def verify_tool(name: str, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
    """Run one tool and log a summary of its envelope."""
    logger.info("=" * 70)
    logger.info(f"{name} {arguments}")
    logger.info("=" * 70)

    envelope = json.loads(await TOOL_HANDLERS[name](arguments, context))

    if not envelope["success"]:
        error = envelope["error"]
        logger.error(f"{error['type']}: {error['message']}")
        return {"ok": False, "count": 0, "duplicates": 0}

    meta = envelope["meta"]
    window = envelope["window"]
    dupes = duplicates_removed(meta)
    logger.info(f"Count: {envelope['count']} ({len(envelope['records'])} records)")
    logger.info(f"Window: {window['start']} to {window['end']} ({window['days']} days)")
    logger.info(f"Duplicates removed: {dupes}")
    logger.info(f"Cached: {(meta.get('reliability') or {}).get('cached')}")
    logger.info(f"Headline: {envelope['insights']['headline']}")

    return {"ok": True, "count": envelope["count"], "duplicates": dupes}


async def verify_all() -> Dict[str, Dict[str, Any]]:
    context = ToolContext.from_settings(settings)
    results = {}
    for name, arguments in CHECKS.items():
        results[name] = await verify_tool(name, arguments, context)

    # Same query again must come from the cache
    repeat = json.loads(await TOOL_HANDLERS["search_311_complaints"](CHECKS["search_311_complaints"], context))
    if repeat.get("success") and not repeat["meta"]["reliability"]["cached"]:
        logger.warning("Repeated 311 search was not served from the query cache")

    context.service_requests.session.close()
    return results


def main():
    """Main entry point."""
    logger.info("\n" + "NYC Open Data - Live Tool Verification")
    logger.info(f"Socrata base URL: {settings.nyc_data_api_base_url}")
    logger.info(f"App token: {'configured' if settings.has_api_token else 'not set'}\n")

    try:
        results = asyncio.run(verify_all())
    except Exception as e:
        logger.error(f"\nVerification failed: {e}", exc_info=True)
        sys.exit(1)

    # Summary
    logger.info("\n" + "=" * 70)
    logger.info("SUMMARY")
    logger.info("=" * 70)
    for name, result in results.items():
        status = "OK" if result["ok"] else "FAILED"
        logger.info(f"{name}: {status}, count={result['count']}, duplicates removed={result['duplicates']}")

    failed = [name for name, result in results.items() if not result["ok"]]
    if failed:
        logger.error(f"\n{len(failed)} tool(s) failed: {', '.join(failed)}")
        sys.exit(1)

    logger.info("\n✅ All tools returned valid envelopes")
    logger.info("=" * 70 + "\n")


if __name__ == "__main__":
    main()
