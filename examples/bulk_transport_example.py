import asyncio
import os
from loguru import logger

from api_switchboard.core import (
    AiohttpTransport,
    BulkTransportJob,
    FilterPolicy,
    RateLimitConfig,
    TransportMode,
    infer_from_request,
    parse_curl
)
from api_switchboard.core.factory import SinkFactory
from api_switchboard.sinks import WebhookSink  # noqa: F401  registers the sink types

CURL = """curl 'https://api.github.com/repos/python/cpython/issues?state=closed&per_page=50&page=1' \\
  -H 'Accept: application/vnd.github+json'"""


async def main():
    # Get webhook URL from environment variable
    webhook_url = os.getenv('SWITCHBOARD_WEBHOOK_URL')
    if not webhook_url:
        raise ValueError("SWITCHBOARD_WEBHOOK_URL environment variable not set")

    descriptor = parse_curl(CURL)
    pagination = infer_from_request(descriptor)
    logger.info(f"Pagination: {pagination.mode.value} via '{pagination.page_param_name}'")

    sink = SinkFactory.create_sink("webhook", {"url": webhook_url})
    job = BulkTransportJob(
        AiohttpTransport(timeout=30),
        rate_limit=RateLimitConfig(min_delay_ms=1000)    # Stay well under the API limit
    )
    job.subscribe(lambda snapshot: logger.info(
        f"page {snapshot.current_page_index}: {snapshot.items_delivered} items delivered"
    ))

    try:
        async with sink, job.transport:
            result = await job.start(
                descriptor,
                pagination,
                sink,
                FilterPolicy(mode=TransportMode.MAX_PAGES, max_pages=3)
            )

        logger.info(f"Finished with status {result.status.value}")
        for entry in result.error_log:
            logger.warning(f"page {entry.page}: {entry.message}")

        metrics = job.get_metrics()
        logger.info(f"Requests made: {metrics['requests_made']}")
        logger.info(f"Rate limit hits: {metrics['rate_limit_hits']}")

    except Exception as e:
        logger.error(f"Transport failed: {str(e)}")
        raise

if __name__ == "__main__":
    asyncio.run(main())
