"""Index runner entry point.

Indexes every pending document of one knowledge base and prints the progress
messages. Ctrl+C stops the run after the current batch.

Usage:
    python -m services.rag_pipeline.rag_index_runner --knowledge-base 3 --user alice --tenant 7
"""

import argparse
import asyncio
import signal

from services.rag_pipeline.RAGPipeline import RAGPipeline
from shared.errors import RAGPipelineError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.progress import IndexingProgress


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index the pending documents of a knowledge base.")
    parser.add_argument("--knowledge-base", type=int, required=True, help="Knowledge base id")
    parser.add_argument("--user", required=True, help="Owning user id")
    parser.add_argument("--tenant", type=int, required=True, help="Tenant id")
    parser.add_argument("--healthcheck", action="store_true", help="Probe all backends before indexing")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Run one knowledge-base indexing pass.

    Returns:
        int: Process exit code; 0 if every document was indexed.
    """
    args = parse_args(argv)
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    try:
        pipeline = RAGPipeline(helper_config=config)
    except RAGPipelineError as e:
        logger.error(f"Invalid configuration: {e}. Aborting.")
        return 2

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # no signal handlers on this platform's event loop
        pass

    def print_progress(event: IndexingProgress) -> None:
        logger.info("[%5.1f%%] %s", event.percent, event.message, color="cyan")

    try:
        await pipeline.boot(healthcheck=args.healthcheck)
        report = await pipeline.indexing_service.do_index_knowledge_base(
            knowledge_base_id=args.knowledge_base,
            user_id=args.user,
            tenant_id=args.tenant,
            progress=print_progress,
            cancel_event=cancel_event,
        )
    except RAGPipelineError as e:
        logger.error(f"Indexing aborted: {e}")
        return 1
    finally:
        await pipeline.close()

    for outcome in report.outcomes:
        if outcome.error:
            logger.warning("%s (%s): %s", outcome.document_id, outcome.filename, outcome.error)
    return 0 if not report.failed_count and not report.cancelled else 1


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
