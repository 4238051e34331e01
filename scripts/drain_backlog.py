#!/usr/bin/env python3
"""
Run the backlog batches to completion from the command line.

Usage:
    python scripts/drain_backlog.py normalize --manufacturer-id 3
    python scripts/drain_backlog.py all --max-batches 20
"""

import argparse
import asyncio
import logging
from typing import Optional

from catalog_pipeline.db.session import AsyncSessionLocal
from catalog_pipeline.db.store import Scope, SqlCatalogStore
from catalog_pipeline.logging_config import setup_logging
from catalog_pipeline.worker.tasks import PipelineDeps, drain

logger = logging.getLogger(__name__)

STAGES = ("pdf-parse", "normalize", "embeddings")


async def drain_embeddings(deps: PipelineDeps, scope: Scope, max_batches: Optional[int]) -> int:
    """Embeddings have no cursor; repeat until a batch embeds nothing."""
    batches = 0
    while True:
        report = await deps.embedder.run_batch(scope)
        batches += 1
        logger.info(f"embeddings batch {batches}: {report.summary()}")
        if report.count("embedded") == 0 or report.remaining == 0:
            break
        if max_batches and batches >= max_batches:
            logger.warning(f"Stopped after {max_batches} batches; {report.remaining} remaining")
            break
    return batches


async def main(stage: str, scope: Scope, max_batches: Optional[int]) -> None:
    store = SqlCatalogStore(AsyncSessionLocal)
    deps = PipelineDeps.create(store)
    stages = STAGES if stage == "all" else (stage,)
    try:
        for name in stages:
            if name == "embeddings":
                batches = await drain_embeddings(deps, scope, max_batches)
            else:
                run_batch = deps.normalizer.run_batch if name == "normalize" else deps.pdf_enricher.run_batch
                reports = await drain(run_batch, scope, max_batches=max_batches)
                for index, report in enumerate(reports, 1):
                    logger.info(f"{name} batch {index}: {report.summary()}")
                batches = len(reports)
            logger.info(f"{name}: drained in {batches} batch(es)")
    finally:
        await deps.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drain pipeline backlogs")
    parser.add_argument("stage", choices=STAGES + ("all",))
    parser.add_argument("--manufacturer-id", type=int, default=None)
    parser.add_argument("--organization-id", type=int, default=None)
    parser.add_argument("--max-batches", type=int, default=None, help="Safety ceiling per stage")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(
        main(
            args.stage,
            Scope(manufacturer_id=args.manufacturer_id, organization_id=args.organization_id),
            args.max_batches,
        )
    )
