#!/usr/bin/env python3
import asyncio

from cogbatch import BatchClient, ServiceSettings, TaskKind, setup_logging
from cogbatch.services import ANALYZE

TEXTS = [
    "Claude Monet painted water lilies in Giverny.",
    "Contact me at jane@example.com about the exhibition.",
]


async def main() -> None:
    """Run entity recognition, PII and sentiment tasks in one analyze job."""
    endpoint = ANALYZE.with_tasks(
        {
            TaskKind.ENTITY_RECOGNITION: {"model-version": "latest"},
            TaskKind.ENTITY_RECOGNITION_PII: {"model-version": "latest"},
            TaskKind.SENTIMENT_ANALYSIS: {"model-version": "latest"},
        }
    )
    client = BatchClient(endpoint=endpoint, settings=ServiceSettings.from_env())
    for text, row in zip(TEXTS, await client.analyze(TEXTS), strict=True):
        print(text)
        if row.error is not None:
            print(f"  error: {row.error}")
            continue
        for kind, slot in zip(TaskKind, row.task_results or (), strict=True):
            if slot is not None:
                print(f"  {kind}: {slot.error or slot.result}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
