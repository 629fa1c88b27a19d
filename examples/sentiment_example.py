#!/usr/bin/env python3
import asyncio

from cogbatch import BatchClient, ServiceSettings, get_endpoint, setup_logging

TEXTS = [
    "The museum was wonderful and the staff were kind.",
    None,
    "Queues were long and the café was closed.",
    "Le tableau le plus célèbre est au Louvre.",
]


async def main() -> None:
    """Score sentiment for a few texts, one result per input row."""
    settings = ServiceSettings.from_env(batch_size=2, concurrency=2)
    client = BatchClient(endpoint=get_endpoint("sentiment"), settings=settings)
    results = await client.analyze(TEXTS, params={"opinionMining": True})
    for text, result in zip(TEXTS, results, strict=True):
        if result.error is not None:
            print(f"{text!r}: error {result.error}")
        elif result.result is None:
            print(f"{text!r}: no result")
        else:
            print(f"{text!r}: {result.result['sentiment']}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
