"""Async load generator for the batch payment endpoint."""

import argparse
import asyncio
import random
import statistics
import time
from datetime import date, timedelta
from uuid import uuid4

import httpx


def make_payment(idx: int) -> dict:
    return {
        "description": f"load test invoice {idx}",
        "due_date": (date.today() + timedelta(days=random.randint(1, 60))).isoformat(),
        "amount_cents": random.randint(100, 250000),
        "currency": random.choice(["USD", "ARS"]),
        "payer": {"name": f"Payer {idx}", "email": f"payer{idx}@example.com"},
    }


async def send_batch(client: httpx.AsyncClient, base_url: str, size: int):
    """Send one batch and return (status_code, latency_ms, body)."""

    started = time.perf_counter()
    try:
        resp = await client.post(
            f"{base_url}/api/v1/payments/batch",
            json={"payments": [make_payment(i) for i in range(size)]},
            headers={"idempotency-key": str(uuid4()), "x-correlation-id": str(uuid4())},
        )
        latency = (time.perf_counter() - started) * 1000
        return resp.status_code, latency, resp.json()
    except Exception:
        latency = (time.perf_counter() - started) * 1000
        return 599, latency, {}


async def run(batches: int, size: int, concurrency: int, base_url: str):
    """Execute a bounded-concurrency batch run and print summary stats."""

    sem = asyncio.Semaphore(concurrency)

    async with httpx.AsyncClient(timeout=60.0) as client:
        async def worker():
            async with sem:
                return await send_batch(client, base_url, size)

        results = await asyncio.gather(*(worker() for _ in range(batches)))

    accepted = [body for code, _, body in results if code == 200]
    lats = [latency for _, latency, _ in results]
    print(f"batches={batches}")
    print(f"accepted={len(accepted)}")
    print(f"items_succeeded={sum(body.get('succeeded', 0) for body in accepted)}")
    print(f"items_failed={sum(body.get('failed', 0) for body in accepted)}")
    print(f"mean_ms={statistics.fmean(lats) if lats else 0.0:.2f}")
    print(f"max_ms={max(lats, default=0.0):.2f}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Submit synthetic payment batches.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--batches", type=int, default=10)
    parser.add_argument("--size", type=int, default=50)
    parser.add_argument("--concurrency", type=int, default=4)
    args = parser.parse_args()
    asyncio.run(run(args.batches, args.size, args.concurrency, args.base_url))


if __name__ == "__main__":
    main()
