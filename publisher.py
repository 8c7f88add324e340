import asyncio
import json
import os
import random
import uuid
from datetime import datetime, timezone

import aiohttp
from aiokafka import AIOKafkaProducer

MONITOR_URL = os.getenv("MONITOR_URL", "http://localhost:8080")
BROKERS = os.getenv("KAFKA_BROKERS", "localhost:9092")
SOURCES = ["acme-alice-ingest", "acme-bob-enrich", "globex-carol-export"]

TOTAL_MESSAGES = 200
PLAIN_TEXT_RATE = 0.1
CONCURRENCY_LIMIT = 20


def generate_output(source=None):
    source = source or random.choice(SOURCES)
    if random.random() < PLAIN_TEXT_RATE:
        value = f"flowfile {uuid.uuid4().hex[:8]} processed"
    else:
        value = json.dumps({
            "flowfile_id": str(uuid.uuid4()),
            "produced_at": datetime.now(timezone.utc).isoformat(),
            "records": random.randint(0, 500),
            "status": random.choice(["success", "retry", "failure"])
        })
    return f"{source}-topic", value


async def send_output(producer, topic, value, sem, idx=None):
    async with sem:
        try:
            await producer.send_and_wait(topic, value.encode("utf-8"), key=uuid.uuid4().hex.encode("utf-8"))
            if idx is not None:
                print(f"[SEND] #{idx+1} topic={topic}")
            return "ok"
        except Exception as e:
            print(f"[ERROR] topic={topic} error={e}")
            return f"fail-{e}"


async def wait_for_monitor(url, timeout=60):
    for _ in range(timeout):
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url) as resp:
                    if resp.status == 200:
                        print("Monitor is ready!")
                        return
        except Exception:
            pass
        print("Waiting for monitor to be ready...")
        await asyncio.sleep(1)
    print("Monitor not ready after waiting, proceeding anyway...")


async def main():
    await wait_for_monitor(f"{MONITOR_URL}/health")

    sem = asyncio.Semaphore(CONCURRENCY_LIMIT)
    outputs = [generate_output() for _ in range(TOTAL_MESSAGES)]

    print(f"Sending {len(outputs)} flow outputs to {len(SOURCES)} topics...")

    producer = AIOKafkaProducer(bootstrap_servers=BROKERS.split(","))
    await producer.start()
    try:
        results = await asyncio.gather(
            *(send_output(producer, topic, value, sem, idx) for idx, (topic, value) in enumerate(outputs))
        )
    finally:
        await producer.stop()

    print(f"Done: {results.count('ok')} sent, {len(results) - results.count('ok')} failed")

if __name__ == "__main__":
    asyncio.run(main())
