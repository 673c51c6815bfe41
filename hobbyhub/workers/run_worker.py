from __future__ import annotations

import asyncio

from arq.worker import run_worker

from hobbyhub.workers.arq_worker import WorkerSettings


def main() -> None:
    # arq looks up the main-thread loop with asyncio.get_event_loop().
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
