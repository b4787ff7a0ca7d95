from __future__ import annotations

from arq.worker import run_worker

from queuewatch.core.logging import configure_logging
from queuewatch.workers.delivery import WorkerSettings


def main() -> None:
    # Run a dedicated worker for failure-report delivery, separate from application queues.
    configure_logging()
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
