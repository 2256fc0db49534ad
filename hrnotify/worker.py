"""Dispatcher worker process.

Polls the email queue on an interval, or runs a single batch with ``--once``
for cron-style scheduling. Several workers may run side by side.
"""

import argparse
import logging
import signal
import threading
from collections.abc import Callable

from sqlalchemy.orm import Session

from .config import settings, setup_logging
from .database.base import SessionLocal, session_scope
from .directory.service import SqlDirectory
from .dispatcher.service import DispatchOutcome, Dispatcher
from .recipients.static_cc import load_static_cc
from .rendering.service import JinjaRenderer
from .transport.service import create_mailer

logger = logging.getLogger(__name__)


def build_dispatcher(worker_id: str | None = None) -> Dispatcher:
    return Dispatcher(
        directory=SqlDirectory(),
        renderer=JinjaRenderer(),
        mailer=create_mailer(),
        static_cc=load_static_cc(),
        worker_id=worker_id,
    )


def run_once(
    dispatcher: Dispatcher,
    limit: int | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> list[DispatchOutcome]:
    with session_scope(session_factory) as db:
        return dispatcher.process_batch(db, limit=limit)


def run_forever(
    dispatcher: Dispatcher,
    stop: threading.Event,
    interval: float,
    limit: int | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    logger.info(
        "Worker %s polling every %.1fs (batch=%s)", dispatcher.worker_id, interval, limit or settings.batch_limit
    )
    while not stop.is_set():
        try:
            outcomes = run_once(dispatcher, limit, session_factory)
        except Exception:
            logger.exception("Dispatch batch failed")
            outcomes = []
        # A full batch means more may be waiting
        if len(outcomes) < (limit or settings.batch_limit):
            stop.wait(interval)
    logger.info("Worker %s stopped", dispatcher.worker_id)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Dispatch queued HR notification emails")
    parser.add_argument("--once", action="store_true", help="process a single batch and exit")
    parser.add_argument("--limit", type=int, default=None, help="entries per batch")
    parser.add_argument("--interval", type=float, default=settings.worker_interval_seconds)
    parser.add_argument("--worker-id", default=None)
    args = parser.parse_args(argv)

    setup_logging()
    dispatcher = build_dispatcher(args.worker_id)

    if args.once:
        outcomes = run_once(dispatcher, args.limit)
        logger.info("Processed %d entries", len(outcomes))
        return 0

    stop = threading.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop.set())
    run_forever(dispatcher, stop, args.interval, args.limit)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
