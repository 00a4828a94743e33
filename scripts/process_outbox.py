#!/usr/bin/env python3
"""
Разбор очереди outbox вне веб-процесса (cron / ручной запуск).

Работает с той же таблицей, что и приложение: освобождает зависшие
захваты, доставляет всё, что можно, пересчитывает статус outbox.

    python scripts/process_outbox.py --batch 25
"""
import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Загружаем переменные из .env файла в корне проекта до импорта настроек
ROOT = os.path.join(os.path.dirname(__file__), "..")
load_dotenv(os.path.join(ROOT, ".env.local"))
load_dotenv(os.path.join(ROOT, ".env"))
sys.path.insert(0, os.path.abspath(ROOT))

from admin_sync.core.config import settings  # noqa: E402
from admin_sync.core.logging import configure_logging, set_job, set_run_id  # noqa: E402
from admin_sync.db.session import engine  # noqa: E402
from admin_sync.services.outbox_processor_service import OutboxProcessorService  # noqa: E402

logger = logging.getLogger("process_outbox")


async def main(batch: int, lock_timeout: int) -> int:
    if not settings.admin_sync_configured:
        logger.error("Missing ADMIN_SYNC_URL or ADMIN_SYNC_SECRET (admin sync config).")
        return 1

    processor = OutboxProcessorService(lock_timeout_seconds=lock_timeout)
    try:
        result = await processor.drain_until_empty(batch)
    except Exception:
        logger.exception("Outbox processing failed")
        return 1
    finally:
        await engine.dispose()

    logger.info("Outbox processing complete. Delivered %d events, %d failed.", result.processed, result.failed,
                extra={"extra": {"processed": result.processed, "failed": result.failed}})
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Drain the admin sync outbox")
    parser.add_argument("--batch", type=int, default=settings.OUTBOX_DRAIN_BATCH)
    parser.add_argument("--lock-timeout", type=int, default=settings.OUTBOX_LOCK_TIMEOUT_SECONDS,
                        help="seconds after which a processing claim counts as abandoned")
    args = parser.parse_args()

    configure_logging()
    set_run_id()
    set_job("process_outbox_script")
    sys.exit(asyncio.run(main(args.batch, args.lock_timeout)))
