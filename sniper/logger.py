# sniper/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from datetime import date
from typing import List, Any, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(module)s | %(message)s'


class AsyncAuditLogger:
    """
    Non-blocking, append-only CSV writer for completed sequence records.
    Disk I/O happens on a background task fed by an asyncio Queue.
    """
    def __init__(self, filepath: str, header: Optional[List[str]] = None):
        self.filepath = filepath
        self.header = header
        self._queue = asyncio.Queue()
        self._worker_task = None

    async def start(self):
        """
        Creates the directory and file (with header when new) and starts the background writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        async with aiofiles.open(self.filepath, mode='a', newline='') as f:
            if is_new and self.header:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(self.header)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_trade(self, data: List[Any]):
        """
        Non-blocking call to add a record to the queue.
        """
        await self._queue.put(data)

    async def stop(self):
        """Waits for queued rows to hit the disk, then stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except Exception as e:
                # Persistence is best-effort, never take the bot down
                print(f"LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str, level: str, log_dir: Optional[str] = None,
                         console_level: Optional[str] = None):
    """
    Sets up the standard Python logger for console output, plus a daily
    log file under `log_dir` when one is given. `console_level` lets the
    terminal stay quieter than the file (e.g. under a live dashboard).
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        if console_level:
            handler.setLevel(console_level)
        logger.addHandler(handler)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            logfile = os.path.join(log_dir, f"sniper_{date.today().isoformat()}.log")
            file_handler = logging.FileHandler(logfile, encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
