# spaserver/pool.py
from __future__ import annotations

import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Tuple

from .config import Config
from .engine import Engine, close_quietly

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    conn: socket.socket
    addr: Tuple[str, int]


class WorkerPool:
    def __init__(self, config: Config, engine: Engine) -> None:
        self.config = config
        self.engine = engine

        self._queue: queue.Queue[Task] = queue.Queue(maxsize=config.queue_size or 0)

        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._started = False
        self._lock = threading.Lock()

        self._poll_timeout = 0.2

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
            self._stop_event.clear()

            for i in range(self.config.workers):
                t = threading.Thread(
                    target=self._worker_loop,
                    name=f"worker-{i}",
                    daemon=True,
                )
                self._threads.append(t)
                t.start()
        logger.debug("Started %d workers", self.config.workers)

    def submit(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        if self._stop_event.is_set():
            close_quietly(conn)
            return

        try:
            logger.debug("Queueing connection from %s", addr)
            self._queue.put(Task(conn=conn, addr=addr), block=False)
        except queue.Full:
            logger.warning("Worker queue full; dropping connection from %s", addr)
            close_quietly(conn)

    def stop(self) -> None:
        self._stop_event.set()

        for t in self._threads:
            t.join(timeout=5)

        # Connections still queued will never be served
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break
            close_quietly(task.conn)

        with self._lock:
            self._threads.clear()
            self._started = False

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self._queue.get(timeout=self._poll_timeout)
            except queue.Empty:
                continue

            try:
                self._handle_connection(task)
            finally:
                self._queue.task_done()

    def _handle_connection(self, task: Task) -> None:
        try:
            logger.debug("Handling connection from %s", task.addr)
            self.engine.handle_connection(task.conn)
        except (socket.timeout, TimeoutError):
            logger.debug("Connection from %s timed out", task.addr)
        except Exception:
            logger.exception("Unhandled exception in worker thread")
