"""
Folder watching
===============

Thin wrapper over a watchdog ``Observer``.  Watchdog delivers events on
its own thread; ``PatternEventHandler`` forwards matching file paths to a
coroutine callback on the owning asyncio loop with
``asyncio.run_coroutine_threadsafe``.  Both created files and files moved
into the folder (the usual atomic-rename drop) are reported.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from typing import Awaitable, Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

FileCallback = Callable[[str], Awaitable[object]]


def matches_pattern(path: str, pattern: str) -> bool:
    return fnmatch.fnmatch(os.path.basename(path).lower(), pattern.lower())


class PatternEventHandler(FileSystemEventHandler):
    """Forward created/moved-in files matching ``pattern`` to ``callback``."""

    def __init__(
        self, pattern: str, callback: FileCallback, loop: asyncio.AbstractEventLoop
    ) -> None:
        self.pattern = pattern
        self.callback = callback
        self.loop = loop

    def _dispatch_path(self, path: str) -> None:
        if not matches_pattern(path, self.pattern):
            return
        future = asyncio.run_coroutine_threadsafe(self.callback(path), self.loop)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("File callback failed", exc_info=exc)

    def on_created(self, event):
        if event.is_directory:
            return
        self._dispatch_path(event.src_path)

    def on_moved(self, event):
        if event.is_directory:
            return
        self._dispatch_path(event.dest_path)


class FolderWatcher:
    """Own one observer watching one folder for one filename pattern."""

    def __init__(self, folder: str, pattern: str, callback: FileCallback) -> None:
        self.folder = folder
        self.pattern = pattern
        self.callback = callback
        self.observer: Optional[Observer] = None

    @property
    def watching(self) -> bool:
        return self.observer is not None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        if self.observer is not None:
            return True
        if not os.path.isdir(self.folder):
            logger.warning("Watch folder %s does not exist; not watching", self.folder)
            return False
        handler = PatternEventHandler(
            self.pattern, self.callback, loop or asyncio.get_running_loop()
        )
        observer = Observer()
        observer.schedule(handler, self.folder, recursive=False)
        observer.start()
        self.observer = observer
        logger.info("Watching %s for %s", self.folder, self.pattern)
        return True

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None
        logger.info("Stopped watching %s", self.folder)
