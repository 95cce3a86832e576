# medtrack/logs.py
import logging
from pathlib import Path
from threading import RLock
from typing import Optional

from .config import Settings

_LOG_LOCK = RLock()

# -------------------------
# Logging ring buffer
# -------------------------
class RingLog:
    def __init__(self, max_lines=800):
        self.max_lines = int(max_lines)
        self._lines = []
        self._lock = RLock()

    def add(self, line: str):
        line = (line or "").rstrip("\n")
        if not line:
            return
        with self._lock:
            self._lines.append(line)
            if len(self._lines) > self.max_lines:
                self._lines = self._lines[-self.max_lines:]

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def clear(self):
        with self._lock:
            self._lines = []

_RING = RingLog()

class FileAndRingHandler(logging.Handler):
    def __init__(self, log_path: Optional[Path] = None, ring: RingLog = _RING):
        super().__init__()
        self.log_path = log_path
        self.ring = ring
        self.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    def emit(self, record):
        try:
            msg = self.format(record)
        except Exception:
            msg = str(record.getMessage())
        self.ring.add(msg)
        if self.log_path is None:
            return
        try:
            with _LOG_LOCK:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(msg + "\n")
        except OSError:
            self.handleError(record)

logger = logging.getLogger("medtrack")

def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Attach the file+ring handler once; later calls only update the level/path."""
    level = settings.log_level if settings else "INFO"
    logger.setLevel(level)
    log_path = settings.log_path if settings else None
    for h in logger.handlers:
        if isinstance(h, FileAndRingHandler):
            h.log_path = log_path
            return logger
    logger.addHandler(FileAndRingHandler(log_path))
    return logger

def ring_text() -> str:
    return _RING.text()

def clear_log(settings: Optional[Settings] = None):
    _RING.clear()
    if settings is not None:
        settings.log_path.unlink(missing_ok=True)
    logger.info("log cleared")
