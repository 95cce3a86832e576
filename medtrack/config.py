# medtrack/config.py
import os, uuid, logging
from pathlib import Path
from dataclasses import dataclass

# -------------------------
# Fixed behaviour
# -------------------------
UTC_OFFSET_MINUTES = 330
DEBOUNCE_SECONDS = 60
DEFAULT_POLL_SECONDS = 20
TRACKER_DAYS = 7

KEY_MEMBERS = "medtrack_users_v1"
KEY_MEDICINES = "medtrack_meds_v1"
KEY_EVENTS = "medtrack_adherence_v1"
KEY_NOTIFIED = "medtrack_lastnotified_v1"

# -------------------------
# Paths
# -------------------------
def _is_writable_dir(p: Path) -> bool:
    try:
        p.mkdir(parents=True, exist_ok=True)
        t = p / f".writetest.{uuid.uuid4().hex}"
        t.write_text("ok", encoding="utf-8")
        t.unlink(missing_ok=True)
        return True
    except OSError:
        return False

def _app_base_dir() -> Path:
    override = os.environ.get("MEDTRACK_DATA_DIR")
    if override:
        return Path(override)

    p = os.environ.get("ANDROID_PRIVATE")
    if p:
        d = Path(p) / "medtrack_data"
        if _is_writable_dir(d):
            return d

    return Path.home() / ".medtrack"

def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        v = int(raw)
    except ValueError:
        return default
    return v if v > 0 else default

@dataclass
class Settings:
    base_dir: Path
    poll_seconds: int = DEFAULT_POLL_SECONDS
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.base_dir / "medtrack.db.aes"

    @property
    def key_path(self) -> Path:
        return self.base_dir / ".enc_key"

    @property
    def log_path(self) -> Path:
        return self.base_dir / "app.log"

    @property
    def tmp_dir(self) -> Path:
        return self.base_dir / "tmp"

    def ensure_dirs(self):
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

def load_settings() -> Settings:
    level = os.environ.get("MEDTRACK_LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        level = "INFO"
    return Settings(
        base_dir=_app_base_dir(),
        poll_seconds=_int_env("MEDTRACK_POLL_SECONDS", DEFAULT_POLL_SECONDS),
        log_level=level,
    )
