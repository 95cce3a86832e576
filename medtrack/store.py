# medtrack/store.py
import os, json, uuid, sqlite3, logging
from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from .config import KEY_MEMBERS, KEY_MEDICINES, KEY_EVENTS, KEY_NOTIFIED
from .models import Member, Medicine, AdherenceEvent, NotificationRecord

logger = logging.getLogger("medtrack.store")

_CRYPTO_LOCK = RLock()
# One mutation in flight at a time across the poller thread and commands.
_STORE_LOCK = RLock()

# -------------------------
# Crypto utilities
# -------------------------
def _atomic_write_bytes(path: Path, data: bytes):
    tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex}")
    tmp.parent.mkdir(parents=True, exist_ok=True)
    tmp.write_bytes(data)
    tmp.replace(path)

def aes_encrypt(data: bytes, key: bytes) -> bytes:
    aes = AESGCM(key)
    nonce = os.urandom(12)
    return nonce + aes.encrypt(nonce, data, None)

def aes_decrypt(data: bytes, key: bytes) -> bytes:
    if not data or len(data) < 12:
        raise InvalidTag("ciphertext too short")
    aes = AESGCM(key)
    nonce, ct = data[:12], data[12:]
    return aes.decrypt(nonce, ct, None)

def get_or_create_key(key_path: Path) -> bytes:
    with _CRYPTO_LOCK:
        if key_path.exists():
            d = key_path.read_bytes()
            if len(d) >= 32:
                return d[:32]
            logger.warning("key file too short; generating a new key")
        key = AESGCM.generate_key(bit_length=256)
        _atomic_write_bytes(key_path, key)
        logger.info("key stored: file")
        return key

# -------------------------
# Key-value substrates
# -------------------------
class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def put(self, key: str, value: str):
        ...

    @abstractmethod
    def put_many(self, items: Dict[str, str]):
        """Write every key or none of them."""

class MemoryKV(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._d = dict(initial or {})

    def get(self, key):
        return self._d.get(key)

    def put(self, key, value):
        self._d[key] = value

    def put_many(self, items):
        self._d.update(items)

class EncryptedKV(KeyValueStore):
    """kv table inside an AES-GCM encrypted SQLite file.

    The file is decrypted into a temp copy for each access and, for writes,
    re-encrypted and swapped in atomically.
    """

    def __init__(self, db_path: Path, key: bytes, tmp_dir: Optional[Path] = None):
        self.db_path = Path(db_path)
        self.key = key
        self.tmp_dir = Path(tmp_dir) if tmp_dir else self.db_path.parent / "tmp"
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self._ensure_db()

    def _tmp_path(self, prefix: str, suffix: str) -> Path:
        return self.tmp_dir / f"{prefix}.{uuid.uuid4().hex}{suffix}"

    def _ensure_db(self):
        with _CRYPTO_LOCK:
            if self.db_path.exists():
                return
            tmp = self._tmp_path("init", ".db")
            try:
                conn = sqlite3.connect(str(tmp))
                conn.execute("CREATE TABLE kv (key TEXT PRIMARY KEY, value TEXT)")
                conn.commit()
                conn.close()
                _atomic_write_bytes(self.db_path, aes_encrypt(tmp.read_bytes(), self.key))
                logger.info(f"created encrypted store {self.db_path}")
            finally:
                tmp.unlink(missing_ok=True)

    def _decrypt_into(self, tmp: Path):
        try:
            pt = aes_decrypt(self.db_path.read_bytes(), self.key)
        except (InvalidTag, OSError):
            aside = self.db_path.with_suffix(self.db_path.suffix + ".corrupt")
            logger.warning(f"store unreadable; moved aside to {aside}")
            self.db_path.replace(aside)
            self._ensure_db()
            pt = aes_decrypt(self.db_path.read_bytes(), self.key)
        _atomic_write_bytes(tmp, pt)

    @contextmanager
    def _get_conn(self, write: bool = False):
        tmp = self._tmp_path("work", ".db")
        try:
            with _CRYPTO_LOCK:
                self._ensure_db()
                self._decrypt_into(tmp)

            conn = sqlite3.connect(str(tmp))
            try:
                yield conn
            finally:
                conn.close()

            if write:
                with _CRYPTO_LOCK:
                    _atomic_write_bytes(self.db_path, aes_encrypt(tmp.read_bytes(), self.key))
        finally:
            tmp.unlink(missing_ok=True)

    def get(self, key):
        try:
            with self._get_conn() as conn:
                row = conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        except sqlite3.DatabaseError:
            logger.warning(f"store read failed for {key}")
            return None
        return row[0] if row else None

    def put(self, key, value):
        with self._get_conn(write=True) as conn:
            conn.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value))
            conn.commit()

    def put_many(self, items):
        with self._get_conn(write=True) as conn:
            conn.executemany("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", list(items.items()))
            conn.commit()

# -------------------------
# Repository
# -------------------------
@dataclass
class Snapshot:
    members: List[Member] = field(default_factory=list)
    medicines: List[Medicine] = field(default_factory=list)
    events: List[AdherenceEvent] = field(default_factory=list)
    notifications: List[NotificationRecord] = field(default_factory=list)

    def member(self, member_id: str) -> Optional[Member]:
        return next((m for m in self.members if m.id == member_id), None)

    def medicine(self, med_id: str) -> Optional[Medicine]:
        return next((m for m in self.medicines if m.id == med_id), None)

    def event(self, med_id: str, day: str, time_hm: str) -> Optional[AdherenceEvent]:
        return next((e for e in self.events if e.slot == (med_id, day, time_hm)), None)

class Store:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def _read(self, key: str, model) -> List:
        raw = self.kv.get(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"corrupt collection {key}; treating as empty")
            return []
        if not isinstance(data, list):
            return []
        out = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                out.append(model.from_dict(item))
            except (TypeError, ValueError, OverflowError):
                logger.warning(f"skipping malformed record in {key}")
        return out

    @staticmethod
    def _dump(items) -> str:
        return json.dumps([i.to_dict() for i in items or []], ensure_ascii=False)

    def _write(self, key: str, items):
        self.kv.put(key, self._dump(items))

    def load_members(self) -> List[Member]:
        return self._read(KEY_MEMBERS, Member)

    def load_medicines(self) -> List[Medicine]:
        return self._read(KEY_MEDICINES, Medicine)

    def load_events(self) -> List[AdherenceEvent]:
        return self._read(KEY_EVENTS, AdherenceEvent)

    def load_notifications(self) -> List[NotificationRecord]:
        return self._read(KEY_NOTIFIED, NotificationRecord)

    def save_members(self, items: List[Member]):
        self._write(KEY_MEMBERS, items)

    def save_medicines(self, items: List[Medicine]):
        self._write(KEY_MEDICINES, items)

    def save_events(self, items: List[AdherenceEvent]):
        self._write(KEY_EVENTS, items)

    def save_notifications(self, items: List[NotificationRecord]):
        self._write(KEY_NOTIFIED, items)

    def snapshot(self) -> Snapshot:
        with _STORE_LOCK:
            return Snapshot(
                members=self.load_members(),
                medicines=self.load_medicines(),
                events=self.load_events(),
                notifications=self.load_notifications(),
            )

    def commit(self, snap: Snapshot):
        with _STORE_LOCK:
            self.kv.put_many({
                KEY_MEMBERS: self._dump(snap.members),
                KEY_MEDICINES: self._dump(snap.medicines),
                KEY_EVENTS: self._dump(snap.events),
                KEY_NOTIFIED: self._dump(snap.notifications),
            })

    def record_notifications(self, records: List[NotificationRecord]):
        """Upsert ledger entries by key, leaving the other collections untouched."""
        if not records:
            return
        with _STORE_LOCK:
            fresh = {r.key for r in records}
            kept = [r for r in self.load_notifications() if r.key not in fresh]
            self.save_notifications(kept + list(records))

    @contextmanager
    def transaction(self):
        """Load every collection, yield it, write all of it back if no error."""
        with _STORE_LOCK:
            snap = self.snapshot()
            yield snap
            self.commit(snap)

def open_store(settings) -> Store:
    settings.ensure_dirs()
    key = get_or_create_key(settings.key_path)
    return Store(EncryptedKV(settings.db_path, key, settings.tmp_dir))
