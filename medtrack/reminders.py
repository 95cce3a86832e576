# medtrack/reminders.py
#
# Reminders match the current HH:MM exactly, sampled once per tick. A tick
# period that steps over a whole minute (clock drift, a stalled host) misses
# that dose's reminder until the same time next day; there is no catch-up.
import time, logging, threading
from datetime import datetime
from dataclasses import dataclass
from typing import List, Optional

from .clock import Clock
from .config import DEBOUNCE_SECONDS, DEFAULT_POLL_SECONDS
from .models import NotificationRecord
from .notify import Notifier
from .schedule import doses_for
from .store import Store

logger = logging.getLogger("medtrack.reminders")

@dataclass
class Reminder:
    medicine_id: str
    time: str
    title: str
    body: str

def _parse_ts(ts: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(ts)
    except (TypeError, ValueError):
        return None
    return dt if dt.tzinfo is not None else None

class ReminderPoller:
    def __init__(self, store: Store, notifier: Notifier, clock: Optional[Clock] = None,
                 interval: float = DEFAULT_POLL_SECONDS, debounce: float = DEBOUNCE_SECONDS):
        self.store = store
        self.notifier = notifier
        self.clock = clock or Clock()
        self.interval = interval
        self.debounce = debounce
        self.running = False
        self.thread = None
        self._wake = threading.Event()

    def _due(self, record: Optional[NotificationRecord], now: datetime) -> bool:
        if record is None:
            return True
        last = _parse_ts(record.ts)
        if last is None:
            return True
        return (now - last).total_seconds() > self.debounce

    def check(self) -> List[Reminder]:
        """Run one tick: notify every dose due this minute, at most once per debounce window."""
        now = self.clock.now()
        day = now.strftime("%Y-%m-%d")
        hm = now.strftime("%H:%M")
        fired = []

        snap = self.store.snapshot()
        ledger = {r.key: r for r in snap.notifications}
        stamped = []
        for med in snap.medicines:
            for t in doses_for(med, day):
                if t != hm:
                    continue
                key = NotificationRecord.key_for(med.id, t)
                if not self._due(ledger.get(key), now):
                    continue
                owner = snap.member(med.family_member_id)
                r = Reminder(
                    medicine_id=med.id,
                    time=t,
                    title=f"Medicine Reminder: {med.name}",
                    body=f"{owner.name if owner else ''} • {med.dosage} • {t}",
                )
                self.notifier.notify(r.title, r.body)
                ledger[key] = NotificationRecord(key=key, ts=now.isoformat())
                stamped.append(ledger[key])
                fired.append(r)

        # Only the debounce ledger is written, and only when something fired.
        self.store.record_notifications(stamped)

        for r in fired:
            logger.info(f"reminder fired: med_id={r.medicine_id} @ {r.time}")
        return fired

    # -------------------------
    # Background loop
    # -------------------------
    def _tick(self):
        try:
            self.check()
        except Exception:
            logger.exception("reminder check failed")

    def start(self):
        if self.running:
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(target=self._loop, daemon=True)
        self.thread.start()
        logger.info(f"reminder poller started every {self.interval}s")

    def stop(self):
        self.running = False
        self._wake.set()
        if self.thread:
            self.thread.join(timeout=2)
            self.thread = None

    def _loop(self):
        while self.running:
            self._tick()
            self._wake.wait(self.interval)

    def run_forever(self):
        logger.info(f"reminder service running every {self.interval}s")
        while True:
            self._tick()
            time.sleep(self.interval)
