# medtrack/adherence.py
#
# Dose bookkeeping. Each (medicine, date, time) slot holds at most one
# AdherenceEvent. Events are never edited in place: a slot is resolved by
# creating one and reopened by deleting it, and stock moves with each step.
#
# Known stock asymmetry (kept as-is pending product sign-off): taking a dose
# floors stock at 0, but undoing a taken dose always adds 1 back. A take/undo
# on an empty medicine therefore leaves stockQty at 1.
import logging
from typing import List, Optional

from .clock import Clock
from .errors import NotFoundError, SlotConflict, ValidationError
from .models import AdherenceEvent, new_id
from .schedule import Slot, SlotState, day_slots, doses_for
from .store import Store

logger = logging.getLogger("medtrack.adherence")

__all__ = ["AdherenceEngine", "SlotState"]

class AdherenceEngine:
    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or Clock()

    def state(self, med_id: str, time_hm: str, day: Optional[str] = None) -> SlotState:
        day = day or self.clock.today()
        snap = self.store.snapshot()
        return SlotState.of(snap.event(med_id, day, time_hm))

    def today(self, member_id: Optional[str] = None, day: Optional[str] = None) -> List[Slot]:
        return day_slots(self.store.snapshot(), day or self.clock.today(), member_id)

    def mark_taken(self, med_id: str, time_hm: str, day: Optional[str] = None) -> AdherenceEvent:
        return self._resolve(med_id, time_hm, day, taken=True)

    def mark_skipped(self, med_id: str, time_hm: str, day: Optional[str] = None) -> AdherenceEvent:
        return self._resolve(med_id, time_hm, day, taken=False)

    def _resolve(self, med_id: str, time_hm: str, day: Optional[str], taken: bool) -> AdherenceEvent:
        day = day or self.clock.today()
        with self.store.transaction() as snap:
            med = snap.medicine(med_id)
            if med is None:
                raise NotFoundError(f"Medicine {med_id} not found.")
            if time_hm not in doses_for(med, day):
                raise ValidationError(f"{med.name} is not scheduled at {time_hm} on {day}.")
            existing = snap.event(med_id, day, time_hm)
            if existing is not None:
                raise SlotConflict(
                    f"{med.name} at {time_hm} on {day} is already "
                    f"{SlotState.of(existing).value}; undo it first."
                )

            ev = AdherenceEvent(
                id=new_id("e_"),
                medicine_id=med.id,
                family_member_id=med.family_member_id,
                taken=taken,
                taken_at=self.clock.now().isoformat(),
                scheduled_time=time_hm,
                date=day,
            )
            snap.events.append(ev)
            if taken:
                med.stock_qty = max(0, med.stock_qty - 1)

        status = "taken" if taken else "skipped"
        logger.info(f"dose log: med_id={med_id} {status} sched={day} {time_hm} stock={med.stock_qty}")
        return ev

    def undo(self, med_id: str, time_hm: str, day: Optional[str] = None) -> Optional[AdherenceEvent]:
        """Reopen a resolved slot; returns the removed event, or None if it was pending."""
        day = day or self.clock.today()
        with self.store.transaction() as snap:
            removed = snap.event(med_id, day, time_hm)
            if removed is None:
                return None
            snap.events = [e for e in snap.events if e is not removed]
            if removed.taken:
                med = snap.medicine(removed.medicine_id)
                if med is not None:
                    med.stock_qty = med.stock_qty + 1

        logger.info(f"dose undo: med_id={med_id} sched={day} {time_hm} was_taken={removed.taken}")
        return removed
