# medtrack/schedule.py
from datetime import date
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional

from .models import Medicine, AdherenceEvent

class SlotState(Enum):
    PENDING = "pending"
    TAKEN = "taken"
    SKIPPED = "skipped"

    @classmethod
    def of(cls, event: Optional[AdherenceEvent]) -> "SlotState":
        if event is None:
            return cls.PENDING
        return cls.TAKEN if event.taken else cls.SKIPPED

@dataclass
class Slot:
    medicine: Medicine
    time: str
    date: str
    event: Optional[AdherenceEvent] = None

    @property
    def state(self) -> SlotState:
        return SlotState.of(self.event)

def _cmp(bound: str, day: str) -> int:
    # Malformed values fall back to plain string ordering, which is what
    # the stored YYYY-MM-DD strings always relied on.
    try:
        a, b = date.fromisoformat(bound), date.fromisoformat(day)
    except (TypeError, ValueError):
        a, b = str(bound), str(day)
    return (a > b) - (a < b)

def is_active(med: Medicine, day: str) -> bool:
    """Whether day falls inside the medicine's inclusive start/end window."""
    if med.start_date and _cmp(med.start_date, day) > 0:
        return False
    if med.end_date and _cmp(med.end_date, day) < 0:
        return False
    return True

def doses_for(med: Medicine, day: str) -> List[str]:
    if not is_active(med, day):
        return []
    return list(med.times)

def day_slots(snap, day: str, member_id: Optional[str] = None) -> List[Slot]:
    """Every dose slot on day, grouped by medicine in stored order."""
    slots = []
    for med in snap.medicines:
        if member_id and med.family_member_id != member_id:
            continue
        for t in doses_for(med, day):
            slots.append(Slot(med, t, day, snap.event(med.id, day, t)))
    return slots
