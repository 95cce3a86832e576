# medtrack/tracker.py
from datetime import date, timedelta
from dataclasses import dataclass
from typing import List, Tuple

from .config import TRACKER_DAYS
from .schedule import is_active

@dataclass
class DaySummary:
    date: str
    scheduled: int
    taken: int
    percent: int

def _percent(taken: int, scheduled: int) -> int:
    if scheduled == 0:
        return 0
    # half rounds up
    return (taken * 200 + scheduled) // (scheduled * 2)

def weekly_adherence(snap, member_id: str, end_day: str, days: int = TRACKER_DAYS) -> List[DaySummary]:
    """Per-day scheduled vs taken counts for a member, oldest day first."""
    meds = [m for m in snap.medicines if m.family_member_id == member_id]
    end = date.fromisoformat(end_day)
    out = []
    for i in range(days - 1, -1, -1):
        day = (end - timedelta(days=i)).isoformat()
        scheduled = sum(len(m.times) for m in meds if is_active(m, day))
        taken = sum(
            1 for e in snap.events
            if e.family_member_id == member_id and e.date == day and e.taken
        )
        out.append(DaySummary(day, scheduled, taken, _percent(taken, scheduled)))
    return out

def taken_summary(snap, member_id: str) -> Tuple[int, int]:
    """(taken events on record, doses per day across the member's medicines)."""
    doses = sum(len(m.times) for m in snap.medicines if m.family_member_id == member_id)
    taken = sum(1 for e in snap.events if e.family_member_id == member_id and e.taken)
    return taken, doses
