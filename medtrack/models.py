# medtrack/models.py
import re, math, secrets, string
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .errors import ValidationError

MEDICINE_TYPES = ("Tablet", "Capsule", "Syrup", "Injection")

HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_ID_ALPHABET = string.digits + string.ascii_lowercase

def new_id(prefix: str = "") -> str:
    return prefix + "".join(secrets.choice(_ID_ALPHABET) for _ in range(8))

def _int_or_zero(v: Any) -> int:
    try:
        return int(v or 0)
    except (TypeError, ValueError, OverflowError):
        return 0

# -------------------------
# Entities
# -------------------------
@dataclass
class Member:
    id: str
    name: str
    relationship: str = ""
    age: str = ""
    avatar: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict) -> "Member":
        return cls(
            id=str(d.get("id", "")),
            name=str(d.get("name") or ""),
            relationship=str(d.get("relationship") or ""),
            age="" if d.get("age") is None else str(d.get("age")),
            avatar=str(d.get("avatar") or ""),
        )

@dataclass
class Medicine:
    id: str
    family_member_id: str
    name: str
    times: List[str] = field(default_factory=list)
    dosage: str = ""
    type: str = "Tablet"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    stock_qty: int = 0
    notes: str = ""
    created_at: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "familyMemberId": self.family_member_id,
            "name": self.name,
            "dosage": self.dosage,
            "type": self.type,
            "times": list(self.times),
            "startDate": self.start_date,
            "endDate": self.end_date,
            "stockQty": self.stock_qty,
            "notes": self.notes,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "Medicine":
        return cls(
            id=str(d.get("id", "")),
            family_member_id=str(d.get("familyMemberId") or ""),
            name=str(d.get("name") or ""),
            times=[str(t) for t in d.get("times")] if isinstance(d.get("times"), list) else [],
            dosage=str(d.get("dosage") or ""),
            type=str(d.get("type") or "Tablet"),
            start_date=d.get("startDate") or None,
            end_date=d.get("endDate") or None,
            stock_qty=_int_or_zero(d.get("stockQty")),
            notes=str(d.get("notes") or ""),
            created_at=str(d.get("createdAt") or ""),
        )

@dataclass
class AdherenceEvent:
    id: str
    medicine_id: str
    family_member_id: str
    taken: bool
    taken_at: str
    scheduled_time: str
    date: str

    @property
    def slot(self):
        return (self.medicine_id, self.date, self.scheduled_time)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "medicineId": self.medicine_id,
            "familyMemberId": self.family_member_id,
            "taken": self.taken,
            "takenAt": self.taken_at,
            "scheduledTime": self.scheduled_time,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "AdherenceEvent":
        return cls(
            id=str(d.get("id", "")),
            medicine_id=str(d.get("medicineId") or ""),
            family_member_id=str(d.get("familyMemberId") or ""),
            taken=bool(d.get("taken")),
            taken_at=str(d.get("takenAt") or ""),
            scheduled_time=str(d.get("scheduledTime") or ""),
            date=str(d.get("date") or ""),
        )

@dataclass
class NotificationRecord:
    key: str
    ts: str

    @staticmethod
    def key_for(medicine_id: str, time_hm: str) -> str:
        return f"{medicine_id}#{time_hm}"

    def to_dict(self) -> Dict:
        return {"key": self.key, "ts": self.ts}

    @classmethod
    def from_dict(cls, d: Dict) -> "NotificationRecord":
        return cls(key=str(d.get("key") or ""), ts=str(d.get("ts") or ""))

# -------------------------
# Validation helpers
# -------------------------
def normalize_times(times) -> List[str]:
    out = []
    for t in times or []:
        t = str(t).strip()
        if not t:
            continue
        if not HHMM.match(t):
            raise ValidationError(f"Invalid time {t!r}; use HH:MM.")
        if t not in out:
            out.append(t)
    return out

def normalize_date(value, label: str) -> Optional[str]:
    value = (value or "").strip() if isinstance(value, str) else value
    if not value:
        return None
    if not isinstance(value, str) or not ISO_DATE.match(value):
        raise ValidationError(f"{label} must be YYYY-MM-DD.")
    return value

def normalize_stock(value) -> int:
    if value in (None, ""):
        return 0
    try:
        qty = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Stock must be a whole number.")
    if qty < 0:
        raise ValidationError("Stock cannot be negative.")
    return qty

# -------------------------
# Derived values
# -------------------------
def frequency_label(n: int) -> str:
    if not n:
        return "No schedule"
    if n == 1:
        return "Once daily"
    if n == 2:
        return "Twice daily"
    return f"{n} times daily"

def days_remaining(med: Medicine) -> Optional[int]:
    """Whole days the current stock covers, or None without a schedule."""
    per_day = len(med.times)
    if per_day <= 0:
        return None
    return math.floor(med.stock_qty / per_day)
