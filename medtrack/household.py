# medtrack/household.py
import logging
from typing import Dict, List, Optional

from .clock import Clock
from .errors import NotFoundError, ValidationError
from .models import (
    MEDICINE_TYPES, Member, Medicine, new_id,
    normalize_times, normalize_date, normalize_stock,
    frequency_label, days_remaining,
)
from .store import Store

logger = logging.getLogger("medtrack.household")

_UNSET = object()

class Household:
    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or Clock()

    # -------------------------
    # Members
    # -------------------------
    def ensure_default_member(self) -> Member:
        members = self.store.load_members()
        if members:
            return members[0]
        with self.store.transaction() as snap:
            if snap.members:
                return snap.members[0]
            me = Member(id=new_id("u_"), name="Me", relationship="Self")
            snap.members.append(me)
        logger.info(f"created default member id={me.id}")
        return me

    def list_members(self) -> List[Member]:
        return self.store.load_members()

    def get_member(self, member_id: str) -> Member:
        m = self.store.snapshot().member(member_id)
        if m is None:
            raise NotFoundError(f"Member {member_id} not found.")
        return m

    def add_member(self, name: str, relationship: str = "", age="") -> Member:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name required.")
        m = Member(
            id=new_id("u_"),
            name=name,
            relationship=(relationship or "").strip(),
            age="" if age is None else str(age).strip(),
        )
        with self.store.transaction() as snap:
            snap.members.append(m)
        logger.info(f"added member id={m.id} {m.name}")
        return m

    def edit_member(self, member_id: str, name: str, relationship: str = "") -> Member:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name required.")
        with self.store.transaction() as snap:
            m = snap.member(member_id)
            if m is None:
                raise NotFoundError(f"Member {member_id} not found.")
            m.name = name
            m.relationship = (relationship or "").strip()
        logger.info(f"updated member id={member_id}")
        return m

    def delete_member(self, member_id: str) -> int:
        """Remove the member and every medicine they own; returns medicines removed."""
        with self.store.transaction() as snap:
            if snap.member(member_id) is None:
                raise NotFoundError(f"Member {member_id} not found.")
            snap.members = [u for u in snap.members if u.id != member_id]
            kept = [m for m in snap.medicines if m.family_member_id != member_id]
            removed = len(snap.medicines) - len(kept)
            snap.medicines = kept
        logger.info(f"deleted member id={member_id} medicines={removed}")
        return removed

    # -------------------------
    # Medicines
    # -------------------------
    def _validated(self, snap, member_id, name, times, med_type, start_date, end_date, stock_qty) -> Dict:
        if snap.member(member_id) is None:
            raise NotFoundError(f"Member {member_id} not found.")
        name = (name or "").strip()
        times = normalize_times(times)
        if not name or not times:
            raise ValidationError("Name and at least one time required.")
        med_type = med_type or "Tablet"
        if med_type not in MEDICINE_TYPES:
            raise ValidationError(f"Type must be one of {', '.join(MEDICINE_TYPES)}.")
        return {
            "family_member_id": member_id,
            "name": name,
            "times": times,
            "type": med_type,
            "start_date": normalize_date(start_date, "Start date"),
            "end_date": normalize_date(end_date, "End date"),
            "stock_qty": normalize_stock(stock_qty),
        }

    def add_medicine(self, member_id: str, name: str, times, dosage: str = "",
                     med_type: str = "Tablet", start_date: Optional[str] = None,
                     end_date: Optional[str] = None, stock_qty=0, notes: str = "") -> Medicine:
        with self.store.transaction() as snap:
            fields = self._validated(snap, member_id, name, times, med_type,
                                     start_date, end_date, stock_qty)
            med = Medicine(
                id=new_id("m_"),
                dosage=(dosage or "").strip(),
                notes=(notes or "").strip(),
                created_at=self.clock.now().isoformat(),
                **fields,
            )
            snap.medicines.append(med)
        logger.info(f"added medicine id={med.id} {med.name} times={med.times}")
        return med

    def edit_medicine(self, med_id: str, name: str, times, dosage: str = "",
                      med_type: str = "Tablet", start_date: Optional[str] = None,
                      end_date: Optional[str] = None, stock_qty=0, notes: str = "",
                      member_id=_UNSET) -> Medicine:
        """Replace every editable field of a medicine (owner stays unless given)."""
        with self.store.transaction() as snap:
            med = snap.medicine(med_id)
            if med is None:
                raise NotFoundError(f"Medicine {med_id} not found.")
            owner = med.family_member_id if member_id is _UNSET else member_id
            fields = self._validated(snap, owner, name, times, med_type,
                                     start_date, end_date, stock_qty)
            for k, v in fields.items():
                setattr(med, k, v)
            med.dosage = (dosage or "").strip()
            med.notes = (notes or "").strip()
        logger.info(f"updated medicine id={med_id} times={med.times}")
        return med

    def delete_medicine(self, med_id: str):
        with self.store.transaction() as snap:
            if snap.medicine(med_id) is None:
                raise NotFoundError(f"Medicine {med_id} not found.")
            snap.medicines = [m for m in snap.medicines if m.id != med_id]
        logger.info(f"deleted medicine id={med_id}")

    def get_medicine(self, med_id: str) -> Medicine:
        med = self.store.snapshot().medicine(med_id)
        if med is None:
            raise NotFoundError(f"Medicine {med_id} not found.")
        return med

    def list_medicines(self, member_id: Optional[str] = None, query: str = "") -> List[Medicine]:
        q = (query or "").strip().lower()
        out = []
        for m in self.store.load_medicines():
            if member_id and m.family_member_id != member_id:
                continue
            if q and q not in m.name.lower():
                continue
            out.append(m)
        return out

    def medicine_card(self, med: Medicine) -> Dict:
        owner = self.store.snapshot().member(med.family_member_id)
        return {
            "id": med.id,
            "name": med.name,
            "owner": owner.name if owner else "",
            "dosage": med.dosage,
            "type": med.type,
            "times": list(med.times),
            "frequency": frequency_label(len(med.times)),
            "stock": med.stock_qty,
            "days_remaining": days_remaining(med),
            "start_date": med.start_date,
            "end_date": med.end_date,
            "notes": med.notes,
        }
