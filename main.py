# main.py
# Family medicine tracker - command line front end.
#
#   python main.py members
#   python main.py add-med <member_id> "Metformin" 08:00 20:00 --stock 30
#   python main.py today
#   python main.py take <med_id> 08:00
#   python main.py remind            # run the reminder poller
#
# Data lives in an encrypted store under MEDTRACK_DATA_DIR (default ~/.medtrack).
from __future__ import annotations

import sys
import json
import argparse
import logging
from typing import List, Optional

from medtrack.adherence import AdherenceEngine
from medtrack.clock import Clock
from medtrack.config import TRACKER_DAYS, Settings, load_settings
from medtrack.errors import MedtrackError
from medtrack.household import Household
from medtrack.logs import setup_logging, ring_text, clear_log
from medtrack.models import MEDICINE_TYPES, frequency_label, days_remaining
from medtrack.notify import default_notifier
from medtrack.reminders import ReminderPoller
from medtrack.store import Store, MemoryKV, open_store
from medtrack.tracker import weekly_adherence, taken_summary

logger = logging.getLogger("medtrack")

# -------------------------
# Wiring
# -------------------------
class App:
    def __init__(self, store: Store, settings: Settings, clock: Optional[Clock] = None, out=None):
        self.store = store
        self.settings = settings
        self.clock = clock or Clock()
        self.out = out or sys.stdout
        self.household = Household(store, self.clock)
        self.engine = AdherenceEngine(store, self.clock)
        self.notifier = default_notifier()

    def say(self, text: str = ""):
        self.out.write(text + "\n")

    def member_id(self, given: Optional[str]) -> str:
        return given or self.household.ensure_default_member().id

# -------------------------
# Commands
# -------------------------
def cmd_members(app: App, args):
    app.household.ensure_default_member()
    for u in app.household.list_members():
        rel = f" ({u.relationship})" if u.relationship else ""
        app.say(f"{u.id}  {u.name}{rel}")

def cmd_add_member(app: App, args):
    u = app.household.add_member(args.name, args.relationship, args.age)
    app.say(f"added {u.name} ({u.id})")

def cmd_edit_member(app: App, args):
    u = app.household.edit_member(args.member_id, args.name, args.relationship)
    app.say(f"updated {u.name}")

def cmd_delete_member(app: App, args):
    n = app.household.delete_member(args.member_id)
    app.say(f"deleted member and {n} medicine(s)")

def cmd_meds(app: App, args):
    meds = app.household.list_medicines(args.member, args.search)
    if not meds:
        app.say("No medicines yet.")
        return
    for m in meds:
        left = days_remaining(m)
        left_s = "unavailable" if left is None else f"{left} day(s)"
        app.say(f"{m.id}  {m.name} {m.dosage} • {m.type} • {frequency_label(len(m.times))} "
                f"{', '.join(m.times)} • stock {m.stock_qty} • left {left_s}")

def _med_fields(args):
    return dict(
        dosage=args.dosage, med_type=args.type, start_date=args.start,
        end_date=args.end, stock_qty=args.stock, notes=args.notes,
    )

def cmd_add_med(app: App, args):
    m = app.household.add_medicine(app.member_id(args.member), args.name, args.times, **_med_fields(args))
    app.say(f"added {m.name} ({m.id})")

def cmd_edit_med(app: App, args):
    m = app.household.edit_medicine(args.med_id, args.name, args.times, **_med_fields(args))
    app.say(f"updated {m.name}")

def cmd_delete_med(app: App, args):
    app.household.delete_medicine(args.med_id)
    app.say("deleted")

def cmd_show_med(app: App, args):
    card = app.household.medicine_card(app.household.get_medicine(args.med_id))
    app.say(json.dumps(card, indent=2, ensure_ascii=False))

def cmd_today(app: App, args):
    slots = app.engine.today(app.member_id(args.member))
    if not slots:
        app.say("No medicines scheduled today.")
        return
    for s in slots:
        meta = " • ".join(x for x in (s.medicine.dosage, s.medicine.notes) if x)
        app.say(f"{s.time} • {s.medicine.name} [{s.state.value}] {meta}  ({s.medicine.id})".rstrip())

def cmd_take(app: App, args):
    ev = app.engine.mark_taken(args.med_id, args.time, args.date)
    app.say(f"taken {ev.scheduled_time} on {ev.date}")

def cmd_skip(app: App, args):
    ev = app.engine.mark_skipped(args.med_id, args.time, args.date)
    app.say(f"skipped {ev.scheduled_time} on {ev.date}")

def cmd_undo(app: App, args):
    ev = app.engine.undo(args.med_id, args.time, args.date)
    app.say("nothing to undo" if ev is None else f"undid {'taken' if ev.taken else 'skipped'} {ev.scheduled_time}")

def cmd_tracker(app: App, args):
    mid = app.member_id(args.member)
    snap = app.store.snapshot()
    if not any(m.family_member_id == mid for m in snap.medicines):
        app.say("No medicines")
        return
    taken, doses = taken_summary(snap, mid)
    app.say(f"{taken} / {doses} doses taken (last recorded)")
    for d in weekly_adherence(snap, mid, app.clock.today(), args.days):
        app.say(f"{d.date}  {d.taken}/{d.scheduled}  {d.percent}%")

def cmd_check(app: App, args):
    poller = ReminderPoller(app.store, app.notifier, app.clock, app.settings.poll_seconds)
    fired = poller.check()
    app.say(f"{len(fired)} reminder(s) fired")

def cmd_remind(app: App, args):
    app.notifier.request_permission()
    poller = ReminderPoller(app.store, app.notifier, app.clock, args.interval or app.settings.poll_seconds)
    try:
        poller.run_forever()
    except KeyboardInterrupt:
        logger.info("reminder poller stopped")

def cmd_permission(app: App, args):
    state = app.notifier.request_permission() if args.request else app.notifier.permission()
    app.say(f"Notification permission: {state}")

def cmd_log(app: App, args):
    if args.clear:
        clear_log(None if args.memory else app.settings)
        return
    if not args.memory and app.settings.log_path.exists():
        app.say(app.settings.log_path.read_text(encoding="utf-8").rstrip())
    else:
        app.say(ring_text())

# -------------------------
# Parser
# -------------------------
def _add_med_options(p: argparse.ArgumentParser):
    p.add_argument("name")
    p.add_argument("times", nargs="+", help="dose times as HH:MM")
    p.add_argument("--dosage", default="")
    p.add_argument("--type", default="Tablet", choices=MEDICINE_TYPES)
    p.add_argument("--start", default=None, help="YYYY-MM-DD")
    p.add_argument("--end", default=None, help="YYYY-MM-DD")
    p.add_argument("--stock", default=0)
    p.add_argument("--notes", default="")

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="medtrack", description="Family medicine tracker")
    ap.add_argument("--memory", action="store_true", help="use a throwaway in-memory store")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("members", help="list household members")
    p.set_defaults(func=cmd_members)

    p = sub.add_parser("add-member")
    p.add_argument("name")
    p.add_argument("--relationship", default="")
    p.add_argument("--age", default="")
    p.set_defaults(func=cmd_add_member)

    p = sub.add_parser("edit-member")
    p.add_argument("member_id")
    p.add_argument("name")
    p.add_argument("--relationship", default="")
    p.set_defaults(func=cmd_edit_member)

    p = sub.add_parser("delete-member", help="delete a member and their medicines")
    p.add_argument("member_id")
    p.set_defaults(func=cmd_delete_member)

    p = sub.add_parser("meds", help="list medicines")
    p.add_argument("--member", default=None)
    p.add_argument("--search", default="")
    p.set_defaults(func=cmd_meds)

    p = sub.add_parser("add-med")
    p.add_argument("--member", default=None)
    _add_med_options(p)
    p.set_defaults(func=cmd_add_med)

    p = sub.add_parser("edit-med", help="replace all fields of a medicine")
    p.add_argument("med_id")
    _add_med_options(p)
    p.set_defaults(func=cmd_edit_med)

    p = sub.add_parser("delete-med")
    p.add_argument("med_id")
    p.set_defaults(func=cmd_delete_med)

    p = sub.add_parser("show-med")
    p.add_argument("med_id")
    p.set_defaults(func=cmd_show_med)

    p = sub.add_parser("today", help="today's doses and their state")
    p.add_argument("--member", default=None)
    p.set_defaults(func=cmd_today)

    for name, func in (("take", cmd_take), ("skip", cmd_skip), ("undo", cmd_undo)):
        p = sub.add_parser(name)
        p.add_argument("med_id")
        p.add_argument("time")
        p.add_argument("--date", default=None, help="YYYY-MM-DD, default today")
        p.set_defaults(func=func)

    p = sub.add_parser("tracker", help="adherence over the last days")
    p.add_argument("--member", default=None)
    p.add_argument("--days", type=int, default=TRACKER_DAYS)
    p.set_defaults(func=cmd_tracker)

    p = sub.add_parser("check", help="run a single reminder tick")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("remind", help="run the reminder poller until interrupted")
    p.add_argument("--interval", type=float, default=None)
    p.set_defaults(func=cmd_remind)

    p = sub.add_parser("permission", help="show or request notification permission")
    p.add_argument("--request", action="store_true")
    p.set_defaults(func=cmd_permission)

    p = sub.add_parser("log", help="show or clear the app log")
    p.add_argument("--clear", action="store_true")
    p.set_defaults(func=cmd_log)

    return ap

# -------------------------
# Entrypoint
# -------------------------
def main(argv: Optional[List[str]] = None, store: Optional[Store] = None,
         clock: Optional[Clock] = None, out=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    if store is None:
        if args.memory:
            store = Store(MemoryKV())
            setup_logging()
        else:
            store = open_store(settings)
            setup_logging(settings)
    app = App(store, settings, clock, out)
    try:
        args.func(app, args)
    except MedtrackError as e:
        app.say(str(e))
        return 1
    except OSError as e:
        logger.exception("storage failed")
        app.say(f"Storage error: {e}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
