import io
import os
import time
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import main as cli
from medtrack.adherence import AdherenceEngine, SlotState
from medtrack.clock import Clock, FrozenClock
from medtrack.config import KEY_MEDICINES, KEY_EVENTS, KEY_NOTIFIED
from medtrack.errors import NotFoundError, SlotConflict, ValidationError
from medtrack.household import Household
from medtrack.logs import RingLog
from medtrack.models import Medicine, frequency_label, days_remaining, normalize_times
from medtrack.notify import Notifier, ConsoleNotifier, GRANTED, DEFAULT
from medtrack.reminders import ReminderPoller
from medtrack.schedule import doses_for, is_active, day_slots
from medtrack.store import Store, KeyValueStore, MemoryKV, EncryptedKV, aes_encrypt, aes_decrypt
from medtrack.tracker import weekly_adherence, taken_summary, _percent


class CountingKV(MemoryKV):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.written = []
        self.fail_on = None

    def put(self, key, value):
        self.written.append(key)
        super().put(key, value)

    def put_many(self, items):
        if self.fail_on in items:
            raise OSError("disk full")
        self.written.extend(items)
        super().put_many(items)


class RecordingNotifier(Notifier):
    def __init__(self, permission=GRANTED):
        self._permission = permission
        self.shown = []
        self.alerts = []

    def permission(self):
        return self._permission

    def show(self, title, body):
        self.shown.append((title, body))

    def alert(self, title, body):
        self.alerts.append((title, body))


def _fixture(at=datetime(2024, 6, 15, 8, 0)):
    store = Store(MemoryKV())
    clock = FrozenClock(at)
    house = Household(store, clock)
    me = house.ensure_default_member()
    return store, clock, house, me


class TestModels(unittest.TestCase):
    def test_frequency_label(self):
        self.assertEqual(frequency_label(0), "No schedule")
        self.assertEqual(frequency_label(1), "Once daily")
        self.assertEqual(frequency_label(2), "Twice daily")
        self.assertEqual(frequency_label(5), "5 times daily")

    def test_days_remaining(self):
        med = Medicine(id="m", family_member_id="u", name="A", times=["08:00", "20:00"], stock_qty=9)
        self.assertEqual(days_remaining(med), 4)
        med.stock_qty = 0
        self.assertEqual(days_remaining(med), 0)
        med.times = []
        self.assertIsNone(days_remaining(med))

    def test_normalize_times(self):
        self.assertEqual(normalize_times([" 08:00", "", "20:00", "08:00"]), ["08:00", "20:00"])
        with self.assertRaises(ValidationError):
            normalize_times(["8am"])

    def test_medicine_dict_uses_stored_names(self):
        med = Medicine.from_dict({"id": "m_1", "familyMemberId": "u_1", "name": "A",
                                  "times": ["08:00"], "stockQty": "oops"})
        self.assertEqual(med.stock_qty, 0)
        d = med.to_dict()
        self.assertEqual(d["familyMemberId"], "u_1")
        self.assertIsNone(d["startDate"])


class TestClock(unittest.TestCase):
    def test_fixed_offset_ignores_host_timezone(self):
        c = Clock(lambda: datetime(2024, 6, 14, 20, 0, tzinfo=timezone.utc))
        self.assertEqual(c.today(), "2024-06-15")
        self.assertEqual(c.hhmm(), "01:30")
        self.assertEqual(c.days_back(1), "2024-06-14")


class TestSchedule(unittest.TestCase):
    def setUp(self):
        self.med = Medicine(id="m", family_member_id="u", name="A", times=["08:00", "20:00"],
                            start_date="2024-06-10", end_date="2024-06-20")

    def test_window_is_inclusive(self):
        self.assertEqual(doses_for(self.med, "2024-06-09"), [])
        self.assertEqual(doses_for(self.med, "2024-06-21"), [])
        for day in ("2024-06-10", "2024-06-15", "2024-06-20"):
            self.assertEqual(doses_for(self.med, day), ["08:00", "20:00"])

    def test_unbounded(self):
        med = Medicine(id="m", family_member_id="u", name="A", times=["08:00"])
        self.assertTrue(is_active(med, "1999-01-01"))

    def test_malformed_bound_compares_as_text(self):
        med = Medicine(id="m", family_member_id="u", name="A", times=["08:00"], start_date="zzz")
        self.assertFalse(is_active(med, "2024-06-15"))


class TestAdherence(unittest.TestCase):
    def setUp(self):
        self.store, self.clock, self.house, self.me = _fixture()
        self.med = self.house.add_medicine(self.me.id, "Metformin", ["08:00", "20:00"], stock_qty=10)
        self.engine = AdherenceEngine(self.store, self.clock)

    def stock(self):
        return self.house.get_medicine(self.med.id).stock_qty

    def test_take_undo_skip_scenario(self):
        self.engine.mark_taken(self.med.id, "08:00")
        self.assertEqual(self.stock(), 9)
        self.assertEqual(self.engine.state(self.med.id, "08:00"), SlotState.TAKEN)

        self.engine.undo(self.med.id, "08:00")
        self.assertEqual(self.stock(), 10)
        self.assertEqual(self.engine.state(self.med.id, "08:00"), SlotState.PENDING)

        self.engine.mark_skipped(self.med.id, "08:00")
        self.assertEqual(self.stock(), 10)
        self.assertEqual(self.engine.state(self.med.id, "08:00"), SlotState.SKIPPED)

    def test_empty_stock_undo_inflates(self):
        self.house.edit_medicine(self.med.id, "Metformin", ["08:00", "20:00"], stock_qty=0)
        self.engine.mark_taken(self.med.id, "08:00")
        self.assertEqual(self.stock(), 0)
        self.engine.undo(self.med.id, "08:00")
        self.assertEqual(self.stock(), 1)

    def test_resolved_slot_cannot_be_remarked(self):
        self.engine.mark_taken(self.med.id, "08:00")
        with self.assertRaises(SlotConflict):
            self.engine.mark_skipped(self.med.id, "08:00")
        with self.assertRaises(SlotConflict):
            self.engine.mark_taken(self.med.id, "08:00")
        events = self.store.load_events()
        self.assertEqual(len(events), 1)
        self.assertEqual(self.stock(), 9)

    def test_undo_pending_is_noop(self):
        self.assertIsNone(self.engine.undo(self.med.id, "20:00"))
        self.assertEqual(self.stock(), 10)

    def test_unknown_medicine_and_unscheduled_time(self):
        with self.assertRaises(NotFoundError):
            self.engine.mark_taken("m_missing", "08:00")
        with self.assertRaises(ValidationError):
            self.engine.mark_taken(self.med.id, "09:00")

    def test_slots_are_per_day(self):
        self.engine.mark_taken(self.med.id, "08:00", day="2024-06-14")
        self.engine.mark_taken(self.med.id, "08:00")
        ev = self.store.load_events()
        self.assertEqual(len({e.slot for e in ev}), 2)
        self.assertEqual(ev[0].family_member_id, self.me.id)

    def test_today_lists_states(self):
        self.engine.mark_skipped(self.med.id, "20:00")
        slots = self.engine.today(self.me.id)
        self.assertEqual([(s.time, s.state) for s in slots],
                         [("08:00", SlotState.PENDING), ("20:00", SlotState.SKIPPED)])


class TestHousehold(unittest.TestCase):
    def setUp(self):
        self.store, self.clock, self.house, self.me = _fixture()

    def test_default_member_created_once(self):
        again = self.house.ensure_default_member()
        self.assertEqual(again.id, self.me.id)
        self.assertEqual(self.me.name, "Me")
        self.assertEqual(self.me.relationship, "Self")
        self.assertEqual(len(self.house.list_members()), 1)

    def test_validation(self):
        with self.assertRaises(ValidationError):
            self.house.add_member("   ")
        with self.assertRaises(ValidationError):
            self.house.add_medicine(self.me.id, "A", [])
        with self.assertRaises(ValidationError):
            self.house.add_medicine(self.me.id, "", ["08:00"])
        with self.assertRaises(ValidationError):
            self.house.add_medicine(self.me.id, "A", ["08:00"], med_type="Powder")
        with self.assertRaises(ValidationError):
            self.house.add_medicine(self.me.id, "A", ["08:00"], stock_qty=-1)
        with self.assertRaises(NotFoundError):
            self.house.add_medicine("u_missing", "A", ["08:00"])
        self.assertEqual(self.store.load_medicines(), [])

    def test_delete_member_cascades(self):
        kid = self.house.add_member("Ravi", "Son", 9)
        a = self.house.add_medicine(kid.id, "Syrup A", ["09:00"], med_type="Syrup", stock_qty=5)
        b = self.house.add_medicine(self.me.id, "B", ["09:00"])
        self.assertEqual(self.house.delete_member(kid.id), 1)
        ids = [m.id for m in self.house.list_medicines()]
        self.assertEqual(ids, [b.id])
        snap = self.store.snapshot()
        self.assertEqual([s.medicine.id for s in day_slots(snap, "2024-06-15")], [b.id])
        with self.assertRaises(NotFoundError):
            self.house.get_medicine(a.id)

    def test_edit_replaces_fields_and_search(self):
        med = self.house.add_medicine(self.me.id, "Vitamin D", ["08:00"], dosage="1 tab", notes="food")
        self.house.edit_medicine(med.id, "Vitamin D3", ["21:00"], stock_qty=3)
        got = self.house.get_medicine(med.id)
        self.assertEqual((got.name, got.times, got.dosage, got.notes, got.stock_qty),
                         ("Vitamin D3", ["21:00"], "", "", 3))
        self.assertEqual(len(self.house.list_medicines(query="d3")), 1)
        self.assertEqual(self.house.list_medicines(query="zinc"), [])
        card = self.house.medicine_card(got)
        self.assertEqual(card["owner"], "Me")
        self.assertEqual(card["frequency"], "Once daily")
        self.assertEqual(card["days_remaining"], 3)


class TestReminders(unittest.TestCase):
    def setUp(self):
        self.store, self.clock, self.house, self.me = _fixture()
        self.med = self.house.add_medicine(self.me.id, "Metformin", ["08:00"], dosage="500mg")
        self.notifier = RecordingNotifier()
        self.poller = ReminderPoller(self.store, self.notifier, self.clock, interval=0.01)

    def test_fires_once_within_window(self):
        fired = self.poller.check()
        self.assertEqual(len(fired), 1)
        self.assertEqual(self.notifier.shown[0], ("Medicine Reminder: Metformin", "Me • 500mg • 08:00"))
        self.clock.advance(seconds=30)
        self.assertEqual(self.poller.check(), [])
        recs = self.store.load_notifications()
        self.assertEqual([r.key for r in recs], [f"{self.med.id}#08:00"])

    def test_fires_again_next_day(self):
        self.poller.check()
        self.clock.advance(days=1)
        self.assertEqual(len(self.poller.check()), 1)
        self.assertEqual(len(self.store.load_notifications()), 1)

    def test_debounce_boundary(self):
        self.poller.check()
        self.clock.advance(seconds=59)
        self.assertEqual(self.poller.check(), [])
        self.clock.set(datetime(2024, 6, 15, 8, 0))
        self.store.kv.put("medtrack_lastnotified_v1",
                          f'[{{"key": "{self.med.id}#08:00", "ts": "2024-06-15T07:58:59+05:30"}}]')
        self.assertEqual(len(self.poller.check()), 1)

    def test_exactly_sixty_seconds_does_not_fire(self):
        self.store.kv.put(KEY_NOTIFIED,
                          f'[{{"key": "{self.med.id}#08:00", "ts": "2024-06-15T07:59:00+05:30"}}]')
        self.assertEqual(self.poller.check(), [])
        self.clock.advance(seconds=1)
        self.assertEqual(len(self.poller.check()), 1)

    def test_idle_tick_writes_nothing(self):
        kv = CountingKV()
        store = Store(kv)
        house = Household(store, self.clock)
        me = house.ensure_default_member()
        med = house.add_medicine(me.id, "A", ["08:00"])
        kv.written = []
        self.clock.set(datetime(2024, 6, 15, 9, 0))
        poller = ReminderPoller(store, self.notifier, self.clock)
        self.assertEqual(poller.check(), [])
        self.assertEqual(kv.written, [])

        self.clock.set(datetime(2024, 6, 15, 8, 0))
        self.assertEqual(len(poller.check()), 1)
        self.assertEqual(kv.written, [KEY_NOTIFIED])
        self.assertEqual([m.id for m in store.load_medicines()], [med.id])

    def test_no_fire_off_minute_or_after_end(self):
        self.clock.set(datetime(2024, 6, 15, 8, 1))
        self.assertEqual(self.poller.check(), [])
        self.house.edit_medicine(self.med.id, "Metformin", ["08:00"], end_date="2024-06-14")
        self.clock.set(datetime(2024, 6, 15, 8, 0))
        self.assertEqual(self.poller.check(), [])

    def test_falls_back_to_alert_without_permission(self):
        self.notifier._permission = DEFAULT
        self.poller.check()
        self.assertEqual(self.notifier.shown, [])
        self.assertEqual(len(self.notifier.alerts), 1)

    def test_background_thread(self):
        self.poller.start()
        time.sleep(0.2)
        self.poller.stop()
        self.assertEqual(len(self.notifier.shown), 1)


class TestNotify(unittest.TestCase):
    def test_console_notifier(self):
        out = io.StringIO()
        n = ConsoleNotifier(out, permission=DEFAULT, bell=False)
        n.notify("T", "B")
        self.assertIn("T\n\nB", out.getvalue())
        self.assertEqual(n.request_permission(), GRANTED)
        n.notify("T2", "B2")
        self.assertIn("T2: B2", out.getvalue())


    def test_sinks_must_implement_show_and_alert(self):
        class Incomplete(Notifier):
            def show(self, title, body):
                pass

        with self.assertRaises(TypeError):
            Incomplete()
        with self.assertRaises(TypeError):
            KeyValueStore()


class TestStore(unittest.TestCase):
    def test_corrupt_collections_read_empty(self):
        store = Store(MemoryKV({KEY_MEDICINES: "{not json", KEY_EVENTS: '{"a": 1}'}))
        self.assertEqual(store.load_medicines(), [])
        self.assertEqual(store.load_events(), [])
        self.assertEqual(store.load_members(), [])

    def test_malformed_records_do_not_break_reads(self):
        raw = ('[{"id": "m1", "name": "A", "times": 5},'
               ' {"id": "m2", "name": "B", "times": ["08:00"], "stockQty": Infinity}]')
        meds = Store(MemoryKV({KEY_MEDICINES: raw})).load_medicines()
        self.assertEqual([m.id for m in meds], ["m1", "m2"])
        self.assertEqual(meds[0].times, [])
        self.assertEqual(meds[1].stock_qty, 0)

    def test_failed_commit_keeps_stock_and_events_in_step(self):
        kv = CountingKV()
        store = Store(kv)
        clock = FrozenClock(datetime(2024, 6, 15, 8, 0))
        house = Household(store, clock)
        me = house.ensure_default_member()
        med = house.add_medicine(me.id, "A", ["08:00", "20:00"], stock_qty=10)
        kv.fail_on = KEY_EVENTS
        with self.assertRaises(OSError):
            AdherenceEngine(store, clock).mark_taken(med.id, "08:00")
        self.assertEqual(store.load_medicines()[0].stock_qty, 10)
        self.assertEqual(store.load_events(), [])

    def test_failed_transaction_writes_nothing(self):
        store, clock, house, me = _fixture()
        with self.assertRaises(RuntimeError):
            with store.transaction() as snap:
                snap.members = []
                raise RuntimeError("boom")
        self.assertEqual(len(store.load_members()), 1)

    def test_aesgcm_roundtrip(self):
        key = AESGCM.generate_key(bit_length=256)
        self.assertEqual(aes_decrypt(aes_encrypt(b"medtrack", key), key), b"medtrack")

    def test_encrypted_kv(self):
        key = AESGCM.generate_key(bit_length=256)
        with tempfile.TemporaryDirectory() as td:
            db = Path(td) / "medtrack.db.aes"
            store = Store(EncryptedKV(db, key, Path(td) / "tmp"))
            house = Household(store, FrozenClock(datetime(2024, 6, 15, 8, 0)))
            me = house.ensure_default_member()
            house.add_medicine(me.id, "A", ["08:00"], stock_qty=2)
            self.assertNotIn(b"medtrack_meds_v1", db.read_bytes())

            reopened = Store(EncryptedKV(db, key, Path(td) / "tmp"))
            self.assertEqual([m.name for m in reopened.load_medicines()], ["A"])

            db.write_bytes(b"garbage")
            self.assertEqual(reopened.load_medicines(), [])
            self.assertTrue(db.with_suffix(".aes.corrupt").exists())


class TestTracker(unittest.TestCase):
    def test_percent_rounds_half_up(self):
        self.assertEqual(_percent(1, 8), 13)
        self.assertEqual(_percent(2, 3), 67)
        self.assertEqual(_percent(0, 0), 0)

    def test_weekly(self):
        store, clock, house, me = _fixture()
        med = house.add_medicine(me.id, "A", ["08:00", "20:00"], start_date="2024-06-14", stock_qty=5)
        engine = AdherenceEngine(store, clock)
        engine.mark_taken(med.id, "08:00", day="2024-06-14")
        engine.mark_skipped(med.id, "20:00", day="2024-06-14")
        engine.mark_taken(med.id, "08:00")
        engine.mark_taken(med.id, "20:00")
        days = weekly_adherence(store.snapshot(), me.id, "2024-06-15", days=3)
        self.assertEqual([(d.date, d.scheduled, d.taken, d.percent) for d in days], [
            ("2024-06-13", 0, 0, 0),
            ("2024-06-14", 2, 1, 50),
            ("2024-06-15", 2, 2, 100),
        ])
        self.assertEqual(taken_summary(store.snapshot(), me.id), (3, 2))


class TestCli(unittest.TestCase):
    def run_cli(self, store, clock, *argv):
        out = io.StringIO()
        code = cli.main(list(argv), store=store, clock=clock, out=out)
        return code, out.getvalue()

    def test_flow(self):
        store = Store(MemoryKV())
        clock = FrozenClock(datetime(2024, 6, 15, 8, 0))
        code, text = self.run_cli(store, clock, "add-med", "Metformin", "08:00", "20:00", "--stock", "10")
        self.assertEqual(code, 0)
        med_id = store.load_medicines()[0].id

        code, text = self.run_cli(store, clock, "take", med_id, "08:00")
        self.assertEqual(code, 0)
        code, text = self.run_cli(store, clock, "take", med_id, "08:00")
        self.assertEqual(code, 1)
        self.assertIn("undo it first", text)

        code, text = self.run_cli(store, clock, "today")
        self.assertIn("08:00 • Metformin [taken]", text)
        self.assertIn("20:00 • Metformin [pending]", text)

        code, text = self.run_cli(store, clock, "meds")
        self.assertIn("stock 9", text)
        self.assertIn("Twice daily", text)

    def test_storage_error_is_reported(self):
        kv = CountingKV()
        store = Store(kv)
        clock = FrozenClock(datetime(2024, 6, 15, 8, 0))
        self.run_cli(store, clock, "add-med", "A", "08:00")
        kv.fail_on = KEY_EVENTS
        code, text = self.run_cli(store, clock, "take", store.load_medicines()[0].id, "08:00")
        self.assertEqual(code, 1)
        self.assertIn("Storage error", text)

    def test_tracker_defaults_to_a_week(self):
        store = Store(MemoryKV())
        clock = FrozenClock(datetime(2024, 6, 15, 8, 0))
        self.run_cli(store, clock, "add-med", "A", "08:00")
        code, text = self.run_cli(store, clock, "tracker")
        self.assertEqual(code, 0)
        self.assertEqual(len([l for l in text.splitlines() if l.startswith("2024-06-")]), 7)

    def test_memory_log_clear_keeps_log_file(self):
        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "app.log"
            log.write_text("kept\n", encoding="utf-8")
            old = os.environ.get("MEDTRACK_DATA_DIR")
            os.environ["MEDTRACK_DATA_DIR"] = td
            try:
                code, text = self.run_cli(Store(MemoryKV()), Clock(), "--memory", "log", "--clear")
            finally:
                if old is None:
                    os.environ.pop("MEDTRACK_DATA_DIR", None)
                else:
                    os.environ["MEDTRACK_DATA_DIR"] = old
            self.assertEqual(code, 0)
            self.assertTrue(log.exists())

    def test_lookup_failure_is_reported(self):
        code, text = self.run_cli(Store(MemoryKV()), Clock(), "delete-med", "m_missing")
        self.assertEqual(code, 1)
        self.assertIn("not found", text)


class TestLogs(unittest.TestCase):
    def test_ring_is_bounded(self):
        ring = RingLog(max_lines=3)
        for i in range(5):
            ring.add(f"line {i}")
        ring.add("")
        self.assertEqual(ring.text(), "line 2\nline 3\nline 4")


if __name__ == "__main__":
    unittest.main(verbosity=2)
