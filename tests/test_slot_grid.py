import unittest

from worksheet.models import AppointmentRecord, TimeSlotPlaceholder
from worksheet.slot_grid import is_non_standard_time, project_day, standard_time_slots

DOS = "2024-03-15"


def _record(rid: str, t: str) -> AppointmentRecord:
    return AppointmentRecord.model_validate({"id": rid, "Time": t, "Patient Name": f"PATIENT,{rid}"})


def _placeholders(rows):
    return [r for r in rows if isinstance(r, TimeSlotPlaceholder)]


def _records(rows):
    return [r for r in rows if isinstance(r, AppointmentRecord)]


class TestStandardSlots(unittest.TestCase):
    def test_twenty_one_slots(self):
        slots = standard_time_slots()
        self.assertEqual(len(slots), 21)
        self.assertEqual(slots[0], "8:00 AM")
        self.assertEqual(slots[3], "9:00 AM")
        self.assertEqual(slots[-1], "2:40 PM")
        self.assertIn("12:20 PM", slots)


class TestProjectDay(unittest.TestCase):
    def test_empty_day_is_all_placeholders(self):
        rows = project_day([], DOS)
        self.assertEqual(len(rows), 21)
        self.assertEqual(rows[0].id, "empty-2024-03-15-8:00 AM")
        self.assertTrue(all(r.is_empty_slot and not r.converted for r in rows))

    def test_double_booking(self):
        records = [_record("a", "9:00 AM"), _record("b", "9:00 AM"), _record("c", "10:20 AM")]
        rows = project_day(records, DOS)
        # two taken slots leave 19 open ones; plus the three appointments
        self.assertEqual(len(_placeholders(rows)), 19)
        self.assertEqual(len(rows), 22)
        flags = {r.id: r.is_double_booked for r in _records(rows)}
        self.assertEqual(flags, {"a": True, "b": True, "c": False})
        self.assertNotIn("empty-2024-03-15-9:00 AM", [p.id for p in _placeholders(rows)])

    def test_double_booking_cleared_when_times_diverge(self):
        a, b = _record("a", "9:00 AM"), _record("b", "9:00 AM")
        project_day([a, b], DOS)
        b.time = "9:20 AM"
        project_day([a, b], DOS)
        self.assertFalse(a.is_double_booked)
        self.assertFalse(b.is_double_booked)

    def test_sorted_by_time_of_day(self):
        records = [_record("late", "2:00 PM"), _record("odd", "8:10 AM")]
        rows = project_day(records, DOS)
        times = [r.time for r in rows[:3]]
        self.assertEqual(times, ["8:00 AM", "8:10 AM", "8:20 AM"])

    def test_unparseable_time_sorts_last(self):
        rows = project_day([_record("x", "whenever"), _record("y", "")], DOS)
        self.assertEqual([r.id for r in rows[-2:]], ["x", "y"])

    def test_records_do_not_move_in_storage(self):
        records = [_record("late", "2:00 PM"), _record("early", "8:00 AM")]
        project_day(records, DOS)
        self.assertEqual([r.id for r in records], ["late", "early"])


class TestNonStandardTime(unittest.TestCase):
    def test_flags(self):
        self.assertFalse(is_non_standard_time(""))
        self.assertFalse(is_non_standard_time("8:00 AM"))
        self.assertFalse(is_non_standard_time("2:40 PM"))
        self.assertTrue(is_non_standard_time("8:10 AM"))
        self.assertTrue(is_non_standard_time("7:40 AM"))
        self.assertTrue(is_non_standard_time("3:00 PM"))
        self.assertTrue(is_non_standard_time("soon"))
