"""
Promotion of continued medications and default reminder schedules.
"""

import pytest

from visitflow.application.services.medication_reconciliation import (
    canonical_medication_name,
    default_reminder_times,
    promote_continued_medications,
)
from visitflow.domain.entities.visit_summary import MedicationChanges, MedicationEntry

from fakes import FakeMedicationStore


def _entry(name, dose=None, frequency=None):
    return MedicationEntry(name=name, dose=dose, frequency=frequency)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Metformin ", "metformin"),
        ("Tylenol-Extra Strength", "tylenolextrastrength"),
        ("Vitamin D3 (1000 IU)", "vitamind31000iu"),
        (None, ""),
    ],
)
def test_canonical_medication_name(raw, expected):
    assert canonical_medication_name(raw) == expected


async def test_unknown_continued_medication_is_started():
    store = FakeMedicationStore()
    result = await promote_continued_medications(
        "owner-1", MedicationChanges(), [_entry("Metformin", "500mg", "twice daily")], store
    )
    assert [e.name for e in result.medications.started] == ["Metformin"]
    assert result.promoted_started == ["Metformin"]


async def test_inactive_continued_medication_is_changed():
    store = FakeMedicationStore()
    store.records["metformin"] = {"name": "Metformin", "active": False, "dose": "500mg"}
    result = await promote_continued_medications(
        "owner-1", MedicationChanges(), [_entry("Metformin", "500mg")], store
    )
    assert [e.name for e in result.medications.changed] == ["Metformin"]


async def test_dose_is_compared_literally():
    store = FakeMedicationStore()
    store.records["metformin"] = {"active": True, "dose": "500mg", "frequency": "daily"}
    result = await promote_continued_medications(
        "owner-1", MedicationChanges(), [_entry("Metformin", "500 mg", "daily")], store
    )
    assert result.promoted_changed == ["Metformin"]


async def test_new_dose_for_active_medication_is_changed_not_started():
    store = FakeMedicationStore()
    store.records["metformin"] = {"name": "Metformin", "active": True, "dose": "500 mg", "frequency": "daily"}
    result = await promote_continued_medications(
        "owner-1", MedicationChanges(), [_entry("Metformin", "1000 mg", "daily")], store
    )
    assert [e.name for e in result.medications.changed] == ["Metformin"]
    assert [e.dose for e in result.medications.changed] == ["1000 mg"]
    assert result.medications.started == []
    assert result.promoted_started == []
    assert result.review_only == []


async def test_matching_active_medication_stays_review_only():
    store = FakeMedicationStore()
    store.records["metformin"] = {"active": True, "dose": " 500mg", "frequency": "daily "}
    result = await promote_continued_medications(
        "owner-1", MedicationChanges(), [_entry("Metformin", "500mg", "daily")], store
    )
    assert result.medications.is_empty()
    assert result.review_only == ["Metformin"]


async def test_already_listed_medications_are_not_promoted_twice():
    store = FakeMedicationStore()
    changes = MedicationChanges(stopped=[_entry("Lisinopril")])
    result = await promote_continued_medications(
        "owner-1",
        changes,
        [_entry("lisinopril"), _entry("Aspirin"), _entry("ASPIRIN")],
        store,
    )
    assert [e.name for e in result.medications.started] == ["Aspirin"]
    assert [e.name for e in result.medications.stopped] == ["Lisinopril"]
    # The input is left untouched.
    assert changes.started == []


@pytest.mark.parametrize(
    "frequency, expected",
    [
        (None, ["08:00"]),
        ("", ["08:00"]),
        ("PRN", None),
        ("as needed for pain", None),
        ("with meals", ["08:00", "12:00", "18:00"]),
        ("daily with breakfast", ["08:00"]),
        ("daily with dinner", ["18:00"]),
        ("once daily", ["08:00"]),
        ("daily in the evening", ["20:00"]),
        ("at bedtime", ["21:00"]),
        ("twice daily", ["08:00", "20:00"]),
        ("BID", ["08:00", "20:00"]),
        ("three times a day", ["08:00", "14:00", "20:00"]),
        ("every 6 hours", ["08:00", "12:00", "16:00", "20:00"]),
        ("weekly", ["08:00"]),
    ],
)
def test_default_reminder_times(frequency, expected):
    assert default_reminder_times(frequency) == expected
