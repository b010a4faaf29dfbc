from __future__ import annotations

import json
import unittest
from datetime import date
from unittest.mock import patch

from app.errors import ApiError
from app.models import Setting
from app.services.settings_store import (
    get_escalated_late_email,
    list_settings,
    mark_escalation_sent,
    prune_escalation_record,
    set_escalated_late_email,
    was_escalation_sent,
)
from app.settings import Settings


class _ScalarRows:
    def __init__(self, rows):
        self._rows = rows

    def all(self):
        return self._rows


class _FakeSettingsDB:
    def __init__(self) -> None:
        self.rows: dict[str, Setting] = {}
        self.commits = 0

    def get(self, _model, key):  # type: ignore[no-untyped-def]
        return self.rows.get(key)

    def add(self, row: Setting) -> None:
        self.rows[row.key] = row

    def commit(self) -> None:
        self.commits += 1

    def flush(self) -> None:
        return None

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _ScalarRows([self.rows[key] for key in sorted(self.rows)])


class EscalationRecordTests(unittest.TestCase):
    def test_prune_keeps_retention_window(self) -> None:
        record = {"2026-01-01": ["1"], "2026-01-05": ["2"], "2026-01-08": ["3"]}

        pruned = prune_escalation_record(record, today=date(2026, 1, 8), retention_days=3)

        self.assertEqual(pruned, {"2026-01-05": ["2"], "2026-01-08": ["3"]})

    def test_mark_and_check_roundtrip_through_storage(self) -> None:
        db = _FakeSettingsDB()
        db.add(Setting(key="late_escalation_sent", value=json.dumps({"2025-12-20": ["4"]})))

        self.assertFalse(was_escalation_sent(db, 7, date(2026, 1, 5)))  # type: ignore[arg-type]
        mark_escalation_sent(db, 7, date(2026, 1, 5), retention_days=3)  # type: ignore[arg-type]
        mark_escalation_sent(db, 7, date(2026, 1, 5), retention_days=3)  # type: ignore[arg-type]

        self.assertTrue(was_escalation_sent(db, 7, date(2026, 1, 5)))  # type: ignore[arg-type]
        self.assertFalse(was_escalation_sent(db, 8, date(2026, 1, 5)))  # type: ignore[arg-type]
        stored = json.loads(db.rows["late_escalation_sent"].value)
        self.assertEqual(stored, {"2026-01-05": ["7"]})
        self.assertEqual(db.commits, 2)

    def test_unreadable_record_is_treated_as_empty(self) -> None:
        db = _FakeSettingsDB()
        db.add(Setting(key="late_escalation_sent", value="not-json"))

        self.assertFalse(was_escalation_sent(db, 7, date(2026, 1, 5)))  # type: ignore[arg-type]


class EscalatedEmailTests(unittest.TestCase):
    def test_stored_value_wins_over_env(self) -> None:
        db = _FakeSettingsDB()
        with patch("app.services.settings_store.get_settings", return_value=Settings(escalated_late_email="env@example.com")):
            self.assertEqual(get_escalated_late_email(db), "env@example.com")  # type: ignore[arg-type]
            set_escalated_late_email(db, "  Ops@Example.com ")  # type: ignore[arg-type]
            self.assertEqual(get_escalated_late_email(db), "ops@example.com")  # type: ignore[arg-type]

    def test_invalid_email_is_rejected(self) -> None:
        db = _FakeSettingsDB()
        with self.assertRaises(ApiError) as ctx:
            set_escalated_late_email(db, "not-an-address")  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.code, "INVALID_EMAIL")

    def test_blank_email_clears_setting(self) -> None:
        db = _FakeSettingsDB()
        set_escalated_late_email(db, "ops@example.com")  # type: ignore[arg-type]

        self.assertIsNone(set_escalated_late_email(db, "   "))  # type: ignore[arg-type]
        self.assertIsNone(db.rows["escalated_late_email"].value)

    def test_list_settings_reports_values(self) -> None:
        db = _FakeSettingsDB()
        set_escalated_late_email(db, "ops@example.com")  # type: ignore[arg-type]

        self.assertEqual(list_settings(db), {"escalated_late_email": "ops@example.com"})  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
