from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from app.settings import Settings
from scripts.predeploy_guard import (
    check_database_migration_and_schema,
    check_jwt_secret,
    check_late_monitor_config,
    check_revision_id_lengths,
    check_smtp_config,
)


class PredeployGuardTests(unittest.TestCase):
    def test_shipped_revisions_fit_alembic_column(self) -> None:
        result = check_revision_id_lengths()

        self.assertEqual(result.status, "ok")
        self.assertGreaterEqual(result.details["total"], 1)

    def test_long_revision_id_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "0002_x.py").write_text(
                'revision: str = "0002_this_revision_identifier_is_far_too_long"\n',
                encoding="utf-8",
            )
            result = check_revision_id_lengths(Path(tmp))

        self.assertEqual(result.status, "fail")
        self.assertEqual(result.details["too_long"], ["0002_this_revision_identifier_is_far_too_long"])

    def test_duplicate_revision_id_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            for name in ("0002_a.py", "0002_b.py"):
                Path(tmp, name).write_text('revision: str = "0002_shared"\n', encoding="utf-8")
            result = check_revision_id_lengths(Path(tmp))

        self.assertEqual(result.status, "fail")
        self.assertEqual(result.details["duplicates"], ["0002_shared"])

    def test_jwt_secret_must_be_set(self) -> None:
        self.assertEqual(check_jwt_secret(Settings(jwt_secret="")).status, "fail")
        self.assertEqual(check_jwt_secret(Settings(jwt_secret="s3cret")).status, "ok")

    def test_smtp_config_pairs(self) -> None:
        self.assertEqual(check_smtp_config(Settings(smtp_host=None, smtp_from=None)).status, "warn")
        self.assertEqual(
            check_smtp_config(Settings(smtp_host="smtp.example.com", smtp_from="noreply@example.com")).status,
            "ok",
        )

        broken = check_smtp_config(Settings(smtp_host="smtp.example.com", smtp_from=None, smtp_user="mailer"))
        self.assertEqual(broken.status, "fail")
        self.assertEqual(
            broken.details["problems"],
            ["SMTP_HOST_AND_FROM_MUST_BE_SET_TOGETHER", "SMTP_USER_AND_PASS_MUST_BE_SET_TOGETHER"],
        )

    def test_invalid_escalated_email_fails(self) -> None:
        result = check_smtp_config(Settings(escalated_late_email="ops-at-example"))

        self.assertEqual(result.status, "fail")
        self.assertIn("ESCALATED_LATE_EMAIL_INVALID", result.details["problems"])

    def test_late_monitor_thresholds(self) -> None:
        self.assertEqual(check_late_monitor_config(Settings()).status, "ok")

        result = check_late_monitor_config(
            Settings(late_notice_minutes=30, late_escalation_minutes=15, attendance_timezone="Mars/Olympus")
        )
        self.assertEqual(result.status, "fail")
        self.assertEqual(
            result.details["problems"],
            ["LATE_ESCALATION_MUST_FOLLOW_NOTICE", "ATTENDANCE_TIMEZONE_UNKNOWN"],
        )

    def test_database_check_is_skipped_without_url(self) -> None:
        with patch.dict("os.environ", {"DATABASE_URL": ""}):
            result = check_database_migration_and_schema()

        self.assertEqual(result.status, "warn")
        self.assertEqual(result.details, {"reason": "DATABASE_URL_NOT_SET"})


if __name__ == "__main__":
    unittest.main()
