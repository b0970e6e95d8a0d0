import unittest
from unittest.mock import patch

from backend.activity_logs import (
    ip_from_headers,
    normalize_optional,
    normalize_required,
    normalize_role,
    platform_from_headers,
    sanitize_details,
    user_agent_from_headers,
    write_activity_log,
)
from backend.db import ActivityLogRecord, InMemoryDbClient
from backend.errors import BackendUnavailableError


class NormalizationTests(unittest.TestCase):
    def test_normalize_optional(self):
        self.assertEqual(normalize_optional("  x "), "x")
        self.assertIsNone(normalize_optional("   "))
        self.assertIsNone(normalize_optional(12))

    def test_normalize_required(self):
        self.assertEqual(normalize_required(" login ", "action"), "login")
        with self.assertRaisesRegex(ValueError, "action is required"):
            normalize_required("", "action")

    def test_normalize_role_maps_legacy_name(self):
        self.assertEqual(normalize_role("prestataire"), "client")
        self.assertEqual(normalize_role("admin"), "admin")
        self.assertIsNone(normalize_role(None))

    def test_sanitize_details(self):
        self.assertEqual(sanitize_details({"a": 1}), {"a": 1})
        self.assertIsNone(sanitize_details(["a"]))
        truncated = sanitize_details({"blob": "x" * 9000})
        self.assertTrue(truncated["_truncated"])
        self.assertGreater(truncated["_originalLength"], 8000)


class HeaderTests(unittest.TestCase):
    def test_platform(self):
        self.assertEqual(platform_from_headers({"x-pecm2-platform": "iOS"}), "ios")
        self.assertEqual(platform_from_headers({"x-platform": "ios"}), "ios")
        self.assertEqual(platform_from_headers({"x-platform": "android"}), "web")
        self.assertEqual(platform_from_headers({}), "web")

    def test_ip_prefers_first_forwarded_address(self):
        headers = {"x-forwarded-for": "10.0.0.1, 10.0.0.2", "x-real-ip": "10.0.0.9"}
        self.assertEqual(ip_from_headers(headers), "10.0.0.1")
        self.assertEqual(ip_from_headers({"x-real-ip": "10.0.0.9"}), "10.0.0.9")
        self.assertIsNone(ip_from_headers({}))

    def test_user_agent(self):
        self.assertEqual(user_agent_from_headers({"user-agent": "curl/8"}), "curl/8")


class WriteActivityLogTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def test_fills_missing_fields_from_user(self):
        self.db.save_user(
            "u1", {"role": "prestataire", "mail": "a@b.c", "schoolId": "s1"}
        )

        record = write_activity_log(
            self.db, action="login", actor_id="u1", target_type="system"
        )

        self.assertEqual(self.db.activity_logs, [record])
        self.assertEqual(record.actor_role, "client")
        self.assertEqual(record.actor_mail, "a@b.c")
        self.assertEqual(record.school_id, "s1")
        self.assertEqual(record.platform, "web")

    def test_explicit_fields_win_over_user(self):
        self.db.save_user("u1", {"role": "admin", "mail": "old@b.c"})

        record = write_activity_log(
            self.db,
            action="login",
            actor_id="u1",
            target_type="system",
            actor_mail="new@b.c",
            platform="ios",
        )

        self.assertEqual(record.actor_mail, "new@b.c")
        self.assertEqual(record.actor_role, "admin")
        self.assertEqual(record.platform, "ios")

    def test_unknown_user_defaults_role(self):
        record = write_activity_log(
            self.db, action="login", actor_id="ghost", target_type="system"
        )
        self.assertEqual(record.actor_role, "client")
        self.assertIsNone(record.actor_mail)

    def test_user_lookup_failure_still_writes(self):
        with patch.object(
            self.db, "get_user", side_effect=BackendUnavailableError("down")
        ):
            record = write_activity_log(
                self.db, action="login", actor_id="u1", target_type="system"
            )
        self.assertEqual(len(self.db.activity_logs), 1)
        self.assertEqual(record.actor_role, "client")

    def test_write_failure_propagates(self):
        with patch.object(
            self.db, "save_activity_log", side_effect=BackendUnavailableError("down")
        ):
            with self.assertRaises(BackendUnavailableError):
                write_activity_log(
                    self.db, action="login", actor_id="u1", target_type="system"
                )

    def test_blank_required_fields(self):
        with self.assertRaises(ValueError):
            write_activity_log(self.db, action=" ", actor_id="u1", target_type="x")
        with self.assertRaises(ValueError):
            write_activity_log(self.db, action="a", actor_id="", target_type="x")
        self.assertEqual(self.db.activity_logs, [])

    def test_record_as_dict_drops_empty_fields(self):
        record = ActivityLogRecord(
            action="login",
            actor_id="u1",
            actor_role="client",
            target_type="system",
            platform="web",
            created_at=1.0,
        )
        self.assertEqual(
            record.as_dict(),
            {
                "action": "login",
                "actorId": "u1",
                "actorRole": "client",
                "targetType": "system",
                "platform": "web",
                "createdAt": 1.0,
            },
        )


if __name__ == "__main__":
    unittest.main()
