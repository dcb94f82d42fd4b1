from __future__ import annotations

import json
import logging
import unittest

from paintconnect.logging_utils import JsonFormatter, resolve_log_level


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_and_service_are_emitted(self) -> None:
        record = logging.LogRecord("paintconnect.reminders", logging.WARNING, __file__, 10, "reminder_pass_sent", None, None)
        record.project_id = 7
        record.detail = "Villa Jansen: sent check-in reminder to 1 workers (1 endpoints)"

        payload = json.loads(JsonFormatter(service="PaintConnect").format(record))

        self.assertEqual(payload["message"], "reminder_pass_sent")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "paintconnect.reminders")
        self.assertEqual(payload["service"], "PaintConnect")
        self.assertEqual(payload["project_id"], 7)
        self.assertIn("Villa Jansen", payload["detail"])
        self.assertNotIn("lineno", payload)
        self.assertNotIn("msg", payload)

    def test_log_level_names_resolve(self) -> None:
        self.assertEqual(resolve_log_level("debug"), logging.DEBUG)
        self.assertEqual(resolve_log_level(" warning "), logging.WARNING)
        self.assertEqual(resolve_log_level(logging.ERROR), logging.ERROR)
        self.assertEqual(resolve_log_level("chatty"), logging.INFO)


if __name__ == "__main__":
    unittest.main()
