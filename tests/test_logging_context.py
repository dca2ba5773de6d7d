from __future__ import annotations

import json
import logging
import unittest

from services.accounts.logging_config import _JsonFormatter, build_handler
from services.accounts.request_context import REQUEST_ID, RequestIdFilter


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("services.accounts.test", logging.INFO, __file__, 1, msg, None, None)


class LoggingContextTest(unittest.TestCase):
    def test_filter_attaches_bound_request_id(self):
        token = REQUEST_ID.set("rid-1")
        try:
            record = _record()
            self.assertTrue(RequestIdFilter().filter(record))
            self.assertEqual(record.request_id, "rid-1")
        finally:
            REQUEST_ID.reset(token)

    def test_filter_uses_placeholder_outside_requests(self):
        record = _record()
        RequestIdFilter().filter(record)
        self.assertEqual(record.request_id, "-")

    def test_json_formatter_emits_one_object(self):
        record = _record("登录成功")
        record.request_id = "rid-2"
        payload = json.loads(_JsonFormatter().format(record))
        self.assertEqual(payload["message"], "登录成功")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["request_id"], "rid-2")

    def test_text_handler_renders_request_id(self):
        handler = build_handler("text")
        record = _record()
        for flt in handler.filters:
            flt.filter(record)
        self.assertIn("[-]", handler.format(record))
        self.assertIsInstance(build_handler("json").formatter, _JsonFormatter)


if __name__ == "__main__":
    unittest.main()
