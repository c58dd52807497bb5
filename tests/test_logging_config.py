import json
import logging
import os
import sys
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from portfolio_tracker.config.logging_config import PRICE_LOGGER, JsonFormatter, configure_logging
from portfolio_tracker.utils.common_helpers import as_utc, normalize_symbol, pct_change, safe_div


class TestJsonFormatter(unittest.TestCase):
    def test_single_line_payload(self):
        record = logging.LogRecord(
            "portfolio_tracker.services.price_simulator", logging.WARNING, __file__, 1,
            "price tick: skipped position_id=%s", (7,), None,
        )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "portfolio_tracker.services.price_simulator")
        self.assertEqual(payload["message"], "price tick: skipped position_id=7")
        self.assertTrue(payload["ts"].endswith("Z"))
        self.assertNotIn("exception", payload)

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("RuntimeError: boom", payload["exception"])

    def test_ledger_ids_from_extra(self):
        logger = logging.getLogger("tests.ledger_fields")
        record = logger.makeRecord(
            logger.name, logging.INFO, __file__, 1, "position added", (), None,
            extra={"owner_id": 3, "position_id": 41, "username": "alice"},
        )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["owner_id"], 3)
        self.assertEqual(payload["position_id"], 41)
        self.assertNotIn("transaction_id", payload)
        self.assertNotIn("username", payload)


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        root = logging.getLogger()
        saved = (root.level, root.handlers[:])
        tuned = {name: logging.getLogger(name).level for name in (PRICE_LOGGER, "sqlalchemy.engine")}

        def restore():
            root.handlers[:] = saved[1]
            root.setLevel(saved[0])
            for name, level in tuned.items():
                logging.getLogger(name).setLevel(level)

        self.addCleanup(restore)

    def test_env_driven_level_and_format(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "debug", "LOG_JSON": "1"}):
            configure_logging()
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "chatty", "LOG_JSON": ""}):
            configure_logging()
            configure_logging()
        root = logging.getLogger()
        self.assertEqual(root.level, logging.INFO)
        self.assertEqual(len(root.handlers), 1)
        self.assertNotIsInstance(root.handlers[0].formatter, JsonFormatter)

    def test_price_and_sql_loggers_tuned_separately(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "info", "PRICE_LOG_LEVEL": "error", "LOG_SQL": "1"}):
            configure_logging()
        self.assertEqual(logging.getLogger(PRICE_LOGGER).level, logging.ERROR)
        self.assertEqual(logging.getLogger("sqlalchemy.engine").level, logging.INFO)
        self.assertEqual(logging.getLogger("sqlalchemy.pool").level, logging.WARNING)

    def test_price_logger_follows_root_by_default(self):
        logging.getLogger(PRICE_LOGGER).setLevel(logging.CRITICAL)
        with patch.dict(os.environ, {"LOG_LEVEL": "warning", "PRICE_LOG_LEVEL": "", "LOG_SQL": ""}):
            configure_logging()
        price = logging.getLogger(PRICE_LOGGER)
        self.assertEqual(price.level, logging.NOTSET)
        self.assertEqual(price.getEffectiveLevel(), logging.WARNING)
        self.assertEqual(logging.getLogger("sqlalchemy.engine").level, logging.WARNING)


class TestCommonHelpers(unittest.TestCase):
    def test_safe_div_and_pct_change(self):
        self.assertEqual(safe_div(10, 4), 2.5)
        self.assertIsNone(safe_div(10, 0))
        self.assertIsNone(safe_div(None, 3))
        self.assertAlmostEqual(pct_change(110.0, 100.0), 10.0)
        self.assertIsNone(pct_change(110.0, 0))

    def test_as_utc(self):
        self.assertIsNone(as_utc(None))
        naive = datetime(2024, 5, 1, 12, 0)
        self.assertEqual(as_utc(naive), datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        eastern = datetime(2024, 5, 1, 8, 0, tzinfo=timezone(timedelta(hours=-4)))
        self.assertEqual(as_utc(eastern).hour, 12)
        self.assertEqual(as_utc(eastern).tzinfo, timezone.utc)

    def test_normalize_symbol(self):
        self.assertEqual(normalize_symbol("  brk-b "), "BRK-B")
        self.assertEqual(normalize_symbol(None), "")


if __name__ == "__main__":
    unittest.main()
