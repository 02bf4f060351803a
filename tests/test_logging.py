"""
Tests for structured logging
"""

import io
import json
import logging

from staff_loans.logging_config import JSONFormatter, setup_logging, log_action


class TestStructuredLogging:

    def setup_method(self):
        self.logger = setup_logging("DEBUG", "json", logger_name="staff_loans.test_logging")
        self.stream = io.StringIO()
        self.logger.handlers[0].setStream(self.stream)

    def teardown_method(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

    def records(self):
        return [json.loads(line) for line in self.stream.getvalue().splitlines()]

    def test_action_fields_are_emitted(self):
        log_action(self.logger, "info", "Loan LN-2025-00001 disbursed",
                   user_id="finance-1", action="disburse", resource="loan:abc",
                   extra={"reference": "TRX-001"})

        record = self.records()[0]
        assert record["service"] == "staff_loans"
        assert record["level"] == "INFO"
        assert record["message"] == "Loan LN-2025-00001 disbursed"
        assert record["user_id"] == "finance-1"
        assert record["action"] == "disburse"
        assert record["resource"] == "loan:abc"
        assert record["details"] == {"reference": "TRX-001"}

    def test_absent_fields_are_omitted(self):
        self.logger.warning("Payroll row failed")

        record = self.records()[0]
        assert record["level"] == "WARNING"
        assert "user_id" not in record
        assert "details" not in record

    def test_setup_replaces_handler(self):
        logger = setup_logging("WARNING", "text", logger_name="staff_loans.test_logging")

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.WARNING
