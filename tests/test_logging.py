"""
Tests for credential masking in structured logs.
"""
import json
import logging

from streamscene.logging_config import StructuredFormatter, StructuredLogger, redact


class TestRedaction:

    def test_masks_credential_keys_recursively(self):
        masked = redact({"account_id": "123", "access_token": "secret", "nested": {"password": "pw"}})
        assert masked == {"account_id": "123", "access_token": "***", "nested": {"password": "***"}}

    def test_masks_tokens_in_urls(self):
        message = "Graph GET /c1 failed: https://graph.threads.net/v1.0/c1?fields=id&access_token=THQVJabc123&x=1"
        assert "THQVJabc123" not in redact(message)
        assert "access_token=***&x=1" in redact(message)

    def test_bound_context_is_written_masked(self):
        logger = StructuredLogger("streamscene.test").bind(post_id=7, access_token="tok")
        captured = []

        class Capture(logging.Handler):
            def emit(self, record):
                captured.append(StructuredFormatter().format(record))

        handler = Capture()
        logger.logger.addHandler(handler)
        try:
            logger.warning("Publishing", attempts=2)
        finally:
            logger.logger.removeHandler(handler)

        line = json.loads(captured[0])
        assert line["message"] == "Publishing"
        assert line["post_id"] == 7
        assert line["attempts"] == 2
        assert line["access_token"] == "***"
