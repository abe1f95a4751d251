"""
Unit tests for primary unit handlers.
"""

import pytest

from service_dispatch.app.handlers import handle_date_request, load_handler
from shared.errors import ValidationError
from shared.test_helpers import data_factory


class TestHandleDateRequest:
    """Test cases for the default date handler."""

    def test_valid_date(self):
        event = data_factory.make_event("2024-02-29")
        result = handle_date_request(event)

        assert result == {
            "status": "ok",
            "date": "2024-02-29",
            "weekday": "Thursday",
            "request_id": event.request_id,
        }

    @pytest.mark.parametrize("value", ["2023-02-29", "2024-13-01", "20240101", "today", "2024-1-1"])
    def test_invalid_date(self, value):
        with pytest.raises(ValidationError) as exc_info:
            handle_date_request(data_factory.make_event(value))

        assert exc_info.value.message == "bad date"
        assert exc_info.value.details == {"date": value}


class TestLoadHandler:
    """Test cases for handler path resolution."""

    def test_resolves_default_handler(self):
        handler = load_handler("service_dispatch.app.handlers:handle_date_request")
        assert handler is handle_date_request

    @pytest.mark.parametrize("path", ["service_dispatch.app.handlers", ":handle", "service_dispatch.app.handlers:"])
    def test_rejects_malformed_path(self, path):
        with pytest.raises(ValueError):
            load_handler(path)

    def test_rejects_non_callable(self):
        with pytest.raises(ValueError):
            load_handler("service_dispatch.app.handlers:_DATE_PATTERN")

    def test_missing_module(self):
        with pytest.raises(ImportError):
            load_handler("service_dispatch.app.nowhere:handler")
