"""
Tests for email templates and delivery backends.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from partsflow.core.errors import UpstreamFailure
from partsflow.services.notifications.email import (
    NullEmailSender,
    OutboxEmailSender,
    SESEmailSender,
    build_email_sender,
)
from partsflow.services.notifications.templates import (
    TemplateEngine,
    TemplateEngineError,
    format_currency,
    format_date,
)

TEMPLATES = [
    "new_order_admin",
    "order_confirmation",
    "status_changed",
    "offer_added",
    "offer_updated",
    "comment_added",
    "payment_succeeded",
    "payment_failed",
    "order_removed",
    "order_restored",
]


@pytest.fixture
def context() -> dict:
    return {
        "to": "guest@example.com",
        "title": "Offers are ready",
        "body": "Offers for order AB12CD34 are ready <now>.",
        "brand": {"name": "PartsFlow", "support_email": "help@partsflow.local", "primary_color": "#000"},
        "currency": "PLN",
        "order": {"id": "1", "short_code": "AB12CD34", "vin": "WVWZZZ1JZXW000001", "status": "VALUATED"},
        "order_url": "http://localhost:3000/orders/1",
    }


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "SendEmail")


# ============================================================================
# Template Tests
# ============================================================================


class TestTemplateEngine:
    @pytest.mark.parametrize("template", TEMPLATES)
    def test_every_template_renders_with_base_context(self, template: str, context: dict) -> None:
        rendered = TemplateEngine().render_email(template, context)

        assert "AB12CD34" in rendered["subject"]
        assert "\n" not in rendered["subject"]
        assert "http://localhost:3000/orders/1" in rendered["html_body"]

    def test_body_is_escaped(self, context: dict) -> None:
        rendered = TemplateEngine().render_email("comment_added", context)

        assert "&lt;now&gt;" in rendered["html_body"]

    def test_optional_fields_rendered(self, context: dict) -> None:
        context.update(
            offer={"manufacturer": "Bosch", "unit_price": Decimal("1234.5"), "quantity_available": 2},
        )

        rendered = TemplateEngine().render_email("offer_added", context)

        assert "Bosch" in rendered["html_body"]
        assert "1 234.50 PLN" in rendered["html_body"]

    def test_missing_template(self, context: dict) -> None:
        with pytest.raises(TemplateEngineError) as exc_info:
            TemplateEngine().render_email("does_not_exist", context)

        assert exc_info.value.template_name == "does_not_exist"

    def test_filters(self) -> None:
        assert format_currency(Decimal("15.9"), "EUR") == "15.90 EUR"
        assert format_currency(None) == ""
        assert format_date(datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)) == "2026-03-01 09:30"
        assert format_date(None) == ""


# ============================================================================
# Backend Tests
# ============================================================================


class TestSESEmailSender:
    def test_send_success(self, settings, context: dict) -> None:
        client = Mock()
        client.send_email.return_value = {"MessageId": "ses-123"}
        sender = SESEmailSender(settings=settings, client=client)

        result = sender.send("status_changed", context)

        assert result.success is True
        assert result.message_id == "ses-123"
        params = client.send_email.call_args.kwargs
        assert params["Destination"] == {"ToAddresses": ["guest@example.com"]}
        assert params["Source"] == settings.email_from

    def test_transient_errors_retried(self, settings, context: dict) -> None:
        client = Mock()
        client.send_email.side_effect = [
            _client_error("Throttling"),
            EndpointConnectionError(endpoint_url="https://email.eu-central-1.amazonaws.com"),
            {"MessageId": "ses-456"},
        ]
        sender = SESEmailSender(settings=settings, client=client, retry_backoff=0)

        result = sender.send("status_changed", context)

        assert result.message_id == "ses-456"
        assert client.send_email.call_count == 3

    def test_rejection_not_retried(self, settings, context: dict) -> None:
        client = Mock()
        client.send_email.side_effect = _client_error("MessageRejected")
        sender = SESEmailSender(settings=settings, client=client, retry_backoff=0)

        with pytest.raises(UpstreamFailure):
            sender.send("status_changed", context)

        assert client.send_email.call_count == 1

    def test_gives_up_after_retries(self, settings, context: dict) -> None:
        client = Mock()
        client.send_email.side_effect = _client_error("ServiceUnavailable")
        sender = SESEmailSender(settings=settings, client=client, max_retries=2, retry_backoff=0)

        with pytest.raises(UpstreamFailure) as exc_info:
            sender.send("status_changed", context)

        assert exc_info.value.upstream == "ses"
        assert client.send_email.call_count == 2


class TestOutboxEmailSender:
    def test_writes_eml_file(self, settings, context: dict, tmp_path) -> None:
        sender = OutboxEmailSender(settings=settings, outbox_dir=tmp_path / "outbox")

        result = sender.send("order_restored", context)

        files = list((tmp_path / "outbox").glob("*-order_restored-*.eml"))
        assert result.success is True
        assert len(files) == 1
        content = files[0].read_text()
        assert "To: guest@example.com" in content
        assert result.message_id in content


class TestBuildEmailSender:
    def test_disabled_backend(self, settings) -> None:
        sender = build_email_sender(settings.model_copy(update={"email_backend": "disabled"}))

        assert isinstance(sender, NullEmailSender)
        assert sender.send("status_changed", {}).success is True

    def test_outbox_backend(self, settings) -> None:
        sender = build_email_sender(settings.model_copy(update={"email_backend": "outbox"}))

        assert isinstance(sender, OutboxEmailSender)

    def test_ses_backend(self, settings) -> None:
        with patch("partsflow.services.notifications.email.boto3") as mock_boto3:
            sender = build_email_sender(settings.model_copy(update={"email_backend": "ses"}))

        assert isinstance(sender, SESEmailSender)
        mock_boto3.client.assert_called_once_with("ses", region_name=settings.aws_region)
