"""Tests for the send_email handler: address validation and message building."""

from __future__ import annotations

import base64
import email
import json

import pytest

from src.errors import AuthorizationError, ValidationError
from src.tools import email as email_tool
from src.tools.registry import SendEmailParams


def _params(**overrides) -> SendEmailParams:
    values = {
        "to": "michael.chen@novatech.com",
        "subject": "Vacation request",
        "body": "<p>I'd like to take Dec 7-8 off.</p>",
    }
    values.update(overrides)
    return SendEmailParams.model_validate(values)


class TestIsValidEmail:
    @pytest.mark.parametrize(
        "address",
        [
            "alice@example.com",
            "bob.jones@novatech.co.uk",
            "jane+tag@gmail.com",
            "user@sub.domain.org",
            "UPPER@CASE.COM",
            "digits123@test456.io",
        ],
    )
    def test_accepts_valid_emails(self, address: str):
        assert email_tool.is_valid_email(address) is True

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "   ",
            None,
            "not-an-email",
            "missing@",
            "@no-local.com",
            "spaces in@email.com",
            "double@@at.com",
            "no-tld@localhost",
            "user@.leading-dot.com",
        ],
    )
    def test_rejects_invalid_emails(self, address):
        assert email_tool.is_valid_email(address) is False


class TestValidateMessage:
    def test_valid_message_passes(self):
        email_tool.validate_message(_params(cc=["hr@novatech.com"]))

    def test_bad_recipient(self):
        with pytest.raises(ValidationError, match="Invalid recipient email address"):
            email_tool.validate_message(_params(to="not-an-email"))

    def test_bad_cc(self):
        with pytest.raises(ValidationError, match="Invalid cc email address: nope"):
            email_tool.validate_message(_params(cc=["ok@novatech.com", "nope"]))

    def test_bad_bcc(self):
        with pytest.raises(ValidationError) as exc_info:
            email_tool.validate_message(_params(bcc=["x@"]))
        assert exc_info.value.details == {"field": "bcc"}

    def test_blank_subject(self):
        with pytest.raises(ValidationError, match="subject is required"):
            email_tool.validate_message(_params(subject="   "))

    def test_blank_body(self):
        with pytest.raises(ValidationError, match="body is required"):
            email_tool.validate_message(_params(body=""))

    @pytest.mark.parametrize(
        "field, overrides",
        [
            ("subject", {"subject": "Time off\nBcc: evil@example.com"}),
            ("subject", {"subject": "Time off\r\n"}),
            ("to", {"to": "michael.chen@novatech.com\n"}),
            ("cc", {"cc": ["hr@novatech.com\r\nBcc: evil@example.com"]}),
            ("bcc", {"bcc": ["me@novatech.com\n"]}),
        ],
    )
    def test_line_breaks_in_headers_rejected(self, field, overrides):
        with pytest.raises(ValidationError, match="must not contain line breaks") as exc_info:
            email_tool.validate_message(_params(**overrides))
        assert exc_info.value.details == {"field": field}

    def test_line_breaks_in_body_allowed(self):
        email_tool.validate_message(_params(body="Hi,\n\nDec 7-8 please.\n"))


class TestBuildRawMessage:
    def test_headers_and_html_body(self):
        raw = email_tool.build_raw_message(_params(cc=["hr@novatech.com"], bcc=["me@novatech.com"]))
        message = email.message_from_bytes(base64.urlsafe_b64decode(raw))

        assert message["To"] == "michael.chen@novatech.com"
        assert message["Cc"] == "hr@novatech.com"
        assert message["Bcc"] == "me@novatech.com"
        assert message["Subject"] == "Vacation request"
        assert message.get_content_type() == "text/html"
        assert "Dec 7-8" in message.get_payload(decode=True).decode()


class TestSendEmail:
    def test_sends_through_gmail(self, tool_context, google_api, connected_user):
        result = email_tool.send_email(tool_context, _params())

        (request,) = google_api.requests_to("POST", "/gmail/v1/users/me/messages/send")
        assert "raw" in json.loads(request.content)
        assert result.data["messageId"] == "msg-1"
        assert result.summary == (
            'Email sent successfully to michael.chen@novatech.com with subject "Vacation request".'
        )

    def test_invalid_address_fails_before_network(self, tool_context, google_api, connected_user):
        with pytest.raises(ValidationError):
            email_tool.send_email(tool_context, _params(to="bad-address"))
        assert google_api.requests == []

    def test_empty_body_fails_before_network(self, tool_context, google_api, connected_user):
        with pytest.raises(ValidationError):
            email_tool.send_email(tool_context, _params(body="  "))
        assert google_api.requests == []

    def test_not_connected(self, tool_context, google_api):
        with pytest.raises(AuthorizationError):
            email_tool.send_email(tool_context, _params())
        assert google_api.requests == []
