"""``send_email`` handler: validate, build an RFC 822 message, send via Gmail."""

from __future__ import annotations

import base64
import logging
import re
from email.mime.text import MIMEText

from src.errors import ValidationError
from src.models import ToolResult
from src.tools.context import ToolContext
from src.tools.registry import SendEmailParams

logger = logging.getLogger(__name__)

# RFC 5322-ish pattern; covers the vast majority of real-world addresses.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def is_valid_email(address: str | None) -> bool:
    return bool(address and _EMAIL_RE.match(address.strip()))


def _has_line_break(value: str) -> bool:
    return "\r" in value or "\n" in value


def validate_message(params: SendEmailParams) -> None:
    """Reject a malformed recipient or a blank subject/body before any network call.

    Header fields may not contain line breaks; a CR/LF would let the value
    inject extra headers into the message.
    """
    for field, values in (
        ("to", [params.to]), ("cc", params.cc), ("bcc", params.bcc), ("subject", [params.subject]),
    ):
        if any(_has_line_break(v) for v in values):
            raise ValidationError(
                f"Email {field} must not contain line breaks.",
                details={"field": field},
            )
    if not is_valid_email(params.to):
        raise ValidationError(
            f"Invalid recipient email address: {params.to!r}.",
            details={"field": "to"},
        )
    for field, addresses in (("cc", params.cc), ("bcc", params.bcc)):
        bad = [a for a in addresses if not is_valid_email(a)]
        if bad:
            raise ValidationError(
                f"Invalid {field} email address: {', '.join(bad)}.",
                details={"field": field},
            )
    if not params.subject.strip():
        raise ValidationError("Email subject is required.", details={"field": "subject"})
    if not params.body.strip():
        raise ValidationError("Email body is required.", details={"field": "body"})


def build_raw_message(params: SendEmailParams) -> str:
    """HTML message encoded as base64url, the shape Gmail's ``messages.send`` expects."""
    message = MIMEText(params.body, "html", "utf-8")
    message["To"] = params.to.strip()
    if params.cc:
        message["Cc"] = ", ".join(a.strip() for a in params.cc)
    if params.bcc:
        message["Bcc"] = ", ".join(a.strip() for a in params.bcc)
    message["Subject"] = params.subject
    return base64.urlsafe_b64encode(message.as_bytes()).decode()


def send_email(ctx: ToolContext, params: SendEmailParams) -> ToolResult:
    validate_message(params)
    raw = build_raw_message(params)

    access_token = ctx.access_token()
    sent = ctx.google.send_message(access_token, raw, timeout=ctx.timeout())

    return ToolResult(
        data={
            "messageId": sent.get("id"),
            "threadId": sent.get("threadId"),
            "to": params.to,
            "cc": list(params.cc),
            "subject": params.subject,
        },
        summary=f'Email sent successfully to {params.to} with subject "{params.subject}".',
    )
