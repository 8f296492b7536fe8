"""
Email Service — deviation notifications.

Sends HTML notification emails for deviation events. When SMTP is not
configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    APP_BASE_URL    Used to build the "open deviation" link
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_LOGGED = "logged"
STATUS_FAILED = "failed"


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {type_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
        <p style="margin: 4px 0 0; font-size: 13px;">{type_name} · {priority} · {status}</p>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <h3 style="margin: 0 0 8px; color: #1e293b;">{title}</h3>
        {body}
        <p style="margin-top: 24px;">
            <a href="{link}" style="color: #2563eb;">Open deviation #{deviation_id}</a>
        </p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "deviation_created": {
        "subject": "New deviation: {title}",
        "heading": "New deviation reported",
        "body": '<p style="color: #64748b;">Reported by <strong>{actor}</strong>.</p>'
                '<p style="color: #64748b; line-height: 1.6;">{description}</p>',
    },
    "deviation_assigned": {
        "subject": "Deviation assigned: {title}",
        "heading": "A deviation was assigned to you",
        "body": '<p style="color: #64748b;"><strong>{actor}</strong> assigned this deviation to '
                "<strong>{assignee}</strong>. Due: {due_date}.</p>",
    },
    "deviation_status_changed": {
        "subject": "Status change: {title}",
        "heading": "Deviation status changed",
        "body": '<p style="color: #64748b;"><strong>{actor}</strong> changed the status from '
                "<strong>{old_status}</strong> to <strong>{new_status}</strong>.</p>",
    },
    "deviation_comment_added": {
        "subject": "New comment: {title}",
        "heading": "New comment on deviation",
        "body": '<p style="color: #64748b;"><strong>{actor}</strong> wrote:</p>'
                '<blockquote style="border-left: 3px solid #cbd5e1; margin: 0; padding-left: 12px;">{comment}</blockquote>',
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(cls, *, to_emails: list[str], subject: str, html_body: str,
             template_name: str | None = None) -> str:
        """
        Send one email to all recipients.

        Returns "logged" in dev mode, "sent" on success and "failed" when
        SMTP raised. Delivery failures are logged, never raised.
        """
        recipients = sorted({e for e in to_emails if e})
        if not recipients:
            return STATUS_LOGGED

        if not cls.is_configured():
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                ", ".join(recipients), subject, template_name,
            )
            return STATUS_LOGGED

        try:
            cls._send_smtp(to_emails=recipients, subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", recipients, exc)
            return STATUS_FAILED
        logger.info("Email sent: to=%s subject='%s'", recipients, subject)
        return STATUS_SENT

    @classmethod
    def send_from_template(cls, *, to_emails: list[str], template_name: str,
                           context: dict[str, Any]) -> str | None:
        """
        Send an email using a named template.

        Template variables are HTML-escaped and interpolated from context.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        safe = _SafeDict({k: escape(str(v)) if v is not None else "" for k, v in context.items()})
        subject = template["subject"].format_map(_SafeDict({k: "" if v is None else v for k, v in context.items()}))
        safe["heading"] = template["heading"]
        safe["body"] = template["body"].format_map(safe)
        html_body = _LAYOUT.format_map(safe)

        return cls.send(
            to_emails=to_emails,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
        )

    @staticmethod
    def _send_smtp(*, to_emails: list[str], subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(to_emails)
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


def deviation_context(deviation, actor=None, **extra) -> dict[str, Any]:
    """Template variables shared by every deviation notification."""
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    dtype = deviation.deviation_type
    ctx = {
        "deviation_id": deviation.id,
        "title": deviation.title,
        "description": deviation.description or "",
        "priority": deviation.priority,
        "status": deviation.status,
        "type_name": dtype.name if dtype else "",
        "type_color": (dtype.color if dtype else None) or "#3b82f6",
        "due_date": deviation.due_date.isoformat() if deviation.due_date else "-",
        "actor": (actor.full_name or actor.email) if actor else "System",
        "link": f"{base_url}/deviations/{deviation.id}",
    }
    ctx.update(extra)
    return ctx


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
