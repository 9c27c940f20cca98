"""Email service sending Jinja2-rendered messages over SMTP.

Sending is disabled unless ``EMAIL_ENABLED`` is set; disabled sends are
logged and skipped.
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape

from smilestars.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class EmailService:
    """Service for sending transactional emails via SMTP."""

    def __init__(self):
        """Initialize the email service."""
        templates_path = Path(__file__).parent.parent / "templates" / "emails"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(templates_path)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def _render_template(self, template_name: str, context: dict[str, Any]) -> str:
        """Render an email template with the given context."""
        template = self.jinja_env.get_template(template_name)
        return template.render(**context)

    async def _send_via_smtp(
        self,
        from_address: str,
        recipients: list[str],
        subject: str,
        html_body: str,
    ) -> str:
        """Send email via SMTP."""
        msg = MIMEMultipart("alternative")
        msg["From"] = from_address
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        # Port 465 = implicit SSL, port 587 = STARTTLS
        if settings.smtp_port == 465:
            tls_kwargs = {"use_tls": True, "start_tls": False}
        else:
            tls_kwargs = {"use_tls": False, "start_tls": settings.smtp_use_tls}

        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username or None,
            password=settings.smtp_password or None,
            recipients=recipients,
            timeout=30,
            **tls_kwargs,
        )

        return f"smtp-{id(msg)}"

    async def send(
        self,
        to: str | list[str],
        subject: str,
        template_name: str,
        context: dict[str, Any],
    ) -> str | None:
        """Send an email using a Jinja2 template.

        Returns a message ID string if successful, None if failed or disabled.
        """
        recipients = to if isinstance(to, list) else [to]

        if not settings.email_enabled:
            logger.info(f"Email disabled, skipping '{subject}' to {recipients}")
            return None

        try:
            html_body = self._render_template(template_name, {**context, "app_name": settings.app_name})
            from_address = f"{settings.email_from_name} <{settings.email_from_address}>"

            result_id = await self._send_via_smtp(from_address, recipients, subject, html_body)
            logger.info(f"Email sent to {recipients}: {result_id}")
            return result_id

        except Exception as e:
            logger.error(f"Failed to send email to {recipients}: {e}")
            return None

    async def send_magic_link(
        self,
        to: str,
        user_name: str,
        link_url: str,
        expires_in_minutes: int,
    ) -> str | None:
        """Send a passwordless sign-in link."""
        return await self.send(
            to=to,
            subject=f"Your {settings.app_name} sign-in link",
            template_name="magic_link.html",
            context={
                "user_name": user_name,
                "link_url": link_url,
                "expires_in_minutes": expires_in_minutes,
            },
        )

    async def send_invitation(
        self,
        to: str,
        user_name: str,
        entity_name: str,
        role: str,
        accept_url: str,
        expires_in_hours: int,
    ) -> str | None:
        """Send an invitation to join an entity with a role."""
        return await self.send(
            to=to,
            subject=f"You're invited to join {entity_name} on {settings.app_name}",
            template_name="invitation.html",
            context={
                "user_name": user_name,
                "entity_name": entity_name,
                "role": role.replace("_", " ").title(),
                "accept_url": accept_url,
                "expires_in_hours": expires_in_hours,
            },
        )

    async def send_agreement_request(
        self,
        to: str,
        user_name: str,
        entity_name: str,
        entity_type: str,
        accept_url: str,
        expires_in_days: int,
    ) -> str | None:
        """Ask a primary contact to accept the franchise or school agreement."""
        return await self.send(
            to=to,
            subject=f"Action required: activate {entity_name}",
            template_name="agreement_request.html",
            context={
                "user_name": user_name,
                "entity_name": entity_name,
                "entity_type": entity_type.lower(),
                "accept_url": accept_url,
                "expires_in_days": expires_in_days,
            },
        )

    async def send_camp_scheduled(
        self,
        to: str | list[str],
        camp_name: str,
        school_name: str,
        start_date: str,
        end_date: str,
    ) -> str | None:
        """Tell school contacts a camp has been scheduled."""
        return await self.send(
            to=to,
            subject=f"Camp Scheduled: {camp_name}",
            template_name="camp_scheduled.html",
            context={
                "camp_name": camp_name,
                "school_name": school_name,
                "start_date": start_date,
                "end_date": end_date,
                "portal_url": settings.app_base_url,
            },
        )

    async def send_consent_request(
        self,
        to: str | list[str],
        student_name: str,
        camp_name: str,
        start_date: str,
    ) -> str | None:
        """Ask parents to decide on consent for a camp."""
        return await self.send(
            to=to,
            subject=f"Consent requested: {camp_name}",
            template_name="consent_request.html",
            context={
                "student_name": student_name,
                "camp_name": camp_name,
                "start_date": start_date,
                "portal_url": settings.app_base_url,
            },
        )


# Singleton instance
_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    """Get the email service singleton."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
