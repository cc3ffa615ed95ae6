"""
Scheduling Notification Service

Sends parent/coach/admin notifications for scheduling events via:
- WhatsApp (template messages)
- Email

Delivery mechanics belong to the messaging provider; this service renders
templates, logs every send and never lets a delivery failure propagate to
the scheduling flow that triggered it.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from uuid import uuid4


logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class NotificationTemplate(str, Enum):
    """Notification templates used by the scheduling core."""
    SESSION_SCHEDULED = "session.scheduled"
    SESSION_RESCHEDULED = "session.rescheduled"
    SESSION_CANCELLED = "session.cancelled"
    SESSION_MANUAL_NEEDED = "session.manual_needed"
    COACH_REASSIGNED = "coach.reassigned"
    ENROLLMENT_AT_RISK = "enrollment.at_risk"
    ENROLLMENT_PAUSED = "enrollment.paused"


MESSAGE_TEMPLATES = {
    NotificationTemplate.SESSION_SCHEDULED: (
        "Hi {parent_name}, {child_name}'s session \"{session_title}\" is booked for "
        "{date} at {time}. Join: {meet_link}"
    ),
    NotificationTemplate.SESSION_RESCHEDULED: (
        "Hi {parent_name}, {child_name}'s session has moved to {date} at {time}. "
        "Reason: {reason}"
    ),
    NotificationTemplate.SESSION_CANCELLED: (
        "Hi {parent_name}, {child_name}'s session on {date} has been cancelled. "
        "Reason: {reason}"
    ),
    NotificationTemplate.SESSION_MANUAL_NEEDED: (
        "[SCHEDULING] Session {session_id} for {child_name} needs manual scheduling: "
        "{failure_reason}"
    ),
    NotificationTemplate.COACH_REASSIGNED: (
        "Hi {parent_name}, {child_name}'s sessions will now be taken by coach "
        "{coach_name}. Reason: {reason}"
    ),
    NotificationTemplate.ENROLLMENT_AT_RISK: (
        "[AT RISK] {child_name} has missed {consecutive_no_shows} sessions in a row."
    ),
    NotificationTemplate.ENROLLMENT_PAUSED: (
        "Hi {parent_name}, {child_name}'s program has been paused. Reason: {reason}"
    ),
}


class NotificationService:
    """
    Fire-and-forget notification sender.

    `send` never raises: failures are logged and reported in the result.
    """

    def __init__(self, admin_email: Optional[str] = None):
        self.admin_email = admin_email

    def render(self, template: NotificationTemplate, variables: Dict[str, Any]) -> str:
        text = MESSAGE_TEMPLATES.get(template, "")
        try:
            return text.format(**variables)
        except KeyError as e:
            logger.warning(f"Missing template variable {e} for {template.value}")
            return text

    async def send(
        self,
        template: NotificationTemplate,
        channel: NotificationChannel,
        recipient: Optional[str],
        variables: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Send one templated notification.

        Args:
            template: Template to render
            channel: Delivery channel
            recipient: Phone number (WhatsApp) or email address
            variables: Template variables

        Returns:
            Dict with send status and notification ID
        """
        notification_id = str(uuid4())

        if not recipient:
            logger.info(f"[NOTIFICATION] Skipped {template.value}: no {channel.value} recipient")
            return {"success": False, "notification_id": notification_id, "error": "no recipient"}

        message = self.render(template, variables)

        try:
            if channel == NotificationChannel.WHATSAPP:
                await self._send_whatsapp(recipient, template.value, message)
            else:
                await self._send_email(recipient, template.value, message)
        except Exception as e:
            logger.error(f"[NOTIFICATION] {channel.value} {template.value} to {recipient} failed: {e}")
            return {"success": False, "notification_id": notification_id, "error": str(e)}

        logger.info(f"[NOTIFICATION] {channel.value.upper()} {template.value} to {recipient}: {message[:100]}")
        return {
            "success": True,
            "notification_id": notification_id,
            "channel": channel.value,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }

    async def notify_parent(
        self,
        template: NotificationTemplate,
        parent_phone: Optional[str],
        parent_email: Optional[str],
        variables: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Send on WhatsApp, and on email when an address is on file."""
        results = [await self.send(template, NotificationChannel.WHATSAPP, parent_phone, variables)]
        if parent_email:
            results.append(await self.send(template, NotificationChannel.EMAIL, parent_email, variables))
        return results

    async def notify_admin(self, template: NotificationTemplate, variables: Dict[str, Any]) -> Dict[str, Any]:
        return await self.send(template, NotificationChannel.EMAIL, self.admin_email, variables)

    # ==================== Provider Integration Stubs ====================

    async def _send_whatsapp(self, phone: str, template_name: str, message: str) -> bool:
        """Hand the rendered message to the WhatsApp provider."""
        logger.debug(f"WhatsApp queued to {phone} ({template_name})")
        return True

    async def _send_email(self, email: str, subject: str, body: str) -> bool:
        """Hand the rendered message to the email provider."""
        logger.debug(f"Email queued to {email}: {subject}")
        return True
