from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import models
from . import events

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


@dataclass(slots=True)
class EmailMessage:
    recipient_name: str
    recipient_email: str
    subject: str
    html_body: str


class EmailSender:
    """Brevo transactional e-mail client. Best effort: failures are logged."""

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(
            self.settings.brevo_api_key
            and self.settings.email_sender
            and self.settings.email_sender_name
        )

    def send(self, recipient_name: str, recipient_email: str, subject: str, html_body: str) -> bool:
        if not self.configured:
            logger.warning("Email service is not configured; skipping '%s'", subject)
            return False
        if not recipient_email or "@" not in recipient_email:
            logger.warning("Invalid recipient email %r; skipping '%s'", recipient_email, subject)
            return False
        name = recipient_name or recipient_email.split("@", 1)[0]
        payload = {
            "sender": {
                "name": self.settings.email_sender_name,
                "email": self.settings.email_sender,
            },
            "to": [{"email": recipient_email, "name": name}],
            "subject": subject,
            "htmlContent": html_body,
        }
        try:
            with httpx.Client(
                timeout=self.settings.gateway_timeout_seconds, transport=self._transport
            ) as client:
                response = client.post(
                    BREVO_API_URL,
                    json=payload,
                    headers={"accept": "application/json", "api-key": self.settings.brevo_api_key},
                )
            if response.status_code != httpx.codes.CREATED:
                logger.error(
                    "Brevo rejected email",
                    extra={"status_code": response.status_code, "body": response.text},
                )
                return False
        except httpx.HTTPError:
            logger.exception("Failed to send email", extra={"recipient": recipient_email})
            return False
        logger.info("Email sent", extra={"recipient": recipient_email})
        return True


def _to(user: models.User, subject: str, html_body: str) -> EmailMessage:
    return EmailMessage(user.full_name, user.email, subject, html_body)


def build_messages(db: Session, event: events.DomainEvent) -> list[EmailMessage]:
    """Render the e-mails a domain event should produce."""

    if isinstance(event, events.BookingConfirmed):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        how = "using your credit balance" if event.paid_with_credit else "and your payment was successful"
        return [
            _to(
                booking.student,
                "Your Booking is Confirmed!",
                f"<h1>Booking Confirmed</h1><p>Your class has been booked {how}. "
                "You will receive the meeting link shortly.</p>",
            ),
            _to(
                booking.teacher,
                "You Have a New Booking!",
                "<h1>New Booking</h1><p>A student has booked a session with you. "
                "Please prepare for the class.</p>",
            ),
        ]
    if isinstance(event, events.BundleActivated):
        student_bundle = db.get(models.StudentBundle, event.student_bundle_id)
        if not student_bundle:
            return []
        return [
            _to(
                student_bundle.student,
                "Bundle Purchase Confirmed!",
                "<h1>Success!</h1><p>Your class bundle purchase is complete. "
                "You can now use your class credits to book sessions.</p>",
            )
        ]
    if isinstance(event, events.BookingCompleted):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        return [
            _to(
                booking.teacher,
                "Class Completed",
                f"<h1>Class Completed</h1><p>{event.earnings} {booking.currency} "
                "has been added to your balance.</p>",
            )
        ]
    if isinstance(event, events.RescheduleRequested):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        return [
            _to(
                booking.teacher,
                "Reschedule Request",
                "<p>A student has requested to reschedule a class. Please log in to "
                "your dashboard to approve or deny the request.</p>",
            )
        ]
    if isinstance(event, events.RescheduleProcessed):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        if event.approved:
            return [_to(booking.student, "Reschedule Approved",
                        "<p>Your request to reschedule the class has been approved by the teacher.</p>")]
        return [_to(booking.student, "Reschedule Rejected",
                    "<p>Your request to reschedule the class was not approved by the teacher.</p>")]
    if isinstance(event, events.RefundApproved):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        return [
            _to(
                booking.student,
                "Your Refund has been Processed",
                "<h1>Refund Processed</h1><p>Your refund request has been approved "
                "and processed by our team.</p>",
            )
        ]
    if isinstance(event, events.RefundRejected):
        booking = db.get(models.Booking, event.booking_id)
        if not booking:
            return []
        return [
            _to(
                booking.student,
                "Update on Your Refund Request",
                "<h1>Refund Request Update</h1><p>Your refund request has been reviewed "
                "and was not approved.</p>",
            )
        ]
    if isinstance(event, events.PayoutProcessed):
        payout = db.get(models.PayoutRequest, event.payout_request_id)
        if not payout:
            return []
        teacher = payout.teacher
        if event.approved:
            return [
                _to(
                    teacher,
                    "Your Payout Has Been Processed",
                    f"<h1>Payout Processed</h1><p>Hello {teacher.full_name},</p><p>Your payout "
                    f"request for the amount of {payout.amount:.2f} has been processed and sent "
                    "by our team.</p>",
                )
            ]
        return [
            _to(
                teacher,
                "Update on Your Payout Request",
                f"<h1>Payout Request Update</h1><p>Hello {teacher.full_name},</p><p>Your payout "
                f"request for the amount of {payout.amount:.2f} was rejected. The funds have been "
                f"returned to your account balance.</p><p><b>Admin Notes:</b> {payout.admin_notes or ''}</p>",
            )
        ]
    if isinstance(event, events.ReferralRewarded):
        referrer = db.get(models.User, event.referrer_id)
        if not referrer:
            return []
        return [
            _to(
                referrer,
                "You've Earned a Referral Credit!",
                "<h1>Congratulations!</h1><p>Someone you referred has made their first "
                f"purchase. A credit of {event.amount:.2f} has been added to your account.</p>",
            )
        ]
    return []


def make_email_handler(
    session_factory: Callable[[], Session],
    sender: EmailSender | None = None,
) -> events.Handler:
    sender = sender or EmailSender(get_settings())

    def send_event_emails(event: events.DomainEvent) -> None:
        with session_factory() as db:
            messages = build_messages(db, event)
        for message in messages:
            sender.send(
                message.recipient_name,
                message.recipient_email,
                message.subject,
                message.html_body,
            )

    return send_event_emails


__all__ = ["EmailSender", "EmailMessage", "build_messages", "make_email_handler"]
