"""
Order and account e-mails.

Endpoints never send mail themselves: after their write commits they enqueue
a NotificationJob on the application's NotificationDispatcher and return.
A single worker thread renders and delivers jobs. Delivery is at-most-once
by default (NOTIFY_MAX_ATTEMPTS=1); failures are logged and dropped.
"""

import html
import logging
import os
import queue
import smtplib
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", '"FashionStore" <no-reply@fashionstore.com>')
NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", 1))
NOTIFY_RETRY_DELAY = float(os.getenv("NOTIFY_RETRY_DELAY", 2.0))

RESET_PASSWORD = "Reset_Password"


@dataclass
class EmailContent:
    subject: str
    html: str


@dataclass
class NotificationJob:
    data: dict
    status: str


def format_price(value) -> str:
    return f"{value or 0:,.0f} VND"


def format_date(value) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y")


def _template(data: dict, status: str):
    """Return (subject, title, message html, accent colour) or None."""
    number = html.escape(str(data.get("order_number", "")))

    if status == "Pending_Payment":
        return (
            f"[FashionStore] Order #{number} confirmed - awaiting payment",
            "Order placed",
            "Thank you for your order. Please complete the payment so we can start processing it.",
            "#6b7280",
        )
    if status == "Waiting_Approval":
        return (
            f"[FashionStore] We received order #{number}",
            "Your order is being reviewed",
            "We have received your order. The shop will confirm it shortly.",
            "#f59e0b",
        )
    if status == "Processing":
        note = data.get("seller_note")
        message = "The shop accepted your order and is preparing it."
        if note:
            message += f'<br/>Message from the shop: "<i>{html.escape(note)}</i>"'
        return (
            f"[FashionStore] Order #{number} has been confirmed",
            "Order approved!",
            message,
            "#3b82f6",
        )
    if status == "Shipped":
        eta = format_date(data.get("estimated_delivery_date")) or "as soon as possible"
        return (
            f"[FashionStore] Order #{number} is on its way",
            "Order shipped!",
            f"The carrier has picked up your parcel. Expected delivery: {html.escape(eta)}.",
            "#8b5cf6",
        )
    if status == "Delivered":
        return (
            f"[FashionStore] Order #{number} delivered",
            "Delivered!",
            "Thank you for shopping with FashionStore.",
            "#22c55e",
        )
    if status == "Cancelled":
        reason = data.get("cancel_reason") or "Not specified"
        return (
            f"[FashionStore] Order #{number} was cancelled",
            "Order cancelled",
            f"Reason: {html.escape(reason)}",
            "#ef4444",
        )
    if status == RESET_PASSWORD:
        url = html.escape(data.get("reset_url", ""), quote=True)
        return (
            "[FashionStore] Password reset request",
            "Reset your password",
            (
                "You asked to reset your password. Use the button below to choose a new one "
                "(the link expires in 10 minutes):<br/><br/>"
                '<div style="text-align: center; margin: 30px 0;">'
                f'<a href="{url}" style="background-color: #dc2626; color: white; padding: 12px 24px; '
                'text-decoration: none; border-radius: 5px; font-weight: bold;">Reset password</a>'
                "</div><br/>If you did not ask for this, ignore this e-mail."
            ),
            "#dc2626",
        )
    return None


def render_email(data: dict, status: str) -> Optional[EmailContent]:
    template = _template(data, status)
    if template is None:
        return None
    subject, title, message, color = template
    name = html.escape((data.get("user") or {}).get("name") or "there")

    summary = ""
    if status != RESET_PASSWORD:
        summary = (
            '<div style="background: #f9fafb; padding: 15px; border-radius: 8px; margin: 20px 0;">'
            f'<p style="margin: 5px 0;"><strong>Order:</strong> {html.escape(str(data.get("order_number", "")))}</p>'
            f'<p style="margin: 5px 0;"><strong>Total:</strong> '
            f'<span style="color: #d0021b; font-weight: bold;">{format_price(data.get("total_price"))}</span></p>'
            f'<p style="margin: 5px 0;"><strong>Address:</strong> {html.escape(str(data.get("shipping_address") or ""))}</p>'
            "</div>"
        )

    body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; '
        'border: 1px solid #eee; border-radius: 8px; overflow: hidden;">'
        f'<div style="background-color: {color}; padding: 20px; text-align: center; color: white;">'
        f'<h2 style="margin: 0;">{title}</h2></div>'
        '<div style="padding: 20px;">'
        f"<p>Hello <strong>{name}</strong>,</p>"
        f"<div>{message}</div>"
        f"{summary}"
        '<p style="font-size: 12px; color: #888; text-align: center; margin-top: 30px;">'
        "This is an automated message, please do not reply.<br/>FashionStore Team.</p>"
        "</div></div>"
    )
    return EmailContent(subject=subject, html=body)


# Transports
class LogMailer:
    """Used when no SMTP server is configured."""

    def send(self, to: str, subject: str, html_body: str):
        logger.info("[Email] (not sent, SMTP not configured) to=%s subject=%s", to, subject)


class SmtpMailer:
    def __init__(self, host: str, port: int, username: Optional[str], password: Optional[str], sender: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    def send(self, to: str, subject: str, html_body: str):
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(msg)


def mailer_from_env():
    if SMTP_HOST:
        return SmtpMailer(SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, MAIL_FROM)
    return LogMailer()


class NotificationDispatcher:
    def __init__(self, mailer, max_attempts: int = NOTIFY_MAX_ATTEMPTS, retry_delay: float = NOTIFY_RETRY_DELAY):
        self.mailer = mailer
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.queue = queue.Queue()
        self._thread = None
        self._lock = threading.Lock()

    def start(self):
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0):
        if self._thread is not None and self._thread.is_alive():
            self.queue.put(None)
            self._thread.join(timeout)

    def enqueue(self, data: dict, status: str):
        self.start()
        self.queue.put(NotificationJob(data=data, status=status))

    def join(self):
        """Block until every queued job has been handled."""
        self.queue.join()

    def _run(self):
        while True:
            job = self.queue.get()
            try:
                if job is None:
                    return
                self.deliver(job)
            except Exception:
                logger.exception("[Email] Worker failed on %s", job)
            finally:
                self.queue.task_done()

    def deliver(self, job: NotificationJob) -> bool:
        email = (job.data.get("user") or {}).get("email")
        if not email:
            return False

        content = render_email(job.data, job.status)
        if content is None:
            logger.info("[Email] No template for status %s", job.status)
            return False

        for attempt in range(1, self.max_attempts + 1):
            try:
                self.mailer.send(email, content.subject, content.html)
                logger.info("[Email] Sent to %s [%s]", email, job.status)
                return True
            except Exception as exc:
                logger.warning("[Email] Attempt %d/%d to %s failed: %s", attempt, self.max_attempts, email, exc)
                if attempt < self.max_attempts:
                    time.sleep(self.retry_delay)
        logger.error("[Email] Giving up on %s [%s]", email, job.status)
        return False


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notifications
