# notify.py
from email.message import EmailMessage
import logging
import smtplib

from flask import current_app, render_template_string

from errors import MailError
from pricing import money, open_order_count

logger = logging.getLogger(__name__)

# Channels
CART_COUNT = "cart-count"
ORDER_COUNT = "order-count"
ANNOUNCEMENTS = "announcements"
FULFILLMENT = "fulfillment"


class Broadcaster:
    """Fan-out of events to whatever transport subscribed (websocket relay, tests...)."""

    def __init__(self):
        self._subscribers = []

    def subscribe(self, callback, channel=None):
        self._subscribers.append((channel, callback))
        return callback

    def unsubscribe(self, callback):
        self._subscribers = [(ch, cb) for ch, cb in self._subscribers if cb is not callback]

    def publish(self, channel, event, payload):
        message = {"channel": channel, "event": event, "payload": payload}
        delivered = 0
        for wanted, callback in list(self._subscribers):
            if wanted is None or wanted == channel:
                callback(message)
                delivered += 1
        logger.debug("Broadcast %s/%s to %d subscriber(s)", channel, event, delivered)
        return delivered


def broadcast(channel, event, payload):
    """Publish an event; returns False (and logs) instead of raising."""
    try:
        current_app.extensions["broadcaster"].publish(channel, event, payload)
    except Exception:
        logger.exception("Broadcast of %s on %s failed", event, channel)
        return False
    return True


def publish_order_count(user_id):
    count = open_order_count(user_id)
    broadcast(ORDER_COUNT, "order_count_updated", {"user_id": user_id, "count": count})
    return count


def send_email(to, subject, html_body):
    if not to:
        raise MailError("Email address cannot be empty.")
    cfg = current_app.config
    sender = cfg.get("MAIL_DEFAULT_SENDER") or cfg.get("MAIL_USERNAME")

    if cfg.get("MAIL_SUPPRESS_SEND"):
        current_app.extensions["mail_outbox"].append(
            {"to": to, "subject": subject, "html": html_body, "sender": sender}
        )
        return

    if not cfg.get("MAIL_SERVER") or not sender:
        raise MailError("SMTP configuration is missing or incomplete.")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(cfg["MAIL_SERVER"], cfg["MAIL_PORT"], timeout=10) as smtp:
            if cfg.get("MAIL_USE_TLS"):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME"):
                smtp.login(cfg["MAIL_USERNAME"], cfg.get("MAIL_PASSWORD") or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise MailError(str(exc)) from exc


def try_send_email(to, subject, html_body, warning):
    """Send and return None, or log the failure and return ``warning``."""
    try:
        send_email(to, subject, html_body)
    except MailError:
        logger.exception("Failed to send '%s' email to %s", subject, to)
        return warning
    return None


RECEIPT_TEMPLATE = """\
<h2>Order Confirmation for {{ user.full_name }}</h2>
<p>Order Date: {{ placed_at.strftime('%d %b %Y %H:%M') }} UTC</p>
<p>User ID: {{ user.id }}</p>
<h3>Order Details</h3>
<table border="1" style="border-collapse: collapse; width: 100%;">
  <tr><th>Book Title</th><th>Author</th><th>Quantity</th><th>Price</th><th>You Pay</th><th>Claim Code</th></tr>
  {% for line, order in rows %}
  <tr>
    <td>{{ line.book.title }}</td>
    <td>{{ line.book.author }}</td>
    <td>{{ line.quantity }}</td>
    <td>${{ money(line.subtotal) }}</td>
    <td>${{ order.total_price }}</td>
    <td>{{ order.claim_code }}</td>
  </tr>
  {% endfor %}
</table>
<h3>Billing Summary</h3>
<p>Total Items: {{ quote.total_items }}</p>
<p>Total Price: ${{ money(quote.subtotal) }}</p>
<p>Discount Applied: ${{ money(quote.discount_amount) }}</p>
<p><strong>Final Price: ${{ money(quote.final_total) }}</strong></p>
<p>Please present your user ID and claim code at the store for in-store pickup.</p>
"""


def receipt_html(user, quote, orders, placed_at):
    return render_template_string(
        RECEIPT_TEMPLATE,
        user=user,
        quote=quote,
        rows=list(zip(quote.lines, orders)),
        placed_at=placed_at,
        money=money,
    )


ACCOUNT_NOTICE_TEMPLATE = """\
<p>Dear {{ user.first_name or "customer" }},</p>
{% if message %}
<p>You have received a deletion notice from the {{ store }} team:</p>
<p>{{ message }}</p>
<p>Please reply to this email or take action to avoid the deletion of your account.</p>
{% else %}
<p>The deletion notice for your account has been withdrawn. Your account remains active.</p>
{% endif %}
<p>Best regards,<br>{{ store }}</p>
"""


def account_notice_html(user, message=None):
    """Deletion notice, or its withdrawal when ``message`` is empty."""
    return render_template_string(
        ACCOUNT_NOTICE_TEMPLATE,
        user=user,
        message=message,
        store=current_app.config.get("STORE_NAME", "Book Nook"),
    )
