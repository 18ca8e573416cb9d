# Email delivery
import logging
import smtplib

from flask_mail import Message
from markupsafe import escape

from errors import DeliveryFailure

logger = logging.getLogger(__name__)


class Mailer:
    """Thin wrapper over Flask-Mail that turns transport errors into DeliveryFailure."""

    def __init__(self, mail, sender=None):
        self.mail = mail
        self.sender = sender

    def send(self, to, subject, text, html=None):
        msg = Message(subject=subject, recipients=[to], body=text, html=html,
                      sender=self.sender)
        try:
            self.mail.send(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", to, e)
            raise DeliveryFailure() from e
        logger.info("Email sent to %s: %s", to, subject)

    def send_otp(self, to, first_name, otp, ttl_minutes):
        html = (
            '<div style="font-family:sans-serif;font-size:16px">'
            f'<p>Welcome to <b>PublicFeed</b>, {escape(first_name)}!</p>'
            '<p>Your verification code is:</p>'
            f'<h2 style="color:#9b59b6;letter-spacing:4px">{otp}</h2>'
            f'<p>This code expires in {ttl_minutes} minutes.</p>'
            '</div>'
        )
        self.send(to, "Your PublicFeed Verification Code", f"Your OTP code is {otp}", html)

    def send_password_reset(self, to, reset_url, ttl_minutes):
        html = (
            '<p>You requested a password reset for PublicFeed.</p>'
            f'<p>Click <a href="{escape(reset_url)}">here</a> to reset your password. '
            f'This link expires in {ttl_minutes} minutes.</p>'
            "<p>If you didn't request this, ignore this email.</p>"
        )
        self.send(to, "PublicFeed Password Reset", f"Reset your password: {reset_url}", html)
