import logging
import smtplib

from flask_mail import Mail, Message
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


def build_magic_link_message(to_email: str, link: str, ttl_minutes: int) -> Message:
    return Message(
        subject="Your sign-in link",
        recipients=[to_email],
        body=(
            f"Use this link to sign in:\n\n{link}\n\n"
            f"It expires in {ttl_minutes} minutes and works only once.\n"
            "If you did not ask for it, ignore this email."
        ),
    )


def send_with_retry(mail: Mail, msg: Message, attempts: int = 3) -> None:
    """Send through Flask-Mail, retrying transient SMTP/socket errors.

    Re-raises the last error once `attempts` are exhausted.
    """
    for attempt in Retrying(
        retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(max(1, attempts)),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.info("Retrying mail delivery (attempt %d)", attempt.retry_state.attempt_number)
            mail.send(msg)
