import smtplib
from email.mime.text import MIMEText
from string import Template
from typing import Protocol

from loguru import logger

from .config import MailSettings
from .errors import DeliveryError

BIRTHDAY_TEMPLATE = Template("""\
<html>
  <body style="font-family: sans-serif;">
    <h1>Happy Birthday, $name!</h1>
    <p>Wishing you a wonderful $year full of good things.</p>
  </body>
</html>
""")


def render_birthday(name: str, year: int) -> str:
    return BIRTHDAY_TEMPLATE.substitute(name=name, year=year)


class Mailer(Protocol):
    def send(self, to: str, subject: str, name: str, *, year: int) -> None:
        """Deliver one message or raise DeliveryError. `year` is the recipient's local year."""


class ConsoleMailer:
    """Logs the message instead of sending it."""

    def send(self, to: str, subject: str, name: str, *, year: int) -> None:
        logger.info(f"[mail] to={to} subject={subject!r} name={name} year={year}")


class SmtpMailer:
    def __init__(self, settings: MailSettings, timeout: float = 30):
        self.settings = settings
        self.timeout = timeout

    def send(self, to: str, subject: str, name: str, *, year: int) -> None:
        s = self.settings
        try:
            msg = MIMEText(render_birthday(name, year), "html")
            msg["Subject"] = subject
            msg["From"] = s.sender
            msg["To"] = to
            with smtplib.SMTP(s.host, s.port, timeout=self.timeout) as server:
                server.starttls()
                if s.user and s.password:
                    server.login(s.user, s.password)
                server.sendmail(s.sender, [to], msg.as_string())
        except Exception as e:
            # any transport failure goes through the handler's retry path
            raise DeliveryError(f"Failed to send email to {to}: {e}") from e


def build_mailer(settings: MailSettings) -> Mailer:
    if not settings.host:
        logger.warning("MAIL_HOST not set; birthday emails will only be logged")
        return ConsoleMailer()
    return SmtpMailer(settings)
