import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import get_settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


class MailDeliveryError(RuntimeError):
    pass


class Mailer:
    def __init__(self) -> None:
        self.settings = get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.smtp_host)

    def render_password_reset(
        self, name: str, otp: str, valid_minutes: int
    ) -> tuple[str, str]:
        context = {"name": name, "otp": otp, "valid_minutes": valid_minutes}
        text = _env.get_template("password_reset_otp.txt").render(**context)
        html = _env.get_template("password_reset_otp.html").render(**context)
        return text, html

    def send_password_reset_otp(
        self, to: str, name: str, otp: str, valid_minutes: int
    ) -> None:
        if not self.enabled:
            logger.warning(f"mail_skipped: kind=password_reset to={to} reason=no_smtp_host")
            return
        text, html = self.render_password_reset(name, otp, valid_minutes)
        msg = EmailMessage()
        msg["Subject"] = "Password Reset OTP - Expense Tracker"
        msg["From"] = self.settings.mail_from
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        self._send(msg)
        logger.info(f"mail_sent: kind=password_reset to={to}")

    def _send(self, msg: EmailMessage) -> None:
        s = self.settings
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_secs) as smtp:
                if s.smtp_use_tls:
                    smtp.starttls()
                if s.smtp_username:
                    smtp.login(s.smtp_username, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"mail_failed: to={msg['To']} error={exc}")
            raise MailDeliveryError("Failed to send OTP email") from exc
