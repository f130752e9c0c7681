"""
Email delivery of rendered documents.

Email is a secondary channel: the gateway's contract is document
delivery, so nothing in this module is allowed to fail a render request.
Callers run ``send`` after the response has been produced and only log
its failures.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from gateway.app.errors import EmailDeliveryFailed
from gateway.app.schemas.render import EmailDirective

logger = logging.getLogger(__name__)


class SmtpMailer:
    """SMTP transport for rendered documents."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        unsafe: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.unsafe = unsafe
        self.timeout = timeout

    def build_message(
        self,
        directive: EmailDirective,
        attachment: bytes,
        filename: str,
    ) -> EmailMessage:
        message = EmailMessage()
        if self.sender:
            message["From"] = self.sender
        message["To"] = ", ".join(directive.to)
        message["Subject"] = directive.subject
        message.set_content(directive.body)
        message.add_attachment(
            attachment,
            maintype="application",
            subtype="octet-stream",
            filename=filename,
        )
        return message

    def send(
        self,
        directive: EmailDirective,
        attachment: bytes,
        filename: str,
    ) -> None:
        """
        Send ``attachment`` to every recipient of ``directive``.

        Raises:
            EmailDeliveryFailed:
                If the SMTP conversation fails at any point.
        """
        message = self.build_message(directive, attachment, filename)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if not self.unsafe:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryFailed(
                f"Failed to send email to {len(directive.to)} recipient(s) "
                f"via {self.host}:{self.port}: {exc}"
            ) from exc

        logger.info(
            "document_emailed",
            extra={"recipients": len(directive.to), "filename": filename},
        )
