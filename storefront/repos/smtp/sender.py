"""
aiosmtplib implementation of NotificationSender.
"""

import logging
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Sequence

import aiosmtplib

from storefront.domain import EmailAttachment
from storefront.repositories import NotificationSender

logger = logging.getLogger(__name__)


def build_message(
    sender: str,
    to: str,
    subject: str,
    html: str,
    attachments: Sequence[EmailAttachment] = (),
) -> MIMEMultipart:
    message = MIMEMultipart("mixed")
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(html, "html", "utf-8"))
    for attachment in attachments:
        subtype = attachment.content_type.split("/", 1)[-1]
        part = MIMEApplication(attachment.content, _subtype=subtype)
        part.add_header(
            "Content-Disposition", "attachment", filename=attachment.filename
        )
        message.attach(part)
    return message


class SMTPNotificationSender(NotificationSender):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username or None
        self.password = password or None
        self.timeout = timeout
        logger.debug(
            "Initialized SMTPNotificationSender",
            extra={"host": host, "port": port},
        )

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        attachments: Sequence[EmailAttachment] = (),
    ) -> None:
        message = build_message(self.sender, to, subject, html, attachments)
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            use_tls=self.port == 465,
            start_tls=self.port == 587,
            timeout=self.timeout,
        )
        logger.debug("Email handed to SMTP server", extra={"subject": subject})
