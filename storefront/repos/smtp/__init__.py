"""SMTP notification sender."""

from .sender import SMTPNotificationSender

__all__ = ["SMTPNotificationSender"]
