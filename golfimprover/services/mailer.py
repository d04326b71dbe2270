"""Outgoing email for recap notifications."""

from __future__ import annotations

import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from ..config import MailConfig, RecapJobConfig

logger = logging.getLogger(__name__)

_HTML_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: #4CAF50; padding: 20px; text-align: center; color: white;">
    <h1 style="margin: 0;">Monthly Golf Recap</h1>
  </div>
  <div style="padding: 20px; border: 1px solid #ddd; border-top: none;">
    <p>Hi {name},</p>
    <p>Your monthly golf improvement recap for <strong>{month_name}</strong> is now ready to view!</p>
    <p>See how your practice efforts correlated with your handicap progress this month.</p>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{link}" style="background-color: #4CAF50; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; font-weight: bold;">
        View Your Recap
      </a>
    </div>
    <p>Keep improving!</p>
    <p>The Golf Improver Team</p>
  </div>
</div>
"""


class Mailer:
    """Best-effort SMTP delivery; disabled when no host is configured."""

    def __init__(self, config: Optional[MailConfig] = None, app_url: str = RecapJobConfig.app_url) -> None:
        self._config = config or MailConfig()
        self._app_url = app_url.rstrip('/')

    @property
    def enabled(self) -> bool:
        return self._config.is_valid

    def build_recap_ready(self, email: str, name: str, month: str, month_name: str) -> EmailMessage:
        link = f'{self._app_url}/recap/{month}'
        message = EmailMessage()
        message['From'] = self._config.sender
        message['To'] = email
        message['Subject'] = f'Your {month_name} Golf Improvement Recap is Ready!'
        message.set_content(
            f'Hi {name},\n\n'
            f'Your monthly golf improvement recap for {month_name} is now ready to view. '
            'See how your practice efforts correlated with your handicap progress this month.\n\n'
            f'Check it out now at: {link}\n\n'
            'Keep improving!\nThe Golf Improver Team'
        )
        message.add_alternative(
            _HTML_TEMPLATE.format(
                name=html.escape(name), month_name=html.escape(month_name), link=html.escape(link)
            ),
            subtype='html',
        )
        return message

    def send_recap_ready(self, email: str, name: str, month: str, month_name: str) -> bool:
        """Send the "recap ready" email. Returns False when it was not delivered."""

        if not self.enabled:
            logger.info('SMTP not configured; skipping recap email to %s', email)
            return False

        message = self.build_recap_ready(email, name, month, month_name)
        try:
            with smtplib.SMTP(self._config.host, self._config.port, timeout=30) as smtp:
                if self._config.use_tls:
                    smtp.starttls()
                if self._config.username:
                    smtp.login(self._config.username, self._config.password or '')
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error('Error sending recap email to %s: %s', email, exc)
            return False

        logger.info('Recap email sent to %s', email)
        return True
