import logging
import re
from typing import Iterable, List, Optional, Union

import requests

from resell_core.config import settings

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


def is_valid_email(email):
    if isinstance(email, list):
        return all(is_valid_email(e) for e in email)

    if not email:
        return False

    return re.match(r"[^@]+@[^@]+\.[^@]+", email) is not None


def valid_recipients(to: Union[str, Iterable[str]]) -> List[str]:
    candidates = [to] if isinstance(to, str) else list(to or [])
    return [e for e in candidates if is_valid_email(e)]


class BrevoMailer:
    """
    Transactional mail through the Brevo HTTP API.

    ``send`` never raises: admin alerts are best effort and must not fail
    the business operation that triggered them.
    """

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None,
                 sender_name: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.BREVO_API_KEY
        self.sender = sender or settings.MAIL_FROM
        self.sender_name = sender_name or settings.STORE_NAME
        self.timeout = timeout or settings.http_timeout_seconds

    def send(self, to: Union[str, List[str]], subject: str, html: str) -> bool:
        recipients = valid_recipients(to)
        if not recipients:
            logger.warning(f"No valid emails found: {to}")
            return False

        if not self.api_key:
            logger.info(f"BREVO_API_KEY not set, skipping email '{subject}'")
            return False

        payload = {
            "sender": {"email": self.sender, "name": self.sender_name},
            "to": [{"email": e} for e in recipients],
            "subject": subject,
            "htmlContent": html,
        }

        try:
            response = requests.post(
                BREVO_API_URL,
                json=payload,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException:
            logger.exception(f"Brevo email '{subject}' failed")
            return False

        if response.status_code >= 400:
            logger.error(f"Brevo email failed ({response.status_code}): {response.text}")
            return False

        logger.info(f"Brevo email '{subject}' sent to {recipients}")
        return True
