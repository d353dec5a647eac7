import logging
import re

import requests

from scheduling.errors import NotificationDeliveryError

log = logging.getLogger(__name__)

LINE_PUSH_URL = "https://api.line.me/v2/bot/message/push"
LINE_TEXT_LIMIT = 5000


def clean_text(t: str) -> str:
    """Collapse runs of blank lines and trim to what LINE accepts in one bubble."""
    text = re.sub(r"\n{3,}", "\n\n", str(t or "").strip())
    return text[:LINE_TEXT_LIMIT]


class LineRelay:
    """Push messages to a linked LINE account through the Messaging API."""

    def __init__(self, access_token: str, push_url: str = LINE_PUSH_URL, timeout: float = 10, http=None):
        self.access_token = access_token
        self.push_url = push_url
        self.timeout = timeout
        self.http = http or requests

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def build_messages(self, title: str, message: str, link_url: str = None):
        body = clean_text(message)
        if link_url:
            body = f"{body}\n{link_url}"
        return [
            {"type": "text", "text": clean_text(f"【{title}】")},
            {"type": "text", "text": body},
        ]

    def push(self, line_user_id: str, title: str, message: str, link_url: str = None) -> dict:
        if not self.configured:
            raise NotificationDeliveryError("LINE access token is not set")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        data = {"to": line_user_id, "messages": self.build_messages(title, message, link_url)}

        try:
            resp = self.http.post(self.push_url, json=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NotificationDeliveryError(f"LINE push failed: {exc}") from exc

        if resp.status_code >= 400:
            log.error("LINE push error %s: %s", resp.status_code, resp.text)
            raise NotificationDeliveryError(f"LINE push returned {resp.status_code}")

        log.info("LINE push sent to %s", line_user_id)
        return {"ok": True, "status_code": resp.status_code}
