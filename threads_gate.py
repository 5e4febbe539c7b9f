# threads_gate.py
#
# Threads publishing gate
# - Two-step publish: create a TEXT media container, then publish it
# - Blank content is rejected before any network call
# - Every failure surfaces as PublishError (HTTP status or transport message)
# - No retries: one attempt per step
#
# SECURITY
# - Never logs the access token
# - Response bodies are logged at debug level only, and clipped
#
import logging
from typing import Any, Dict, Optional

import requests

from wmata_errors import ConfigError, PublishError, ValidationError
from wmata_settings import DEFAULT_THREADS_BASE_URL, DEFAULT_THREADS_TIMEOUT_MS, Settings

logger = logging.getLogger(__name__)

USER_AGENT = "wmata-alert-bot/1.0"


class ThreadsPublisher:
    def __init__(
        self,
        user_id: str,
        access_token: str,
        base_url: str = DEFAULT_THREADS_BASE_URL,
        timeout_ms: int = DEFAULT_THREADS_TIMEOUT_MS,
        session: Optional[Any] = None,
    ) -> None:
        missing = [k for k, v in [("user_id", user_id), ("access_token", access_token)] if not v]
        if missing:
            raise ConfigError(f"Missing required Threads configuration fields: {', '.join(missing)}", missing=missing)

        self.user_id = user_id
        self.access_token = access_token
        self.base_url = (base_url or DEFAULT_THREADS_BASE_URL).rstrip("/")
        self.timeout = (timeout_ms or DEFAULT_THREADS_TIMEOUT_MS) / 1000.0
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[Any] = None) -> "ThreadsPublisher":
        return cls(
            user_id=settings.threads_user_id,
            access_token=settings.threads_access_token,
            base_url=settings.threads_base_url,
            timeout_ms=settings.threads_timeout_ms,
            session=session,
        )

    # -----------------------------------------------------------------
    # HTTP helpers
    # -----------------------------------------------------------------
    def _api(self, method: str) -> str:
        return f"{self.base_url}/{self.user_id}/{method}"

    def _post(self, method: str, payload: Dict[str, Any], step: str) -> str:
        """POST to the Threads API and return the `id` from the JSON answer."""
        try:
            r = self.session.post(
                self._api(method),
                json=payload,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PublishError(f"Failed to {step}: {e}") from e

        logger.info("Threads POST /%s: %s", method, r.status_code)
        logger.debug("Threads /%s response: %s", method, (r.text or "")[:300])
        if not (200 <= r.status_code < 300):
            raise PublishError(f"Failed to {step}", status=r.status_code)

        try:
            data = r.json()
        except ValueError:
            data = None
        post_id = data.get("id") if isinstance(data, dict) else None
        if not post_id:
            raise PublishError(f"Failed to {step}: no id returned")
        return str(post_id)

    # -----------------------------------------------------------------
    # Publish steps
    # -----------------------------------------------------------------
    def create_media_container(self, text: str) -> str:
        payload = {
            "media_type": "TEXT",
            "text": text,
            "access_token": self.access_token,
        }
        return self._post("threads", payload, "create media container")

    def publish_media_container(self, container_id: str) -> str:
        payload = {
            "creation_id": container_id,
            "access_token": self.access_token,
        }
        return self._post("threads_publish", payload, "publish media container")

    def publish_post(self, text: str) -> str:
        if not (text or "").strip():
            raise ValidationError("Content cannot be empty")

        container_id = self.create_media_container(text)
        return self.publish_media_container(container_id)
