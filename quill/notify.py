from __future__ import annotations

import logging
import threading
import xmlrpc.client
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests import Session
from requests.exceptions import RequestException

from .config import DEFAULT_PING_SERVICES, Settings
from .errors import NotificationError


__all__ = ["PingNotifier", "build_ping_payload"]


logger = logging.getLogger(__name__)


def build_ping_payload(site_title: str, post_url: str) -> bytes:
    # dumps() emits the XML declaration itself when given a method name.
    return xmlrpc.client.dumps((site_title, post_url), methodname="weblogUpdate.ping").encode("utf-8")


class PingNotifier:
    """Tells blog update services that a post went live."""

    def __init__(
        self,
        site_url: str,
        site_title: str,
        *,
        services: Sequence[str] = DEFAULT_PING_SERVICES,
        timeout: float = 5.0,
        enabled: bool = True,
        session: Optional[Session] = None,
    ):
        self.site_url = site_url.rstrip("/")
        self.site_title = site_title
        self.services = list(services)
        self.timeout = timeout
        self.enabled = enabled
        self._session = session

    @classmethod
    def from_settings(cls, settings: Settings) -> "PingNotifier":
        return cls(
            settings.site_url,
            settings.site_title,
            services=settings.ping_services,
            timeout=settings.ping_timeout,
            enabled=settings.ping_enabled,
        )

    def post_url(self, post: Dict[str, Any]) -> str:
        return f"{self.site_url}/{post['slug']}/"

    def should_ping(self, post: Dict[str, Any]) -> bool:
        return self.enabled and bool(self.services) and not post.get("page")

    def ping(self, post: Dict[str, Any]) -> Optional[threading.Thread]:
        """Send the ping in a background thread; never waits for services."""
        if not self.should_ping(post):
            return None
        snapshot = dict(post)

        def _runner() -> None:
            try:
                self.send(snapshot)
            except Exception:  # pragma: no cover - best effort background job
                logger.exception("Pinging update services failed for post %s", snapshot.get("id"))

        thread = threading.Thread(target=_runner, name=f"ping-{snapshot.get('id')}", daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            raise NotificationError("Could not start the ping thread") from exc
        return thread

    def send(self, post: Dict[str, Any]) -> List[str]:
        """Ping every service; returns the services that accepted the ping."""
        payload = build_ping_payload(self.site_title, self.post_url(post))
        session = self._session or self._build_session()
        delivered: List[str] = []
        try:
            for service in self.services:
                try:
                    response = session.post(
                        service,
                        data=payload,
                        headers={"Content-Type": "text/xml"},
                        timeout=self.timeout,
                    )
                    response.raise_for_status()
                except RequestException as exc:
                    logger.warning(
                        "Pinging %s failed, the site keeps working: %s",
                        service,
                        exc,
                    )
                    continue
                delivered.append(service)
        finally:
            if self._session is None:
                session.close()
        return delivered

    def _build_session(self) -> Session:
        session = requests.Session()
        session.headers.update({"User-Agent": "Quill/1.0 (+update-ping)"})
        return session
