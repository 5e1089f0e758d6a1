"""
Threads Graph API Client

Publishing on Threads is a two-step flow:
1. Create a media container (TEXT, IMAGE, VIDEO or CAROUSEL)
2. Publish the container once the provider has finished processing it

Failures raise ThreadsAPIError. ``transient`` marks errors that are worth
retrying later (rate limits, 5xx, network problems, processing timeouts).
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import requests

from ..config import get_settings
from ..logging_config import redact, threads_logger

READY_STATUSES = {"FINISHED", "READY", "PUBLISHED"}
MAX_CAROUSEL_ITEMS = 20


class ThreadsAPIError(Exception):
    """Raised when the Threads Graph API rejects or fails a request"""

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = False):
        # Messages may echo request URLs or bodies; access_token is masked
        super().__init__(redact(message))
        self.status_code = status_code
        self.transient = transient


@dataclass
class PublishResult:
    """Result of a successful create-and-publish"""
    post_id: str
    creation_id: str
    media_type: str

    @property
    def permalink(self) -> str:
        return f"https://www.threads.net/post/{self.post_id}"


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ThreadsClient:
    """Minimal client for the Threads publishing endpoints"""

    def __init__(
        self,
        graph_base: str = None,
        api_version: str = None,
        timeout: float = None,
        poll_interval: float = None,
        poll_timeout: float = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self.graph_base = (graph_base or settings.threads_graph_base).rstrip("/")
        self.api_version = api_version or settings.threads_api_version
        self.timeout = timeout if timeout is not None else settings.threads_http_timeout
        self.poll_interval = poll_interval if poll_interval is not None else settings.threads_poll_interval
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.threads_poll_timeout
        self._sleep = sleep

    # ============================================================
    # HTTP HELPERS
    # ============================================================

    def _url(self, path: str) -> str:
        return f"{self.graph_base}/{self.api_version}{path}"

    def _handle(self, method: str, path: str, response: requests.Response) -> Dict:
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            message = (data.get("error") or {}).get("message") if isinstance(data, dict) else None
            message = message or response.text[:200] or "no response body"
            raise ThreadsAPIError(
                f"Graph {method} {path} {response.status_code}: {message}",
                status_code=response.status_code,
                transient=_is_transient_status(response.status_code),
            )
        return data

    def _post(self, path: str, params: Dict) -> Dict:
        form = {k: v for k, v in params.items() if v is not None}
        try:
            response = requests.post(self._url(path), data=form, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ThreadsAPIError(f"Graph POST {path} failed: {e}", transient=True) from e
        return self._handle("POST", path, response)

    def _get(self, path: str, params: Dict) -> Dict:
        try:
            response = requests.get(self._url(path), params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ThreadsAPIError(f"Graph GET {path} failed: {e}", transient=True) from e
        return self._handle("GET", path, response)

    # ============================================================
    # PUBLISHING
    # ============================================================

    def create_container(
        self,
        account_id: str,
        access_token: str,
        text: Optional[str] = None,
        image_urls: Optional[List[str]] = None,
        video_url: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Create a media container and return ``{"id": creation_id, "media_type": ...}``.

        VIDEO wins when a video URL is given; one image is IMAGE; two or more
        images build a CAROUSEL from per-image item containers.
        """
        image_urls = image_urls or []
        path = f"/{account_id}/threads"

        if video_url:
            payload = {"media_type": "VIDEO", "video_url": video_url, "text": text}
        elif len(image_urls) == 1:
            payload = {"media_type": "IMAGE", "image_url": image_urls[0], "text": text}
        elif image_urls:
            if len(image_urls) > MAX_CAROUSEL_ITEMS:
                raise ThreadsAPIError(f"Carousel posts accept at most {MAX_CAROUSEL_ITEMS} images")
            children = [
                self._container_id(self._post(path, {
                    "media_type": "IMAGE",
                    "image_url": url,
                    "is_carousel_item": "true",
                    "access_token": access_token,
                }))
                for url in image_urls
            ]
            payload = {"media_type": "CAROUSEL", "children": ",".join(children), "text": text}
        else:
            if not text or not text.strip():
                raise ThreadsAPIError('TEXT posts require a non-empty "text" param')
            payload = {"media_type": "TEXT", "text": text}

        payload["access_token"] = access_token
        creation_id = self._container_id(self._post(path, payload))
        threads_logger.debug(
            "Created Threads container",
            account_id=account_id,
            creation_id=creation_id,
            media_type=payload["media_type"],
        )
        return {"id": creation_id, "media_type": payload["media_type"]}

    @staticmethod
    def _container_id(data: Dict) -> str:
        creation_id = data.get("id")
        if not creation_id:
            raise ThreadsAPIError("No container id returned from Threads API")
        return str(creation_id)

    def wait_for_container(self, creation_id: str, access_token: str) -> str:
        """Poll a container until the provider has processed it. Returns the final status."""
        started = time.monotonic()
        last_status = ""

        while True:
            data = self._get(f"/{creation_id}", {
                "fields": "id,status,error_message",
                "access_token": access_token,
            })
            last_status = (data.get("status") or "").upper()

            if last_status in READY_STATUSES:
                return last_status
            if last_status in ("ERROR", "EXPIRED") or data.get("error_message"):
                raise ThreadsAPIError(f"Container error: {data.get('error_message') or last_status}")

            if time.monotonic() - started > self.poll_timeout:
                raise ThreadsAPIError(
                    f"Timeout waiting for container to be ready (last status: {last_status or 'unknown'})",
                    transient=True,
                )
            self._sleep(self.poll_interval)

    def publish_container(self, account_id: str, access_token: str, creation_id: str) -> str:
        """Publish a processed container and return the provider post id."""
        data = self._post(f"/{account_id}/threads_publish", {
            "creation_id": creation_id,
            "access_token": access_token,
        })
        post_id = data.get("id")
        if not post_id:
            raise ThreadsAPIError("No post id returned from threads_publish")
        return str(post_id)

    def create_and_publish(
        self,
        account_id: str,
        access_token: str,
        text: Optional[str] = None,
        image_urls: Optional[List[str]] = None,
        video_url: Optional[str] = None,
    ) -> PublishResult:
        """Convenience: create container -> wait -> publish"""
        container = self.create_container(account_id, access_token, text, image_urls, video_url)
        self.wait_for_container(container["id"], access_token)
        post_id = self.publish_container(account_id, access_token, container["id"])

        threads_logger.info(
            "Published to Threads",
            account_id=account_id,
            post_id=post_id,
            media_type=container["media_type"],
        )
        return PublishResult(post_id=post_id, creation_id=container["id"], media_type=container["media_type"])


def get_threads_client() -> ThreadsClient:
    """FastAPI dependency returning a client built from settings"""
    return ThreadsClient()
