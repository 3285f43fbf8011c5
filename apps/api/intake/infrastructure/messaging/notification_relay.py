import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

NOTIFY_RELAY_URL = os.environ.get("NOTIFY_RELAY_URL", "")
NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", "5"))


def started_message(filename: str) -> str:
    return (
        f"Processing your document: {filename}\n"
        "Starting extraction... This may take 1-2 minutes."
    )


def progress_message(filename: str, elapsed_seconds: int) -> str:
    return (
        f"Still processing your document...\n\nFile: {filename}\n"
        f"Processing time: {elapsed_seconds} seconds"
    )


def completed_message(filename: str) -> str:
    return (
        f"Document processing completed!\n\nFile: {filename}\n"
        "The extracted data has been saved."
    )


def failed_message(filename: str, error: Optional[str]) -> str:
    detail = error or "Extraction encountered an error."
    return (
        f"Document processing failed\n\nFile: {filename}\n{detail}\n\n"
        "Please try uploading the file again or contact support."
    )


def untracked_message(filename: str) -> str:
    return (
        f"Your document was submitted for processing: {filename}\n\n"
        "We cannot follow its progress; results will appear once extraction finishes."
    )


def tracking_lost_message(filename: str) -> str:
    return (
        f"We lost track of your document: {filename}\n\n"
        "Processing may still be running in the background."
    )


class NotificationRelay:
    """Fire-and-forget messages to an external relay. Never raises."""

    def __init__(
        self,
        relay_url: str = NOTIFY_RELAY_URL,
        timeout: float = NOTIFY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.relay_url = relay_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.relay_url)

    async def send(self, address: Optional[str], message: str) -> bool:
        if not address or not self.enabled:
            return False
        try:
            resp = await self._client.post(
                self.relay_url, json={"address": address, "message": message}
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification to %s failed: %s", address, exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
