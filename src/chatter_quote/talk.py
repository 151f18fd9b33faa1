"""Nextcloud Talk API client."""

import logging

import httpx

from .config import Config

logger = logging.getLogger("chatter_quote.talk")

OCS_HEADERS = {
    "OCS-APIRequest": "true",
    "Content-Type": "application/json",
    "Accept": "application/json",
}


class TalkClient:
    """Client for the Nextcloud Talk user chat API."""

    def __init__(self, config: Config, timeout: float = 30.0):
        self.config = config
        self.base_url = config.nextcloud.url.rstrip("/")
        self.auth = (config.nextcloud.username, config.nextcloud.app_password)
        self.timeout = timeout

    async def send_message(
        self,
        conversation_token: str,
        message: str,
        reference_id: str | None = None,
    ) -> dict:
        """Send a message to a Talk conversation. Raises httpx errors on failure."""
        url = f"{self.base_url}/ocs/v2.php/apps/spreed/api/v1/chat/{conversation_token}"

        data = {"message": message}
        if reference_id:
            data["referenceId"] = reference_id

        logger.debug("Sending message to %s (%d chars)", conversation_token, len(message))
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                url,
                auth=self.auth,
                headers=OCS_HEADERS,
                json=data,
            )
            response.raise_for_status()
            return response.json()

    async def list_conversations(self) -> list[dict]:
        """List all conversations the bot user is part of."""
        url = f"{self.base_url}/ocs/v2.php/apps/spreed/api/v4/room"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                url,
                auth=self.auth,
                headers={"OCS-APIRequest": "true", "Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json().get("ocs", {}).get("data", [])
