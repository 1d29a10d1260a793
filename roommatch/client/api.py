"""Cliente REST de la mensajería (colaborador de NotificationCenter)."""
from typing import Any, Dict, List, Optional

import httpx


class MessagingAPI:

    def __init__(self, client: httpx.AsyncClient, token: Optional[str] = None):
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self._client.request(method, url, headers=self._headers, **kwargs)
        response.raise_for_status()
        if response.status_code == 204:
            return None
        return response.json()

    async def list_conversations(self, show_hidden: bool = False) -> List[Dict[str, Any]]:
        return await self._request("GET", "/conversations", params={"show_hidden": str(show_hidden).lower()})

    async def start_conversation(self, participants: List[str], is_group: bool = False, name: Optional[str] = None) -> Dict[str, Any]:
        payload = {"participants": participants, "is_group": is_group, "name": name}
        return await self._request("POST", "/conversations", json=payload)

    async def get_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/conversations/{conversation_id}/messages")

    async def send_message(self, conversation_id: str, content: str) -> Dict[str, Any]:
        return await self._request("POST", f"/conversations/{conversation_id}/messages", json={"content": content})

    async def mark_read(self, conversation_id: str) -> int:
        result = await self._request("POST", f"/conversations/{conversation_id}/mark-read")
        return result["updated_count"]

    async def get_unread_summary(self) -> Dict[str, Any]:
        return await self._request("GET", "/messages/unread")
