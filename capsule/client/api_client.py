# FILE: capsule/client/api_client.py
"""
Async HTTP client for the Memory Capsule API

Uploads images through upload grants, then creates, reads, updates and
deletes memories, keeping the device's ownership ledger in step.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from capsule.client.ledger import OwnershipLedger
from capsule.models.memory import MemoryCreateRequest, MemoryUpdateRequest

logger = logging.getLogger(__name__)


class CapsuleClientError(Exception):
    """API call failed; status_code is 0 for network failures"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class CapsuleClient:
    """Client for one API deployment and one device ledger"""

    def __init__(
        self,
        base_url: str,
        ledger: Optional[OwnershipLedger] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.ledger = ledger or OwnershipLedger()
        self._http = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, url: str, context: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Network request failed while {context}: {e}")
            raise CapsuleClientError(0, f"Network request failed while {context}: {e}") from e

    @staticmethod
    def _raise_for_error(response: httpx.Response, context: str):
        if response.status_code < 400:
            return
        try:
            body = response.json()
            message = body.get("detail") or body.get("error")
        except ValueError:
            message = None
        if not isinstance(message, str) or not message:
            message = f"Server responded with status {response.status_code}"
        raise CapsuleClientError(response.status_code, f"Failed {context}: {message}")

    async def upload_image(self, filename: str, content_type: str, data: bytes) -> str:
        """Request a grant, PUT the bytes to storage, return the public URL"""
        response = await self._request(
            "POST", "/api/upload-url", f"requesting upload URL for {filename}",
            json={"filename": filename, "contentType": content_type},
        )
        self._raise_for_error(response, f"requesting upload URL for {filename}")
        grant = response.json()

        upload = await self._request(
            "PUT", grant["uploadUrl"], f"uploading {filename}",
            content=data, headers={"Content-Type": content_type},
        )
        if upload.status_code >= 400:
            raise CapsuleClientError(
                upload.status_code,
                f"Direct upload for {filename} failed with status {upload.status_code}"
            )
        return grant["publicUrl"]

    async def upload_images(self, files: Sequence[Tuple[str, str, bytes]]) -> List[str]:
        """Upload (filename, content_type, data) triples concurrently; any failure fails all"""
        if not files:
            return []
        return list(await asyncio.gather(*(self.upload_image(*f) for f in files)))

    async def create_memory(
        self,
        title: str,
        short_message: str = "",
        story: str = "",
        gallery_images: Sequence[str] = (),
        avatar_image: Optional[str] = None,
        cover_image: Optional[str] = None
    ) -> str:
        """Create a memory and record ownership; returns the code"""
        payload = MemoryCreateRequest(
            title=title,
            short_message=short_message,
            story=story,
            gallery_images=list(gallery_images),
            avatar_image=avatar_image,
            cover_image=cover_image,
        ).model_dump(by_alias=True, exclude_none=True)

        response = await self._request("POST", "/api/memory", "creating memory", json=payload)
        self._raise_for_error(response, "creating memory")
        created = response.json()

        self.ledger.record_owned(created["code"], created["secretKey"])
        logger.info(f"Created memory {created['code']}")
        return created["code"]

    async def get_memory(self, code: str) -> Optional[Dict[str, Any]]:
        """Fetch a memory and record the visit; None if it does not exist"""
        response = await self._request("GET", f"/api/memory/{code}", f"getting memory '{code}'")
        if response.status_code == 404:
            return None
        self._raise_for_error(response, f"getting memory '{code}'")
        self.ledger.record_visited(code)
        return response.json()

    async def code_exists(self, code: str) -> bool:
        response = await self._request("GET", f"/api/memory/check/{code}", f"checking code '{code}'")
        self._raise_for_error(response, f"checking code '{code}'")
        return response.json().get("exists") is True

    async def list_summaries(self, codes: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Summaries for the given codes (default: every code in the ledger), newest first"""
        codes = list(codes) if codes is not None else self.ledger.all_codes()
        if not codes:
            return []

        response = await self._request("POST", "/api/memories/list", "getting memory list", json={"codes": codes})
        self._raise_for_error(response, "getting memory list")
        return sorted(response.json(), key=lambda s: s.get("createdAt", ""), reverse=True)

    def _secret_key(self, code: str) -> str:
        secret_key = self.ledger.secret_key_for(code)
        if not secret_key:
            raise CapsuleClientError(403, f"This device does not own memory '{code}'")
        return secret_key

    async def update_memory(self, code: str, **fields: Any) -> Dict[str, Any]:
        """
        Update an owned memory. Keyword names follow the model fields
        (title, short_message, story, gallery_images, avatar_image, cover_image);
        passing avatar_image=None or cover_image=None removes that image.
        """
        payload = MemoryUpdateRequest(**fields).model_dump(by_alias=True, exclude_unset=True)
        response = await self._request(
            "PUT", f"/api/memory/{code}", f"updating memory '{code}'",
            json=payload, headers={"X-Edit-Key": self._secret_key(code)},
        )
        self._raise_for_error(response, f"updating memory '{code}'")
        return response.json()

    async def delete_memory(self, code: str):
        """Delete an owned memory and forget it locally"""
        response = await self._request(
            "DELETE", f"/api/memory/{code}", f"deleting memory '{code}'",
            headers={"X-Edit-Key": self._secret_key(code)},
        )
        self._raise_for_error(response, f"deleting memory '{code}'")
        self.ledger.forget(code)
        logger.info(f"Deleted memory {code}")
