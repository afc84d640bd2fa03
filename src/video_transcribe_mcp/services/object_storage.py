from __future__ import annotations

from dataclasses import dataclass

import httpx

from video_transcribe_mcp.errors import StorageError


@dataclass(slots=True)
class StoredObject:
    key: str
    url: str


class ObjectStorage:
    """Uploads blobs to a storage proxy that hands back a publicly reachable URL."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        key = key.lstrip("/")
        headers = {"authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        upload_url = f"{self.base_url}/v1/storage/upload"
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(
                    upload_url,
                    params={"path": key},
                    headers=headers,
                    files={"file": (key.rsplit("/", 1)[-1], data, content_type)},
                )
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage upload failed for {key}: {exc}") from exc

        if response.status_code >= 400:
            raise StorageError(f"Storage upload failed ({response.status_code}): {response.text[:400]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise StorageError(f"Storage upload returned a non-JSON response: {response.text[:200]}") from exc

        url = payload.get("url") if isinstance(payload, dict) else None
        if not url:
            raise StorageError("Storage upload response missing url")
        return StoredObject(key=key, url=str(url))
