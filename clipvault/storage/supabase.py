"""
clipvault.storage.supabase - Supabase Storage backend.

Talks to the Storage REST API directly:
- upload:   POST   /storage/v1/object/<bucket>/<key>
- download: GET    /storage/v1/object/<bucket>/<key>
- delete:   DELETE /storage/v1/object/<bucket>  {"prefixes": [<key>]}
- sign:     POST   /storage/v1/object/sign/<bucket>/<key>  {"expiresIn": <s>}

Authenticated with the project's service key.
"""

from __future__ import annotations

from urllib.parse import quote

import httpx

from clipvault.exceptions import StorageError


class SupabaseStorage:
    """Stores artifacts in a Supabase Storage bucket.

    A client passed in stays owned by the caller; close() only closes a
    client this instance created.
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str = "videos",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.bucket = bucket
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, key: str | None = None, action: str | None = None) -> str:
        base = f"{self.url}/storage/v1/object"
        if action:
            base = f"{base}/{action}"
        base = f"{base}/{quote(self.bucket)}"
        if key is None:
            return base
        return f"{base}/{quote(key.lstrip('/'))}"

    def _send(self, operation: str, key: str, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(f"{operation} of {key} failed: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"{operation} of {key} failed: HTTP {response.status_code} {response.text}"
            )
        return response

    def upload(self, key: str, data: bytes, content_type: str = "video/mp4") -> None:
        self._send(
            "Upload",
            key,
            "POST",
            self._object_url(key),
            content=data,
            headers={"Content-Type": content_type},
        )

    def download(self, key: str) -> bytes:
        return self._send("Download", key, "GET", self._object_url(key)).content

    def delete(self, key: str) -> None:
        # Removing a missing object answers 200 with an empty list.
        self._send("Delete", key, "DELETE", self._object_url(), json={"prefixes": [key]})

    def url_for(self, key: str, expires_in: int) -> str:
        """Signed link to ``key``, so the private bucket needs no credentials."""
        response = self._send(
            "Signing",
            key,
            "POST",
            self._object_url(key, action="sign"),
            json={"expiresIn": expires_in},
        )
        try:
            signed = response.json()["signedURL"]
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(
                f"Signing of {key} failed: unexpected response {response.text}"
            ) from e

        if signed.startswith("/storage/v1/"):
            return f"{self.url}{signed}"
        return f"{self.url}/storage/v1{signed}"

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
