import hashlib
import httpx
import logging
import os
import time

from admin_sync.core.logging import _redact


LOG_SAMPLE_RATE = float(os.getenv("LOG_SAMPLE_RATE", "1.0"))
LOG_BODY_MAX = int(os.getenv("LOG_BODY_MAX", "2000"))


class BaseApiClient:
    """
    Thin httpx wrapper that logs every request and response.

    Exactly one attempt per call: retries belong to the outbox, which
    reschedules failed deliveries with its own backoff.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._logger = logging.getLogger("http")

    def _maybe_hash(self, body: str) -> str:
        return hashlib.sha256(body.encode("utf-8", "ignore")).hexdigest()[:16]

    def _body_preview(self, body_text: str) -> tuple[str, str]:
        body_hash = self._maybe_hash(body_text)
        sample_rate = float(os.getenv("LOG_SAMPLE_RATE", str(LOG_SAMPLE_RATE)))
        if sample_rate >= 1.0:
            return body_text[:LOG_BODY_MAX], body_hash
        return f"[sampled hash:{body_hash}]", body_hash

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Single HTTP call with structured logging; non-2xx is returned, not raised."""
        t0 = time.perf_counter()
        req_body = kwargs.get("content") or kwargs.get("data") or (kwargs.get("json") is not None and str(kwargs["json"])) or ""
        headers = _redact(dict(kwargs.get("headers") or {}))

        self._logger.debug("HTTP %s %s", method, url,
                           extra={"extra": {"method": method, "url": url, "headers": headers,
                                            "body_preview": str(req_body)[:LOG_BODY_MAX]}})
        try:
            response: httpx.Response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            dt = round((time.perf_counter() - t0) * 1000)
            self._logger.error("HTTP FAIL %s %s: %s", method, url, repr(e),
                               extra={"extra": {"method": method, "url": url, "elapsed_ms": dt}}, exc_info=True)
            raise

        dt = round((time.perf_counter() - t0) * 1000)
        body_preview, body_hash = self._body_preview(response.text or "")
        self._logger.info("HTTP %s %s -> %d in %dms", method, url, response.status_code, dt,
                          extra={"extra": {"method": method, "url": url, "status_code": response.status_code,
                                           "elapsed_ms": dt, "response_preview": body_preview,
                                           "response_hash": body_hash}})
        return response

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
