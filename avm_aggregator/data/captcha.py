"""
Client for a 2Captcha-compatible solving service.

Submit the reCAPTCHA site key and page URL, then poll for a token on a
fixed interval for a bounded number of attempts. The loop always ends with
an explicit result; a solve that never comes back is `timed_out`, never a hang.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)

NOT_READY = "CAPCHA_NOT_READY"  # sic, the service's spelling

class SolveStatus(str, Enum):
    SOLVED = "solved"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

@dataclass
class CaptchaResult:
    status: SolveStatus
    token: Optional[str] = None
    detail: Optional[str] = None
    attempts: int = 0

    @property
    def solved(self) -> bool:
        return self.status is SolveStatus.SOLVED

def _json_object(r: httpx.Response) -> dict:
    body = r.json()
    if not isinstance(body, dict):
        raise ValueError(f"solver response is not a JSON object: {body!r:.80}")
    return body

class CaptchaSolver:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://2captcha.com",
        poll_interval: float = 5.0,
        max_attempts: int = 24,
        request_timeout: float = 15.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_attempts = max(1, max_attempts)
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._transport = transport

    async def solve(self, site_key: str, page_url: str) -> CaptchaResult:
        if not self.api_key:
            return CaptchaResult(SolveStatus.FAILED, detail="CAPTCHA API key not configured")

        try:
            async with httpx.AsyncClient(timeout=self.request_timeout, transport=self._transport) as client:
                r = await client.get(f"{self.base_url}/in.php", params={
                    "key": self.api_key,
                    "method": "userrecaptcha",
                    "googlekey": site_key,
                    "pageurl": page_url,
                    "json": 1,
                })
                r.raise_for_status()
                submitted = _json_object(r)
                if submitted.get("status") != 1:
                    return CaptchaResult(SolveStatus.FAILED, detail=f"submit rejected: {submitted.get('request')}")

                task_id = submitted["request"]
                logger.info("captcha submitted id=%s", task_id)
                return await self._poll(client, task_id)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning("captcha service error: %s", exc)
            return CaptchaResult(SolveStatus.FAILED, detail=f"solver error: {exc.__class__.__name__}")

    async def _poll(self, client: httpx.AsyncClient, task_id: str) -> CaptchaResult:
        for attempt in range(1, self.max_attempts + 1):
            await self._sleep(self.poll_interval)
            r = await client.get(f"{self.base_url}/res.php", params={
                "key": self.api_key, "action": "get", "id": task_id, "json": 1,
            })
            r.raise_for_status()
            body = _json_object(r)
            if body.get("status") == 1:
                logger.info("captcha solved after %d polls", attempt)
                return CaptchaResult(SolveStatus.SOLVED, token=body.get("request"), attempts=attempt)
            if body.get("request") != NOT_READY:
                return CaptchaResult(SolveStatus.FAILED, detail=str(body.get("request")), attempts=attempt)

        logger.warning("captcha solve timed out after %d polls", self.max_attempts)
        return CaptchaResult(
            SolveStatus.TIMED_OUT,
            detail=f"no solution after {self.max_attempts} polls",
            attempts=self.max_attempts,
        )

def captcha_solver() -> CaptchaSolver:
    return CaptchaSolver(
        settings.CAPTCHA_API_KEY,
        settings.CAPTCHA_BASE_URL,
        poll_interval=settings.CAPTCHA_POLL_INTERVAL_SECONDS,
        max_attempts=settings.CAPTCHA_MAX_ATTEMPTS,
    )
