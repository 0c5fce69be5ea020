"""Client for the external case-record service.

Business failures (4xx, ``success: false``) are returned as None/False.
Server errors, network errors and timeouts raise CaseServiceError so the
action engine can record them against the action that failed.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)


class CaseServiceError(Exception):
    """The case service could not be reached or failed server-side."""


@dataclass(frozen=True)
class CaseReference:
    case_id: str
    case_number: Optional[str] = None


class CaseRecordClient:
    """Async client for the case-record REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._session = session
        self._owns_session = session is None

        logger.info(
            "CASE_CLIENT_INITIALIZED",
            extra={"base_url": self.base_url, "timeout_seconds": timeout_seconds}
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(
                method,
                url,
                headers=self.headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                status = response.status
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {}
        except asyncio.TimeoutError as e:
            logger.error("CASE_API_TIMEOUT", extra={"method": method, "path": path})
            raise CaseServiceError(f"{method} {path} timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            logger.error("CASE_API_UNREACHABLE", extra={"method": method, "path": path, "error": str(e)})
            raise CaseServiceError(f"{method} {path} failed: {e}") from e

        if status >= 500:
            logger.error("CASE_API_SERVER_ERROR", extra={"method": method, "path": path, "status": status})
            raise CaseServiceError(f"{method} {path} returned {status}")

        return status, body if isinstance(body, dict) else {}

    async def create_case(self, payload: Dict[str, Any]) -> Optional[CaseReference]:
        """POST /cases.

        Returns:
            CaseReference, or None if the case service declined the case

        Raises:
            CaseServiceError: On server, network or timeout failure
        """
        status, body = await self._request("POST", "/cases", payload)
        if status >= 400 or not body.get("success"):
            logger.warning(
                "CASE_CREATE_DECLINED",
                extra={"status": status, "reason": body.get("message")}
            )
            return None

        data = body.get("data") or {}
        case_id = data.get("_id") or data.get("id")
        if not case_id:
            logger.warning("CASE_CREATE_NO_ID", extra={"status": status})
            return None

        reference = CaseReference(case_id=str(case_id), case_number=data.get("caseNumber"))
        logger.info(
            "CASE_CREATED",
            extra={"case_id": reference.case_id, "case_number": reference.case_number}
        )
        return reference

    async def update_case(self, case_id: str, payload: Dict[str, Any]) -> bool:
        """PUT /cases/{case_id}. Returns False if the update was declined."""
        status, body = await self._request("PUT", f"/cases/{case_id}", payload)
        if status >= 400 or not body.get("success"):
            logger.warning(
                "CASE_UPDATE_DECLINED",
                extra={"case_id": case_id, "status": status, "reason": body.get("message")}
            )
            return False
        logger.info("CASE_UPDATED", extra={"case_id": case_id})
        return True

    async def get_case(self, case_id: str) -> Optional[Dict[str, Any]]:
        status, body = await self._request("GET", f"/cases/{case_id}")
        if status >= 400 or not body.get("success"):
            return None
        return body.get("data")

    async def health_check(self) -> Dict[str, Any]:
        try:
            status, _ = await self._request("GET", "/health")
        except CaseServiceError as e:
            return {"healthy": False, "details": {"api_url": self.base_url, "error": str(e)}}
        return {"healthy": status == 200, "details": {"api_url": self.base_url, "status": status}}

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
