"""HTTP client for the AutoConnect API (sessions and vehicle data).

Features:
* Exponential-backoff retry for session calls (configurable attempts).
* Single-attempt sample uploads -- the emitter retries on its next tick.
* Best effort: failures are logged and returned as ``None``/``False``.
* ``dry_run`` mode: validate and log payloads, never touch the network.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from autoconnect_agent.config import AgentSettings
from autoconnect_agent.schemas import (
    ApiEnvelope,
    CreateSessionRequest,
    CreateVehicleDataRequest,
    IgnitionStatus,
)

logger = structlog.get_logger(__name__)

_SESSIONS_PATH = "/api/vehiclesessions"
_VEHICLE_DATA_PATH = "/api/vehicledata"


class TelemetryAPIClient:
    """Talks to the external persistence API on behalf of both engines."""

    def __init__(
        self,
        settings: AgentSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = settings.api_base_url.rstrip("/")
        self._timeout = settings.api_timeout_seconds
        self._max_retries = max(settings.max_retry_attempts, 1)
        self._dry_run = settings.dry_run
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if not self._dry_run and self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- public API ---------------------------------------------------------

    async def create_session(
        self,
        client_id: str,
        adapter_type: str,
        protocol_name: str,
        *,
        vin: Optional[str] = None,
    ) -> Optional[str]:
        """Open a vehicle session; returns its id or ``None``."""
        request = CreateSessionRequest(
            client_id=client_id,
            vin=vin,
            obd_adapter_type=adapter_type,
            obd_protocol=protocol_name,
        )
        if self._dry_run:
            session_id = str(uuid.uuid4())
            self._log_dry_run("create_session", request, session_id=session_id)
            return session_id

        envelope = await self._post(_SESSIONS_PATH, request, attempts=self._max_retries)
        if envelope is None or not envelope.success:
            logger.warning(
                "session_create_failed",
                error=envelope.error if envelope else "request failed",
            )
            return None
        session_id = _extract_id(envelope)
        if session_id is None:
            logger.warning("session_create_missing_id", data=envelope.data)
            return None
        logger.info("session_created", session_id=session_id, client_id=client_id)
        return session_id

    async def create_sample(
        self,
        session_id: str,
        voltage: Optional[float],
        ignition_state: IgnitionStatus,
        engine_speed: Optional[int],
        raw_debug: str,
    ) -> bool:
        """Upload one vehicle sample; returns ``True`` on success."""
        ignition_on = ignition_state is not IgnitionStatus.OFF
        request = CreateVehicleDataRequest(
            vehicle_session_id=session_id,
            battery_voltage=voltage,
            kl15_voltage=voltage if ignition_on else None,
            kl30_voltage=voltage,
            ignition_status=ignition_state,
            engine_rpm=engine_speed,
            raw_obd_data=raw_debug,
        )
        if self._dry_run:
            self._log_dry_run("create_sample", request)
            return True

        envelope = await self._post(_VEHICLE_DATA_PATH, request, attempts=1)
        if envelope is None or not envelope.success:
            logger.debug(
                "sample_upload_failed",
                session_id=session_id,
                error=envelope.error if envelope else "request failed",
            )
            return False
        logger.debug("sample_uploaded", session_id=session_id)
        return True

    async def end_session(self, session_id: str) -> bool:
        """Close a vehicle session; returns ``True`` on success."""
        if self._dry_run:
            logger.info("dry_run_end_session", session_id=session_id)
            return True

        envelope = await self._post(
            f"{_SESSIONS_PATH}/{session_id}/end", None, attempts=self._max_retries
        )
        if envelope is None or not envelope.success:
            logger.warning("session_end_failed", session_id=session_id)
            return False
        logger.info("session_ended", session_id=session_id)
        return True

    # -- internal -----------------------------------------------------------

    def _log_dry_run(self, operation: str, request: BaseModel, **extra: object) -> None:
        payload = request.model_dump_json(by_alias=True)
        logger.info(
            f"dry_run_{operation}",
            payload_bytes=len(payload),
            **extra,
        )

    async def _post(
        self,
        path: str,
        request: Optional[BaseModel],
        *,
        attempts: int,
    ) -> Optional[ApiEnvelope]:
        """POST *request* with exponential backoff.

        Returns the decoded envelope, or ``None`` after a non-retryable
        client error or once *attempts* retryable failures are spent.
        """
        url = f"{self._base_url}{path}"
        content = request.model_dump_json(by_alias=True) if request else "{}"

        for attempt in range(1, attempts + 1):
            try:
                if self._client is None:
                    raise RuntimeError(
                        "TelemetryAPIClient.start() must be called before sending"
                    )
                response = await self._client.post(
                    url,
                    content=content,
                    headers={"Content-Type": "application/json"},
                )

                if 400 <= response.status_code < 500:
                    # Client error -- retrying won't help.
                    logger.error(
                        "client_error",
                        status=response.status_code,
                        url=url,
                        body=response.text[:500],
                    )
                    return _parse_envelope(response)

                response.raise_for_status()
                return _parse_envelope(response)

            except httpx.HTTPStatusError as exc:
                wait = 2 ** (attempt - 1)
                logger.warning(
                    "post_server_error",
                    attempt=attempt,
                    max_retries=attempts,
                    status=exc.response.status_code,
                    url=url,
                    retry_in=wait if attempt < attempts else None,
                )
                if attempt < attempts:
                    await asyncio.sleep(wait)

            except httpx.RequestError as exc:
                wait = 2 ** (attempt - 1)
                logger.warning(
                    "post_network_error",
                    attempt=attempt,
                    max_retries=attempts,
                    error=str(exc),
                    url=url,
                    retry_in=wait if attempt < attempts else None,
                )
                if attempt < attempts:
                    await asyncio.sleep(wait)

        return None


def _parse_envelope(response: httpx.Response) -> ApiEnvelope:
    if not response.content:
        return ApiEnvelope(success=response.is_success)
    try:
        return ApiEnvelope.model_validate_json(response.content)
    except ValidationError:
        success = response.is_success
        return ApiEnvelope(
            success=success,
            error=None if success else f"HTTP {response.status_code}",
        )


def _extract_id(envelope: ApiEnvelope) -> Optional[str]:
    data = envelope.data
    if isinstance(data, dict):
        value = data.get("id") or data.get("Id")
        return str(value) if value else None
    return None
