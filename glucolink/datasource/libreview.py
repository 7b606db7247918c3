"""
LibreLinkUp API data source.

Three endpoints are used:
- POST /llu/auth/login                        -> data.authTicket.token
- GET  /llu/connections                       -> data[0].patientId
- GET  /llu/connections/{patientId}/graph     -> data.graphData[]

This module only speaks HTTP and translates responses; throttling, token
reuse and caching live in the service layer.
"""

from datetime import date, datetime
from typing import Any

import httpx
from dateutil import parser as date_parser
from loguru import logger

from glucolink.exceptions import (
    EmptyDatasetError,
    InvalidCredentialsError,
    MalformedResponseError,
    NetworkError,
    NoConnectionError,
    RateLimitError,
    RequestTimeoutError,
    ServiceError,
    ServiceUnavailableError,
    TokenExpiredError,
)
from glucolink.models import GlucoseUnit, Reading
from glucolink.utils import MGDL_PER_MMOL

RATE_LIMIT_STATUSES = (429, 430)

# Provider format first ("3/25/2025 10:47:08 PM"), then the ones seen in older payloads
TIMESTAMP_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
)

# 2001-09-09 in epoch ms; smaller numbers are not plausible sensor times
MIN_EPOCH_MS = 1_000_000_000_000


class LibreLinkUpClient:
    """
    Thin async client for the LibreLinkUp endpoints.

    Usage:
        async with LibreLinkUpClient() as client:
            token = await client.login("me@example.com", "secret")
            patient_id = await client.get_patient_id(token)
            payload = await client.get_graph(token, patient_id, start, end)
    """

    def __init__(
        self,
        base_url: str = "https://api.libreview.io",
        product: str = "llu.android",
        version: str = "4.7.0",
        login_timeout: float = 10.0,
        request_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Content-Type": "application/json",
            "Product": product,
            "Version": version,
            "Accept-Encoding": "gzip",
        }
        self._login_timeout = login_timeout
        self._request_timeout = request_timeout

        # HTTP client (lazy initialization)
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._request_timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def login(self, username: str, password: str) -> str:
        """
        Exchange credentials for a bearer token.

        Raises:
            InvalidCredentialsError: On HTTP 401
            RateLimitError: On HTTP 429/430
            MalformedResponseError: If the token field is absent
        """
        body = await self._execute_request(
            "POST",
            "/llu/auth/login",
            json_data={"email": username, "password": password},
            timeout=self._login_timeout,
        )
        token = _dig(body, "data", "authTicket", "token")
        if not isinstance(token, str) or not token:
            raise MalformedResponseError("Login response has no authTicket token")
        return token

    async def get_patient_id(self, token: str) -> str:
        """Resolve the first followed connection's patient id."""
        body = await self._execute_request("GET", "/llu/connections", token=token)
        connections = body.get("data")
        if not isinstance(connections, list):
            raise MalformedResponseError("Connections response has no data list")
        if not connections:
            raise NoConnectionError()

        patient_id = _dig(connections[0], "patientId")
        if not patient_id:
            raise MalformedResponseError("Connection entry has no patientId")
        return str(patient_id)

    async def get_graph(
        self,
        token: str,
        patient_id: str,
        start_date: date,
        end_date: date,
    ) -> list[Any]:
        """Fetch the raw graphData array for a date range."""
        body = await self._execute_request(
            "GET",
            f"/llu/connections/{patient_id}/graph",
            token=token,
            params={
                "period": "day",
                "startDate": start_date.strftime("%Y-%m-%d"),
                "endDate": end_date.strftime("%Y-%m-%d"),
            },
        )
        graph_data = _dig(body, "data", "graphData")
        if not isinstance(graph_data, list):
            logger.error("Unexpected graph response format")
            raise MalformedResponseError("Graph response has no graphData list")
        return graph_data

    async def _execute_request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Execute the actual HTTP request and map failures to service errors."""
        client = await self._get_http_client()
        headers = dict(self.headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        req_timeout = timeout or self._request_timeout

        try:
            response = await client.request(
                method=method,
                url=f"{self.base_url}{path}",
                params=params,
                headers=headers,
                json=json_data,
                timeout=req_timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(path, req_timeout) from e
        except httpx.RequestError as e:
            raise NetworkError(f"{path}: {e}") from e

        status = response.status_code
        if status == 401:
            if token is None:
                raise InvalidCredentialsError()
            raise TokenExpiredError(path)
        if status in RATE_LIMIT_STATUSES:
            raise RateLimitError(
                path,
                status_code=status,
                retry_after=_retry_after(response),
            )
        if status == 503:
            raise ServiceUnavailableError(
                "LibreView service is temporarily unavailable", status_code=status
            )
        if status != 200:
            raise ServiceError(
                f"HTTP {status} from {path}: {response.text[:200]}",
                status_code=status,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Invalid JSON from {path}") from e
        if not isinstance(body, dict):
            raise MalformedResponseError(f"Unexpected JSON document from {path}")
        return body

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "LibreLinkUpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a graphData timestamp.

    Accepts the provider's "M/D/YYYY h:mm:ss AM" format, a few plain formats,
    ISO-8601 and epoch milliseconds. Timezone-aware values are converted to
    local time and made naive so all readings compare consistently.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.replace(".", "", 1).isdigit():
        return _from_epoch_ms(float(text))

    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        dt = date_parser.isoparse(text)
    except ValueError:
        return None

    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _from_epoch_ms(value: float) -> datetime | None:
    if value < MIN_EPOCH_MS:
        return None
    try:
        return datetime.fromtimestamp(value / 1000.0)
    except (OverflowError, OSError, ValueError):
        return None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_reading(item: Any) -> Reading | None:
    """Build a Reading from one graphData element, or None if it is invalid."""
    if not isinstance(item, dict):
        return None

    timestamp = parse_timestamp(item.get("Timestamp"))
    if timestamp is None:
        return None

    mmol = _number(item.get("Value"))
    mgdl = _number(item.get("ValueInMgPerDl"))
    unit_code = item.get("GlucoseUnits")
    source_unit = GlucoseUnit.from_code(unit_code if isinstance(unit_code, int) else None)

    if mmol is None and mgdl is None:
        return None
    if mgdl is None:
        # Value is in the sensor's unit; ValueInMgPerDl is always mg/dL
        if source_unit == GlucoseUnit.MG_DL:
            mgdl, mmol = mmol, mmol / MGDL_PER_MMOL
        else:
            mgdl = mmol * MGDL_PER_MMOL
    elif mmol is None or source_unit == GlucoseUnit.MG_DL:
        mmol = mgdl / MGDL_PER_MMOL

    return Reading(
        timestamp=timestamp,
        value_mg_per_dl=mgdl,
        value_mmol=round(mmol, 2),
        source_unit=source_unit,
    )


def parse_graph_data(items: list[Any]) -> list[Reading]:
    """
    Validate a graphData array.

    Invalid elements are dropped; the rest are returned in chronological order.

    Raises:
        EmptyDatasetError: If nothing valid remains
    """
    readings = [r for r in (parse_reading(item) for item in items) if r is not None]
    dropped = len(items) - len(readings)
    if dropped:
        logger.warning(f"Dropped {dropped} of {len(items)} invalid glucose readings")
    if not readings:
        raise EmptyDatasetError(received=len(items))

    readings.sort(key=lambda r: r.timestamp)
    return readings
