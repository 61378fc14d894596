import hashlib
import math
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from otakuproxy.config.settings import settings
from otakuproxy.converters.base import BaseConverter, ConversionResult
from otakuproxy.utils.errors import NetworkError, UpstreamError
from otakuproxy.utils.http_client import http_client
from otakuproxy.utils.logger import convert_logger
from otakuproxy.utils.validators import validate_resource_url

# ===========================
# Constants
# ===========================
SEQUENCE_COUNTER = 0
REJECTION_HINT = "Signature or session rejected, check FASTDL_SALT, FASTDL_OFFSET_MS and FASTDL_COOKIE"


# ===========================
# Data Models
# ===========================
class ServerClockSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    fetched_at_local_ms: int
    reported_server_ms: int


class ConversionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_url: str
    client_timestamp_ms: int
    server_timestamp_ms: int
    sequence_counter: int
    signature: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "url": self.resource_url,
            "ts": self.client_timestamp_ms,
            "_ts": self.server_timestamp_ms,
            "_tsc": self.sequence_counter,
            "_s": self.signature,
        }


def current_local_ms() -> int:
    return time.time_ns() // 1_000_000


# ===========================
# Signature Helpers
# ===========================
def canonical_string(resource_url: str, client_timestamp_ms: int, server_timestamp_ms: int,
                     sequence_counter: int, salt: str) -> str:
    return f"{resource_url}|{int(client_timestamp_ms)}|{int(server_timestamp_ms)}|{int(sequence_counter)}|{salt}"


def make_signature(resource_url: str, client_timestamp_ms: int, server_timestamp_ms: int,
                   sequence_counter: int, salt: str) -> str:
    canonical = canonical_string(resource_url, client_timestamp_ms, server_timestamp_ms, sequence_counter, salt)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_signature(request: ConversionRequest, salt: str) -> bool:
    expected = make_signature(
        request.resource_url,
        request.client_timestamp_ms,
        request.server_timestamp_ms,
        request.sequence_counter,
        salt
    )
    return expected == request.signature


# ===========================
# Clock Synchronizer
# ===========================
async def fetch_server_time_ms() -> int:
    url = f"{settings.FASTDL_URL}/msec"

    try:
        response = await http_client.get(url, timeout=settings.FASTDL_TIMEOUT)
    except httpx.TimeoutException as e:
        convert_logger.error(f"Clock timeout: {type(e).__name__}")
        raise NetworkError("Clock endpoint timed out") from e
    except httpx.HTTPError as e:
        convert_logger.error(f"Clock unreachable: {type(e).__name__}")
        raise NetworkError(f"Clock endpoint unreachable: {type(e).__name__}") from e

    if not response.is_success:
        convert_logger.error(f"Clock HTTP {response.status_code}")
        raise UpstreamError(f"Clock endpoint returned HTTP {response.status_code}",
                            response.status_code, response.text)

    try:
        msec = response.json()["msec"]
        if isinstance(msec, bool) or not isinstance(msec, (int, float)):
            raise TypeError("msec is not a number")
    except (ValueError, KeyError, TypeError) as e:
        convert_logger.error(f"Invalid clock body: {type(e).__name__}")
        raise UpstreamError("Clock endpoint returned an invalid body", response.status_code, response.text) from e

    # Truncate like the provider does; rounding yields a signature 1 ms off.
    return math.floor(msec * 1000)


async def fetch_clock_sample() -> ServerClockSample:
    reported = await fetch_server_time_ms()
    sample = ServerClockSample(fetched_at_local_ms=current_local_ms(), reported_server_ms=reported)
    convert_logger.debug(f"Clock sample: server={sample.reported_server_ms} local={sample.fetched_at_local_ms}")
    return sample


# ===========================
# Signed Request Builder
# ===========================
def build_payload(resource_url: str, clock_sample: ServerClockSample, now: Optional[int] = None,
                  offset_ms: Optional[int] = None, salt: Optional[str] = None,
                  sequence_counter: int = SEQUENCE_COUNTER) -> ConversionRequest:
    resource_url = validate_resource_url(resource_url, settings.CONVERT_ALLOWED_HOSTS)
    if offset_ms is None:
        offset_ms = settings.FASTDL_OFFSET_MS
    if salt is None:
        salt = settings.FASTDL_SALT

    client_timestamp_ms = current_local_ms() if now is None else int(now)
    server_timestamp_ms = clock_sample.reported_server_ms - offset_ms

    return ConversionRequest(
        resource_url=resource_url,
        client_timestamp_ms=client_timestamp_ms,
        server_timestamp_ms=server_timestamp_ms,
        sequence_counter=sequence_counter,
        signature=make_signature(resource_url, client_timestamp_ms, server_timestamp_ms, sequence_counter, salt)
    )


# ===========================
# Request Dispatcher
# ===========================
async def submit(request: ConversionRequest) -> ConversionResult:
    headers = dict(settings.FASTDL_HEADERS)
    headers["Content-Type"] = "application/json"

    try:
        response = await http_client.post(
            f"{settings.FASTDL_URL}/api/convert",
            json=request.to_payload(),
            headers=headers,
            timeout=settings.FASTDL_TIMEOUT
        )
    except httpx.TimeoutException as e:
        convert_logger.error(f"Convert timeout: {type(e).__name__}")
        raise NetworkError("Conversion endpoint timed out") from e
    except httpx.HTTPError as e:
        convert_logger.error(f"Convert unreachable: {type(e).__name__}")
        raise NetworkError(f"Conversion endpoint unreachable: {type(e).__name__}") from e

    if not response.is_success:
        body = _response_body(response)
        if 400 <= response.status_code < 500:
            convert_logger.error(f"HTTP {response.status_code} - {REJECTION_HINT}")
        else:
            convert_logger.error(f"HTTP {response.status_code}")
        raise UpstreamError(f"Conversion endpoint returned HTTP {response.status_code}",
                            response.status_code, body)

    try:
        return response.json()
    except ValueError as e:
        convert_logger.error("Convert response is not JSON")
        raise UpstreamError("Conversion endpoint returned a non-JSON body", response.status_code, response.text) from e


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# ===========================
# Direct Signature Converter
# ===========================
class DirectSignatureConverter(BaseConverter):
    def get_strategy_name(self) -> str:
        return "direct"

    async def convert(self, resource_url: str) -> ConversionResult:
        clock_sample = await fetch_clock_sample()
        request = build_payload(resource_url, clock_sample)
        convert_logger.debug(f"Signed payload: ts={request.client_timestamp_ms} _ts={request.server_timestamp_ms}")
        return await submit(request)
