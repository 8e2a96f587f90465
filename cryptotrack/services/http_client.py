"""Shared async HTTP helper used for every outbound call the app makes."""

from __future__ import annotations

import asyncio
import concurrent.futures
import io
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
from PIL import Image

logger = logging.getLogger("cryptotrack.http")

DEFAULT_TIMEOUT_SECONDS = 30.0

_SENSITIVE_HEADER_MARKERS = ("authorization", "cookie", "api-key", "token")
_BODYLESS_STATUSES = frozenset({204, 205, 304})


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# ----------------------------
# error taxonomy
# ----------------------------
class APIError(Exception):
    message = "API error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class InvalidURLError(APIError):
    message = "Invalid URL"


class NoDataError(APIError):
    message = "No data received"


class InvalidResponseError(APIError):
    message = "Invalid response"


class UnauthorizedError(APIError):
    message = "Unauthorized"


class ForbiddenError(APIError):
    message = "Forbidden"


class NotFoundError(APIError):
    message = "Not Found"


class RequestTimeoutError(APIError):
    message = "Request timeout"


class NoInternetConnectionError(APIError):
    message = "No internet connection"


class NetworkError(APIError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class RequestEncodingError(APIError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Failed to encode parameters: {cause}")


class ServerError(APIError):
    def __init__(self, status_code: int, body: bytes | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Server error: {status_code}")


# ----------------------------
# response / result containers
# ----------------------------
@dataclass(frozen=True)
class APIResponse:
    data: bytes
    status_code: int
    headers: httpx.Headers

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.data)

    def raise_for_status(self) -> "APIResponse":
        """
        Opt-in status check. The client itself never inspects status codes,
        callers that want errors for non-2xx responses call this explicitly.
        """
        if self.ok:
            return self
        if self.status_code == 401:
            raise UnauthorizedError()
        if self.status_code == 403:
            raise ForbiddenError()
        if self.status_code == 404:
            raise NotFoundError()
        raise ServerError(self.status_code, self.data)


@dataclass(frozen=True)
class Result:
    response: Optional[APIResponse] = None
    error: Optional[APIError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> APIResponse:
        if self.error is not None:
            raise self.error
        if self.response is None:
            raise InvalidResponseError()
        return self.response


Completion = Callable[[Result], None]


# ----------------------------
# helpers
# ----------------------------
def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if any(marker in lowered for marker in _SENSITIVE_HEADER_MARKERS):
            out[key] = "[HIDDEN]"
        else:
            out[key] = value
    return out


def merge_headers(base: Mapping[str, str], overrides: Mapping[str, str] | None) -> Dict[str, str]:
    """Overlay `overrides` on `base`; keys match case-insensitively."""
    merged = dict(base)
    for key, value in (overrides or {}).items():
        for existing in [k for k in merged if k.lower() == key.lower()]:
            del merged[existing]
        merged[key] = value
    return merged


def coerce_method(method: "HTTPMethod | str") -> HTTPMethod:
    if isinstance(method, HTTPMethod):
        return method
    return HTTPMethod(str(method).upper())


def query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def encode_jpeg(image: Image.Image, compression_quality: float = 0.8) -> bytes:
    if image.mode not in ("RGB", "L", "CMYK"):
        image = image.convert("RGB")
    quality = max(1, min(95, round(compression_quality * 100)))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def _pretty_params(parameters: Mapping[str, Any]) -> str:
    try:
        return json.dumps(parameters, indent=2, sort_keys=True)
    except (TypeError, ValueError):
        return f"   {parameters!r}"


def _pretty_body(body: bytes) -> str:
    try:
        return json.dumps(json.loads(body), indent=2)
    except ValueError:
        return body.decode("utf-8", errors="replace")


# ----------------------------
# client
# ----------------------------
class HttpClient:
    """
    One instance per process, built at startup and handed to the services
    that need it. Requests never retry and never turn status codes into
    errors; only transport-level failures raise.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.timeout = timeout
        self.base_url = ""
        self.debug_logging = False
        self._default_headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)
        self._loop = loop

    @property
    def default_headers(self) -> Dict[str, str]:
        return dict(self._default_headers)

    def configure(
        self,
        base_url: str,
        default_headers: Mapping[str, str] | None = None,
        debug_logging: bool = True,
    ) -> None:
        self.base_url = base_url[:-1] if base_url.endswith("/") else base_url
        self.debug_logging = debug_logging
        self._default_headers = merge_headers(self._default_headers, default_headers)
        self._debug("configured base_url=%s", self.base_url)
        self._debug("default headers: %s", redact_headers(self._default_headers))

    def set_auth_token(self, token: str, scheme: str = "Bearer") -> None:
        self._default_headers = merge_headers(
            self._default_headers, {"Authorization": f"{scheme} {token}"}
        )
        self._debug("auth token set")

    def clear_auth_token(self) -> None:
        self._default_headers = {
            k: v for k, v in self._default_headers.items() if k.lower() != "authorization"
        }
        self._debug("auth token removed")

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def resolve_url(self, endpoint: str) -> httpx.URL:
        if endpoint.startswith(("http://", "https://")):
            raw = endpoint
        elif not endpoint or endpoint.startswith("/"):
            raw = self.base_url + endpoint
        else:
            raw = f"{self.base_url}/{endpoint}"

        try:
            url = httpx.URL(raw)
        except httpx.InvalidURL as exc:
            self._debug("invalid url: %s", raw)
            raise InvalidURLError(f"Invalid URL: {raw}") from exc

        if url.scheme not in ("http", "https") or not url.host:
            self._debug("invalid url: %s", raw)
            raise InvalidURLError(f"Invalid URL: {raw}")
        return url

    async def request(
        self,
        endpoint: str,
        method: HTTPMethod | str = HTTPMethod.GET,
        parameters: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> APIResponse:
        method = coerce_method(method)
        url = self.resolve_url(endpoint)
        all_headers = merge_headers(self._default_headers, headers)

        content: bytes | None = None
        if parameters is not None:
            if method is HTTPMethod.GET:
                url = url.copy_merge_params({k: query_value(v) for k, v in parameters.items()})
            else:
                try:
                    content = json.dumps(dict(parameters), allow_nan=False).encode("utf-8")
                except (TypeError, ValueError) as exc:
                    self._debug("failed to encode parameters: %s", exc)
                    raise RequestEncodingError(exc) from exc

        self._log_request(method.value, url, all_headers, parameters)
        http_request = self._client.build_request(
            method.value, url, headers=all_headers, content=content
        )
        return await self._send(http_request)

    def submit(
        self,
        endpoint: str,
        completion: Completion,
        *,
        method: HTTPMethod | str = HTTPMethod.GET,
        parameters: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> "concurrent.futures.Future[Result]":
        """
        Callback form of `request`, callable from any thread. The request and
        the `completion` call both run on the bound event loop.
        """
        method = coerce_method(method)
        target = loop or self._loop
        if target is None:
            try:
                target = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise RuntimeError("HttpClient has no bound event loop; call bind_loop() first") from exc

        call = self.request(endpoint, method=method, parameters=parameters, headers=headers)
        return asyncio.run_coroutine_threadsafe(self._deliver(call, completion), target)

    async def upload_data(
        self,
        endpoint: str,
        data: bytes,
        file_name: str,
        mime_type: str,
        parameters: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> APIResponse:
        url = self.resolve_url(endpoint)
        # the multipart encoder supplies Content-Type with its own boundary
        all_headers = {
            k: v
            for k, v in merge_headers(self._default_headers, headers).items()
            if k.lower() != "content-type"
        }
        fields = {key: query_value(value) for key, value in (parameters or {}).items()}

        self._log_request(HTTPMethod.POST.value, url, all_headers, parameters)
        http_request = self._client.build_request(
            HTTPMethod.POST.value,
            url,
            headers=all_headers,
            data=fields,
            files={"file": (file_name, data, mime_type)},
        )
        return await self._send(http_request)

    async def upload_image(
        self,
        endpoint: str,
        image: Image.Image,
        compression_quality: float = 0.8,
        file_name: str = "image.jpg",
        parameters: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> APIResponse:
        try:
            image_data = encode_jpeg(image, compression_quality)
        except (OSError, ValueError) as exc:
            raise NetworkError(ValueError("Failed to convert image to data")) from exc

        return await self.upload_data(
            endpoint,
            image_data,
            file_name,
            "image/jpeg",
            parameters=parameters,
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ----------------------------
    # internals
    # ----------------------------
    async def _deliver(self, call: Any, completion: Completion) -> Result:
        try:
            result = Result(response=await call)
        except APIError as exc:
            result = Result(error=exc)
        except Exception as exc:
            logger.exception("unexpected failure in submitted request")
            result = Result(error=NetworkError(exc))
        completion(result)
        return result

    async def _send(self, http_request: httpx.Request) -> APIResponse:
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._client.send(http_request), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            self._log_failure(exc, started)
            raise RequestTimeoutError() from exc
        except httpx.NetworkError as exc:
            self._log_failure(exc, started)
            raise NoInternetConnectionError() from exc
        except (httpx.HTTPError, OSError) as exc:
            self._log_failure(exc, started)
            raise NetworkError(exc) from exc

        self._debug("request completed in %.2f seconds", time.perf_counter() - started)
        return self._to_api_response(response)

    def _to_api_response(self, response: object) -> APIResponse:
        if not isinstance(response, httpx.Response):
            raise InvalidResponseError()

        self._log_response(response)
        data = response.content
        if not data and response.status_code not in _BODYLESS_STATUSES:
            raise NoDataError()
        return APIResponse(data=data, status_code=response.status_code, headers=response.headers)

    def _debug(self, msg: str, *args: Any) -> None:
        if self.debug_logging:
            logger.info(msg, *args)

    def _log_request(
        self,
        method: str,
        url: httpx.URL,
        headers: Mapping[str, str],
        parameters: Mapping[str, Any] | None,
    ) -> None:
        if not self.debug_logging:
            return

        lines = ["API REQUEST", f"URL: {url}", f"Method: {method}", "Headers:"]
        lines += [f"   {k}: {v}" for k, v in redact_headers(headers).items()]
        if parameters is None:
            lines.append("Parameters: None")
        else:
            lines += ["Parameters:", _pretty_params(parameters)]
        logger.info("\n".join(lines))

    def _log_response(self, response: httpx.Response) -> None:
        if not self.debug_logging:
            return

        lines = ["API RESPONSE", f"Status Code: {response.status_code}"]
        body = response.content
        if body:
            lines.append(f"Response Size: {len(body)} bytes")
            lines += ["Response Data:", _pretty_body(body)]
        else:
            lines.append("Response Data: None")
        logger.info("\n".join(lines))

    def _log_failure(self, exc: BaseException, started: float) -> None:
        if not self.debug_logging:
            return
        logger.info(
            "API RESPONSE\nError: %r\nDuration: %.2fs", exc, time.perf_counter() - started
        )
