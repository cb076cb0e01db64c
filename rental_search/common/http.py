from __future__ import annotations

import json
import socket
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from rental_search.common.errors import TransportError, TransportTimeoutError, TransportUnavailableError


class JsonHttpTransport:
    def __init__(self, *, timeout_s: float = 10.0, headers: Optional[Dict[str, str]] = None) -> None:
        self._timeout_s = timeout_s
        self._headers = dict(headers or {})

    def request(
        self,
        *,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        timeout_s: Optional[float] = None,
    ) -> Dict[str, Any]:
        if params:
            url = f"{url}?{urlencode(params)}"
        data = None
        headers = dict(self._headers)
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = Request(url, data=data, headers=headers, method=method)
        timeout = self._timeout_s if timeout_s is None else timeout_s
        try:
            with urlopen(request, timeout=timeout) as response:  # nosec B310 - configured service URLs only
                payload = response.read()
        except HTTPError as exc:
            raise TransportError(
                f"HTTP {exc.code} from upstream",
                code="UPSTREAM_STATUS",
                details={"url": url, "status": exc.code},
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransportTimeoutError("Upstream request timed out", details={"url": url, "timeout_s": timeout}) from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise TransportTimeoutError(
                    "Upstream request timed out",
                    details={"url": url, "timeout_s": timeout},
                ) from exc
            raise TransportUnavailableError("Upstream unreachable", details={"url": url, "reason": str(exc.reason)}) from exc
        if not payload:
            return {}
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise TransportError("Upstream returned invalid JSON", code="INVALID_RESPONSE", details={"url": url}) from exc
