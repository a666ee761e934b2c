"""
Panel admin API client.

Wraps the three endpoints the carry-over workflow needs and validates every
response in layers: transport, HTTP status, payload parsing, success flag.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..config.loader import PanelConfig
from ..core.errors import MalformedResponse, SchemaError, SemanticFailure, TransportError
from ..storage.models import PlanId

logger = logging.getLogger(__name__)

STEP_FETCH = "fetch"
STEP_RESET = "reset"
STEP_UPDATE = "update"

MAX_REDIRECTS = 5

_TRUE_FLAGS = (True, 1, "1", "true")


def _is_done(value: Any) -> bool:
    if isinstance(value, str):
        value = value.strip().lower()
    return value in _TRUE_FLAGS


class PanelClient:
    """Client for the panel admin API.

    One instance is shared by every worker; ``httpx.Client`` is thread-safe.
    Failures are raised as classified ``PanelError`` subclasses and never
    retried here.
    """

    def __init__(
        self,
        api_base: str,
        connect_timeout: float = 10.0,
        request_timeout: float = 60.0,
        verify_tls: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the panel client.

        Args:
            api_base: Base URL including the credential query string
            connect_timeout: Seconds allowed to establish a connection
            request_timeout: Seconds allowed for the whole call, body included
            verify_tls: Whether to verify the panel certificate
            transport: Optional transport override (tests use httpx.MockTransport)

        Raises:
            ValueError: If api_base is empty
        """
        if not api_base or not api_base.strip():
            raise ValueError("api_base is required and cannot be empty")

        self.api_base = api_base.strip()
        self.request_timeout = request_timeout
        self._http = httpx.Client(
            timeout=httpx.Timeout(request_timeout, connect=connect_timeout),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            verify=verify_tls,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_config(cls, config: PanelConfig, transport: Optional[httpx.BaseTransport] = None) -> "PanelClient":
        return cls(
            api_base=config.resolved_api_base,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
            verify_tls=config.verify_tls,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PanelClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def list_servers(self, **filters: Any) -> Any:
        """Fetch the ``vs`` field of the server listing.

        Args:
            **filters: Extra query parameters (reslen, page, vpsid, vsstatus)

        Returns:
            The raw ``vs`` value, map-shaped or list-shaped

        Raises:
            TransportError: On connection failure or non-2xx status
            MalformedResponse: On HTML or unparseable body
            SchemaError: If the payload has no ``vs`` field
        """
        params = {"act": "vs", "api": "json"}
        params.update({name: value for name, value in filters.items() if value is not None})
        payload, raw = self._request("GET", STEP_FETCH, params)

        if not isinstance(payload, dict) or "vs" not in payload:
            raise SchemaError("response missing 'vs' field", step=STEP_FETCH, raw=raw)

        servers = payload["vs"]
        if servers is None:
            return {}
        if not isinstance(servers, (dict, list)):
            raise SchemaError("'vs' field is neither a mapping nor a list", step=STEP_FETCH, raw=raw)
        return servers

    def reset_usage(self, vps_id: str) -> None:
        """Reset the bandwidth usage counter of one server.

        Raises:
            PanelError: Classified failure of any validation layer
        """
        params = {"act": "vs", "bwreset": vps_id, "api": "json"}
        payload, raw = self._request("POST", STEP_RESET, params, vps_id=vps_id)
        self._check_flag(payload, raw, vps_id, STEP_RESET, nested=False)

    def update_quota(self, vps_id: str, bandwidth: int, plan_id: PlanId) -> None:
        """Set a server's bandwidth limit while resubmitting its plan id.

        Raises:
            PanelError: Classified failure of any validation layer
        """
        params = {"act": "managevps", "vpsid": vps_id, "api": "json"}
        data = {"editvps": 1, "bandwidth": bandwidth, "plid": plan_id}
        payload, raw = self._request("POST", STEP_UPDATE, params, data=data, vps_id=vps_id)
        self._check_flag(payload, raw, vps_id, STEP_UPDATE, nested=True)

    def _request(
        self,
        method: str,
        step: str,
        params: Dict[str, Any],
        data: Optional[Dict[str, Any]] = None,
        vps_id: Optional[str] = None,
    ):
        """Issue one request and return (parsed payload, raw body)."""
        logger.debug("%s %s params=%s", method, step, params)
        # httpx timeouts are per phase; the deadline bounds the whole call
        deadline = time.monotonic() + self.request_timeout
        try:
            with self._http.stream(method, self.api_base, params=params, data=data) as response:
                chunks = []
                for chunk in response.iter_bytes():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise TransportError(
                            f"request exceeded total timeout of {self.request_timeout:g}s",
                            vps_id=vps_id,
                            step=step,
                        )
                status_code = response.status_code
                raw = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
        except httpx.TimeoutException as e:
            raise TransportError(f"request timed out: {e}", vps_id=vps_id, step=step)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"request failed: {e}", vps_id=vps_id, step=step)

        if not 200 <= status_code < 300:
            raise TransportError(
                f"HTTP {status_code}",
                status_code=status_code,
                vps_id=vps_id,
                step=step,
                raw=raw,
            )

        body = raw.strip()
        if not body:
            raise MalformedResponse("empty response", vps_id=vps_id, step=step)
        # The panel labels JSON as text/html, so only the body is trusted here
        if body.startswith("<"):
            raise MalformedResponse("HTML page instead of JSON", vps_id=vps_id, step=step, raw=raw)

        try:
            payload = json.loads(body)
        except ValueError:
            raise MalformedResponse("response is not valid JSON", vps_id=vps_id, step=step, raw=raw)
        return payload, raw

    @staticmethod
    def _check_flag(payload: Any, raw: str, vps_id: str, step: str, nested: bool) -> None:
        if not isinstance(payload, dict):
            raise SchemaError("response is not a JSON object", vps_id=vps_id, step=step, raw=raw)

        if payload.get("error"):
            raise SemanticFailure(
                f"panel reported error: {payload['error']}", vps_id=vps_id, step=step, raw=raw
            )
        if "done" not in payload:
            raise SchemaError("response missing 'done' flag", vps_id=vps_id, step=step, raw=raw)

        done = payload["done"]
        if nested:
            ok = isinstance(done, dict) and _is_done(done.get("done"))
        else:
            ok = _is_done(done)
        if not ok:
            raise SemanticFailure("panel did not confirm completion", vps_id=vps_id, step=step, raw=raw)
