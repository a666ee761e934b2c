"""
In-memory panel simulator.

Serves the roster, usage-reset and quota-update endpoints through
``httpx.MockTransport`` so the engine can run offline, including the panel's
silent truncation of unpaginated listings and injected failures.
"""

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx


@dataclass
class FakeServer:
    vps_id: str
    bandwidth: int
    used_bandwidth: int
    plid: Any
    name: str = ""
    hostname: str = ""
    suspended: bool = False

    def to_payload(self) -> Dict[str, Any]:
        # The panel reports numbers as strings
        return {
            "vpsid": self.vps_id,
            "vps_name": self.name,
            "hostname": self.hostname,
            "bandwidth": str(self.bandwidth),
            "used_bandwidth": str(self.used_bandwidth),
            "plid": self.plid,
        }


@dataclass
class Fault:
    step: str
    vps_id: Optional[str] = None
    page: Optional[int] = None
    status_code: int = 200
    body: str = ""
    error: Optional[Exception] = None
    times: Optional[int] = None


@dataclass
class PanelCall:
    step: str
    vps_id: Optional[str]
    params: Dict[str, str]
    form: Dict[str, str] = field(default_factory=dict)


class FakePanel:
    """Stateful stand-in for the panel admin API."""

    def __init__(
        self,
        truncate_at: Optional[int] = 50,
        page_base: int = 0,
        list_shaped: bool = False,
    ):
        """Initialize the simulator.

        Args:
            truncate_at: Entries returned for ``reslen=0`` (None disables truncation)
            page_base: First page number the panel understands
            list_shaped: Return ``vs`` as a list instead of an id-keyed mapping
        """
        self.truncate_at = truncate_at
        self.page_base = page_base
        self.list_shaped = list_shaped
        self.servers: Dict[str, FakeServer] = {}
        self.calls: List[PanelCall] = []
        self._faults: List[Fault] = []
        self._lock = threading.Lock()

    def add_server(
        self,
        vps_id: Any,
        bandwidth: int,
        used: int,
        plid: Any = 1,
        name: Optional[str] = None,
        hostname: Optional[str] = None,
        suspended: bool = False,
    ) -> FakeServer:
        server = FakeServer(
            vps_id=str(vps_id),
            bandwidth=bandwidth,
            used_bandwidth=used,
            plid=plid,
            name=name or f"vps{vps_id}",
            hostname=hostname or f"vps{vps_id}.example.net",
            suspended=suspended,
        )
        self.servers[server.vps_id] = server
        return server

    def fail(self, step: str, **kwargs: Any) -> Fault:
        """Inject a failure for matching requests.

        Args:
            step: "fetch", "reset" or "update"
            **kwargs: Fault fields (vps_id, page, status_code, body, error, times)
        """
        fault = Fault(step=step, **kwargs)
        self._faults.append(fault)
        return fault

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls_for(self, step: str, vps_id: Optional[str] = None) -> List[PanelCall]:
        with self._lock:
            return [
                call for call in self.calls
                if call.step == step and (vps_id is None or call.vps_id == vps_id)
            ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        form = dict(parse_qsl(request.content.decode())) if request.content else {}
        act = params.get("act")

        if act == "vs" and "bwreset" in params:
            step, vps_id = "reset", params["bwreset"]
        elif act == "managevps":
            step, vps_id = "update", params.get("vpsid")
        elif act == "vs":
            step, vps_id = "fetch", params.get("vpsid")
        else:
            return httpx.Response(404, text="<html><body>Unknown action</body></html>")

        with self._lock:
            self.calls.append(PanelCall(step=step, vps_id=vps_id, params=params, form=form))
            fault = self._match_fault(step, vps_id, params)

        if fault is not None:
            if fault.error is not None:
                raise fault.error
            return httpx.Response(fault.status_code, text=fault.body)

        if step == "reset":
            return self._reset(vps_id)
        if step == "update":
            return self._update(vps_id, form)
        return self._listing(params)

    def _match_fault(self, step: str, vps_id: Optional[str], params: Dict[str, str]) -> Optional[Fault]:
        for fault in self._faults:
            if fault.step != step or fault.times == 0:
                continue
            if fault.vps_id is not None and fault.vps_id != vps_id:
                continue
            if fault.page is not None and params.get("page") != str(fault.page):
                continue
            if fault.times is not None:
                fault.times -= 1
            return fault
        return None

    def _reset(self, vps_id: str) -> httpx.Response:
        with self._lock:
            server = self.servers.get(vps_id)
            if server is None:
                return _json({"error": [f"VPS {vps_id} not found"]})
            server.used_bandwidth = 0
        return _json({"done": 1})

    def _update(self, vps_id: Optional[str], form: Dict[str, str]) -> httpx.Response:
        with self._lock:
            server = self.servers.get(vps_id or "")
            if server is None or form.get("editvps") != "1":
                return _json({"error": ["invalid request"]})
            server.bandwidth = int(form["bandwidth"])
            server.plid = int(form["plid"]) if form.get("plid", "").lstrip("-").isdigit() else form.get("plid")
        return _json({"done": {"done": True}})

    def _listing(self, params: Dict[str, str]) -> httpx.Response:
        with self._lock:
            servers = list(self.servers.values())

        status = params.get("vsstatus")
        if params.get("vpsid"):
            visible = [s for s in servers if s.vps_id == params["vpsid"]]
        elif status == "s":
            visible = [s for s in servers if s.suspended]
        elif status == "u":
            visible = [s for s in servers if not s.suspended]
        else:
            visible = [s for s in servers if not s.suspended]

        reslen = int(params.get("reslen", "0") or 0)
        if reslen == 0:
            if self.truncate_at is not None:
                visible = visible[:self.truncate_at]
        else:
            page = int(params.get("page", self.page_base))
            start = max(page - self.page_base, 0) * reslen
            visible = visible[start:start + reslen]

        if not visible:
            return _json({"vs": []})
        if self.list_shaped:
            return _json({"vs": [s.to_payload() for s in visible]})
        return _json({"vs": {s.vps_id: s.to_payload() for s in visible}})


def _json(payload: Dict[str, Any]) -> httpx.Response:
    # Mirrors the panel, which labels JSON bodies as HTML
    return httpx.Response(
        200,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "text/html; charset=UTF-8"},
    )
