"""HTTP endpoints driven by the dashboard page."""

import json
import logging

from pydantic import ValidationError as PydanticValidationError
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse

from unifi_dashboard.errors import DashboardError, NotFoundError, ValidationError
from unifi_dashboard.presenter import NDJSON_MEDIA_TYPE, ndjson_stream
from unifi_dashboard.provisioning.vlan import VlanRequest, provision_vlan
from unifi_dashboard.search.mac import format_mac, normalize_mac, search_for_mac
from unifi_dashboard.snapshot.store import SnapshotSession

logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _field(body: dict, *names: str) -> str:
    for name in names:
        value = body.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


async def board_revision(request: Request):
    """Board revision of every device at the site with the given description."""
    body = await _json_body(request)
    site_desc = _field(body, "site", "site_desc")
    if not site_desc:
        raise ValidationError("Missing site description")

    session = await request.app.state.controller.login()
    try:
        sites = await session.list_sites()
        site = next((s for s in sites if s.description == site_desc), None)
        if site is None:
            raise NotFoundError("Site not found")
        devices = await session.list_devices(site)
    finally:
        await session.close()

    results = sorted(
        f"{d.display_name} - Board Revision: {d.board_rev or 'N/A'}" for d in devices
    )
    return JSONResponse({"results": results})


async def list_sites(request: Request):
    session = await request.app.state.controller.login()
    try:
        sites = await session.list_sites()
    finally:
        await session.close()
    return JSONResponse({"sites": [{"name": s.id, "desc": s.description} for s in sites]})


async def _device_session(request: Request):
    state = request.app.state
    if state.device_source == "snapshot":
        return SnapshotSession(state.snapshot_store)
    return await state.controller.login()


async def mac_lookup(request: Request):
    """Stream progress of a fan-out search for one MAC address."""
    body = await _json_body(request)
    mac = normalize_mac(_field(body, "mac"))

    state = request.app.state
    session = await _device_session(request)
    try:
        sites = await session.list_sites()
    except Exception:
        await session.close()
        raise

    logger.info(f"MAC lookup for {format_mac(mac)} across {len(sites)} sites ({state.device_source})")
    events = search_for_mac(
        session,
        sites,
        mac,
        site_timeout=state.site_timeout or None,
        deadline=state.search_deadline or None,
    )
    return StreamingResponse(
        ndjson_stream(events),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        background=BackgroundTask(session.close),
    )


async def create_vlan(request: Request):
    body = await _json_body(request)
    try:
        vlan = VlanRequest.model_validate(body)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "request"
        raise ValidationError(f"Invalid {field}: {first.get('msg', 'invalid value')}") from e

    session = await request.app.state.controller.login()
    try:
        script = await provision_vlan(session, vlan)
    finally:
        await session.close()
    return JSONResponse({"script": script})


async def health(request: Request):
    return JSONResponse({"status": "ok"})


async def handle_dashboard_error(request: Request, exc: DashboardError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)
