"""Dashboard entry point: builds the Starlette app and runs it under uvicorn."""

import logging
from pathlib import Path

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from unifi_dashboard import config
from unifi_dashboard.access import AccessFilter, AllowlistMiddleware
from unifi_dashboard.api.unifi import ControllerClient
from unifi_dashboard.errors import DashboardError
from unifi_dashboard.routes import (
    board_revision,
    create_vlan,
    handle_dashboard_error,
    health,
    list_sites,
    mac_lookup,
)
from unifi_dashboard.snapshot.store import SnapshotStore

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


def create_app(
    controller: ControllerClient | None = None,
    access: AccessFilter | None = None,
    *,
    trusted_proxies: list[str] | None = None,
    device_source: str | None = None,
    snapshot_store: SnapshotStore | None = None,
    site_timeout: float | None = None,
    search_deadline: float | None = None,
) -> Starlette:
    """Build the app. Anything not passed in comes from the environment."""
    device_source = device_source or config.DEVICE_SOURCE
    if device_source not in config.DEVICE_SOURCES:
        raise ValueError(f"DEVICE_SOURCE must be one of {config.DEVICE_SOURCES}, got {device_source!r}")

    if controller is None:
        controller = ControllerClient(
            config.UNIFI_URL,
            config.UNIFI_USER,
            config.UNIFI_PASSWORD,
            unifi_os=config.UNIFI_OS,
            verify_ssl=config.UNIFI_VERIFY_SSL,
            timeout=config.UNIFI_TIMEOUT,
        )
    if access is None:
        access = AccessFilter.from_strings(config.ALLOWED_SOURCES)
    if trusted_proxies is None:
        trusted_proxies = config.TRUSTED_PROXIES
    if snapshot_store is None and device_source == "snapshot":
        snapshot_store = SnapshotStore(config.SNAPSHOT_DB)

    routes = [
        Route("/health", health),
        Route("/sites", list_sites, methods=["GET"]),
        Route("/board-revision", board_revision, methods=["POST"]),
        Route("/mac-lookup", mac_lookup, methods=["POST"]),
        Route("/create-vlan", create_vlan, methods=["POST"]),
        Mount("/", app=StaticFiles(directory=STATIC_DIR, html=True), name="static"),
    ]
    middleware = []
    if trusted_proxies:
        # Outermost, so the allowlist sees the client address resolved from trusted hops only
        middleware.append(Middleware(ProxyHeadersMiddleware, trusted_hosts=list(trusted_proxies)))
    middleware.append(Middleware(AllowlistMiddleware, access=access))

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={DashboardError: handle_dashboard_error},
    )
    app.state.controller = controller
    app.state.device_source = device_source
    app.state.snapshot_store = snapshot_store
    app.state.site_timeout = config.MAC_SEARCH_SITE_TIMEOUT if site_timeout is None else site_timeout
    app.state.search_deadline = config.MAC_SEARCH_DEADLINE if search_deadline is None else search_deadline
    return app


def main():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    app = create_app()
    logger.info(
        f"Starting UniFi dashboard on {config.HOST}:{config.PORT} "
        f"(controller {config.UNIFI_URL}, device source {app.state.device_source}, "
        f"{len(config.ALLOWED_SOURCES)} allowlist entries)"
    )
    # Forwarded headers are handled inside the app, against TRUSTED_PROXIES
    uvicorn.run(app, host=config.HOST, port=config.PORT, proxy_headers=False)


if __name__ == "__main__":
    main()
