"""
minerweb - FastAPI Application
================================
Creates and configures the FastAPI web application that serves as the
miner's web console.

Responsibilities:
    - Create the FastAPI app instance
    - Initialize all managers (config, sessions, auth, hub, proxy, miner, server)
    - Serve static assets from web/assets through the asset resolver
    - Render the HTML pages from %KEY% template fragments
    - Handle login / logout and gate the secured pages
    - Register the API routes and the /ws push channel
    - Map the error taxonomy to uniform JSON error responses

Architecture:
    Pages are assembled from two fragments: a layout (layout.html with the
    navigation, plain.html for the login page) and a content fragment that
    is rendered first and injected as %CONTENT%. Secured pages check the
    session before anything is loaded and redirect to /login otherwise.

    API endpoints live in routes.py. The push channel is served by the
    broadcast hub in websocket.py.
"""

import asyncio
import html
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Callable

import httpx
from fastapi import FastAPI, Form, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from minerweb import __version__
from minerweb.assets import AssetResolver
from minerweb.auth import AuthGate
from minerweb.collaborators import Miner, Server
from minerweb.config import ConfigManager
from minerweb.errors import AuthError, BadRequestError, ControlPlaneError, NotFoundError
from minerweb.manager import MinerManager, ServerControl, public_config
from minerweb.proxy import ForwardProxy
from minerweb.routes import create_router
from minerweb.sessions import SessionStore
from minerweb.templates import TemplateLoader, TemplateVariables, build_page
from minerweb.version import fetch_online_version
from minerweb.websocket import BroadcastHub, encode_message


logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

# Secured pages: path -> (content fragment, navigation key)
SECURED_PAGES = {
    "/": ("index.html", "DASHBOARD"),
    "/settings": ("settings.html", "SETTINGS"),
    "/plots": ("plots.html", "PLOTS"),
}


def create_app(
    project_dir: str | None = None,
    miner: Miner | None = None,
    server: Server | None = None,
    proxy: ForwardProxy | None = None,
    clock: Callable[[], float] = time.monotonic,
    release_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir: Directory holding config.yaml and .env. If None, the
                     parent of the package directory.
        miner:       Miner collaborator; defaults to an in-process MinerManager.
        server:      Server collaborator; defaults to a ServerControl.
        proxy:       Forward proxy; defaults to one built from the backends
                     section of the configuration.
        clock:       Time source for session expiry.
        release_transport: httpx transport for the online version check.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve directories ---------------------------------------------------
    if project_dir is None:
        project_dir = os.path.dirname(PACKAGE_DIR)

    web_dir = os.path.join(PACKAGE_DIR, "web")

    # -- Initialize managers ---------------------------------------------------
    config_manager = ConfigManager(project_dir)
    config = config_manager.load()
    if "_config_error" in config:
        logger.error("config.yaml is unreadable, using defaults: %s", config["_config_error"])

    web_config = config["web"]
    hub = BroadcastHub(queue_size=int(web_config["queue_size"]))
    store = SessionStore(float(web_config["session_timeout"]), clock=clock)
    auth_gate = AuthGate(
        store,
        user=str(web_config["user"]),
        password_hash=config_manager.get_password_hash(),
    )
    if miner is None:
        miner = MinerManager(hub, config_manager)
    if server is None:
        server = ServerControl(hub, config_manager)
    if proxy is None:
        backends = config["backends"]
        proxy = ForwardProxy(
            {"wallet": backends.get("wallet", ""), "pool": backends.get("pool", "")},
            timeout=float(backends.get("timeout", 30)),
        )

    templates = TemplateLoader(os.path.join(web_dir, "templates"))
    assets = AssetResolver(os.path.join(web_dir, "assets"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not auth_gate.is_configured:
            logger.warning(
                "No console password configured (MINERWEB_PASSWORD); "
                "the web console is open to everyone who can reach it"
            )
        miner.rescan_plot_directories()
        app.state.online_version = await fetch_online_version(
            str(web_config.get("version_url") or ""),
            timeout=float(web_config.get("version_timeout", 5)),
            transport=release_transport,
        )
        yield
        await proxy.aclose()

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="minerweb",
        description="Web console of the mining daemon",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # -- Store managers on app state -------------------------------------------
    app.state.config_manager = config_manager
    app.state.auth_gate = auth_gate
    app.state.hub = hub
    app.state.miner = miner
    app.state.server = server
    app.state.proxy = proxy
    app.state.online_version = ""

    # -- Error handlers --------------------------------------------------------

    @app.exception_handler(ControlPlaneError)
    async def control_plane_error(request: Request, exc: ControlPlaneError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.debug("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={"error": NotFoundError.public_message})
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        logger.debug("%s %s: invalid request: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"error": BadRequestError.public_message})

    # -- Template variables ----------------------------------------------------

    def global_variables(nav: str = "") -> TemplateVariables:
        """Variables shared by every page."""
        def title():
            return html.escape(str(config_manager.load()["web"].get("title", "minerweb")))

        variables = {
            "TITLE": title,
            "VERSION": lambda: __version__,
            "ONLINE_VERSION": lambda: html.escape(app.state.online_version),
            "USER": lambda: html.escape(auth_gate.user),
            "WS_PATH": lambda: "/ws",
        }
        for _, key in SECURED_PAGES.values():
            variables[f"NAV_{key}"] = (lambda k=key: "active" if k == nav else "")
        return TemplateVariables(variables)

    def content_variables() -> TemplateVariables:
        """Variables of the secured content fragments."""
        def info(key):
            return lambda: html.escape(str(miner.get_current_info().get(key, "")))

        def setting(key):
            return lambda: html.escape(str(config_manager.load()["miner"].get(key, "")))

        def plot_dirs():
            dirs = config_manager.load()["miner"].get("plot_dirs") or []
            return "\n".join(
                f'<li data-path="{html.escape(d)}">{html.escape(d)}</li>' for d in dirs
            )

        return TemplateVariables({
            "HEIGHT": info("height"),
            "BASE_TARGET": info("baseTarget"),
            "GENERATION_SIGNATURE": info("generationSignature"),
            "TARGET_DEADLINE": info("targetDeadline"),
            "PUSH_CLIENTS": lambda: str(hub.client_count),
            "INTENSITY": setting("intensity"),
            "BUFFER_SIZE": setting("buffer_size"),
            "POLL_INTERVAL": setting("poll_interval"),
            "TARGET_DEADLINE_SETTING": setting("target_deadline"),
            "PLOT_DIRS": plot_dirs,
        })

    def load_template(layout: str, content: str, variables: TemplateVariables,
                      status_code: int = 200) -> HTMLResponse:
        page = build_page(templates.load(layout), templates.load(content), variables)
        return HTMLResponse(page, status_code=status_code)

    def load_secured_template(request: Request, path: str) -> Response:
        """Render a secured page, or redirect to /login without rendering anything."""
        if not auth_gate.is_logged_in(request):
            return RedirectResponse(url="/login", status_code=302)
        content, nav = SECURED_PAGES[path]
        return load_template("layout.html", content, global_variables(nav) + content_variables())

    def login_page(error: str = "", status_code: int = 200) -> HTMLResponse:
        variables = global_variables() + TemplateVariables({"ERROR": lambda: error})
        return load_template("plain.html", "login.html", variables, status_code)

    # -- Register API routes ---------------------------------------------------
    app.include_router(create_router(
        auth_gate=auth_gate,
        config_manager=config_manager,
        miner=miner,
        server=server,
        hub=hub,
        proxy=proxy,
    ))

    # -- WebSocket endpoint ----------------------------------------------------
    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Push channel: live telemetry for one browser tab. The client gets the
        current configuration and mining info first, then every broadcast.
        """
        if not auth_gate.is_logged_in(websocket):
            await websocket.close(code=1008)
            return

        await websocket.accept()
        connection = hub.register(websocket, initial=[
            encode_message({"type": "config", "data": public_config(config_manager.load())}),
            encode_message({"type": "mininginfo", "data": miner.get_current_info()}),
        ])
        sender = asyncio.create_task(connection.serve())
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            connection.close()
            await sender

    # -- Static assets ---------------------------------------------------------

    @app.get("/assets/{path:path}")
    async def asset(path: str):
        """Static file from web/assets. Missing and blocked paths are both 404."""
        found = assets.resolve(path)
        if found is None:
            raise NotFoundError()
        return Response(content=found.data, media_type=found.media_type)

    # -- Login / logout --------------------------------------------------------

    @app.get("/login")
    async def login_form():
        """Login page - plain layout (no navigation)."""
        return login_page()

    @app.post("/login")
    async def login(request: Request, user: str = Form(""), password: str = Form("")):
        """Check the submitted credentials and start a session."""
        client = request.client.host if request.client else ""
        try:
            _, token = auth_gate.login(
                user, password, client=client, replaces=auth_gate.session_id(request),
            )
        except AuthError as e:
            return login_page(error=e.public_message, status_code=401)

        response = RedirectResponse(url="/", status_code=303)
        auth_gate.set_cookie(response, token)
        return response

    @app.get("/logout")
    async def logout(request: Request):
        """End the session and go back to the start page."""
        auth_gate.logout(request)
        response = RedirectResponse(url="/", status_code=302)
        auth_gate.clear_cookie(response)
        return response

    # -- Page routes -----------------------------------------------------------

    @app.get("/")
    async def dashboard_page(request: Request):
        """Dashboard - mining info and live telemetry."""
        return load_secured_template(request, "/")

    @app.get("/settings")
    async def settings_page(request: Request):
        """Settings - intensity, buffer size, deadlines, polling."""
        return load_secured_template(request, "/settings")

    @app.get("/plots")
    async def plots_page(request: Request):
        """Plot directories - add, remove, rescan and check plot files."""
        return load_secured_template(request, "/plots")

    return app
