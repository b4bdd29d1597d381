"""
minerweb - REST API Routes
============================
HTTP API endpoints of the miner web console.

Route groups:
    /api/mininginfo   - Current mining info (public)
    /api/settings     - Change miner settings
    /api/plotdirs/*   - Add / remove plot directories
    /api/rescan       - Rescan plot directories (runs in the background)
    /api/plotcheck/*  - Plot corruption checks (run in the background)
    /api/shutdown     - Stop the daemon
    /api/restart      - Restart the daemon
    /api/nonce        - Submit a nonce to the pool (forwarded)
    /burst            - Legacy miner API; unknown request types go to the wallet

Every privileged route checks credentials in a dependency, before the
handler body runs, so a rejected request never reaches the miner or server.
Long-running jobs are handed to the miner and the response returns at once;
their results arrive over the /ws push channel.
"""

import logging
import os

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field

from minerweb.auth import AuthGate, require_credentials
from minerweb.collaborators import Miner, Server
from minerweb.config import ConfigManager
from minerweb.errors import BadRequestError
from minerweb.proxy import ForwardProxy, HostType
from minerweb.websocket import BroadcastHub


logger = logging.getLogger(__name__)


# =============================================================================
# Request Models (Pydantic)
# =============================================================================

class SettingsRequest(BaseModel):
    """
    Partial miner settings update.
    Only the fields that are present are changed.
    """
    intensity: int | None = Field(None, ge=0, le=64, description="Worker threads (0 = auto)")
    buffer_size: int | None = Field(None, ge=0, description="Read buffer in MiB (0 = auto)")
    target_deadline: int | None = Field(None, ge=0, description="Highest deadline to submit, seconds")
    poll_interval: int | None = Field(None, ge=1, le=3600, description="Mining info poll interval, seconds")

class PlotDirRequest(BaseModel):
    """Add or remove a plot directory."""
    path: str = Field(..., min_length=1, description="Plot directory path")

class PlotCheckRequest(BaseModel):
    """Check a single plot file for corruption."""
    path: str = Field(..., min_length=1, description="Plot file path")


NONCE_PARAMS = ("accountId", "nonce", "deadline")


def parse_nonce(params) -> dict[str, str]:
    """
    Validate nonce submission parameters.

    Args:
        params: Query parameters of the request.

    Returns:
        The parameters to forward, normalised to decimal strings.

    Raises:
        BadRequestError: If a required parameter is missing or not numeric.
    """
    nonce = {}
    for name in NONCE_PARAMS:
        value = params.get(name, "")
        if not value.isdigit():
            raise BadRequestError(f"Missing or invalid '{name}'")
        nonce[name] = str(int(value))

    height = params.get("blockheight")
    if height is not None:
        if not height.isdigit():
            raise BadRequestError("Invalid 'blockheight'")
        nonce["blockheight"] = str(int(height))

    return nonce


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    auth_gate: AuthGate,
    config_manager: ConfigManager,
    miner: Miner,
    server: Server,
    hub: BroadcastHub,
    proxy: ForwardProxy,
) -> APIRouter:
    """
    Create and configure the API router with all endpoints.

    Args:
        auth_gate:      Credential checks for privileged actions.
        config_manager: Reads/writes config.yaml.
        miner:          Mining engine collaborator.
        server:         Daemon lifecycle collaborator.
        hub:            Broadcast hub for telemetry.
        proxy:          Forwarding to wallet / pool backends.

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter()

    # Shorthand for the credentials dependency
    auth = Depends(require_credentials(auth_gate))

    async def submit_nonce(request: Request):
        nonce = parse_nonce(request.query_params)
        logger.info(
            "Forwarding nonce %s of account %s (deadline %s) to the pool",
            nonce["nonce"], nonce["accountId"], nonce["deadline"],
        )
        hub.publish_event("nonce", nonce)
        return await proxy.forward(
            request,
            HostType.POOL,
            path="/burst",
            params={"requestType": "submitNonce", **nonce},
        )

    # =========================================================================
    # PUBLIC ROUTES
    # =========================================================================

    @router.get("/api/mininginfo")
    async def mining_info():
        """Mining info of the block currently being mined."""
        return miner.get_current_info()

    @router.post("/api/nonce")
    async def nonce(request: Request):
        """
        Submit a nonce found by another miner through this one's pool
        connection. Requires accountId, nonce and deadline query parameters.
        """
        return await submit_nonce(request)

    @router.api_route("/burst", methods=["GET", "POST"])
    async def burst(request: Request):
        """
        Legacy miner API. getMiningInfo and submitNonce are handled here;
        every other request type is forwarded to the wallet.
        """
        request_type = request.query_params.get("requestType")
        if not request_type:
            raise BadRequestError("Missing 'requestType'")
        if request_type == "getMiningInfo":
            return miner.get_current_info()
        if request_type == "submitNonce":
            return await submit_nonce(request)
        return await proxy.forward(request, HostType.WALLET)

    # =========================================================================
    # SETTINGS ROUTES - Requires credentials
    # =========================================================================

    @router.post("/api/settings", dependencies=[auth])
    async def change_settings(req: SettingsRequest):
        """
        Update miner settings. Accepts partial updates; every field is
        validated before anything is written.
        """
        updates = req.model_dump(exclude_none=True)
        if not updates:
            raise BadRequestError("No settings provided")

        config = config_manager.update({"miner": updates})
        logger.info("Settings changed: %s", updates)
        server.propagate_config_change()
        return {"message": "Settings saved", "miner": config["miner"]}

    @router.post("/api/plotdirs/add", dependencies=[auth])
    async def add_plot_dir(req: PlotDirRequest):
        """Add a plot directory and rescan."""
        if not os.path.isdir(req.path):
            raise BadRequestError("Not a directory")
        try:
            plot_dirs = config_manager.add_plot_dir(req.path)
        except ValueError as e:
            raise BadRequestError(str(e))
        return _plot_dirs_changed(plot_dirs)

    @router.post("/api/plotdirs/remove", dependencies=[auth])
    async def remove_plot_dir(req: PlotDirRequest):
        """Remove a plot directory and rescan."""
        try:
            plot_dirs = config_manager.remove_plot_dir(req.path)
        except KeyError:
            raise BadRequestError("Plot directory not configured")
        return _plot_dirs_changed(plot_dirs)

    def _plot_dirs_changed(plot_dirs: list[str]) -> dict:
        logger.info("Plot directories are now: %s", plot_dirs)
        hub.publish_event("plotdirs", {"plot_dirs": plot_dirs})
        server.propagate_config_change()
        miner.rescan_plot_directories()
        return {"message": "Plot directories updated", "plot_dirs": plot_dirs}

    # =========================================================================
    # PLOT MAINTENANCE ROUTES - Requires credentials, run in the background
    # =========================================================================

    @router.post("/api/rescan", dependencies=[auth])
    async def rescan():
        """Rescan all plot directories. Progress is pushed over /ws."""
        miner.rescan_plot_directories()
        return {"status": "started"}

    @router.post("/api/plotcheck", dependencies=[auth])
    async def check_plot_file(req: PlotCheckRequest):
        """Check one plot file for corruption. The result is pushed over /ws."""
        if not miner.check_plot_file(req.path):
            raise BadRequestError("Unknown plot file")
        return {"status": "started", "path": req.path}

    @router.post("/api/plotcheck/all", dependencies=[auth])
    async def check_all_plot_files():
        """Check every plot file for corruption. Results are pushed over /ws."""
        miner.check_all_plot_files()
        return {"status": "started"}

    # =========================================================================
    # LIFECYCLE ROUTES - Requires credentials
    # =========================================================================

    @router.post("/api/shutdown", dependencies=[auth])
    async def shutdown(background_tasks: BackgroundTasks):
        """Stop the daemon once the response has been sent."""
        background_tasks.add_task(server.shutdown)
        return {"message": "Shutting down"}

    @router.post("/api/restart", dependencies=[auth])
    async def restart(background_tasks: BackgroundTasks):
        """Restart the daemon once the response has been sent."""
        background_tasks.add_task(server.restart)
        return {"message": "Restarting"}

    return router
