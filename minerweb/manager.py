"""
minerweb - Miner and Server Managers
======================================
In-process implementations of the Miner and Server collaborators.

MinerManager keeps the state the console shows (mining info, plot files)
and runs the disk-bound maintenance jobs, rescans and plot corruption
checks, in daemon threads so a request that triggers one returns at once.
Progress and results reach the browser as telemetry through the broadcast
hub, never through the triggering response.

ServerControl implements the process hooks: pushing configuration changes
to connected clients and asking the hosting uvicorn server to stop, either
for good or for a restart (app.py restarts it).

Telemetry published here:
    - "mininginfo"    : New block / mining info from the mining engine
    - "rescan"        : Plot directory rescan started / finished
    - "plotcheck"     : Result for a single plot file
    - "plotcheck-all" : Full check started / finished with a summary
    - "config"        : Configuration changed
    - "shutdown"      : Server is shutting down
    - "restart"       : Server is restarting

Usage:
    miner = MinerManager(hub, config_manager)
    miner.rescan_plot_directories()   # Returns immediately
    miner.update_mining_info({...})   # Called by the mining engine
"""

import logging
import os
import re
import threading
import time
from typing import Any, Callable

from minerweb.config import ConfigManager
from minerweb.websocket import BroadcastHub


logger = logging.getLogger(__name__)

# One nonce is 4096 scoops of 64 bytes
NONCE_SIZE = 4096 * 64

# <accountId>_<startNonce>_<nonces>[_<stagger>]
_PLOT_NAME = re.compile(r"^(\d+)_(\d+)_(\d+)(?:_(\d+))?$")


class MinerManager:
    """
    Tracks mining state and runs plot maintenance jobs.

    Attributes:
        hub:            Broadcast hub for telemetry.
        config_manager: Source of the configured plot directories.
    """

    def __init__(self, hub: BroadcastHub, config_manager: ConfigManager):
        self.hub = hub
        self.config_manager = config_manager

        self._lock = threading.Lock()
        self._mining_info: dict[str, Any] = {
            "height": 0,
            "baseTarget": 0,
            "generationSignature": "",
            "targetDeadline": config_manager.load()["miner"].get("target_deadline", 0),
        }
        self._plot_files: dict[str, int] = {}
        self._threads: list[threading.Thread] = []

    # -- Miner collaborator -----------------------------------------------------

    def get_current_info(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._mining_info)

    def rescan_plot_directories(self) -> None:
        self._start_job(self._rescan, "minerweb-rescan")

    def check_plot_file(self, path: str) -> bool:
        with self._lock:
            known = path in self._plot_files
        if not known:
            return False
        self._start_job(lambda: self._check_and_report(path), "minerweb-plotcheck")
        return True

    def check_all_plot_files(self) -> None:
        self._start_job(self._check_all, "minerweb-plotcheck-all")

    # -- Producer side ----------------------------------------------------------

    def update_mining_info(self, info: dict[str, Any]) -> None:
        """
        Record the mining info of a new block and push it to the console.

        Called by the mining engine whenever the pool or wallet announces a
        new block.
        """
        with self._lock:
            self._mining_info.update(info)
            snapshot = dict(self._mining_info)
        self.hub.publish_event("mininginfo", snapshot)

    @property
    def plot_files(self) -> dict[str, int]:
        """Snapshot of known plot files mapped to their size in bytes."""
        with self._lock:
            return dict(self._plot_files)

    # -- Jobs -------------------------------------------------------------------

    def _start_job(self, target: Callable[[], None], name: str) -> None:
        """Run a maintenance job in a daemon thread."""
        self._threads = [t for t in self._threads if t.is_alive()]
        thread = threading.Thread(target=self._run_job, args=(target, name), daemon=True, name=name)
        self._threads.append(thread)
        thread.start()

    def _run_job(self, target: Callable[[], None], name: str) -> None:
        try:
            target()
        except Exception as e:
            logger.exception("Job %s failed", name)
            self.hub.publish_event("error", {"job": name, "message": str(e)})

    def _rescan(self) -> None:
        plot_dirs = self.config_manager.load()["miner"].get("plot_dirs") or []
        self.hub.publish_event("rescan", {"event": "started", "plot_dirs": plot_dirs})
        started = time.monotonic()

        found = scan_plot_dirs(plot_dirs)
        with self._lock:
            self._plot_files = found

        elapsed = round(time.monotonic() - started, 2)
        logger.info("Rescan found %d plot files in %d directories", len(found), len(plot_dirs))
        self.hub.publish_event("rescan", {
            "event": "finished",
            "plot_files": len(found),
            "total_size": sum(found.values()),
            "elapsed": elapsed,
        })

    def _check_and_report(self, path: str) -> bool:
        ok, reason = check_plot(path)
        if ok:
            logger.info("Plot file %s is intact", path)
        else:
            logger.warning("Plot file %s is corrupted: %s", path, reason)
        self.hub.publish_event("plotcheck", {"path": path, "ok": ok, "reason": reason})
        return ok

    def _check_all(self) -> None:
        paths = sorted(self.plot_files)
        self.hub.publish_event("plotcheck-all", {"event": "started", "plot_files": len(paths)})
        corrupted = [path for path in paths if not self._check_and_report(path)]
        self.hub.publish_event("plotcheck-all", {
            "event": "finished",
            "plot_files": len(paths),
            "corrupted": corrupted,
        })


class ServerControl:
    """
    Server collaborator: config propagation and lifecycle hooks.

    Attributes:
        restart_requested: Set by restart(); app.py checks it after the
                           uvicorn server returns.
    """

    def __init__(self, hub: BroadcastHub, config_manager: ConfigManager):
        self.hub = hub
        self.config_manager = config_manager
        self.restart_requested = False
        self._exit: Callable[[], None] | None = None

    def attach(self, exit_callback: Callable[[], None]) -> None:
        """Register how to stop the hosting server (e.g. set uvicorn's should_exit)."""
        self._exit = exit_callback

    def propagate_config_change(self) -> None:
        self.hub.publish_event("config", public_config(self.config_manager.load()))

    def shutdown(self) -> None:
        logger.info("Shutdown requested from the web console")
        self.hub.publish_event("shutdown", {})
        self._stop()

    def restart(self) -> None:
        logger.info("Restart requested from the web console")
        self.restart_requested = True
        self.hub.publish_event("restart", {})
        self._stop()

    def _stop(self) -> None:
        if self._exit is None:
            logger.warning("No server attached, ignoring stop request")
            return
        self._exit()


# -- Helper Functions ---------------------------------------------------------

def public_config(config: dict) -> dict:
    """Configuration as shown to browsers: internal keys stripped."""
    return {key: value for key, value in config.items() if not key.startswith("_")}


def scan_plot_dirs(plot_dirs: list[str]) -> dict[str, int]:
    """
    List the plot files in the given directories.

    Only regular files whose name follows the plot naming scheme are
    counted. Unreadable directories are logged and skipped.

    Returns:
        Mapping of absolute file path to size in bytes.
    """
    found = {}
    for plot_dir in plot_dirs:
        try:
            names = sorted(os.listdir(plot_dir))
        except OSError as e:
            logger.warning("Cannot read plot directory %s: %s", plot_dir, e)
            continue
        for name in names:
            path = os.path.abspath(os.path.join(plot_dir, name))
            if _PLOT_NAME.match(name) and os.path.isfile(path):
                found[path] = os.path.getsize(path)
    return found


def check_plot(path: str) -> tuple[bool, str]:
    """
    Check a plot file for corruption.

    The file must be readable from first to last nonce and its size must
    match the nonce count encoded in its name.

    Returns:
        (ok, reason) where reason is empty when the file is intact.
    """
    match = _PLOT_NAME.match(os.path.basename(path))
    if not match:
        return False, "not a plot file name"

    expected = int(match.group(3)) * NONCE_SIZE
    try:
        size = os.path.getsize(path)
        if size != expected:
            return False, f"size {size} does not match {expected} bytes for {match.group(3)} nonces"
        with open(path, "rb") as f:
            if size:
                f.read(4096)
                f.seek(size - 4096)
                if len(f.read(4096)) != 4096:
                    return False, "truncated read at end of file"
    except OSError as e:
        return False, f"unreadable: {e}"

    return True, ""
