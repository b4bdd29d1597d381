"""
minerweb - Collaborator Interfaces
====================================
The narrow interfaces through which the web console drives the rest of the
miner daemon. Routes depend only on these protocols; manager.py provides
the in-process implementations and tests substitute mocks.
"""

from typing import Any, Protocol


class Miner(Protocol):
    """Mining engine as seen from the control plane."""

    def get_current_info(self) -> dict[str, Any]:
        """Current block's mining info (height, baseTarget, ...)."""
        ...

    def rescan_plot_directories(self) -> None:
        """Start a rescan of all plot directories; returns immediately."""
        ...

    def check_plot_file(self, path: str) -> bool:
        """Start a corruption check of one plot file; False if the file is unknown."""
        ...

    def check_all_plot_files(self) -> None:
        """Start a corruption check of every plot file; returns immediately."""
        ...


class Server(Protocol):
    """Process-level hooks of the daemon hosting the console."""

    def propagate_config_change(self) -> None:
        ...

    def shutdown(self) -> None:
        ...

    def restart(self) -> None:
        ...
