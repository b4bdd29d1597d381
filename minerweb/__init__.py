"""
minerweb - Miner Web Console
============================
The web control plane of the mining daemon.

This package provides:
- FastAPI web application serving the console pages
- REST API endpoints for settings, plot maintenance and lifecycle control
- WebSocket push channel for live mining telemetry
- Session-based login gating the console and its privileged actions
- Forwarding of wallet and pool requests to their backends

Architecture:
    main.py          -> FastAPI app creation, pages, login/logout, assets, /ws
    templates.py     -> %KEY% template variables and page assembly
    sessions.py      -> In-memory sessions with sliding idle expiry
    auth.py          -> Credential checks, session cookie, route protection
    assets.py        -> Root-contained static file lookup
    websocket.py     -> Broadcast hub with per-client bounded queues
    proxy.py         -> Request forwarding to wallet / pool backends
    routes.py        -> REST API endpoint handlers
    config.py        -> Read/write config.yaml and .env files
    manager.py       -> In-process miner state, plot jobs, server hooks
    collaborators.py -> Miner / Server interfaces used by the routes
    errors.py        -> Error taxonomy and HTTP status mapping
"""

__version__ = "1.0.0"
