"""
minerweb - Release Check
==========================
Looks up the latest released version so the console can show whether an
update is available.

The release URL is configured in config.yaml (web.version_url). It may
answer with a JSON object carrying "tag_name" or "version", or with the
bare version as plain text. Any failure yields an empty string: the console
then shows the local version only.
"""

import logging

import httpx


logger = logging.getLogger(__name__)


async def fetch_online_version(
    url: str,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """
    Fetch the latest released version.

    Args:
        url:       Release endpoint; an empty string disables the check.
        timeout:   Seconds to wait for the endpoint.
        transport: Optional httpx transport (tests use a MockTransport).

    Returns:
        The version string, or "" when disabled or unavailable.
    """
    if not url:
        return ""

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, headers={"accept": "application/json"})
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Cannot fetch the online version from %s: %s", url, e)
        return ""

    if "json" in response.headers.get("content-type", ""):
        try:
            payload = response.json()
        except ValueError as e:
            logger.warning("Malformed release info from %s: %s", url, e)
            return ""
        if not isinstance(payload, dict):
            return ""
        version = payload.get("tag_name") or payload.get("version") or ""
    else:
        version = response.text.strip().split("\n", 1)[0]

    version = str(version).strip()
    if version.startswith("v"):
        version = version[1:]
    logger.info("Latest released version: %s", version or "unknown")
    return version
