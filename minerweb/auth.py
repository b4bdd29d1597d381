"""
minerweb - Authentication Gate
================================
Decides whether a request may see privileged pages or run privileged
actions.

Security model:
- Single operator account: user name from config.yaml, password from .env
  (plain MINERWEB_PASSWORD, hashed with bcrypt at startup, or an existing
  bcrypt hash in MINERWEB_PASSWORD_HASH)
- Successful login creates a server-side session (see sessions.py) and sets
  a cookie holding a signed JWT with the session id
- Session expiry is decided by the session store (sliding idle timeout),
  not by the token, so logout and idle expiry take effect immediately
- Privileged API actions accept either a valid session cookie or HTTP Basic
  credentials, so scripts can drive the miner without a browser

When no password is configured the control plane is open and every check
passes; the application logs a warning at startup in that case.
"""

import hmac
import logging
import secrets
import time

import bcrypt
from fastapi import Depends, Request, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from jose import jwt, JWTError
from starlette.requests import HTTPConnection

from minerweb.errors import AuthError
from minerweb.sessions import Session, SessionStore


logger = logging.getLogger(__name__)

SESSION_COOKIE = "minerweb_session"
JWT_ALGORITHM = "HS256"

# Security scheme for FastAPI dependency injection
security = HTTPBasic(auto_error=False)


# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = 12) -> bytes:
    """Hash a plaintext password with bcrypt."""
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds))


class AuthGate:
    """
    Credential checks and session lifecycle for the web console.

    Attributes:
        store: Session table shared by every request.
        user:  Configured operator user name.
    """

    def __init__(
        self,
        store: SessionStore,
        user: str = "",
        password_hash: bytes | None = None,
        signing_key: str | None = None,
    ):
        """
        Args:
            store:         Session store.
            user:          Operator user name.
            password_hash: bcrypt hash of the operator password, or None to
                           leave the console open.
            signing_key:   Secret used to sign session tokens; a random one
                           is generated per process when omitted.
        """
        self.store = store
        self.user = user
        self._password_hash = password_hash
        self._signing_key = signing_key or secrets.token_hex(32)

    @property
    def is_configured(self) -> bool:
        """True when a password is set and checks are enforced."""
        return bool(self._password_hash)

    def verify_credentials(self, user: str, password: str) -> bool:
        """
        Compare credentials against the configured ones.

        Both comparisons always run so the response time does not reveal
        which field was wrong.
        """
        if not self.is_configured:
            return True
        user_ok = hmac.compare_digest(user.encode("utf-8"), self.user.encode("utf-8"))
        password_ok = bcrypt.checkpw(_password_bytes(password), self._password_hash)
        return user_ok and password_ok

    def login(
        self, user: str, password: str, client: str = "", replaces: str | None = None,
    ) -> tuple[Session, str]:
        """
        Log the operator in.

        Args:
            user:     Submitted user name.
            password: Submitted password.
            client:   Client address, kept for logging.
            replaces: Session id already held by the requester, dropped on
                      success.

        Returns:
            The new session and the token to put in the session cookie.

        Raises:
            AuthError: If the credentials are wrong.
        """
        if not self.verify_credentials(user, password):
            logger.warning("Failed login attempt from %s", client or "unknown client")
            raise AuthError("Invalid credentials")

        if replaces:
            self.store.remove(replaces)
        purged = self.store.purge_expired()
        if purged:
            logger.debug("Purged %d expired sessions", purged)

        session = self.store.create(user, client)
        logger.info("User '%s' logged in from %s", user, client or "unknown client")
        return session, self._create_token(session)

    def session_id(self, request: HTTPConnection) -> str | None:
        """Extract the session id from the request's cookie, if it is authentic."""
        token = request.cookies.get(SESSION_COOKIE)
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._signing_key, algorithms=[JWT_ALGORITHM])
        except JWTError:
            return None
        return payload.get("sid")

    def is_logged_in(self, request: HTTPConnection) -> bool:
        """
        Check whether the request belongs to a live session.

        A valid session is refreshed (sliding expiry); an expired one is
        evicted.
        """
        if not self.is_configured:
            return True
        sid = self.session_id(request)
        if sid is None:
            return False
        return self.store.touch(sid) is not None

    def logout(self, request: Request) -> None:
        """Remove the requester's session. A no-op for anonymous requests."""
        sid = self.session_id(request)
        if sid is not None:
            self.store.remove(sid)

    def check_credentials(
        self, request: Request, credentials: HTTPBasicCredentials | None = None,
    ) -> bool:
        """
        Authorise a privileged action: a live session or valid Basic credentials.
        """
        if self.is_logged_in(request):
            return True
        if credentials is None:
            return False
        return self.verify_credentials(credentials.username, credentials.password)

    @staticmethod
    def set_cookie(response: Response, token: str) -> None:
        response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")

    @staticmethod
    def clear_cookie(response: Response) -> None:
        response.delete_cookie(SESSION_COOKIE)

    # -- Internal helpers ------------------------------------------------------

    def _create_token(self, session: Session) -> str:
        """Sign the session id into a JWT."""
        payload = {
            "sub": session.user,
            "sid": session.session_id,
            "iat": int(time.time()),
        }
        return jwt.encode(payload, self._signing_key, algorithm=JWT_ALGORITHM)


def require_credentials(gate: AuthGate):
    """
    Create a FastAPI dependency that enforces credentials for an API action.

    The dependency runs before the endpoint body, so a rejected request never
    reaches the miner or server.

    Usage in routes:
        @router.post("/api/rescan", dependencies=[Depends(require_credentials(gate))])
        async def rescan(): ...
    """
    async def _verify(
        request: Request,
        credentials: HTTPBasicCredentials | None = Depends(security),
    ):
        if not gate.check_credentials(request, credentials):
            logger.warning(
                "Rejected %s %s: missing or invalid credentials",
                request.method, request.url.path,
            )
            raise AuthError("Authentication required")
        return True

    return _verify
