"""
Authentication collaborator for the request boundary.

Users are documents in a collection connector; sessions are documents in a
session connector holding only the user id and identity. Passwords are hashed
with the ``password`` utility namespace (passlib).

Example:
    >>> auth = AuthEngine(manifest.auth, manager.get_connector("user"),
    ...                   manager.get_connector("session"))
    >>> await auth.register({"login": "anna", "password": "s3cret", "name": "Anna"})
    >>> user = await auth.login({"login": "anna", "password": "s3cret"})
    >>> session_id = await auth.create_session(user)
"""

import asyncio
import logging
import secrets
from typing import Any, Dict, Optional

from .connectors import CollectionConnector, SessionConnector
from .exceptions import AuthError
from .manifest import AuthConfig
from .utilities import PasswordHasher


logger = logging.getLogger(__name__)


class AuthEngine:
    def __init__(
        self,
        config: Optional[AuthConfig],
        users: CollectionConnector,
        sessions: SessionConnector,
        hasher: Optional[PasswordHasher] = None,
    ):
        if config is None:
            raise AuthError("'auth' section is missing in the manifest")
        if users is None:
            raise AuthError("User connector was not provided")
        if sessions is None:
            raise AuthError("Session connector was not provided")
        self.config = config
        self.users = users
        self.sessions = sessions
        self.hasher = hasher or PasswordHasher()

    def _user_collection(self):
        return self.users.store.collection(self.users.collection_name)

    async def _find_user(self, identity: Any) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(
            self._user_collection().find_one, {self.config.identity_field: identity}
        )

    def _credentials(self, body: Dict[str, Any]):
        identity = (body or {}).get(self.config.identity_field)
        password = (body or {}).get("password")
        if not identity or not password:
            raise AuthError("Identity or password not provided.")
        return identity, password

    async def register(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a user from a registration form body.

        Every form field except ``password`` is stored; the password is
        replaced by its hash under ``password_field``.

        Raises:
            AuthError: If credentials are missing or the identity is taken.
        """
        identity, password = self._credentials(body)
        if await self._find_user(identity) is not None:
            raise AuthError("User with this identity already exists.")

        user = {k: v for k, v in body.items() if k != "password"}
        user[self.config.identity_field] = identity
        user[self.config.password_field] = self.hasher.hash(password)
        stored = await asyncio.to_thread(self._user_collection().insert, user)
        logger.info(f"Registered user '{identity}'")
        return stored

    async def login(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            AuthError: If credentials are missing or do not match.
        """
        identity, password = self._credentials(body)
        user = await self._find_user(identity)
        if user is None or not self.hasher.verify(password, user.get(self.config.password_field)):
            raise AuthError("Invalid identity or password.")
        return user

    async def create_session(self, user: Dict[str, Any]) -> str:
        """Store a session for ``user`` and return its id."""
        session_id = secrets.token_hex(32)
        await self.sessions.create({
            "_id": session_id,
            "userId": user.get("_id"),
            "login": user.get(self.config.identity_field),
        })
        return session_id

    async def get_session(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        return await self.sessions.get(session_id)

    async def get_user(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Resolve the user document behind a session id."""
        session = await self.get_session(session_id)
        if session is None:
            return None
        return await asyncio.to_thread(self._user_collection().get_by_id, session.get("userId"))

    async def clear_session(self, session_id: Optional[str]) -> None:
        if session_id:
            await self.sessions.remove(session_id)
