import logging
import uuid
from typing import Callable, List, Optional

from errors import AuthenticationError
from models import UserIdentity

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[UserIdentity]], None]


class IdentityProvider:
    """Holds the signed-in user and notifies subscribers when it changes."""

    def __init__(self):
        self._current: Optional[UserIdentity] = None
        self._listeners: List[Listener] = []

    @property
    def current_user(self) -> Optional[UserIdentity]:
        return self._current

    def sign_in(self, display_name: str, uid: Optional[str] = None, photo_url: Optional[str] = None) -> UserIdentity:
        display_name = (display_name or "").strip()
        if not display_name:
            raise AuthenticationError("A display name is required to sign in.")
        user = UserIdentity(uid=uid or str(uuid.uuid4()), displayName=display_name, photoURL=photo_url)
        self._current = user
        logger.info("Signed in as %s (%s)", user.displayName, user.uid)
        self._emit()
        return user

    def sign_out(self) -> None:
        if self._current is not None:
            logger.info("Signed out %s", self._current.uid)
        self._current = None
        self._emit()

    def require_user(self) -> UserIdentity:
        if self._current is None:
            raise AuthenticationError("Please sign in first.")
        return self._current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Registers a listener; it is called immediately with the current user."""
        self._listeners.append(listener)
        listener(self._current)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._current)
