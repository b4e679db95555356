"""Hosting-platform collaborators: who is asking, what they may do, and side effects."""
import uuid
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Requester:
    """Identity attached to one client connection."""
    post_id: Optional[str]
    user_id: Optional[str]
    username: Optional[str] = None
    community: str = config.DEFAULT_COMMUNITY

    @property
    def display_name(self) -> str:
        return self.username or config.ANONYMOUS_USERNAME


class ModeratorDirectory:
    """Moderator permissions per community. Looked up on every request, never cached by callers."""

    def __init__(self, grants: Optional[Dict[Tuple[str, str], Set[str]]] = None):
        self._grants: Dict[Tuple[str, str], Set[str]] = dict(grants or {})

    @classmethod
    def from_config(cls, usernames: Iterable[str] = config.MODERATORS,
                    community: str = config.DEFAULT_COMMUNITY) -> "ModeratorDirectory":
        return cls({(community, name.lower()): {"all"} for name in usernames})

    def set_permissions(self, community: str, username: str, permissions: Iterable[str]):
        self._grants[(community, username.lower())] = set(permissions)

    def revoke(self, community: str, username: str):
        self._grants.pop((community, username.lower()), None)

    async def get_moderator_permissions(self, community: str, username: Optional[str]) -> Set[str]:
        if not username:
            return set()
        return set(self._grants.get((community, username.lower()), set()))


def has_elevated_privilege(permissions: Iterable[str]) -> bool:
    return any(p in config.ADMIN_PERMISSIONS for p in permissions)


class HostActions(ABC):
    """Platform side effects the router may trigger."""

    @abstractmethod
    async def create_post(self, title: str, community: str) -> str:
        """Create a post and return its id."""
        pass

    @abstractmethod
    async def notify(self, text: str) -> None:
        pass

    @abstractmethod
    async def navigate(self, target: str) -> None:
        pass


class LocalHostActions(HostActions):
    """Stand-alone host: posts get generated ids, toasts and navigation are logged."""

    def __init__(self):
        self.created_posts: List[dict] = []

    async def create_post(self, title, community):
        post_id = f"t3_{uuid.uuid4().hex[:8]}"
        self.created_posts.append({"post_id": post_id, "title": title, "community": community})
        logger.info("Created post %s ('%s') in %s", post_id, title, community)
        return post_id

    async def notify(self, text):
        logger.info("Notify: %s", text)

    async def navigate(self, target):
        logger.info("Navigate to %s", target)
