import logging
from typing import Iterable, Optional

from .errors import AuthenticationError, AuthorizationError
from .models import User, TeamMember, MemberRole
from .store import Store

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid token")
    return token.strip()


def authenticate(authorization: Optional[str], store: Store) -> User:
    """Resolve the Authorization header to a user via the auth provider."""
    user = store.get_user_by_token(bearer_token(authorization))
    if user is None:
        raise AuthenticationError("Invalid token")
    return user


def require_membership(store: Store, team_id: str, user: User,
                       roles: Optional[Iterable[MemberRole]] = None) -> TeamMember:
    membership = store.get_membership(team_id, user.id)
    if membership is None or (roles is not None and membership.role not in set(roles)):
        logger.info(f"🚫 {user.id} denied access to team {team_id}")
        raise AuthorizationError("Access denied")
    return membership
