"""
Authentication utilities for extracting the caller from Cognito tokens.
Role checks are collapsed into capability predicates on Caller.
"""
from typing import Iterable, List, Optional


TRANSCRIBER_GROUP = 'transcriber'
REVIEWER_GROUP = 'reviewer'
ADMIN_GROUP = 'admin'


class Caller:
    """Authenticated identity plus the capabilities its groups grant."""

    def __init__(self, user_id: str, groups: Iterable[str] = ()):
        self.user_id = user_id
        self.groups = frozenset(g.strip().lower() for g in groups if g and g.strip())

    @property
    def can_claim(self) -> bool:
        return bool(self.groups & {TRANSCRIBER_GROUP, ADMIN_GROUP})

    @property
    def can_review(self) -> bool:
        return bool(self.groups & {REVIEWER_GROUP, ADMIN_GROUP})

    @property
    def can_administer(self) -> bool:
        return ADMIN_GROUP in self.groups

    def __repr__(self) -> str:
        return f"Caller({self.user_id!r}, {sorted(self.groups)!r})"


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> List[str]:
    """Extract user groups (transcriber, reviewer, admin) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return list(groups or [])
    except (KeyError, TypeError, AttributeError):
        return []


def get_caller(event: dict) -> Optional[Caller]:
    """Build the Caller for an API Gateway event, or None when unauthenticated."""
    user_id = get_user_sub(event)
    if not user_id:
        return None
    return Caller(user_id, get_user_groups(event))
