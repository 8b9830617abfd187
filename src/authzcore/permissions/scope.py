"""Scope evaluation: which breadth of data makes a target visible to a user.

Role gates the action, scope gates the data: nothing here looks at the role
except for the list-mode cap.
"""

from __future__ import annotations

from typing import Optional

from ..exceptions import ValidationError
from .constants import MembershipKind, Scope, SubscriptionTier, Visibility
from .models import TargetRef, UserContext
from .subscriptions import TIER_SCOPE_CAPS


class ScopeEvaluator:
    """Computes the minimal scope for a target, or the list-mode maximum."""

    @staticmethod
    def validate_target(target: TargetRef) -> None:
        """Reject malformed target references.

        Raises:
            ValidationError: empty owner, team visibility without ``team_id``,
                organization visibility without ``organization_id``, or a
                team without its organization.
        """
        if not target.owner_id:
            raise ValidationError("Target has no owner")
        if target.visibility == Visibility.TEAM and not target.team_id:
            raise ValidationError("Team visibility requires team_id")
        if target.visibility == Visibility.ORGANIZATION and not target.organization_id:
            raise ValidationError("Organization visibility requires organization_id")
        if target.team_id and not target.organization_id:
            raise ValidationError("team_id requires organization_id")

    def resolve(self, user: UserContext, target: TargetRef) -> Optional[Scope]:
        """Minimal scope under which ``user`` sees ``target``; first match wins.

        Returns None when no membership makes the target visible.
        """
        self.validate_target(target)
        if target.owner_id == user.user_id:
            return Scope.OWN
        if target.visibility == Visibility.TEAM and user.is_team_member(target.team_id or ""):
            return Scope.TEAM
        if target.visibility == Visibility.ORGANIZATION and user.is_organization_member(
            target.organization_id or ""
        ):
            return Scope.ORGANIZATION
        return None

    @staticmethod
    def membership_scope(user: UserContext) -> Scope:
        """Broadest scope the user's memberships reach."""
        kinds = {m.scope_kind for m in user.memberships}
        if MembershipKind.ORGANIZATION in kinds:
            return Scope.ORGANIZATION
        if MembershipKind.TEAM in kinds:
            return Scope.TEAM
        return Scope.OWN

    def list_scope(self, user: UserContext, role_cap: Scope, tier: SubscriptionTier) -> Scope:
        """Maximum listing scope: memberships capped by ``min(role_cap, tier cap)``."""
        cap = min(role_cap, TIER_SCOPE_CAPS[tier])
        return min(self.membership_scope(user), cap)


__all__ = ["ScopeEvaluator"]
