"""
Role-rank permission evaluation.

Every privileged action is listed once in ``ACTION_RULES`` with the minimum
role it needs and the extra gates that apply to it. Handlers never compare
roles themselves; they ask the evaluator.

Gates, in evaluation order:

1. the action must be known
2. a banned actor may do nothing
3. the actor's rank must reach the action's minimum, unless the action lets
   resource owners act on their own content
4. muted actors may not post, comment or send messages
5. actions on an account need a target, which may never be the founder,
   may not be the actor itself, and must rank strictly below the actor
"""

import logging
from dataclasses import dataclass, replace

from .exceptions import PermissionDenied
from .types import DenialReason, PolicyDecision, Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionRule:
    """Requirements for one action."""

    min_role: Role
    requires_voice: bool = False
    requires_target: bool = False
    forbid_self: bool = False
    target_below_actor: bool = False
    owner_may_act: bool = False


_SPEAK = ActionRule(Role.USER, requires_voice=True)
_MODERATE = ActionRule(Role.MODERATOR, requires_target=True, forbid_self=True, target_below_actor=True)
_ADMINISTER = ActionRule(Role.ADMIN, requires_target=True, forbid_self=True, target_below_actor=True)

ACTION_RULES: dict[str, ActionRule] = {
    "none": ActionRule(Role.USER),
    "view": ActionRule(Role.USER),
    "post": _SPEAK,
    "comment": _SPEAK,
    "send_message": _SPEAK,
    "update_profile": ActionRule(Role.USER),
    "change_password": ActionRule(Role.USER),
    "delete_comment": ActionRule(Role.MODERATOR, owner_may_act=True),
    "delete_post": ActionRule(Role.MODERATOR, owner_may_act=True),
    "mute": _MODERATE,
    "unmute": _MODERATE,
    "ban": _ADMINISTER,
    "unban": _ADMINISTER,
    "force_logout": _ADMINISTER,
    "reset_password": _ADMINISTER,
    "delete_user": _ADMINISTER,
    "set_role": ActionRule(Role.FOUNDER, requires_target=True, forbid_self=True, target_below_actor=True),
    "manage_invite_code": ActionRule(Role.ADMIN),
    "manage_settings": ActionRule(Role.ADMIN),
}


class PermissionEvaluator:
    """Decides whether a user may perform an action, and why not."""

    def __init__(
        self,
        founder_username: str,
        overrides: dict[str, Role] | None = None,
    ):
        """
        Initialize the evaluator.

        Args:
            founder_username: The account exempt from every moderation action
            overrides: Minimum role per action, replacing the defaults
        """
        self.founder_username = founder_username
        self.rules = dict(ACTION_RULES)

        for action, role in (overrides or {}).items():
            if action not in self.rules:
                raise ValueError(f"Cannot override unknown action '{action}'")
            self.rules[action] = replace(self.rules[action], min_role=role)

    def required_role(self, action: str) -> Role | None:
        rule = self.rules.get(action)
        return rule.min_role if rule else None

    def is_founder(self, user: User) -> bool:
        return user.is_founder or user.username == self.founder_username

    def evaluate(
        self,
        user: User,
        action: str,
        target: User | None = None,
        resource_owner: str | None = None,
    ) -> PolicyDecision:
        """
        Evaluate ``action`` for ``user``.

        Args:
            user: The acting user
            action: Action name from the action table
            target: Account the action is aimed at, if any
            resource_owner: Username owning the content being acted on, if any

        Returns:
            PolicyDecision with the denial reason when refused
        """
        rule = self.rules.get(action)
        if rule is None:
            return self._deny(user, action, DenialReason.UNKNOWN_ACTION)

        if user.banned:
            return self._deny(user, action, DenialReason.BANNED)

        is_owner = rule.owner_may_act and resource_owner is not None and resource_owner == user.username
        if user.rank < rule.min_role.rank and not is_owner:
            return self._deny(user, action, DenialReason.INSUFFICIENT_RANK)

        if rule.requires_voice and user.muted:
            return self._deny(user, action, DenialReason.MUTED)

        if rule.requires_target and target is None:
            return self._deny(user, action, DenialReason.TARGET_REQUIRED)

        if target is not None and action != "none":
            if self.is_founder(target):
                return self._deny(user, action, DenialReason.FOUNDER_PROTECTED)

            if rule.forbid_self and target.username == user.username:
                return self._deny(user, action, DenialReason.SELF_TARGET)

            if rule.target_below_actor and target.rank >= user.rank:
                return self._deny(user, action, DenialReason.TARGET_OUTRANKS)

        return PolicyDecision(allowed=True, action=action)

    def can(
        self,
        user: User,
        action: str,
        target: User | None = None,
        resource_owner: str | None = None,
    ) -> bool:
        return self.evaluate(user, action, target, resource_owner).allowed

    def require(
        self,
        user: User,
        action: str,
        target: User | None = None,
        resource_owner: str | None = None,
    ) -> None:
        """
        Raises:
            PermissionDenied: Carrying the denial reason
        """
        decision = self.evaluate(user, action, target, resource_owner)
        if not decision.allowed:
            raise PermissionDenied(
                decision.reason,
                action,
                {"target": target.username if target else None},
            )

    def _deny(self, user: User, action: str, reason: DenialReason) -> PolicyDecision:
        logger.warning(f"Denied '{action}' for {user.username!r}: {reason.value}")
        return PolicyDecision(allowed=False, action=action, reason=reason)
