"""Level policy resolution.

Turns a board's level policy into the chain an item has to pass and
answers who may decide at each position of that chain.
"""

import logging

from boardflow.models.board import BoardItem
from boardflow.services.approval.collaborators import MembershipDirectory
from boardflow.services.approval.schemas import (
    LevelPolicy,
    ResolvedLevel,
    WorkflowEvaluation,
)

logger = logging.getLogger(__name__)


class LevelPolicyResolver:
    """Resolves level chains and approver eligibility.

    Level counts are snapshotted onto the item at submission, so a policy
    edit only changes the length of chains submitted afterwards.
    Eligibility is always evaluated against the current policy.
    """

    def __init__(self, directory: MembershipDirectory):
        """Initialize resolver.

        @param directory - Membership directory used for eligibility
        """
        self.directory = directory

    @staticmethod
    def levels_for(policy: LevelPolicy, item: BoardItem) -> list[ResolvedLevel]:
        """Resolve the chain an item requires under a policy.

        Disabled levels are skipped. When amount rules match the item's
        amount, the rule with the highest ``min_amount`` caps the chain to
        its first ``levels`` enabled levels.

        @param policy - Board level policy
        @param item - Item being submitted
        @returns Enabled levels numbered 1..k
        """
        if not policy.enabled:
            return []

        enabled = [rule for rule in policy.levels if rule.enabled]

        if item.amount is not None:
            matching = [
                rule for rule in policy.amount_rules if item.amount >= rule.min_amount
            ]
            if matching:
                routing = max(matching, key=lambda rule: rule.min_amount)
                enabled = enabled[: routing.levels]

        return [
            ResolvedLevel(ordinal=ordinal, rule=rule)
            for ordinal, rule in enumerate(enabled, start=1)
        ]

    @staticmethod
    def level_at(policy: LevelPolicy, ordinal: int) -> ResolvedLevel | None:
        """Map a chain ordinal back to the currently configured level.

        Amount routing only truncates the chain, so ordinal k is always the
        k-th enabled level.

        @param policy - Board level policy
        @param ordinal - Chain ordinal
        @returns Resolved level or None if the policy no longer has it
        """
        enabled = [rule for rule in policy.levels if rule.enabled]
        if ordinal < 1 or ordinal > len(enabled):
            return None
        return ResolvedLevel(ordinal=ordinal, rule=enabled[ordinal - 1])

    async def is_eligible(
        self,
        user_id: str,
        level: int,
        item: BoardItem,
        policy: LevelPolicy,
    ) -> bool:
        """Check whether a user may decide a chain position of an item.

        @param user_id - Acting user
        @param level - Chain ordinal
        @param item - Item under review
        @param policy - Current board policy
        @returns True if the user matches the level's rule in the item's workspace
        """
        resolved = self.level_at(policy, level)
        if resolved is None:
            logger.debug(f"Level {level} no longer configured on board {item.board_id}")
            return False

        approvers = await self.directory.list_eligible_approvers(
            item.workspace_id, resolved.rule
        )
        return user_id in approvers

    @staticmethod
    def last_level(item: BoardItem) -> int:
        """Get the final chain ordinal of an item's submitted chain.

        Items without a snapshot count as single-level chains.
        """
        return item.approval_level_count or 1

    async def evaluate(self, policy: LevelPolicy, item: BoardItem) -> WorkflowEvaluation:
        """Describe what submitting an item would require right now.

        @param policy - Board level policy
        @param item - Item to evaluate
        @returns Required and skipped levels with eligible approvers per ordinal
        """
        resolved = self.levels_for(policy, item)
        required = {level.rule.level for level in resolved}

        eligible: dict[int, list[str]] = {}
        for level in resolved:
            eligible[level.ordinal] = await self.directory.list_eligible_approvers(
                item.workspace_id, level.rule
            )

        return WorkflowEvaluation(
            board_id=item.board_id,
            item_id=item.id,
            enabled=policy.enabled,
            required_levels=[level.rule.level for level in resolved],
            skipped_levels=[
                rule.level for rule in policy.levels if rule.level not in required
            ],
            eligible_approvers=eligible,
        )
