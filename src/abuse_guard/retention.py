"""Retention sweep for expired temporary blocks.

Safe on any schedule: it only ever deletes temp_block rows whose expiry has
passed, and classify() already ignores those rows, so a late or skipped
sweep never changes a decision.
"""

from __future__ import annotations

import logging

from abuse_guard.config import RetentionConfig
from abuse_guard.policy import IPPolicyService
from abuse_guard.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


async def run_cleanup(policy: IPPolicyService) -> int:
    removed = await policy.cleanup_expired()
    logger.info("Cleaned up %d expired temporary block(s)", removed)
    return removed


def build_cleanup_task(policy: IPPolicyService, config: RetentionConfig) -> PeriodicTask:
    async def _job() -> int:
        return await run_cleanup(policy)

    return PeriodicTask("retention-cleanup", _job, config.interval_seconds)
