from __future__ import annotations

import logging
from typing import Iterable

from cakeday.models import Account, LogicalEvent, RawEventRecord


logger = logging.getLogger(__name__)


def is_account_allowed(account: Account | None, blacklist: set[Account]) -> bool:
    # Records without a proper account cannot be blacklisted.
    if account is None or not account.name or not account.type:
        return True
    return Account(account.name, account.type) not in blacklist


def dedupe_events(records: Iterable[RawEventRecord], blacklist: set[Account]) -> list[LogicalEvent]:
    """Drop blacklisted records and collapse one contact's events seen through linked accounts.

    The first record seen for an identity key wins; output keeps first-seen order.
    """
    seen: set[tuple[str | None, str, str | None]] = set()
    logical_events: list[LogicalEvent] = []
    skipped_blacklisted = 0
    for record in records:
        if not is_account_allowed(record.account, blacklist):
            skipped_blacklisted += 1
            continue
        event = LogicalEvent(record)
        key = event.identity_key
        if key in seen:
            logger.debug("Duplicate event dropped, identifier %r", key)
            continue
        seen.add(key)
        logical_events.append(event)

    if skipped_blacklisted:
        logger.info("Skipped %d events from blacklisted accounts", skipped_blacklisted)
    return logical_events
