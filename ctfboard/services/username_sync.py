"""
Username Synchronization Service

Finds and repairs drift between the `users` collection and the `usernames`
reverse index, whose document ids are normalized usernames pointing back at
a user id.

Issue categories:
- orphan: index entry whose user does not exist
- missing: user with a username but no valid index entry for it
- mismatch: index entry for an existing user who has since renamed

A user may own a key only if the entry under it points back at them and
their normalized username equals it. When two users normalize to the same
key, the first claimant keeps it and the other is reported as a conflict.

The fix is admin-only, asks for confirmation with the operation count, and
leaves the collections in a state that scans clean.
"""

from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from ctfboard.constants import Collections
from ctfboard.data_models.identity import Caller
from ctfboard.data_models.username_sync import (
    FixOutcome, MismatchEntry, MissingEntry, OrphanEntry, SyncFixResult, SyncReport, UsernameConflict
)
from ctfboard.database.documents import SERVER_TIMESTAMP, Document, PendingWrite
from ctfboard.services.base import BaseService
from ctfboard.services.identity import IdentityService
from ctfboard.utils.exceptions import StoreError
from ctfboard.utils.logger import setup_logger
from ctfboard.utils.usernames import normalize_username

logger = setup_logger(__name__)

# confirm(operation_count, details) -> proceed?
ConfirmCallback = Callable[[int, List[str]], Awaitable[bool]]


def _display_name(user: Document) -> str:
    name = user.get('displayName')
    if name:
        return name
    return f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()


class UsernameSyncService(BaseService):
    """Service for scanning and fixing username index drift."""

    def __init__(self, store, batch_limit: Optional[int] = None):
        super().__init__(store, batch_limit)
        self.identity = IdentityService(store)

    async def scan(self) -> SyncReport:
        """Classify every inconsistency without writing anything."""
        index_docs = await self.store.query(Collections.USERNAMES)
        user_docs = await self.store.query(Collections.USERS)
        report = self._classify(index_docs, user_docs)

        logger.info(
            f"Username scan: {len(report.orphans)} orphans, {len(report.missing)} missing, "
            f"{len(report.mismatches)} mismatched, {len(report.conflicts)} conflicts"
        )
        return report

    def _classify(self, index_docs: Sequence[Document], user_docs: Sequence[Document]) -> SyncReport:
        users: Dict[str, Document] = {user.id: user for user in user_docs}
        entries: Dict[str, Document] = {entry.id: entry for entry in index_docs}
        keys = {user_id: normalize_username(user.get('username')) for user_id, user in users.items()}

        report = SyncReport(total_usernames=len(entries), total_users=len(users))

        claimed: Dict[str, str] = {}
        stale_entries: Dict[str, List[Document]] = defaultdict(list)

        for key in sorted(entries):
            entry = entries[key]
            user_id = entry.get('userId')
            if user_id not in users:
                report.orphans.append(OrphanEntry(username=key, user_id=user_id, email=entry.get('email')))
                continue
            user_key = keys[user_id]
            if not user_key:
                # User has no usable username; nothing to index against
                continue
            if user_key == key:
                claimed[key] = user_id
            else:
                stale_entries[user_id].append(entry)

        for user_id in sorted(users):
            key = keys[user_id]
            if not key:
                continue
            user = users[user_id]
            holder = claimed.get(key)
            target_taken = holder is not None and holder != user_id

            if target_taken:
                report.conflicts.append(UsernameConflict(
                    user_id=user_id, username=user.get('username'), normalized=key, holder_id=holder
                ))
            elif holder is None:
                claimed[key] = user_id
                if not stale_entries[user_id]:
                    report.missing.append(MissingEntry(
                        user_id=user_id, username=user.get('username'), normalized=key, email=user.get('email')
                    ))

            for entry in stale_entries[user_id]:
                report.mismatches.append(MismatchEntry(
                    indexed_username=entry.id,
                    current_username=user.get('username'),
                    normalized=key,
                    user_id=user_id,
                    email=entry.get('email') or user.get('email'),
                    target_taken=target_taken,
                ))

        return report

    async def fix(self, caller: Caller, confirm: ConfirmCallback) -> SyncFixResult:
        """
        Repair every issue a fresh scan finds.

        The caller must be an admin; this is checked before anything is read
        or written. The caller confirms the operation count before commit.

        Raises:
            InsufficientPrivilegeError: caller is not an admin
            StoreError: a batch failed to commit; earlier batches stay committed
        """
        IdentityService.require_admin(caller)
        # The role on the Caller may be stale, so confirm it against the user document
        caller = IdentityService.require_admin(await self.identity.refresh(caller))

        index_docs = await self.store.query(Collections.USERNAMES)
        user_docs = await self.store.query(Collections.USERS)
        report = self._classify(index_docs, user_docs)

        if report.is_clean:
            logger.info("Username fix: nothing to do")
            return SyncFixResult(
                outcome=FixOutcome.NOTHING_TO_DO,
                details=["ℹ️ No operations to perform - everything is already synchronized"]
            )

        users = {user.id: user for user in user_docs}
        entries = {entry.id: entry for entry in index_docs}
        groups, details = self._plan(report, users, entries, caller)
        operation_count = sum(len(group) for group in groups)
        details.insert(0, f"🔄 Preparing to commit {operation_count} operations in batch...")

        if not await confirm(operation_count, list(details)):
            logger.info(f"Username fix cancelled by {caller.uid}")
            details.append("❌ Operation cancelled by user")
            return SyncFixResult(outcome=FixOutcome.CANCELLED, operation_count=operation_count, details=details)

        try:
            batches, _ = await self.commit_groups(groups)
        except StoreError as e:
            logger.error(f"Username fix batch commit failed: {e}")
            raise

        details.append(f"✅ Successfully committed {operation_count} operations!")
        logger.info(f"Username fix by {caller.uid}: {operation_count} operations in {batches} batches")
        return SyncFixResult(
            outcome=FixOutcome.APPLIED,
            operation_count=operation_count,
            batches_committed=batches,
            details=details,
        )

    def _plan(self, report: SyncReport, users: Dict[str, Document], entries: Dict[str, Document], caller: Caller):
        """Turn a report into write groups. Each group commits in one batch."""
        groups: List[List[PendingWrite]] = []
        details: List[str] = []

        created_keys: Set[str] = {missing.normalized for missing in report.missing}
        created_keys.update(m.normalized for m in report.mismatches if not m.target_taken)

        for missing in report.missing:
            user = users[missing.user_id]
            groups.append([PendingWrite('set', Collections.USERNAMES, missing.normalized, {
                'userId': missing.user_id,
                'email': user.get('email') or '',
                'displayName': _display_name(user),
                'createdAt': user.get('createdAt') or SERVER_TIMESTAMP,
                'updatedAt': SERVER_TIMESTAMP,
                'createdByAdmin': caller.uid,
                'adminAction': True,
            })])
            details.append(f"✅ Will create username document for {missing.normalized}")

        for orphan in report.orphans:
            if orphan.username in created_keys:
                # The create above replaces this entry outright
                details.append(f"♻️ Orphaned username {orphan.username} will be replaced")
                continue
            groups.append([PendingWrite('delete', Collections.USERNAMES, orphan.username)])
            details.append(f"🗑️ Will remove orphaned username: {orphan.username}")

        for mismatch in report.mismatches:
            user = users[mismatch.user_id]
            old_entry = entries[mismatch.indexed_username]
            group: List[PendingWrite] = []

            if not mismatch.target_taken:
                group.append(PendingWrite('set', Collections.USERNAMES, mismatch.normalized, {
                    'userId': mismatch.user_id,
                    'email': old_entry.get('email') or user.get('email') or '',
                    'displayName': user.get('displayName') or old_entry.get('displayName') or '',
                    'createdAt': old_entry.get('createdAt') or user.get('createdAt') or SERVER_TIMESTAMP,
                    'updatedAt': SERVER_TIMESTAMP,
                    'fixedByAdmin': caller.uid,
                    'adminAction': True,
                    'previousUsername': mismatch.indexed_username,
                }))
            if mismatch.indexed_username not in created_keys:
                group.append(PendingWrite('delete', Collections.USERNAMES, mismatch.indexed_username))
            group.append(PendingWrite('update', Collections.USERS, mismatch.user_id, {
                'username': mismatch.normalized,
                'updatedAt': SERVER_TIMESTAMP,
                'lastAdminSync': SERVER_TIMESTAMP,
            }))

            groups.append(group)
            if mismatch.target_taken:
                details.append(
                    f"⚠️ Will drop stale username {mismatch.indexed_username}; "
                    f"{mismatch.normalized} belongs to another user"
                )
            else:
                details.append(f"🔄 Will fix username mismatch: {mismatch.indexed_username} → {mismatch.normalized}")

        return groups, details
