"""Duplicate resolution for the per-user conversation list.

Two clients that start a chat with each other at the same time each create a
conversation record, so a snapshot may hold several records for one pair of
participants. Every pass groups records by their participant pair, keeps the
most recently active record of each group and hands the rest to the purger.
The choice depends only on record data, so every client and every pass
agrees on the winner without coordinating.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from chatsync.models.conversation import ConversationDocument
from chatsync.repositories.user_repository import profile_from_user
from chatsync.schemas.conversation import UNKNOWN_USER_NAME, ConversationSummary, ProfileSnapshot
from chatsync.services.purger import DuplicatePurger
from chatsync.utils.logger import get_logger


logger = get_logger(__name__)

ProfileLookup = Callable[[str], Awaitable[Union[ProfileSnapshot, Dict[str, Any], None]]]

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def participant_key(user_a: str, user_b: str) -> str:
    return "_".join(sorted([user_a, user_b]))


def other_participant(doc: ConversationDocument, user_id: str) -> Optional[str]:
    participants = set(doc.get("participants") or [])
    if len(participants) != 2 or user_id not in participants:
        return None
    participants.discard(user_id)
    return participants.pop()


def recency_rank(doc: ConversationDocument) -> Tuple[int, datetime, str]:
    """Sort key for winner selection; the greatest rank wins.

    Records with a last message outrank records that only have a creation
    time, which outrank records with neither. The id breaks exact ties.
    """
    if doc.get("last_message_at") is not None:
        return (2, doc["last_message_at"], str(doc["_id"]))
    if doc.get("created_at") is not None:
        return (1, doc["created_at"], str(doc["_id"]))
    return (0, _NEVER, str(doc["_id"]))


@dataclass
class Resolution:

    # (winning record, other participant id), most recent first
    winners: List[Tuple[ConversationDocument, str]] = field(default_factory=list)
    losers: List[ConversationDocument] = field(default_factory=list)
    skipped: List[ConversationDocument] = field(default_factory=list)


def resolve(snapshot: Iterable[ConversationDocument], user_id: str) -> Resolution:
    resolution = Resolution()
    groups: Dict[str, List[Tuple[ConversationDocument, str]]] = {}
    for doc in snapshot:
        other_id = other_participant(doc, user_id)
        if other_id is None:
            logger.warning("Skipping conversation %s: no other participant for %s", doc.get("_id"), user_id)
            resolution.skipped.append(doc)
            continue
        groups.setdefault(participant_key(user_id, other_id), []).append((doc, other_id))

    for members in groups.values():
        members.sort(key=lambda member: recency_rank(member[0]), reverse=True)
        resolution.winners.append(members[0])
        resolution.losers.extend(doc for doc, _ in members[1:])

    resolution.winners.sort(key=lambda member: recency_rank(member[0]), reverse=True)
    return resolution


async def resolve_profile(doc: ConversationDocument, other_id: str, lookup: Optional[ProfileLookup]) -> ProfileSnapshot:
    profile = None
    if lookup is not None:
        try:
            profile = await lookup(other_id)
        except Exception as exc:
            logger.warning("Profile lookup for %s failed: %s", other_id, exc)
    if isinstance(profile, dict):
        profile = profile_from_user(other_id, profile)
    if profile is not None:
        return profile
    name = (doc.get("participant_names") or {}).get(other_id) or UNKNOWN_USER_NAME
    return ProfileSnapshot(id=other_id, name=name)


class ConversationReconciler:

    def __init__(self, purger: DuplicatePurger) -> None:
        self._purger = purger
        self._purges: Dict[str, asyncio.Task] = {}

    @property
    def pending_purges(self) -> List[str]:
        return [cid for cid, task in self._purges.items() if not task.done()]

    async def reconcile(self, snapshot: Iterable[ConversationDocument], user_id: str, lookup: Optional[ProfileLookup] = None) -> List[ConversationSummary]:
        resolution = resolve(snapshot, user_id)
        for loser in resolution.losers:
            self.schedule_purge(loser)

        profiles = await asyncio.gather(
            *(resolve_profile(doc, other_id, lookup) for doc, other_id in resolution.winners)
        )
        return [
            ConversationSummary(
                id=str(doc["_id"]),
                other_participant=profile,
                last_message=doc.get("last_message"),
                last_message_at=doc.get("last_message_at"),
            )
            for (doc, _), profile in zip(resolution.winners, profiles)
        ]

    def schedule_purge(self, doc: ConversationDocument) -> asyncio.Task:
        conversation_id = str(doc["_id"])
        running = self._purges.get(conversation_id)
        if running is not None and not running.done():
            return running
        logger.info("Scheduling purge of duplicate conversation %s", conversation_id)
        task = asyncio.create_task(
            self._purger.purge(conversation_id, if_last_message_at=doc.get("last_message_at"))
        )
        self._purges[conversation_id] = task
        task.add_done_callback(lambda t, cid=conversation_id: self._forget(cid, t))
        return task

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._purges.get(conversation_id) is task:
            del self._purges[conversation_id]

    async def wait_for_purges(self) -> None:
        while self._purges:
            await asyncio.gather(*list(self._purges.values()), return_exceptions=True)

    def cancel_purges(self) -> None:
        for task in self._purges.values():
            task.cancel()
