# chat.py
import logging
from datetime import datetime
from typing import List, Optional

from database import Store
from errors import ChatClosed, NotFound, NotParticipant
from feed import MessageFeed
from models import MatchRecord, Message, utcnow

logger = logging.getLogger(__name__)


def get_open_match(store: Store, match_id: str, now: Optional[datetime] = None) -> MatchRecord:
    match = store.get_match(match_id)
    if match is None:
        raise NotFound(f"match {match_id} not found")
    if not match.active or match.is_expired(now or utcnow()):
        raise ChatClosed(f"match {match_id} has ended")
    return match


def send_message(store: Store, feed: MessageFeed, match_id: str, sender_id: str, content: str,
                 now: Optional[datetime] = None) -> Message:
    content = content.strip()
    if not content:
        raise ValueError("Empty message")
    now = now or utcnow()
    match = get_open_match(store, match_id, now)
    if not match.involves(sender_id):
        raise NotParticipant(f"{sender_id} is not part of match {match_id}")

    message = store.create_message(match_id, sender_id, content, now=now)
    delivered = feed.publish(message)
    logger.debug("message %s in match %s pushed to %d subscribers", message.id, match_id, delivered)
    return message


def list_messages(store: Store, match_id: str) -> List[Message]:
    if store.get_match(match_id) is None:
        raise NotFound(f"match {match_id} not found")
    return store.list_messages(match_id)
