"""Inbound chat events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional

from . import log


class EventKind(str, Enum):
    MESSAGE = "message"
    POSTBACK = "postback"


@dataclass(frozen=True)
class InboundEvent:
    """A text message or a button press from one user."""

    kind: EventKind
    user_id: str
    text: Optional[str] = None
    postback_data: Optional[str] = None
    reply_token: Optional[str] = None

    @property
    def is_message(self) -> bool:
        return self.kind is EventKind.MESSAGE

    @property
    def is_postback(self) -> bool:
        return self.kind is EventKind.POSTBACK

    @classmethod
    def message(cls, user_id: str, text: str, *, reply_token: Optional[str] = None) -> "InboundEvent":
        return cls(kind=EventKind.MESSAGE, user_id=user_id, text=text, reply_token=reply_token)

    @classmethod
    def postback(cls, user_id: str, data: str, *, reply_token: Optional[str] = None) -> "InboundEvent":
        return cls(kind=EventKind.POSTBACK, user_id=user_id, postback_data=data, reply_token=reply_token)

    @classmethod
    def from_webhook(cls, payload: Mapping[str, Any]) -> Optional["InboundEvent"]:
        """Build an event from one webhook event object.

        Only text messages and postbacks from identifiable users are
        returned; stickers, follows, images and the like yield ``None``.
        """

        user_id = (payload.get("source") or {}).get("userId")
        if not user_id:
            return None
        reply_token = payload.get("replyToken")
        event_type = payload.get("type")

        if event_type == EventKind.MESSAGE.value:
            message = payload.get("message") or {}
            if message.get("type") != "text":
                return None
            return cls.message(user_id, str(message.get("text", "")), reply_token=reply_token)

        if event_type == EventKind.POSTBACK.value:
            data = (payload.get("postback") or {}).get("data")
            if data is None:
                return None
            return cls.postback(user_id, str(data), reply_token=reply_token)

        return None


def events_from_body(body: Mapping[str, Any]) -> List[InboundEvent]:
    """Extract the supported events from a webhook request body."""

    events = []
    for raw in body.get("events") or []:
        event = InboundEvent.from_webhook(raw)
        if event is None:
            log.debug("Ignoring unsupported webhook event of type '%s'", raw.get("type"))
            continue
        events.append(event)
    return events
