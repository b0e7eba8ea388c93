"""Bot facade: wire the collaborators together and process inbound events."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, List, Mapping, Optional

import httpx

from . import log
from .data_manager import ConfigSettings
from .directory import LineProfileClient, UserDirectory
from .events import InboundEvent, events_from_body
from .ledger import LedgerStore
from .messages import Message, MessageCatalog
from .router import route_event
from .runtime import FlowContext, load_settings, open_store
from .sessions import SessionStore


class InventoryBot:
    """Entry point for chat events.

    Events of one user are handled strictly in arrival order; events of
    different users interleave freely. A failure while handling an event
    never escapes: it is logged, the user's session is cleared and a generic
    error text is returned.
    """

    def __init__(
        self,
        context: FlowContext,
        *,
        sessions: Optional[SessionStore] = None,
        profile_client: Optional[LineProfileClient] = None,
    ) -> None:
        self.context = context
        self.sessions = sessions or SessionStore()
        self._profile_client = profile_client

    @property
    def store(self) -> LedgerStore:
        return self.context.store

    async def handle_event(self, event: InboundEvent) -> List[Message]:
        async with self.sessions.hold(event.user_id) as session:
            try:
                return await route_event(event, session, self.context)
            except Exception:
                log.exception("Unhandled error while processing an event from '%s'", event.user_id)
                session.clear_all()
                return [self.context.text("ERROR_GENERIC")]

    async def handle_webhook(self, body: Mapping[str, Any]) -> List[List[Message]]:
        """Handle every supported event of a webhook body; replies keep the event order."""

        events = events_from_body(body)
        return list(await asyncio.gather(*(self.handle_event(event) for event in events)))

    async def aclose(self) -> None:
        if self._profile_client is not None:
            await self._profile_client.aclose()


def build_bot(
    settings: ConfigSettings,
    store: LedgerStore,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> InventoryBot:
    """Assemble a bot around an open store."""

    client = None
    if settings.line.channel_access_token:
        client = LineProfileClient.from_settings(settings.line, http_client=http_client)
    else:
        log.warning("No channel access token configured; unknown users get '%s'", settings.flows.unknown_user)

    directory = UserDirectory(store, client, fallback_name=settings.flows.unknown_user)
    context = FlowContext(
        settings=settings,
        store=store,
        catalog=MessageCatalog(settings.messages),
        directory=directory,
    )
    return InventoryBot(context, profile_client=client)


def load_bot(config_path: Optional[Path] = None) -> InventoryBot:
    """Load configuration, open the workbook and build the bot."""

    settings = load_settings(config_path)
    return build_bot(settings, open_store(settings))
