"""Retrieval-augmented chat: search for context, then ask the completion model.

Both collaborators are optional. Missing or failing search yields an empty
context; missing or failing completion yields a labeled placeholder reply.
Neither failure turns the request into an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Sequence

from railfleet.agent.prompts import build_messages, role_label
from railfleet.core.config import Settings, get_settings
from railfleet.core.errors import CompletionError, SearchError
from railfleet.providers.completion.base import CompletionProvider
from railfleet.providers.completion.factory import get_completion_provider
from railfleet.providers.search.base import SearchHit, SearchProvider
from railfleet.providers.search.factory import get_search_provider
from railfleet.services.auth.tokens import Identity


logger = logging.getLogger(__name__)

PLACEHOLDER_LABEL = "[placeholder response]"


@dataclass
class ChatAnswer:
    user: str
    reply: str
    sources: list[str]
    conversation_history: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "reply": self.reply,
            "sources": self.sources,
            "conversation_history": self.conversation_history,
        }


def unique_sources(hits: Sequence[SearchHit]) -> list[str]:
    # First-seen order, duplicates dropped.
    seen: list[str] = []
    for hit in hits:
        if hit.source not in seen:
            seen.append(hit.source)
    return seen


def placeholder_reply(message: str, document_count: int) -> str:
    return (
        f'{PLACEHOLDER_LABEL} Mock response for: "{message}"\n\n'
        f"Found {document_count} relevant documents.\n"
        "The completion service is not available. Configure Azure OpenAI for real responses."
    )


class ChatGateway:
    def __init__(
        self,
        *,
        search: SearchProvider | None,
        completion: CompletionProvider | None,
        settings: Settings | None = None,
    ) -> None:
        self._search = search
        self._completion = completion
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ChatGateway":
        settings = settings or get_settings()
        return cls(
            search=get_search_provider(settings),
            completion=get_completion_provider(settings),
            settings=settings,
        )

    @property
    def search_enabled(self) -> bool:
        return self._search is not None

    @property
    def completion_enabled(self) -> bool:
        return self._completion is not None

    async def _retrieve(self, message: str) -> list[SearchHit]:
        if self._search is None:
            return []
        try:
            return await self._search.search(message, self._settings.chat_top_k)
        except SearchError as exc:
            logger.warning("chat_search_failed error=%s", exc.message)
            return []

    async def answer(
        self,
        message: str,
        history: Sequence[dict[str, str]],
        identity: Identity,
    ) -> ChatAnswer:
        hits = await self._retrieve(message)
        sources = unique_sources(hits)

        reply: str | None = None
        if self._completion is not None:
            messages = build_messages(
                user_name=identity.name,
                user_email=identity.email,
                role=role_label(
                    identity.groups,
                    supervisor_group_id=self._settings.supervisor_group_id,
                    technician_group_id=self._settings.technician_group_id,
                ),
                hits=hits,
                history=history,
                user_message=message,
            )
            try:
                reply = await self._completion.complete(messages)
            except CompletionError as exc:
                logger.warning("chat_completion_failed error=%s", exc.message)
        if reply is None:
            reply = placeholder_reply(message, len(hits))

        logger.info(
            "chat_answered email=%s documents=%s sources=%s", identity.email, len(hits), len(sources)
        )
        conversation = [{"role": msg["role"], "content": msg["content"]} for msg in history]
        conversation.append({"role": "user", "content": message})
        conversation.append({"role": "assistant", "content": reply})
        return ChatAnswer(user=message, reply=reply, sources=sources, conversation_history=conversation)
