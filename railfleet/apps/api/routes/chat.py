from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from railfleet.apps.api.deps import Principal, get_chat_gateway, get_current_principal
from railfleet.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from railfleet.services.chat import ChatGateway


router = APIRouter(prefix="/chat", tags=["chat"], responses=DEFAULT_ERROR_RESPONSES)


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    conversation_history: list[ChatTurn] = Field(default_factory=list)


class LegacyChatRequest(BaseModel):
    query: str = Field(min_length=1)


class ChatResponse(BaseModel):
    user: str
    reply: str
    sources: list[str]
    conversation_history: list[ChatTurn]


async def _answer(
    gateway: ChatGateway, principal: Principal, message: str, history: list[ChatTurn]
) -> ChatResponse:
    answer = await gateway.answer(
        message,
        [turn.model_dump() for turn in history],
        principal.identity(),
    )
    return ChatResponse(**answer.to_dict())


@router.post("", response_model=ChatResponse)
async def chat(
    payload: ChatRequest,
    principal: Principal = Depends(get_current_principal),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> ChatResponse:
    return await _answer(gateway, principal, payload.message, payload.conversation_history)


@router.post("/query", response_model=ChatResponse)
async def chat_query(
    payload: LegacyChatRequest,
    principal: Principal = Depends(get_current_principal),
    gateway: ChatGateway = Depends(get_chat_gateway),
) -> ChatResponse:
    # Older clients send {"query"} with no history.
    return await _answer(gateway, principal, payload.query, [])
