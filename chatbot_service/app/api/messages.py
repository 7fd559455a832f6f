from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from common.types.camel import CamelModel
from common.types.datetime import parse_iso8601

from ..config import GuildChatConfig
from ..services.chat_store import ChatStore, get_chat_store


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["guild-chat"])

DEFAULT_GUILD_ID = "default"
ANONYMOUS_USER_ID = "anonymous"


class PostMessageRequest(CamelModel):
    content: Any = None
    guild_id: str | None = None
    user_id: str | None = None
    username: str | None = None
    user_color: str | None = None


def get_guild_chat_config(request: Request) -> GuildChatConfig:
    return request.app.state.guild_chat_config


@router.get("/messages", summary="길드 채팅 메시지 조회")
async def list_messages(
    store: Annotated[ChatStore, Depends(get_chat_store)],
    cfg: Annotated[GuildChatConfig, Depends(get_guild_chat_config)],
    guild_id: str = Query(DEFAULT_GUILD_ID, alias="guildId"),
    limit: int | None = Query(default=None),
    since: str | None = Query(default=None, description="ISO-8601 시각 이후의 메시지만"),
) -> Any:
    effective_limit = cfg.default_limit
    if limit is not None and limit > 0:
        effective_limit = min(limit, cfg.default_limit)

    since_at: datetime | None = parse_iso8601(since) if since else None
    if since and since_at is None:
        return JSONResponse(status_code=400, content={"message": "Invalid since timestamp."})

    messages = store.get_messages(guild_id, limit=effective_limit, since=since_at)
    return {"messages": [m.model_dump(mode="json", by_alias=True) for m in messages]}


@router.post("/messages", summary="길드 채팅 메시지 작성", status_code=201)
async def post_message(
    body: PostMessageRequest,
    store: Annotated[ChatStore, Depends(get_chat_store)],
    cfg: Annotated[GuildChatConfig, Depends(get_guild_chat_config)],
) -> Any:
    content = body.content.strip() if isinstance(body.content, str) else ""
    if not content:
        return JSONResponse(status_code=400, content={"message": "Message content is required."})
    if len(content) > cfg.max_message_length:
        return JSONResponse(
            status_code=413,
            content={"message": f"Message too long. Max length is {cfg.max_message_length} characters."},
        )

    user_id = (body.user_id or "").strip() or ANONYMOUS_USER_ID
    message = store.add_message(
        guild_id=(body.guild_id or "").strip() or DEFAULT_GUILD_ID,
        user_id=user_id,
        username=(body.username or "").strip() or user_id,
        content=content,
        user_color=body.user_color or None,
    )
    return {"message": message.model_dump(mode="json", by_alias=True)}


@router.get("/users", summary="길드 접속자 조회")
async def list_users(
    store: Annotated[ChatStore, Depends(get_chat_store)],
    guild_id: str | None = Query(default=None, alias="guildId"),
) -> Any:
    if not guild_id:
        return JSONResponse(status_code=400, content={"error": "Guild ID is required"})

    removed = store.cleanup_offline_users(guild_id)
    if removed:
        logger.debug("removed %d idle users from guild %s", removed, guild_id)
    users = store.get_online_users(guild_id)
    return {"users": [u.model_dump(mode="json", by_alias=True) for u in users]}
