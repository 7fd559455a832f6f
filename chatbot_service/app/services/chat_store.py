from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from fastapi import Request

from common.types.camel import CamelModel
from common.types.datetime import UtcDateTime, utc_now


logger = logging.getLogger(__name__)

MAX_MESSAGES_PER_GUILD = 1000
USER_TIMEOUT = timedelta(minutes=5)
OFFLINE_CLEANUP_THRESHOLD = timedelta(minutes=30)

USER_COLORS: tuple[str, ...] = (
    "#06b6d4",  # cyan
    "#ec4899",  # pink
    "#eab308",  # yellow
    "#8b5cf6",  # purple
    "#10b981",  # green
    "#f97316",  # orange
    "#3b82f6",  # blue
    "#ef4444",  # red
)


class UserStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


class GuildChatMessage(CamelModel):
    id: str
    guild_id: str
    user_id: str
    username: str
    content: str
    timestamp: UtcDateTime
    user_color: str


class ChatUser(CamelModel):
    id: str
    username: str
    color: str
    status: UserStatus = UserStatus.ONLINE
    last_seen: UtcDateTime


@dataclass(slots=True)
class _GuildData:
    messages: list[GuildChatMessage] = field(default_factory=list)
    users: dict[str, ChatUser] = field(default_factory=dict)


def generate_user_color(user_id: str) -> str:
    """user_id 로부터 항상 같은 색을 고른다."""

    acc = 0
    for ch in user_id:
        acc = (ord(ch) + ((acc << 5) - acc)) & 0xFFFFFFFF
    if acc >= 0x80000000:
        acc -= 0x100000000
    return USER_COLORS[abs(acc) % len(USER_COLORS)]


class ChatStore:
    """길드별 채팅 메시지/접속자를 메모리에 보관하는 저장소.

    프로세스 재시작 시 사라진다. 단일 이벤트 루프에서만 사용한다.
    """

    def __init__(
        self,
        *,
        max_messages: int = MAX_MESSAGES_PER_GUILD,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._guilds: dict[str, _GuildData] = {}
        self._max_messages = max_messages
        self._clock = clock

    def _guild(self, guild_id: str) -> _GuildData:
        guild = self._guilds.get(guild_id)
        if guild is None:
            guild = _GuildData()
            self._guilds[guild_id] = guild
        return guild

    def get_messages(
        self, guild_id: str, limit: int = 50, since: datetime | None = None
    ) -> list[GuildChatMessage]:
        messages = self._guild(guild_id).messages
        if since is not None:
            messages = [m for m in messages if m.timestamp > since]
        if limit <= 0:
            return []
        return list(messages[-limit:])

    def add_message(
        self,
        guild_id: str,
        user_id: str,
        username: str,
        content: str,
        user_color: str | None = None,
    ) -> GuildChatMessage:
        guild = self._guild(guild_id)
        color = user_color or self._existing_color(guild, user_id) or generate_user_color(user_id)

        message = GuildChatMessage(
            id=f"msg_{uuid.uuid4().hex[:12]}",
            guild_id=guild_id,
            user_id=user_id,
            username=username,
            content=content,
            timestamp=self._clock(),
            user_color=color,
        )
        guild.messages.append(message)
        if len(guild.messages) > self._max_messages:
            del guild.messages[: len(guild.messages) - self._max_messages]

        self.update_user_status(guild_id, user_id, username, user_color)
        return message

    @staticmethod
    def _existing_color(guild: _GuildData, user_id: str) -> str | None:
        user = guild.users.get(user_id)
        return user.color if user is not None else None

    def update_user_status(
        self,
        guild_id: str,
        user_id: str,
        username: str,
        color: str | None = None,
    ) -> ChatUser:
        guild = self._guild(guild_id)
        now = self._clock()

        user = guild.users.get(user_id)
        if user is None:
            user = ChatUser(
                id=user_id,
                username=username,
                color=color or generate_user_color(user_id),
                last_seen=now,
            )
            guild.users[user_id] = user

        user.status = UserStatus.ONLINE
        user.last_seen = now
        if color:
            user.color = color
        return user

    def get_online_users(self, guild_id: str) -> list[ChatUser]:
        """5분 안에 본 사용자는 online, 10분 안이면 away. 그 이상은 목록에서 뺀다."""

        now = self._clock()
        visible: list[ChatUser] = []
        for user in self._guild(guild_id).users.values():
            idle = now - user.last_seen
            if idle < USER_TIMEOUT:
                user.status = UserStatus.ONLINE
                visible.append(user)
            elif idle < USER_TIMEOUT * 2:
                user.status = UserStatus.AWAY
                visible.append(user)
            else:
                user.status = UserStatus.OFFLINE
        return sorted(visible, key=lambda u: u.username.casefold())

    def cleanup_offline_users(self, guild_id: str) -> int:
        guild = self._guild(guild_id)
        now = self._clock()
        stale = [uid for uid, u in guild.users.items() if now - u.last_seen > OFFLINE_CLEANUP_THRESHOLD]
        for uid in stale:
            del guild.users[uid]
        return len(stale)

    def seed_demo_data(self, guild_id: str) -> None:
        self.update_user_status(guild_id, "user_alex", "Alex", "#06b6d4")
        self.update_user_status(guild_id, "user_brooke", "Brooke", "#ec4899")
        self.update_user_status(guild_id, "user_chris", "Chris", "#eab308")
        self.update_user_status(guild_id, "user_devon", "Devon", "#8b5cf6")

        self.add_message(guild_id, "user_alex", "Alex", "Welcome to slime.chat!", "#06b6d4")
        self.add_message(guild_id, "user_brooke", "Brooke", "Hey everyone! Excited to be here!", "#ec4899")
        self.add_message(guild_id, "user_chris", "Chris", "This chat looks amazing!", "#eab308")
        logger.info("seeded demo chat data for guild %s", guild_id)


def get_chat_store(request: Request) -> ChatStore:
    return request.app.state.chat_store
