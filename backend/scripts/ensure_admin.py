"""Create or promote a chat administrator account.

Usage: python scripts/ensure_admin.py <user_id> <username> [display_name]
"""

import asyncio
import os
import sys

if os.path.exists("backend"):
    sys.path.append(os.path.join(os.getcwd(), "backend"))
else:
    sys.path.append(os.getcwd())

from app.domain.chatrooms.models import ADMIN_ROLE, ChatUser
from app.domain.chatrooms.users import UserRepository
from app.infra.postgres import close_pool, init_pool


async def ensure_admin(user_id: str, username: str, display_name: str) -> None:
    await init_pool()
    try:
        repo = UserRepository()
        existing = await repo.get_user(user_id)
        user = ChatUser(
            id=user_id,
            username=username,
            display_name=display_name,
            avatar_url=existing.avatar_url if existing else None,
            role=ADMIN_ROLE,
            is_active=True,
        )
        await repo.upsert_user(user)
        print(f"{'Promoted' if existing else 'Created'} admin {username} ({user_id})")
    finally:
        await close_pool()


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python scripts/ensure_admin.py <user_id> <username> [display_name]")
        sys.exit(1)
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(ensure_admin(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else sys.argv[2]))
