"""
Seed script to create (or reset) the first admin login and worker.

Run with env set:
  ADMIN_EMAIL=admin@example.com
  ADMIN_PASSWORD=YourSecurePassword
  python -m tarot_panel.db.seed_admin
"""
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.models import User
from tarot_panel.auth.security import hash_password
from tarot_panel.core.config import settings
from tarot_panel.core.models import Worker
from tarot_panel.core.models.worker import ROLE_ADMIN
from tarot_panel.db.session import AsyncSessionLocal

DEFAULT_ADMIN_DISPLAY_NAME = "Administración"


async def seed_admin(db: AsyncSession) -> None:
    email = (settings.admin_email or "").strip().lower()
    password = settings.admin_password
    if not email or not password:
        print("ADMIN_EMAIL / ADMIN_PASSWORD not set; nothing to do.")
        return

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(email=email, password_hash=hash_password(password))
        db.add(user)
        await db.flush()
        print("Created admin user:", email)
    else:
        user.password_hash = hash_password(password)
        print("Reset password for existing user:", email)

    result = await db.execute(select(Worker).where(Worker.user_id == user.id))
    worker = result.scalar_one_or_none()
    if worker is None:
        db.add(
            Worker(
                user_id=user.id,
                role=ROLE_ADMIN,
                display_name=DEFAULT_ADMIN_DISPLAY_NAME,
                email=email,
                is_active=True,
            )
        )
        print("Created admin worker profile.")
    else:
        worker.role = ROLE_ADMIN
        worker.is_active = True
        print("Promoted existing worker to admin.")

    await db.commit()
    print("Admin seed done.")


async def main() -> None:
    async with AsyncSessionLocal() as db:
        try:
            await seed_admin(db)
        except Exception as e:
            await db.rollback()
            print("Error:", e)
            raise


if __name__ == "__main__":
    asyncio.run(main())
