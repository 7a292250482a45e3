from datetime import datetime, timezone

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

import kaskrout.models  # noqa: F401  registers the tables on Base.metadata
from kaskrout.config import settings
from kaskrout.db import Base, SessionLocal, engine
from kaskrout.models import User
from kaskrout.security import hash_password


def ensure_admin(db) -> None:
    if not settings.admin_password:
        print("ADMIN_PASSWORD not set, skipping admin account")
        return
    existing = db.execute(select(User).where(User.name == settings.admin_name)).scalar_one_or_none()
    if existing is not None:
        print(f"Admin account '{settings.admin_name}' already exists")
        return
    stamp = datetime.now(timezone.utc)
    db.add(
        User(
            name=settings.admin_name,
            password_hash=hash_password(settings.admin_password),
            role="admin",
            created_at=stamp,
            updated_at=stamp,
        )
    )
    db.commit()
    print(f"Created admin account '{settings.admin_name}'")


def main() -> None:
    print(f"DATABASE_URL={settings.database_url}")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("DB connection OK")
        Base.metadata.create_all(bind=engine)
        print("Schema OK")
        with SessionLocal() as db:
            ensure_admin(db)
    except SQLAlchemyError as exc:
        print("DB bootstrap FAILED")
        print(exc)


if __name__ == "__main__":
    main()
