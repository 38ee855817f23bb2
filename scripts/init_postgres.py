"""
Check the PostgreSQL database for the campus events service.
Run once before migrating: python scripts/init_postgres.py

Requires: PostgreSQL installed and running. Create user and database:

  sudo -u postgres psql
  CREATE USER events WITH PASSWORD 'events';
  CREATE DATABASE campus_events OWNER events;
  GRANT ALL PRIVILEGES ON DATABASE campus_events TO events;
  \q

Then apply the schema with: alembic upgrade head
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import create_engine, text
from app.config import settings


def main():
    url = settings.get_database_url()
    if not url.startswith("postgresql"):
        print("DATABASE_URL is not PostgreSQL. Skipping.")
        return
    try:
        engine = create_engine(url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            isolation = conn.execute(text("SHOW default_transaction_isolation")).scalar()
        print(f"PostgreSQL connection OK. Default isolation: {isolation}")
        print(f"Registrations run at {settings.REGISTRATION_ISOLATION_LEVEL}.")
    except Exception as e:
        print(f"Cannot connect to PostgreSQL: {e}")
        print("\nCreate database first:")
        print(f"  psql -U postgres -c \"CREATE USER {settings.POSTGRES_USER} WITH PASSWORD '...';\"")
        print(f"  psql -U postgres -c \"CREATE DATABASE {settings.POSTGRES_DB} OWNER {settings.POSTGRES_USER};\"")
        sys.exit(1)


if __name__ == "__main__":
    main()
