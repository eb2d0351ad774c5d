"""Initialize database with an admin key and sample data."""
import argparse
import sys
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from flagkit.config import get_settings
from flagkit.database import SessionLocal, engine, Base
from flagkit.exceptions import FlagkitError
from flagkit.middleware.auth import generate_api_key
from flagkit.seed import is_seeded, seed_database


def init_database(generate_key: bool = False):
    """Create tables and seed them unless an API key already exists."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()

    try:
        if is_seeded(db):
            print("✓ Database already initialized")
            return

        admin_api_key = generate_api_key() if generate_key else get_settings().admin_api_key
        summary = seed_database(db, admin_api_key)
        print(f"✓ Created demo flag: {summary['flag']}")
        print(f"✓ Created demo experiment: {summary['experiment']}")

        print("\n" + "="*50)
        print("✓ Database initialized successfully!")
        print("="*50)
        print(f"\nAdmin API Key: {admin_api_key}")
        print("Use it with curl:")
        print(
            f'  curl -H "x-api-key: {admin_api_key}" '
            f"http://localhost:8000/platforms/{summary['platform']}/environments/{summary['environment']}/flags"
        )
        print("\n" + "="*50)

    except (SQLAlchemyError, FlagkitError) as e:
        print(f"✗ Error initializing database: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="Generate a random admin key instead of using ADMIN_API_KEY"
    )
    args = parser.parse_args()
    init_database(generate_key=args.generate_key)
