"""
Delete expired pending signups (never paid) once, outside the scheduler.
Completed signups are never deleted.
Usage: python scripts/cleanup_pending_signups.py
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.database import SessionLocal
from app.services.signups import SignupStore


def main():
    db = SessionLocal()
    try:
        deleted = SignupStore(db).delete_expired()
        print(f"Done. Deleted {deleted} expired pending signup(s).")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
