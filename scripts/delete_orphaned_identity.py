"""
Delete an auth identity left behind by a failed provisioning attempt
(logged at CRITICAL as "ORPHANED IDENTITY"). Refuses if a profile is linked to it.
Usage: python scripts/delete_orphaned_identity.py <identity_id>
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import get_settings, auth_provider_configured
from app.database import SessionLocal
from app.models.profile import Profile
from app.services.identity import IdentityProvisioner, IdentityServiceError


def main():
    identity_id = (sys.argv[1] if len(sys.argv) > 1 else "").strip()
    if not identity_id:
        print("Usage: python scripts/delete_orphaned_identity.py <identity_id>")
        sys.exit(1)

    settings = get_settings()
    if not auth_provider_configured(settings):
        print("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env")
        sys.exit(1)

    db = SessionLocal()
    try:
        if db.query(Profile).filter(Profile.id == identity_id).first():
            print(f"Identity {identity_id} has a profile; it is not an orphan. Nothing deleted.")
            sys.exit(1)
    finally:
        db.close()

    identities = IdentityProvisioner(settings.supabase_url, settings.supabase_service_role_key)
    try:
        identities.delete(identity_id)
    except IdentityServiceError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        identities.close()
    print(f"Deleted orphaned identity: {identity_id}")


if __name__ == "__main__":
    main()
