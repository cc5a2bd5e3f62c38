"""
Verify database setup after running migrations.
Run with: python verify_db_setup.py
"""

from alertledger.config import settings
from alertledger.services import store

TABLES = [
    store.PENDING_TRANSACTIONS,
    store.TRANSACTIONS,
    store.MERCHANT_PATTERNS,
    store.MERCHANT_LOCATIONS,
    store.EMAIL_PARSING_PATTERNS,
    store.EMAIL_LOCATION_PATTERNS,
    store.LOCATION_SAMPLES,
    store.LEARNING_PATTERNS,
    store.DEVICE_TOKENS,
]


def verify_database_setup() -> bool:
    """Check that every table the service writes to exists and is readable."""

    print("=" * 60)
    print("AlertLedger Database Setup Verification")
    print("=" * 60)
    print(f"\nSupabase URL: {settings.SUPABASE_URL}\n")

    db = store.SupabaseStore()
    missing = []

    for table in TABLES:
        try:
            count = db.count(table)
            print(f"✓ {table} ({count} rows)")
        except store.StoreError as e:
            missing.append(table)
            print(f"✗ {table}: {e.context.get('reason')}")

    print("\n" + "=" * 60)
    if missing:
        print("✗ Verification failed!")
        print("\nRun migrations/001_initial_schema.sql in the Supabase SQL editor,")
        print("then check SUPABASE_URL and SUPABASE_SERVICE_KEY in .env")
        return False

    print("✓ Database setup verification complete!")
    return True


if __name__ == "__main__":
    verify_database_setup()
