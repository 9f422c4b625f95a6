"""
Database initialization script
Run this to create tables and seed demo data (admin, service types, buyers, zip coverage)
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from app.core.database import SessionLocal, create_tables
from app.core.security import get_password_hash
from app.main import seed_database
from app.models import (
    AdminUser, Buyer, BuyerType, BuyerServiceConfig, BuyerServiceZipCode, ServiceType, ZipCodeMetadata,
)
from app.core.encryption import encrypt_credentials
from app.services.webhook_signatures import generate_webhook_secret

DEMO_ZIP_CODES = [
    {"zip_code": "10001", "city": "New York", "state": "NY", "county": "New York", "timezone": "America/New_York"},
    {"zip_code": "60601", "city": "Chicago", "state": "IL", "county": "Cook", "timezone": "America/Chicago"},
    {"zip_code": "90210", "city": "Beverly Hills", "state": "CA", "county": "Los Angeles", "timezone": "America/Los_Angeles"},
    {"zip_code": "78701", "city": "Austin", "state": "TX", "county": "Travis", "timezone": "America/Chicago"},
    {"zip_code": "33101", "city": "Miami", "state": "FL", "county": "Miami-Dade", "timezone": "America/New_York"},
]

DEMO_BUYERS = [
    {
        "name": "HomeAdvisor",
        "type": BuyerType.NETWORK,
        "api_url": "https://api.homeadvisor.example/leads",
        "auth_config": {"type": "apiKey", "credentials": {"apiKey": "demo-homeadvisor-key"}},
        "contact_email": "partners@homeadvisor.example",
        "min_bid": 15, "max_bid": 150,
    },
    {
        "name": "Modernize",
        "type": BuyerType.NETWORK,
        "api_url": "https://api.modernize.example/v1",
        "auth_config": {"type": "bearer", "credentials": {"token": "demo-modernize-token"}},
        "contact_email": "api@modernize.example",
        "min_bid": 20, "max_bid": 200,
    },
    {
        "name": "ABC Roofing",
        "type": BuyerType.CONTRACTOR,
        "api_url": None,
        "auth_config": {"type": "none"},
        "contact_email": "office@abcroofing.example",
        "min_bid": 35, "max_bid": 35.01,
    },
]


def init_db():
    """Initialize database with tables"""
    print("Creating database tables...")
    create_tables()
    print("✓ Tables created successfully")


def seed_data():
    """Seed demo data"""
    db = SessionLocal()

    try:
        print("\nSeeding initial data...")
        seed_database(db)

        admin = db.query(AdminUser).filter(AdminUser.email == "admin@example.com").first()
        if not admin:
            db.add(AdminUser(
                email="admin@example.com",
                full_name="System Administrator",
                hashed_password=get_password_hash("admin123"),
                role="admin",
            ))
            print("✓ Admin user created (email: admin@example.com, password: admin123)")

        for row in DEMO_ZIP_CODES:
            if not db.query(ZipCodeMetadata).filter(ZipCodeMetadata.zip_code == row["zip_code"]).first():
                db.add(ZipCodeMetadata(**row))
        db.flush()

        service_types = db.query(ServiceType).filter(ServiceType.active == True).all()
        for seed in DEMO_BUYERS:
            if db.query(Buyer).filter(Buyer.name == seed["name"]).first():
                continue
            buyer = Buyer(
                name=seed["name"],
                type=seed["type"],
                api_url=seed["api_url"],
                auth_config={**seed["auth_config"],
                             "credentials": encrypt_credentials(seed["auth_config"].get("credentials"))},
                contact_email=seed["contact_email"],
                webhook_secret=generate_webhook_secret(),
            )
            db.add(buyer)
            db.flush()

            for service_type in service_types:
                db.add(BuyerServiceConfig(
                    buyer_id=buyer.id,
                    service_type_id=service_type.id,
                    min_bid=seed["min_bid"],
                    max_bid=seed["max_bid"],
                ))
                for row in DEMO_ZIP_CODES:
                    db.add(BuyerServiceZipCode(
                        buyer_id=buyer.id,
                        service_type_id=service_type.id,
                        zip_code=row["zip_code"],
                    ))
            print(f"✓ Created buyer {buyer.name} covering {len(DEMO_ZIP_CODES)} zip codes")

        db.commit()
        print("\n✓ Database seeded successfully!")

    except Exception as e:
        print(f"\n✗ Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 60)
    print("Lead Marketplace - Database Initialization")
    print("=" * 60)

    init_db()
    seed_data()

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    print("\nYou can now access:")
    print("  - API: http://localhost:8000")
    print("  - API Docs: http://localhost:8000/docs")
    print("\nDefault credentials:")
    print("  Admin - email: admin@example.com, password: admin123")
    print("=" * 60)
