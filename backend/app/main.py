import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.api import (
    auth, buyers, contractors, service_configs, service_zones, service_types, leads, locations, webhooks,
)
from app.api import auction as auction_api

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


DEFAULT_SERVICE_TYPES = [
    {
        "name": "windows",
        "display_name": "Windows Installation",
        "fields": [
            {"name": "numberOfWindows", "type": "select", "label": "How many windows?",
             "options": ["1-3", "4-6", "7-10", "11+"]},
            {"name": "windowType", "type": "select", "label": "Window type?",
             "options": ["Double Hung", "Casement", "Sliding", "Bay/Bow", "Not Sure"]},
        ],
    },
    {
        "name": "bathrooms",
        "display_name": "Bathroom Remodeling",
        "fields": [
            {"name": "bathroomCount", "type": "select", "label": "How many bathrooms?",
             "options": ["1", "2", "3", "4+"]},
            {"name": "remodelType", "type": "select", "label": "Type of remodel?",
             "options": ["Full Remodel", "Partial Update", "Fixtures Only", "Not Sure"]},
        ],
    },
    {
        "name": "roofing",
        "display_name": "Roofing Services",
        "fields": [
            {"name": "roofType", "type": "select", "label": "What type of roof?",
             "options": ["Asphalt Shingles", "Metal", "Tile", "Flat", "Not Sure"]},
            {"name": "serviceNeeded", "type": "select", "label": "Service needed?",
             "options": ["New Roof", "Repair", "Inspection", "Not Sure"]},
        ],
    },
    {
        "name": "hvac",
        "display_name": "HVAC Services",
        "fields": [
            {"name": "systemType", "type": "select", "label": "System type?",
             "options": ["Central AC", "Furnace", "Heat Pump", "Ductless", "Not Sure"]},
            {"name": "serviceNeeded", "type": "select", "label": "Service needed?",
             "options": ["New Installation", "Replacement", "Repair", "Maintenance", "Not Sure"]},
        ],
    },
]

CONTACT_FIELDS = [
    {"name": "zipCode", "type": "text", "required": True, "label": "ZIP Code"},
    {"name": "ownsHome", "type": "radio", "required": True, "label": "Do you own your home?",
     "options": ["Yes", "No"]},
    {"name": "timeframe", "type": "select", "required": True, "label": "When do you need this done?",
     "options": ["immediately", "within_1_month", "1_3_months", "3_6_months", "6_12_months", "planning_phase"]},
]

PERSON_FIELDS = [
    {"name": "firstName", "type": "text", "required": True, "label": "First Name"},
    {"name": "lastName", "type": "text", "required": True, "label": "Last Name"},
    {"name": "email", "type": "email", "required": True, "label": "Email"},
    {"name": "phone", "type": "tel", "required": True, "label": "Phone"},
]


def seed_database(db):
    """Create the default admin and service types if they are missing."""
    from app.core.security import get_password_hash
    from app.models.admin_user import AdminUser
    from app.models.service_type import ServiceType

    if settings.DEFAULT_ADMIN_EMAIL and settings.DEFAULT_ADMIN_PASSWORD:
        email = settings.DEFAULT_ADMIN_EMAIL.lower()
        if not db.query(AdminUser).filter(AdminUser.email == email).first():
            db.add(AdminUser(
                email=email,
                full_name="Administrator",
                hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
                role="admin",
            ))
            logger.info(f"Admin account created: {email}")

    if settings.SEED_SERVICE_TYPES:
        for defaults in DEFAULT_SERVICE_TYPES:
            if db.query(ServiceType).filter(ServiceType.name == defaults["name"]).first():
                continue
            db.add(ServiceType(
                name=defaults["name"],
                display_name=defaults["display_name"],
                form_schema={
                    "title": defaults["display_name"],
                    "fields": CONTACT_FIELDS + [dict(f, required=True) for f in defaults["fields"]] + PERSON_FIELDS,
                },
                active=True,
            ))
            logger.info(f"Created service type {defaults['name']}")

    db.commit()


def init_database():
    """Initialize database tables and seed data on startup."""
    from app.core.database import SessionLocal, create_tables

    logger.info("Creating database tables...")
    create_tables()

    db = SessionLocal()
    try:
        seed_database(db)
        logger.info("Database seeded successfully")
    except Exception as e:
        logger.error(f"Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run database init on startup."""
    init_database()
    logger.info(f"{settings.APP_NAME} started (lead processing: {settings.LEAD_PROCESSING_MODE})")
    yield


# Disable API docs in production
docs_url = "/docs" if settings.ENVIRONMENT != "production" else None
redoc_url = "/redoc" if settings.ENVIRONMENT != "production" else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Lead Marketplace - lead intake, buyer auctions and admin API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=docs_url,
    redoc_url=redoc_url,
)

register_exception_handlers(app)

allowed_origins = ["http://localhost:3000"]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in allowed_origins:
    allowed_origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "lead-marketplace-api", "version": "1.0.0"}


@app.get("/")
def root():
    return {"message": "Lead Marketplace API", "version": "1.0.0", "docs": "/docs"}


# Include routers (service-configs before buyers so the literal path wins over /buyers/{id})
app.include_router(auth.router)
app.include_router(service_configs.router)
app.include_router(buyers.router)
app.include_router(service_zones.router)
app.include_router(service_types.router)
app.include_router(service_types.admin_router)
app.include_router(leads.router)
app.include_router(leads.admin_router)
app.include_router(locations.router)
app.include_router(webhooks.router)
app.include_router(contractors.router)
app.include_router(contractors.admin_router)
app.include_router(auction_api.router)
