"""Public location search for the consumer quiz (search-as-you-type)."""
import logging
from typing import Literal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import LIKE_ESCAPE, escape_like, get_db
from app.core.errors import success_response
from app.models.location import ZipCodeMetadata

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/locations", tags=["locations"])

MAX_RESULTS = 15


@router.get("/search")
def search_locations(
    q: str = "",
    type: Literal["all", "city", "state", "zipcode"] = "all",
    db: Session = Depends(get_db),
):
    """Match zip prefixes, city names and state codes; at most 15 distinct results."""
    term = q.strip()
    if len(term) < 2:
        return success_response([])

    results = []
    seen = set()

    def add(key, item):
        if key not in seen and len(results) < MAX_RESULTS:
            seen.add(key)
            results.append(item)

    pattern = f"{escape_like(term)}%"
    base = db.query(ZipCodeMetadata).filter(ZipCodeMetadata.active == True)

    if type in ("all", "zipcode") and term.isdigit():
        for row in base.filter(ZipCodeMetadata.zip_code.like(pattern, escape=LIKE_ESCAPE)).order_by(ZipCodeMetadata.zip_code).limit(MAX_RESULTS):
            add(("zipcode", row.zip_code), {
                "type": "zipcode",
                "id": row.zip_code,
                "name": row.zip_code,
                "displayName": f"{row.zip_code} - {row.city}, {row.state}",
                "city": row.city,
                "state": row.state,
                "zipCode": row.zip_code,
            })

    if type in ("all", "city") and not term.isdigit():
        rows = (
            base.filter(ZipCodeMetadata.city.ilike(pattern, escape=LIKE_ESCAPE))
            .order_by(ZipCodeMetadata.city, ZipCodeMetadata.state)
            .limit(MAX_RESULTS * 10)
        )
        for row in rows:
            add(("city", row.city.lower(), row.state), {
                "type": "city",
                "id": f"{row.city}-{row.state}",
                "name": row.city,
                "displayName": f"{row.city}, {row.state}",
                "city": row.city,
                "state": row.state,
            })

    if type in ("all", "state") and len(term) == 2 and term.isalpha():
        row = base.filter(ZipCodeMetadata.state == term.upper()).first()
        if row:
            add(("state", row.state), {
                "type": "state",
                "id": row.state,
                "name": row.state,
                "displayName": row.state,
                "state": row.state,
            })

    return success_response(results)
