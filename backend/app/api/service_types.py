"""Service types: public catalogue plus admin create/update."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import ConflictError, NotFoundError, success_response
from app.core.security import require_admin
from app.models.service_type import ServiceType
from app.schemas.service_type import ServiceTypeCreate, ServiceTypeInDB, ServiceTypeUpdate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/service-types", tags=["service-types"])
admin_router = APIRouter(prefix="/api/admin/service-types", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_service_type(db: Session, service_type_id: int) -> ServiceType:
    service_type = db.query(ServiceType).filter(ServiceType.id == service_type_id).first()
    if not service_type:
        raise NotFoundError("Service type not found", code="SERVICE_TYPE_NOT_FOUND")
    return service_type


@router.get("")
def list_service_types(includeInactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(ServiceType)
    if not includeInactive:
        query = query.filter(ServiceType.active == True)
    service_types = query.order_by(ServiceType.display_name).all()
    return success_response([ServiceTypeInDB.model_validate(s).to_json() for s in service_types])


@router.get("/{service_type_id}")
def get_service_type(service_type_id: int, db: Session = Depends(get_db)):
    return success_response(ServiceTypeInDB.model_validate(_get_service_type(db, service_type_id)).to_json())


@admin_router.post("", status_code=201)
def create_service_type(data: ServiceTypeCreate, db: Session = Depends(get_db)):
    if db.query(ServiceType).filter(ServiceType.name == data.name).first():
        raise ConflictError("Service type with this name already exists", code="SERVICE_TYPE_EXISTS", field="name")

    service_type = ServiceType(**data.model_dump())
    db.add(service_type)
    db.commit()
    db.refresh(service_type)
    logger.info(f"Service type created: {service_type.name}")
    return success_response(ServiceTypeInDB.model_validate(service_type).to_json())


@admin_router.put("/{service_type_id}")
def update_service_type(service_type_id: int, data: ServiceTypeUpdate, db: Session = Depends(get_db)):
    service_type = _get_service_type(db, service_type_id)
    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(service_type, field, value)
    db.commit()
    db.refresh(service_type)
    logger.info(f"Service type {service_type_id} updated: {sorted(updates)}")
    return success_response(ServiceTypeInDB.model_validate(service_type).to_json())
