from pydantic import EmailStr, Field, model_validator
from typing import List, Literal, Optional

from app.schemas.common import CamelModel


class AdditionalContact(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, min_length=10, max_length=30)
    role: Optional[str] = Field(None, max_length=100)


class SignupLocation(CamelModel):
    """A location picked from /api/locations/search."""
    type: Literal["city", "state", "county", "zipcode"]
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    state: Optional[str] = Field(None, min_length=2, max_length=2)
    zip_code: Optional[str] = None


class ServiceLocationMapping(CamelModel):
    service_id: int
    locations: List[SignupLocation] = Field(..., min_length=1)


class ContractorSignup(CamelModel):
    contact_name: str = Field(..., min_length=2, max_length=100)
    contact_email: EmailStr
    contact_phone: str = Field(..., min_length=10, max_length=30)
    company_name: str = Field(..., min_length=2, max_length=200)
    business_email: EmailStr
    business_phone: str = Field(..., min_length=10, max_length=30)
    additional_contacts: List[AdditionalContact] = Field(default_factory=list)
    selected_services: List[int] = Field(..., min_length=1)
    service_location_mappings: List[ServiceLocationMapping] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_mappings(self):
        selected = set(self.selected_services)
        mapped = {m.service_id for m in self.service_location_mappings}
        if selected - mapped:
            raise ValueError(f"Every selected service needs locations (missing: {sorted(selected - mapped)})")
        if mapped - selected:
            raise ValueError(f"Locations given for services that were not selected: {sorted(mapped - selected)}")
        return self


class ContractorSignupResult(CamelModel):
    buyer_id: int
    status: str = "pending_review"
    services_configured: int
    zip_codes_created: int
