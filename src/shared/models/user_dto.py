from typing import Any, Optional
from pydantic import BaseModel, Field, AliasChoices
from src.shared.models.common import CamelModel
from src.shared.models.enums import UserRole

class CallerIdentity(BaseModel):
    """Identity of the caller, resolved once per request."""
    id: str
    role: UserRole
    service_name: Optional[str] = None

    @property
    def is_service(self) -> bool:
        return self.service_name is not None

class DeliveryPersonDTO(CamelModel):
    # the directory answers with Mongo-style "_id" and "phoneNumber" on some routes
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: Optional[str] = None
    phone: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone", "phoneNumber"))
    current_location: Optional[dict[str, Any]] = None
    vehicle_type: Optional[str] = None
    vehicle_number: Optional[str] = None
    rating: Optional[float] = None
    is_available: Optional[bool] = None
