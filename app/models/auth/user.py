from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import List, Optional
from datetime import datetime


class UserInDB(BaseModel):
    """
    User fields read by the payment core.
    Users are managed elsewhere; the orchestrator only reads this shape.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    email: EmailStr
    username: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True

    # Preferred gateway for new payments (easebuzz, upigateway)
    payment_gateway: Optional[str] = None
    # Empty list means every registered gateway is allowed
    allowed_gateways: List[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
