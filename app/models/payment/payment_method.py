"""
Payment Method Models
Gateway activation state read by the payment core
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class PaymentMethodInDB(BaseModel):
    """Payment method in database"""
    name: str
    code: str
    gateway: str            # easebuzz, upigateway
    is_active: bool = False
    config: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
