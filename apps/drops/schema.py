from pydantic import BaseModel, Field
from typing import List, Optional


class BlobMetadata(BaseModel):
    """Fast-lookup record for one blob. Instants are epoch milliseconds."""
    created_at: int
    expires_at: int
    has_payment: bool = False
    price_usd: Optional[float] = None


class DropResponse(BaseModel):
    id: str
    expires: str


class PaymentInfo(BaseModel):
    price: Optional[float] = None
    currency: str = 'USD'
    methods: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
    message: str
    payment: Optional[PaymentInfo] = None
    retryAfter: Optional[int] = None


class HealthResponse(BaseModel):
    status: str
    service: str
