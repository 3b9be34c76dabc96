import calendar
from datetime import datetime, timezone
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Duration = Literal["weekly", "monthly", "yearly"]
DebtStatus = Literal["unpaid", "partial", "paid"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Same day `months` calendar months later, clamped to the last day of a shorter month."""
    month_index = value.month - 1 + months
    year, month = value.year + month_index // 12, month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ============================================================
# Entities (stored as JSON documents)
# ============================================================
class Entity(BaseModel):
    # Remote documents are opaque records; keep fields we don't model
    model_config = ConfigDict(extra="allow")


class AuthKey(Entity):
    id: str
    key: str
    valid_until: datetime
    duration: Duration
    price: float = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    is_active: bool = True
    usage_count: int = Field(default=0, ge=0)
    deviceId: Optional[str] = None

    @field_validator("valid_until", "created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.valid_until < (now or utcnow())


class AdminCredentials(Entity):
    username: str
    password: str


class Product(Entity):
    id: str
    name: str
    price: float = Field(ge=0)
    category: str = ""
    stock: int = Field(default=0, ge=0)
    image: Optional[str] = None


class TransactionItem(Entity):
    id: str
    name: str = ""
    price: float = 0
    quantity: int = Field(gt=0)


class Transaction(Entity):
    id: str
    date: datetime = Field(default_factory=utcnow)
    items: List[TransactionItem] = Field(default_factory=list)
    total: float = 0
    paymentMethod: Optional[str] = None

    @field_validator("date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class DebtPayment(BaseModel):
    date: datetime = Field(default_factory=utcnow)
    amount: float


class DebtRecord(Entity):
    id: str
    customerName: str
    amount: float = Field(ge=0)
    description: str = "General Debt"
    date: datetime = Field(default_factory=utcnow)
    status: DebtStatus = "unpaid"
    payments: List[DebtPayment] = Field(default_factory=list)

    @property
    def total_paid(self) -> float:
        return sum(p.amount for p in self.payments)

    @property
    def remaining(self) -> float:
        return max(0, self.amount - self.total_paid)

    def derive_status(self) -> DebtStatus:
        paid = self.total_paid
        if paid <= 0:
            return "unpaid"
        return "paid" if paid >= self.amount else "partial"

    def with_payment(self, amount: float, date: Optional[datetime] = None) -> "DebtRecord":
        """Return a copy with one more payment appended and the status re-derived."""
        if amount <= 0:
            raise ValueError("Payment amount must be positive")
        payment = DebtPayment(date=date or utcnow(), amount=amount)
        updated = self.model_copy(update={"payments": [*self.payments, payment]})
        updated.status = updated.derive_status()
        return updated


class FinancialRecord(Entity):
    id: str
    date: datetime = Field(default_factory=utcnow)
    type: Literal["income", "expense"]
    amount: float = Field(ge=0)
    description: str = ""


class ShopProfile(Entity):
    name: str
    address: str = ""
    phone: str = ""
    footerMessage: str = ""


# ============================================================
# Request/Response Models
# ============================================================
class KeyValidationRequest(BaseModel):
    key: str
    deviceId: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    message: Optional[str] = None
    reason: Optional[str] = None


class KeyLoginResponse(ValidationResult):
    isAdmin: bool = False
    sessionToken: Optional[str] = None


class AdminCredentialsRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AdminSessionResponse(BaseModel):
    sessionToken: str


class AdminExistsResponse(BaseModel):
    exists: bool


class IssueKeyRequest(BaseModel):
    duration: Duration = "monthly"
    price: Optional[float] = Field(default=None, ge=0)


class PurchaseKeyRequest(BaseModel):
    duration: Duration = "monthly"


class KeyStatsResponse(BaseModel):
    totalRevenue: float
    activeKeys: int
    totalKeys: int


class DebtPaymentRequest(BaseModel):
    amount: float = Field(gt=0)


class DeviceResponse(BaseModel):
    deviceId: str


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    storeMode: str
    deviceId: Optional[str] = None
