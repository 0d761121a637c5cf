"""
VendorBook Database Schemas

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., OwnerRecord -> "ownerrecord").
Stored keys are camelCase, the format the web client reads and writes.
"""

from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, Optional, Literal, List
from datetime import datetime

from ledger import whole_cents

PaymentStatus = Literal['pending', 'partial', 'paid', 'overpaid']
RecordType = Literal['SALE', 'PURCHASE', 'EXPENSE', 'INCOME']


def _check_cents(value: float) -> float:
    if not whole_cents(value):
        raise ValueError("amount must be a whole number of cents")
    return value


# currency amount: finite, no fraction of a cent
Cents = Annotated[float, Field(allow_inf_nan=False), AfterValidator(_check_cents)]


class Customer(BaseModel):
    fullName: str = Field(..., max_length=100, description="Customer full name")
    phone: str = Field("Not Provided", description="Phone number")
    uniqueId: str = Field(..., description="Stable identifier chosen by the vendor")


class CustomerDetails(BaseModel):
    """Snapshot of the customer taken when the order was placed."""
    id: str = Field(..., description="ID of the customer document")
    uniqueId: str
    fullName: str
    phone: str


class OrderItem(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0, allow_inf_nan=False, description="Informational only")
    price: Cents = Field(..., ge=0, description="Line total, not a unit price")


class Order(BaseModel):
    customerDetails: CustomerDetails
    date: datetime
    items: List[OrderItem] = Field(default_factory=list)
    totalAmount: float = Field(0.0, description="Sum of item line totals")
    totalPaid: float = Field(0.0, ge=0, description="Cumulative payments received")
    balanceAmount: float = Field(0.0, description="totalAmount - totalPaid, negative when overpaid")
    paymentStatus: PaymentStatus = 'pending'
    uniqueId: str = Field(..., description="Generated order number")
    revision: int = Field(0, ge=0, description="Bumped on every items/totalPaid write")


class OwnerItem(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., ge=1, allow_inf_nan=False)
    price: Cents = Field(..., ge=0, description="Line amount")


class OwnerRecord(BaseModel):
    date: datetime
    items: List[OwnerItem] = Field(default_factory=list)
    totalPrice: float = Field(0.0, ge=0, description="Sum of item amounts")
    description: Optional[str] = Field(None, max_length=200)
    recordType: RecordType = 'EXPENSE'
    uniqueId: str = Field(..., description="Generated record number")


class Item(BaseModel):
    name: str = Field(..., description="Catalogue name, Title Case")
    uniqueId: str


class User(BaseModel):
    username: str = Field(..., min_length=3)
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    passwordHash: str
    passwordSalt: str
    isAdmin: bool = False


class Session(BaseModel):
    token: str
    userId: str
    username: str
    isAdmin: bool = False
    expiresAt: datetime
