import os
import io
import csv
import re
import time
import logging
import secrets
import string
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Any, Dict, Tuple, get_args

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from bson.objectid import ObjectId

import ledger
from auth import AuthContext, bearer_token, hash_password, new_session_token, session_ttl, verify_password
from database import db, create_document, ensure_indexes, get_documents, utcnow
from schemas import Cents, Customer, CustomerDetails, Item, Order, OrderItem, OwnerItem, OwnerRecord, RecordType, Session, User

logger = logging.getLogger(__name__)

RECORD_TYPES = get_args(RecordType)
NOT_PROVIDED = "Not Provided"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="VendorBook API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------ Utilities ------------------

def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid ID")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def serialize(doc: Dict[str, Any]):
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = iso(v)
    return d


def now_utc() -> datetime:
    return utcnow()


def collection(name: str):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db[name]


def envelope(data: Any = None, message: Optional[str] = None, **extra):
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body["data"] = data
    body.update(extra)
    return body


def unique_code(prefix: str) -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f"{prefix}{int(time.time() * 1000)}{suffix}"


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)


def parse_when(value: str, field: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}")


def date_range(start: Optional[str], end: Optional[str]) -> Dict[str, datetime]:
    """Mongo range for startDate/endDate; a bare endDate covers that whole day."""
    if not start or not end:
        raise HTTPException(status_code=400, detail="Start date and end date are required")
    lo = parse_when(start, "startDate")
    hi = parse_when(end, "endDate")
    if len(end) == 10:
        return {"$gte": lo, "$lt": hi + timedelta(days=1)}
    return {"$gte": lo, "$lte": hi}


def title_case(name: str) -> str:
    return " ".join(word.capitalize() for word in name.split())


def present_order(doc: Dict[str, Any]):
    """Serialize an order with its money fields re-derived from items and payments."""
    if not doc:
        return doc
    d = serialize(doc)
    d.update(ledger.derived_fields(doc))
    return d


def present_record(doc: Dict[str, Any]):
    if not doc:
        return doc
    d = serialize(doc)
    d["totalPrice"] = ledger.expense_total(doc.get("items") or [])
    return d


# ------------------ Errors ------------------

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "status": status_code, "message": message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response(400, "Invalid request")
    first = errors[0]
    where = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
    return error_response(400, message)


@app.exception_handler(ledger.InvalidPaymentError)
async def payment_error_handler(request: Request, exc: ledger.InvalidPaymentError):
    return error_response(400, str(exc))


@app.exception_handler(ledger.ConcurrentUpdateError)
async def conflict_handler(request: Request, exc: ledger.ConcurrentUpdateError):
    return error_response(409, str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Something went wrong")


# ------------------ Schemas ------------------

class StrippedModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class RegisterIn(StrippedModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    firstName: Optional[str] = None
    lastName: Optional[str] = None


class LoginIn(StrippedModel):
    username: str
    password: str


class CustomerIn(StrippedModel):
    fullName: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = None
    uniqueId: str = Field(..., min_length=1)


class CustomerUpdate(StrippedModel):
    fullName: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None


class CustomerRef(StrippedModel):
    uniqueId: str = Field(..., min_length=1)


class OrderIn(BaseModel):
    customerDetails: CustomerRef
    date: Optional[datetime] = None
    items: List[OrderItem] = Field(..., min_length=1)
    totalPaid: Cents = Field(0.0, ge=0)


class OrderUpdate(BaseModel):
    customerDetails: Optional[CustomerRef] = None
    date: Optional[datetime] = None
    items: Optional[List[OrderItem]] = Field(None, min_length=1)
    totalPaid: Optional[Cents] = Field(None, ge=0)


class PaymentIn(BaseModel):
    amount: Optional[float] = None


class ItemIn(StrippedModel):
    name: str = Field(..., min_length=1)


class BulkItemsIn(BaseModel):
    items: List[str] = Field(default_factory=list)


class OwnerRecordIn(BaseModel):
    date: Optional[datetime] = None
    items: List[OwnerItem] = Field(..., min_length=1)
    description: Optional[str] = Field(None, max_length=200)
    recordType: RecordType = 'EXPENSE'

    @field_validator("recordType", mode="before")
    @classmethod
    def upper_record_type(cls, v):
        return v.upper() if isinstance(v, str) else v


class OwnerRecordUpdate(BaseModel):
    date: Optional[datetime] = None
    items: Optional[List[OwnerItem]] = Field(None, min_length=1)
    description: Optional[str] = Field(None, max_length=200)
    recordType: Optional[RecordType] = None

    @field_validator("recordType", mode="before")
    @classmethod
    def upper_record_type(cls, v):
        return v.upper() if isinstance(v, str) else v


# ------------------ Health/Test ------------------
@app.get("/")
def read_root():
    return {"message": "VendorBook backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:120]}"
    return response


# ------------------ Auth ------------------

def require_auth(authorization: Optional[str] = Header(None)) -> AuthContext:
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(401, "Not authorized, no token")
    sessions = collection("session")
    doc = sessions.find_one({"token": token})
    if not doc:
        raise HTTPException(401, "Not authorized, invalid token")
    ctx = AuthContext.from_session(doc)
    if ctx.is_expired(now_utc()):
        sessions.delete_one({"_id": doc["_id"]})
        raise HTTPException(401, "Session expired")
    return ctx


def start_session(user: Dict[str, Any]) -> Dict[str, Any]:
    session = Session(
        token=new_session_token(),
        userId=str(user["_id"]),
        username=user["username"],
        isAdmin=bool(user.get("isAdmin", False)),
        expiresAt=now_utc() + session_ttl(),
    )
    collection("session").insert_one(session.model_dump())
    return {
        "id": session.userId,
        "username": session.username,
        "isAdmin": session.isAdmin,
        "token": session.token,
        "expiresAt": iso(session.expiresAt),
    }


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterIn):
    users = collection("user")
    if users.find_one({"username": payload.username}):
        raise HTTPException(400, "Username already exists")
    salt, password_hash = hash_password(payload.password)
    user = User(
        username=payload.username,
        firstName=payload.firstName,
        lastName=payload.lastName,
        passwordHash=password_hash,
        passwordSalt=salt,
    )
    try:
        user_id = create_document("user", user.model_dump())
    except DuplicateKeyError:
        raise HTTPException(400, "Username already exists")
    logger.info("Registered user %s", payload.username)
    return envelope(start_session(users.find_one({"_id": ObjectId(user_id)})), "User registered successfully")


@app.post("/api/auth/login")
def login(payload: LoginIn):
    user = collection("user").find_one({"username": payload.username})
    if not user or not verify_password(payload.password, user["passwordSalt"], user["passwordHash"]):
        logger.warning("Rejected login for %s", payload.username)
        raise HTTPException(401, "Invalid username or password")
    return envelope(start_session(user), "Login successful")


api = APIRouter(prefix="/api", dependencies=[Depends(require_auth)])


@api.get("/auth/me")
def me(ctx: AuthContext = Depends(require_auth)):
    return envelope({
        "id": ctx.user_id,
        "username": ctx.username,
        "isAdmin": ctx.is_admin,
        "expiresAt": iso(ctx.expires_at),
    })


@api.post("/auth/logout")
def logout(authorization: Optional[str] = Header(None)):
    collection("session").delete_one({"token": bearer_token(authorization)})
    return envelope(None, "Logged out")


# ------------------ Customers ------------------

def customer_snapshot(unique_id: str) -> CustomerDetails:
    cust = collection("customer").find_one({"uniqueId": unique_id})
    if not cust:
        raise HTTPException(404, "Customer not found")
    return CustomerDetails(
        id=str(cust["_id"]),
        uniqueId=cust["uniqueId"],
        fullName=cust["fullName"],
        phone=cust.get("phone") or NOT_PROVIDED,
    )


def real_phone(phone: Optional[str]) -> bool:
    return bool(phone) and phone != NOT_PROVIDED


def summarized_customers() -> List[Dict[str, Any]]:
    rows = ledger.customers_with_summary(collection("customer"), collection("order"))
    return [serialize(c) for c in rows]


@api.post("/customers", status_code=201)
def create_customer(payload: CustomerIn):
    customers = collection("customer")
    if customers.find_one({"uniqueId": payload.uniqueId}):
        raise HTTPException(400, "Customer with this unique ID already exists")
    if real_phone(payload.phone) and customers.find_one({"phone": payload.phone}):
        raise HTTPException(400, "Customer with this phone number already exists")
    data = Customer(fullName=payload.fullName, phone=payload.phone or NOT_PROVIDED, uniqueId=payload.uniqueId).model_dump()
    try:
        customer_id = create_document("customer", data)
    except DuplicateKeyError:
        raise HTTPException(400, "Customer with this unique ID already exists")
    doc = customers.find_one({"_id": ObjectId(customer_id)})
    return envelope(serialize(doc), "Customer created successfully")


@api.get("/customers")
def list_customers():
    data = summarized_customers()
    return envelope(data, stats=ledger.overall_stats(data))


@api.get("/customers/search")
def search_customers(search: Optional[str] = Query(None)):
    if not search:
        raise HTTPException(400, "Search query is required")
    needle = search.lower()
    data = [
        c for c in summarized_customers()
        if needle in c.get("fullName", "").lower() or (real_phone(c.get("phone")) and search in c["phone"])
    ]
    return envelope(data)


@api.get("/customers/status/{status}")
def customers_by_status(status: str):
    if status not in ledger.CUSTOMER_SUMMARIES:
        raise HTTPException(400, "Invalid payment status")
    data = [c for c in summarized_customers() if c["paymentSummary"] == status]
    return envelope(data, stats=ledger.overall_stats(data))


@api.get("/customers/{customer_id}")
def get_customer(customer_id: str):
    doc = collection("customer").find_one({"_id": oid(customer_id)})
    if not doc:
        raise HTTPException(404, "Customer not found")
    cur = collection("order").find({"customerDetails.uniqueId": doc["uniqueId"]}).sort("date", -1)
    orders = [present_order(o) for o in cur]
    summary = ledger.aggregate_customer(orders)
    return envelope({**serialize(doc), **summary.as_document(), "orders": orders})


@api.put("/customers/{customer_id}")
def update_customer(customer_id: str, payload: CustomerUpdate):
    customers = collection("customer")
    _id = oid(customer_id)
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "phone" in update:
        update["phone"] = update["phone"] or NOT_PROVIDED
        if real_phone(update["phone"]) and customers.find_one({"phone": update["phone"], "_id": {"$ne": _id}}):
            raise HTTPException(400, "Customer with this phone number already exists")
    update["updatedAt"] = now_utc()
    res = customers.update_one({"_id": _id}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(404, "Customer not found")
    return envelope(serialize(customers.find_one({"_id": _id})), "Customer updated successfully")


@api.delete("/customers/{customer_id}")
def delete_customer(customer_id: str):
    customers = collection("customer")
    doc = customers.find_one({"_id": oid(customer_id)})
    if not doc:
        raise HTTPException(404, "Customer not found")
    if collection("order").count_documents({"customerDetails.uniqueId": doc["uniqueId"]}) > 0:
        raise HTTPException(400, "Cannot delete customer with existing orders. Please delete orders first.")
    customers.delete_one({"_id": doc["_id"]})
    logger.info("Deleted customer %s", doc["uniqueId"])
    return envelope(None, "Customer deleted successfully")


# ------------------ Items ------------------

@api.post("/items", status_code=201)
def create_item(payload: ItemIn):
    item = Item(name=title_case(payload.name), uniqueId=unique_code("ITEM"))
    try:
        item_id = create_document("item", item.model_dump())
    except DuplicateKeyError:
        raise HTTPException(400, "Item with this name already exists")
    return envelope(serialize(collection("item").find_one({"_id": ObjectId(item_id)})), "Item created successfully")


@api.post("/items/bulk", status_code=201)
def bulk_create_items(payload: BulkItemsIn):
    names = [title_case(n) for n in payload.items if n and n.strip()]
    if not names:
        raise HTTPException(400, "Items array is required and cannot be empty")
    created = []
    for name in dict.fromkeys(names):
        try:
            created.append(create_document("item", Item(name=name, uniqueId=unique_code("ITEM")).model_dump()))
        except DuplicateKeyError:
            continue
    docs = collection("item").find({"_id": {"$in": [ObjectId(i) for i in created]}}).sort("name", 1)
    return envelope([serialize(d) for d in docs], f"{len(created)} items created successfully")


@api.get("/items")
def list_items():
    return envelope([serialize(d) for d in collection("item").find({}).sort("name", 1)])


@api.get("/items/search")
def search_items(search: Optional[str] = Query(None)):
    if not search:
        raise HTTPException(400, "Search query is required")
    cur = collection("item").find({"name": {"$regex": re.escape(search), "$options": "i"}}).sort("name", 1)
    return envelope([serialize(d) for d in cur])


@api.delete("/items/{item_id}")
def delete_item(item_id: str):
    res = collection("item").delete_one({"_id": oid(item_id)})
    if res.deleted_count == 0:
        raise HTTPException(404, "Item not found")
    return envelope(None, "Item deleted successfully")


# ------------------ Orders ------------------

ORDER_SORT = [("date", -1), ("createdAt", -1), ("_id", -1)]


@api.post("/orders", status_code=201)
def create_order(payload: OrderIn):
    details = customer_snapshot(payload.customerDetails.uniqueId)
    total_paid = ledger.money(payload.totalPaid)
    totals = ledger.compute_totals(payload.items, total_paid)
    order = Order(
        customerDetails=details,
        date=as_utc(payload.date) if payload.date else now_utc(),
        items=payload.items,
        totalPaid=total_paid,
        uniqueId=unique_code("ORDER"),
        **totals.as_document(),
    )
    order_id = create_document("order", order.model_dump())
    logger.info("Created order %s for %s (total %.2f)", order.uniqueId, details.uniqueId, totals.total_amount)
    doc = collection("order").find_one({"_id": ObjectId(order_id)})
    return envelope(present_order(doc), "Order created successfully")


@api.get("/orders")
def list_orders():
    cur = collection("order").find({}).sort(ORDER_SORT)
    return envelope([present_order(o) for o in cur])


@api.get("/orders/stats")
def order_stats():
    orders = collection("order")
    start, end = day_bounds(now_utc().date())

    def totals(match: Dict[str, Any]) -> Dict[str, Any]:
        pipeline = [{"$match": match}] if match else []
        pipeline.append({"$group": {
            "_id": None,
            "count": {"$sum": 1},
            "revenue": {"$sum": "$totalAmount"},
            "paid": {"$sum": "$totalPaid"},
        }})
        res = list(orders.aggregate(pipeline))
        return res[0] if res else {}

    overall = totals({})
    today = totals({"date": {"$gte": start, "$lt": end}})
    status_counts = {s: 0 for s in (ledger.PENDING, ledger.PARTIAL, ledger.PAID, ledger.OVERPAID)}
    for row in orders.aggregate([{"$group": {"_id": "$paymentStatus", "count": {"$sum": 1}}}]):
        if row["_id"] in status_counts:
            status_counts[row["_id"]] = row["count"]
    return envelope({
        "totalOrders": overall.get("count", 0),
        "totalRevenue": ledger.money(overall.get("revenue")),
        "totalPaid": ledger.money(overall.get("paid")),
        "totalOutstanding": ledger.money(ledger.money(overall.get("revenue")) - ledger.money(overall.get("paid"))),
        "todayOrders": today.get("count", 0),
        "todayRevenue": ledger.money(today.get("revenue")),
        "statusCounts": status_counts,
    })


@api.get("/orders/date-range")
def orders_by_date_range(startDate: Optional[str] = Query(None), endDate: Optional[str] = Query(None)):
    cur = collection("order").find({"date": date_range(startDate, endDate)}).sort(ORDER_SORT)
    return envelope([present_order(o) for o in cur])


@api.get("/orders/export")
def export_orders_csv():
    cur = collection("order").find({}).sort(ORDER_SORT)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Order", "Customer", "Phone", "Item", "Qty", "Line Total", "Order Total", "Paid", "Balance", "Status"])
    for doc in cur:
        o = present_order(doc)
        cust = o.get("customerDetails") or {}
        for item in o.get("items", []):
            writer.writerow([
                o.get("date"), o.get("uniqueId"), cust.get("fullName"), cust.get("phone"),
                item.get("name"), item.get("quantity"), item.get("price"),
                o["totalAmount"], o["totalPaid"], o["balanceAmount"], o["paymentStatus"],
            ])
    return Response(content=output.getvalue(), media_type="text/csv", headers={"Content-Disposition": "attachment; filename=orders.csv"})


@api.get("/orders/customer/{unique_id}")
def orders_by_customer(unique_id: str):
    cur = collection("order").find({"customerDetails.uniqueId": unique_id}).sort(ORDER_SORT)
    return envelope([present_order(o) for o in cur])


@api.get("/orders/customer/{unique_id}/date/{day}")
def orders_by_customer_and_date(unique_id: str, day: date):
    start, end = day_bounds(day)
    cur = collection("order").find({
        "customerDetails.uniqueId": unique_id,
        "date": {"$gte": start, "$lt": end},
    }).sort("createdAt", -1)
    return envelope([present_order(o) for o in cur], "Orders fetched successfully")


@api.get("/orders/{order_id}")
def get_order(order_id: str):
    doc = collection("order").find_one({"_id": oid(order_id)})
    if not doc:
        raise HTTPException(404, "Order not found")
    return envelope(present_order(doc))


@api.put("/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate):
    orders = collection("order")
    _id = oid(order_id)
    changes: Dict[str, Any] = {}
    if payload.customerDetails is not None:
        changes["customerDetails"] = customer_snapshot(payload.customerDetails.uniqueId).model_dump()
    if payload.date is not None:
        changes["date"] = as_utc(payload.date)
    if payload.items is not None:
        changes["items"] = [it.model_dump() for it in payload.items]
    if payload.totalPaid is not None:
        changes["totalPaid"] = ledger.money(payload.totalPaid)

    # compare-and-swap on revision so a concurrent payment is never overwritten
    for _ in range(ledger.MAX_WRITE_ATTEMPTS):
        current = orders.find_one({"_id": _id})
        if not current:
            raise HTTPException(404, "Order not found")
        merged = {**current, **changes}
        update: Dict[str, Any] = {"$set": {**changes, **ledger.derived_fields(merged), "updatedAt": now_utc()}}
        if "items" in changes or "totalPaid" in changes:
            update["$inc"] = {"revision": 1}
        res = orders.update_one({"_id": _id, "revision": current.get("revision")}, update)
        if res.matched_count:
            return envelope(present_order(orders.find_one({"_id": _id})), "Order updated successfully")
        logger.warning("Order %s changed during update, retrying", order_id)
    raise ledger.ConcurrentUpdateError()


@api.post("/orders/{order_id}/payment")
def add_payment(order_id: str, payload: PaymentIn):
    amount = ledger.validate_payment_amount(payload.amount)
    order = ledger.record_payment(collection("order"), oid(order_id), amount)
    if order is None:
        raise HTTPException(404, "Order not found")
    return envelope(present_order(order), "Payment added successfully")


@api.delete("/orders/{order_id}")
def delete_order(order_id: str):
    res = collection("order").delete_one({"_id": oid(order_id)})
    if res.deleted_count == 0:
        raise HTTPException(404, "Order not found")
    logger.info("Deleted order %s", order_id)
    return envelope(None, "Order deleted successfully")


# ------------------ Owner records (expenses) ------------------

RECORD_SORT = [("date", -1), ("createdAt", -1), ("_id", -1)]


@api.post("/owner-records", status_code=201)
def create_owner_record(payload: OwnerRecordIn):
    record = OwnerRecord(
        date=as_utc(payload.date) if payload.date else now_utc(),
        items=payload.items,
        totalPrice=ledger.expense_total(payload.items),
        description=payload.description,
        recordType=payload.recordType,
        uniqueId=unique_code("OWNER"),
    )
    record_id = create_document("ownerrecord", record.model_dump())
    logger.info("Created owner record %s (%s %.2f)", record.uniqueId, record.recordType, record.totalPrice)
    doc = collection("ownerrecord").find_one({"_id": ObjectId(record_id)})
    return envelope(present_record(doc), "Owner record created successfully")


@api.get("/owner-records")
def list_owner_records():
    cur = collection("ownerrecord").find({}).sort(RECORD_SORT)
    return envelope([present_record(r) for r in cur])


@api.get("/owner-records/filter/date-range")
def owner_records_by_date_range(startDate: Optional[str] = Query(None), endDate: Optional[str] = Query(None)):
    cur = collection("ownerrecord").find({"date": date_range(startDate, endDate)}).sort("date", -1)
    return envelope([present_record(r) for r in cur])


@api.get("/owner-records/type/{record_type}")
def owner_records_by_type(record_type: str):
    kind = record_type.upper()
    if kind not in RECORD_TYPES:
        raise HTTPException(400, "Invalid record type")
    cur = collection("ownerrecord").find({"recordType": kind}).sort("date", -1)
    return envelope([present_record(r) for r in cur])


@api.get("/owner-records/date/{day}")
def owner_records_by_date(day: date):
    start, end = day_bounds(day)
    cur = collection("ownerrecord").find({"date": {"$gte": start, "$lt": end}}).sort(RECORD_SORT)
    return envelope([present_record(r) for r in cur])


@api.get("/owner-records/stats/dashboard")
def owner_dashboard_stats():
    records = collection("ownerrecord")
    start, end = day_bounds(now_utc().date())

    def total_since(match: Dict[str, Any]) -> Tuple[int, float]:
        pipeline = [{"$match": match}] if match else []
        pipeline.append({"$group": {"_id": None, "count": {"$sum": 1}, "sum": {"$sum": "$totalPrice"}}})
        res = list(records.aggregate(pipeline))
        return (res[0]["count"], ledger.money(res[0]["sum"])) if res else (0, 0.0)

    total_records, total_amount = total_since({})
    today_records, today_amount = total_since({"date": {"$gte": start, "$lt": end}})
    by_type = [
        {"recordType": d["_id"], "count": d["count"], "totalAmount": ledger.money(d["totalAmount"])}
        for d in records.aggregate([
            {"$group": {"_id": "$recordType", "count": {"$sum": 1}, "totalAmount": {"$sum": "$totalPrice"}}},
            {"$sort": {"_id": 1}},
        ])
    ]
    return envelope({
        "totalRecords": total_records,
        "totalAmount": total_amount,
        "todayRecords": today_records,
        "todayAmount": today_amount,
        "recordsByType": by_type,
    })


@api.get("/owner-records/stats/financial-summary")
def financial_summary(startDate: Optional[str] = Query(None), endDate: Optional[str] = Query(None)):
    records = collection("ownerrecord")
    match = {"date": date_range(startDate, endDate)} if startDate and endDate else {}
    head = [{"$match": match}] if match else []
    by_type = [
        {
            "recordType": d["_id"],
            "totalAmount": ledger.money(d["totalAmount"]),
            "recordCount": d["recordCount"],
            "averageAmount": ledger.money(d["averageAmount"]),
        }
        for d in records.aggregate(head + [
            {"$group": {
                "_id": "$recordType",
                "totalAmount": {"$sum": "$totalPrice"},
                "recordCount": {"$sum": 1},
                "averageAmount": {"$avg": "$totalPrice"},
            }},
            {"$sort": {"_id": 1}},
        ])
    ]
    overall = list(records.aggregate(head + [
        {"$group": {"_id": None, "grandTotal": {"$sum": "$totalPrice"}, "totalRecords": {"$sum": 1}}}
    ]))
    summary = {"grandTotal": 0.0, "totalRecords": 0}
    if overall:
        summary = {"grandTotal": ledger.money(overall[0]["grandTotal"]), "totalRecords": overall[0]["totalRecords"]}
    return envelope({"byType": by_type, "overall": summary})


@api.get("/owner-records/export")
def export_owner_records_csv():
    cur = collection("ownerrecord").find({}).sort(RECORD_SORT)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Record", "Type", "Description", "Item", "Qty", "Amount", "Record Total"])
    for doc in cur:
        r = present_record(doc)
        for item in r.get("items", []):
            writer.writerow([
                r.get("date"), r.get("uniqueId"), r.get("recordType"), r.get("description") or "",
                item.get("name"), item.get("quantity"), item.get("price"), r["totalPrice"],
            ])
    return Response(content=output.getvalue(), media_type="text/csv", headers={"Content-Disposition": "attachment; filename=owner-records.csv"})


@api.get("/owner-records/{record_id}")
def get_owner_record(record_id: str):
    doc = collection("ownerrecord").find_one({"_id": oid(record_id)})
    if not doc:
        raise HTTPException(404, "Owner record not found")
    return envelope(present_record(doc))


@api.put("/owner-records/{record_id}")
def update_owner_record(record_id: str, payload: OwnerRecordUpdate):
    records = collection("ownerrecord")
    _id = oid(record_id)
    update: Dict[str, Any] = {}
    if payload.date is not None:
        update["date"] = as_utc(payload.date)
    if payload.items is not None:
        update["items"] = [it.model_dump() for it in payload.items]
        update["totalPrice"] = ledger.expense_total(payload.items)
    if "description" in payload.model_fields_set:
        update["description"] = payload.description
    if payload.recordType is not None:
        update["recordType"] = payload.recordType
    update["updatedAt"] = now_utc()
    res = records.update_one({"_id": _id}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(404, "Owner record not found")
    return envelope(present_record(records.find_one({"_id": _id})), "Owner record updated successfully")


@api.delete("/owner-records/{record_id}")
def delete_owner_record(record_id: str):
    res = collection("ownerrecord").delete_one({"_id": oid(record_id)})
    if res.deleted_count == 0:
        raise HTTPException(404, "Owner record not found")
    logger.info("Deleted owner record %s", record_id)
    return envelope(None, "Owner record deleted successfully")


# ------------------ Backup Export ------------------
@api.get("/backup/export")
def export_backup():
    if db is None:
        raise HTTPException(500, "Database not available")
    data = {
        "customers": [serialize(x) for x in get_documents("customer")],
        "items": [serialize(x) for x in get_documents("item")],
        "orders": [present_order(x) for x in get_documents("order")],
        "ownerRecords": [present_record(x) for x in get_documents("ownerrecord")],
        "exportedAt": iso(now_utc()),
    }
    return data


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
