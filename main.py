import logging
import os
from datetime import datetime
from typing import List, Optional, Literal

from fastapi import FastAPI, APIRouter, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from bson import ObjectId
from pymongo import ReturnDocument

import chat
import config
import custom_orders
import database
from database import create_document, get_documents, serialize
from errors import MarketplaceError, NotFound, ValidationFailure, describe_errors
from schemas import (
    ORDER_STATUSES,
    Address,
    Brand as BrandSchema,
    CustomOrderCreate,
    Designer as DesignerSchema,
    Order as OrderSchema,
    OrderItem,
    Product as ProductSchema,
    SocialMedia,
    User as UserSchema,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pak Style API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix=config.API_PREFIX)


@app.on_event("startup")
def startup() -> None:
    database.ensure_indexes()


@app.exception_handler(MarketplaceError)
def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailure("Invalid request data", describe_errors(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Utils
def find_or_404(collection: str, id: str, label: str) -> dict:
    doc = database.collection(collection).find_one({"_id": database.object_id(id)})
    if not doc:
        raise NotFound(f"{label} not found")
    return doc


def update_or_404(collection: str, id: str, changes: dict, label: str) -> dict:
    changes = dict(changes, updated_at=database.utcnow())
    doc = database.collection(collection).find_one_and_update(
        {"_id": database.object_id(id)},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound(f"{label} not found")
    return serialize(doc)


def delete_or_404(collection: str, id: str, label: str) -> dict:
    result = database.collection(collection).delete_one({"_id": database.object_id(id)})
    if result.deleted_count == 0:
        raise NotFound(f"{label} not found")
    return {"message": f"{label} deleted successfully"}


def create_and_fetch(collection: str, model: BaseModel) -> dict:
    new_id = create_document(collection, model)
    return serialize(database.collection(collection).find_one({"_id": ObjectId(new_id)}))


@app.get("/")
def read_root():
    return {"message": "Pak Style backend running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    if database.db is None:
        return response
    response["database_url"] = "Set" if os.getenv("DATABASE_URL") else "Not Set"
    response["database_name"] = "Set" if os.getenv("DATABASE_NAME") else "Not Set"
    try:
        response["collections"] = database.db.list_collection_names()
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"Connected but Error: {str(e)[:80]}"
    return response


# Users
class UserUpdateBody(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    profile_picture: Optional[str] = None
    address: Optional[Address] = None
    phone: Optional[str] = None
    website: Optional[str] = None


class BrandApprovalBody(BaseModel):
    id: str
    status: Literal["accept", "reject"]


class RemovePortfolioImageBody(BaseModel):
    email: str
    image_url: str


@api.post("/users", status_code=201)
def create_user(body: UserSchema):
    if database.collection("user").find_one({"email": body.email}):
        raise ValidationFailure("Email already registered")
    # brand accounts wait for approval
    user = body.model_copy(update={
        "status": "pending" if body.user_type == "brand" else "active",
        "conversations": [],
        "unread_messages": 0,
    })
    return create_and_fetch("user", user)


@api.get("/users")
def list_users(user_type: Optional[str] = None):
    filters = {"user_type": user_type} if user_type else {}
    return [serialize(d) for d in get_documents("user", filters)]


@api.post("/users/brand-approval")
def brand_approval(body: BrandApprovalBody):
    user = find_or_404("user", body.id, "User")
    if body.status == "accept":
        updated = update_or_404("user", body.id, {"status": "active"}, "User")
        logger.info("Brand account %s approved", body.id)
        return {"status": "success", "message": "Brand account approved successfully.", "user": updated}
    delete_or_404("user", body.id, "User")
    logger.info("Brand account %s (%s) rejected", body.id, user.get("email"))
    return {"status": "success", "message": "Brand account rejected and removed successfully."}


@api.get("/users/portfolio/{id}")
def get_designer_portfolio(id: str):
    designer = find_or_404("user", id, "Designer")
    return {"success": True, "portfolio_images": designer.get("portfolio_images", [])}


@api.post("/users/remove-portfolio-image")
def remove_portfolio_image(body: RemovePortfolioImageBody):
    result = database.collection("user").update_one(
        {"email": body.email},
        {"$pull": {"portfolio_images": body.image_url}, "$set": {"updated_at": database.utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFound("User not found")
    return {"success": True, "message": "Image removed successfully"}


@api.get("/users/{id}")
def get_user(id: str):
    return serialize(find_or_404("user", id, "User"))


@api.put("/users/{id}")
def update_user(id: str, body: UserUpdateBody):
    return update_or_404("user", id, body.model_dump(exclude_unset=True), "User")


@api.delete("/users/{id}")
def delete_user(id: str):
    return delete_or_404("user", id, "User")


# Brands
class BrandUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    description: Optional[str] = None
    logo: Optional[str] = None
    cover_image: Optional[str] = None
    social_media: Optional[SocialMedia] = None


@api.post("/brands", status_code=201)
def create_brand(body: BrandSchema):
    return create_and_fetch("brand", body)


@api.get("/brands")
def list_brands():
    return [serialize(d) for d in get_documents("brand")]


@api.get("/brands/{id}")
def get_brand(id: str):
    return serialize(find_or_404("brand", id, "Brand"))


@api.put("/brands/{id}")
def update_brand(id: str, body: BrandUpdateBody):
    return update_or_404("brand", id, body.model_dump(exclude_unset=True, exclude_none=True), "Brand")


@api.delete("/brands/{id}")
def delete_brand(id: str):
    return delete_or_404("brand", id, "Brand")


# Designers
class DesignerUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    cover_image: Optional[str] = None
    portfolio: Optional[List[str]] = None
    social_media: Optional[SocialMedia] = None


@api.post("/designers", status_code=201)
def create_designer(body: DesignerSchema):
    return create_and_fetch("designer", body)


@api.get("/designers")
def list_designers():
    return [serialize(d) for d in get_documents("designer")]


@api.get("/designers/{id}")
def get_designer(id: str):
    return serialize(find_or_404("designer", id, "Designer"))


@api.put("/designers/{id}")
def update_designer(id: str, body: DesignerUpdateBody):
    return update_or_404("designer", id, body.model_dump(exclude_unset=True, exclude_none=True), "Designer")


@api.delete("/designers/{id}")
def delete_designer(id: str):
    return delete_or_404("designer", id, "Designer")


# Products
class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    brand_id: Optional[str] = None
    brand_name: Optional[str] = None
    designer_id: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=5000)
    images: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None


@api.post("/products", status_code=201)
def create_product(body: ProductSchema):
    return create_and_fetch("product", body)


@api.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, brand_id: Optional[str] = None,
                  limit: int = Query(100, ge=1, le=500)):
    filter_q = {}
    if category:
        filter_q["category"] = category
    if brand_id:
        filter_q["brand_id"] = brand_id
    if q:
        # Simple text search via regex
        filter_q["name"] = {"$regex": q, "$options": "i"}
    return [serialize(d) for d in get_documents("product", filter_q, limit=limit)]


@api.get("/products/date-range")
def products_by_date_range(start: datetime, end: datetime):
    if start > end:
        raise ValidationFailure("start must not be after end")
    docs = get_documents("product", {"created_at": {"$gte": start, "$lte": end}}, sort=[("created_at", -1)])
    return [serialize(d) for d in docs]


@api.get("/products/{id}")
def get_product(id: str):
    return serialize(find_or_404("product", id, "Product"))


@api.put("/products/{id}")
def update_product(id: str, body: ProductUpdateBody):
    return update_or_404("product", id, body.model_dump(exclude_unset=True, exclude_none=True), "Product")


@api.delete("/products/{id}")
def delete_product(id: str):
    return delete_or_404("product", id, "Product")


# E-commerce orders
class CreateOrderBody(BaseModel):
    user_id: Optional[str] = None
    total_price: Optional[float] = None
    items: List[OrderItem] = []
    shipping_address: Optional[Address] = None
    payment_method: Literal["cash_on_delivery", "credit_card"] = "cash_on_delivery"


class OrderStatusBody(BaseModel):
    status: str


class UpdateOrderBody(BaseModel):
    items: Optional[List[OrderItem]] = None
    shipping_address: Optional[Address] = None
    total_price: Optional[float] = None


@api.post("/orders", status_code=201)
def create_order(body: CreateOrderBody):
    if not body.user_id:
        raise ValidationFailure("User ID is required")
    if not body.total_price or body.total_price < config.MIN_ORDER_TOTAL:
        raise ValidationFailure(f"Total price must be at least {config.MIN_ORDER_TOTAL:g} PKR")

    order = OrderSchema(
        order_id=str(ObjectId()),
        user_id=body.user_id,
        total_price=body.total_price,
        order_date=database.utcnow(),
        status="Pending" if body.payment_method == "cash_on_delivery" else "Processing",
        payment_method=body.payment_method,
        payment_status="pending",
        shipping_address=body.shipping_address,
        items=body.items,
    )
    created = create_and_fetch("order", order)
    logger.info("Order %s created for %s", created["order_id"], body.user_id)
    return {"order": created}


@api.get("/orders")
def list_orders(user_id: Optional[str] = None):
    filters = {"user_id": user_id} if user_id else {}
    return [serialize(d) for d in get_documents("order", filters, sort=[("order_date", -1)])]


@api.get("/orders/{id}")
def get_order(id: str):
    return serialize(find_or_404("order", id, "Order"))


@api.put("/orders/{id}")
def update_order(id: str, body: UpdateOrderBody):
    changes = body.model_dump(exclude_unset=True)
    if "total_price" in changes and (changes["total_price"] or 0) < config.MIN_ORDER_TOTAL:
        raise ValidationFailure(f"Total price must be at least {config.MIN_ORDER_TOTAL:g} PKR")
    return update_or_404("order", id, changes, "Order")


@api.post("/orders/{id}")
def update_order_status(id: str, body: OrderStatusBody):
    if body.status not in ORDER_STATUSES:
        raise ValidationFailure("Invalid status. Use 'Pending', 'Shipped', or 'Canceled'.")
    return update_or_404("order", id, {"status": body.status}, "Order")


@api.delete("/orders/{id}")
def delete_order(id: str):
    return delete_or_404("order", id, "Order")


# Custom orders
class CustomOrderStatusBody(BaseModel):
    status: Optional[str] = None


@api.post("/custom-orders", status_code=201)
def create_custom_order(body: CustomOrderCreate):
    return {"success": True, "data": custom_orders.create_custom_order(body)}


@api.get("/custom-orders")
def list_custom_orders(designer_id: Optional[str] = None, user_id: Optional[str] = None,
                       status: Optional[str] = None):
    orders = custom_orders.list_custom_orders(designer_id, user_id, status)
    return {"success": True, "count": len(orders), "data": orders}


@api.get("/custom-orders/{id}")
def get_custom_order(id: str):
    return {"success": True, "data": custom_orders.get_custom_order(id)}


@api.put("/custom-orders/{id}")
def update_custom_order(id: str, body: dict):
    return {"success": True, "data": custom_orders.update_custom_order(id, body)}


@api.delete("/custom-orders/{id}")
def delete_custom_order(id: str):
    custom_orders.delete_custom_order(id)
    return {"success": True, "data": {}}


@api.patch("/custom-orders/{id}/status")
def update_custom_order_status(id: str, body: CustomOrderStatusBody):
    return {"success": True, "data": custom_orders.update_custom_order_status(id, body.status)}


# Messaging
class StartConversationBody(BaseModel):
    user_id: str
    recipient_id: str
    message: str


class SendMessageBody(BaseModel):
    user_id: str
    conversation_id: str
    message: str


class MarkReadBody(BaseModel):
    user_id: str
    conversation_id: str


@api.post("/chat/start-conversation", status_code=201)
def start_conversation(body: StartConversationBody):
    return chat.start_conversation(body.user_id, body.recipient_id, body.message)


@api.post("/chat/send-message")
def send_message(body: SendMessageBody):
    return chat.send_message(body.conversation_id, body.user_id, body.message)


@api.get("/chat/conversations/{user_id}")
def get_conversations(user_id: str):
    return chat.get_conversations(user_id)


@api.get("/chat/messages/{conversation_id}")
def get_messages(conversation_id: str):
    return chat.get_messages(conversation_id)


@api.post("/chat/mark-messages-read")
def mark_messages_read(body: MarkReadBody):
    cleared = chat.mark_messages_as_read(body.conversation_id, body.user_id)
    return {"message": "Messages marked as read", "cleared": cleared}


@api.get("/chat/unread-count/{user_id}")
def get_unread_count(user_id: str):
    return {"count": chat.get_total_unread_count(user_id)}


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
