import logging
import os
from typing import Any, Dict, List, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import cart
import catalog
from auth import create_token, get_current_user_id, hash_password, verify_password
from database import create_document, get_db
from errors import AuthenticationError, MarketplaceError, NotFoundError, UnexpectedError, ValidationError
from schemas import User
from uploads import IMAGE_FIELDS, get_uploader

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="Marketplace API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# text fields read from the multipart listing forms; anything else is ignored
LISTING_FORM_FIELDS = (
    "name", "description", "price", "category", "subCategory", "sizes",
    "bestseller", "condition", "stock", "status",
)


# Envelope helpers
def failure(error: Exception) -> Dict[str, Any]:
    """Every failure leaves the API as ``{success: false, message, error}`` with HTTP 200."""
    if not isinstance(error, MarketplaceError):
        logger.error("Unhandled error: %s", error, exc_info=error)
        error = UnexpectedError(str(error) or None)
    return {"success": False, "message": error.message, "error": error.kind}


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(failure(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0]["loc"] if part != "body")
        message = f"{location}: {errors[0]['msg']}" if location else errors[0]["msg"]
    else:
        message = "Invalid request"
    return JSONResponse(failure(ValidationError(message)))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # unknown routes and wrong methods still answer with the envelope
    error_cls = NotFoundError if exc.status_code == 404 else ValidationError
    return JSONResponse(failure(error_cls(str(exc.detail))))


async def read_listing_form(request: Request) -> Tuple[Dict[str, str], List[Any], FormData]:
    """Split a listing form into supplied text fields and uploaded image files."""
    form = await request.form()
    fields = {key: form[key] for key in LISTING_FORM_FIELDS if isinstance(form.get(key), str)}
    files = [
        form[slot].file for slot in IMAGE_FIELDS
        if isinstance(form.get(slot), UploadFile) and form[slot].filename
    ]
    return fields, files, form


# Request bodies
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProductIdIn(BaseModel):
    product_id: str = Field(..., alias="productId")


class RemoveProductIn(BaseModel):
    id: str


class CartItemIn(BaseModel):
    item_id: str = Field(..., alias="itemId")
    size: str


class CartUpdateIn(CartItemIn):
    quantity: int


# Health
@app.get("/")
def root():
    return {"message": "Marketplace API running"}


@app.get("/test")
def test_database(database: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Users
@app.post("/api/user/register")
def register(payload: RegisterRequest, database: Database = Depends(get_db)):
    try:
        if database["user"].find_one({"email": payload.email}):
            raise ValidationError("Email already registered")
        user = User(name=payload.name, email=payload.email, hashed_password=hash_password(payload.password))
        user_id = create_document("user", user, database)
        logger.info("Registered user %s", user_id)
        token = create_token({"_id": user_id, "email": payload.email})
    except Exception as e:
        return failure(e)
    return {"success": True, "token": token}


@app.post("/api/user/login")
def login(payload: LoginRequest, database: Database = Depends(get_db)):
    try:
        user = database["user"].find_one({"email": payload.email})
        if not user or not verify_password(payload.password, user.get("hashed_password", "")):
            raise AuthenticationError("Invalid credentials")
        token = create_token(user)
    except Exception as e:
        return failure(e)
    return {"success": True, "token": token}


# Products: public
@app.get("/api/product/list")
def list_products(database: Database = Depends(get_db)):
    try:
        products = catalog.list_listings(database)
    except Exception as e:
        return failure(e)
    return {"success": True, "products": products}


@app.post("/api/product/single")
def single_product(payload: ProductIdIn, database: Database = Depends(get_db)):
    try:
        product = catalog.get_listing(database, payload.product_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "product": product}


@app.get("/api/product/category/{category}")
def products_by_category(category: str, database: Database = Depends(get_db)):
    try:
        products = catalog.list_category_listings(database, category)
    except Exception as e:
        return failure(e)
    return {"success": True, "products": products, "category": category}


@app.get("/api/product/search/{query}")
def search_products(query: str, database: Database = Depends(get_db)):
    try:
        products = catalog.search_listings(database, query)
    except Exception as e:
        return failure(e)
    return {"success": True, "products": products, "searchQuery": query}


# Products: seller only
@app.post("/api/product/add")
async def add_product(request: Request, user_id: str = Depends(get_current_user_id),
                      database: Database = Depends(get_db), uploader=Depends(get_uploader)):
    try:
        fields, files, form = await read_listing_form(request)
        try:
            product = await run_in_threadpool(catalog.create_listing, database, uploader, user_id, fields, files)
        finally:
            await form.close()
    except Exception as e:
        return failure(e)
    return {"success": True, "message": "Product Added Successfully", "product": product}


@app.get("/api/product/my-products")
def my_products(user_id: str = Depends(get_current_user_id), database: Database = Depends(get_db)):
    try:
        products = catalog.list_owner_listings(database, user_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "products": products}


@app.post("/api/product/update")
async def update_product(request: Request, user_id: str = Depends(get_current_user_id),
                         database: Database = Depends(get_db), uploader=Depends(get_uploader)):
    try:
        fields, files, form = await read_listing_form(request)
        try:
            product_id = form.get("id")
            if not isinstance(product_id, str) or not product_id:
                raise ValidationError("Product id is required")
            product = await run_in_threadpool(
                catalog.update_listing, database, uploader, user_id, product_id, fields, files
            )
        finally:
            await form.close()
    except Exception as e:
        return failure(e)
    return {"success": True, "message": "Product updated successfully", "product": product}


@app.post("/api/product/remove")
def remove_product(payload: RemoveProductIn, user_id: str = Depends(get_current_user_id),
                   database: Database = Depends(get_db)):
    try:
        catalog.delete_listing(database, user_id, payload.id)
    except Exception as e:
        return failure(e)
    return {"success": True, "message": "Product removed successfully"}


# Cart
@app.post("/api/cart/get")
def get_cart(user_id: str = Depends(get_current_user_id), database: Database = Depends(get_db)):
    try:
        cart_data = cart.get_cart(database, user_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "cartData": cart_data}


@app.post("/api/cart/add")
def cart_add(item: CartItemIn, user_id: str = Depends(get_current_user_id), database: Database = Depends(get_db)):
    try:
        cart_data = cart.add_to_cart(database, user_id, item.item_id, item.size)
    except Exception as e:
        return failure(e)
    return {"success": True, "message": "Added To Cart", "cartData": cart_data}


@app.post("/api/cart/update")
def cart_update(item: CartUpdateIn, user_id: str = Depends(get_current_user_id), database: Database = Depends(get_db)):
    try:
        cart_data = cart.update_cart(database, user_id, item.item_id, item.size, item.quantity)
    except Exception as e:
        return failure(e)
    return {"success": True, "message": "Cart Updated", "cartData": cart_data}


# Wishlist
@app.post("/api/user/wishlist/get")
def wishlist_get(user_id: str = Depends(get_current_user_id), database: Database = Depends(get_db)):
    try:
        wishlist = cart.get_wishlist(database, user_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "wishlist": wishlist}


@app.post("/api/user/wishlist/add")
def wishlist_add(payload: ProductIdIn, user_id: str = Depends(get_current_user_id),
                 database: Database = Depends(get_db)):
    try:
        wishlist = cart.add_to_wishlist(database, user_id, payload.product_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "wishlist": wishlist}


@app.post("/api/user/wishlist/remove")
def wishlist_remove(payload: ProductIdIn, user_id: str = Depends(get_current_user_id),
                    database: Database = Depends(get_db)):
    try:
        wishlist = cart.remove_from_wishlist(database, user_id, payload.product_id)
    except Exception as e:
        return failure(e)
    return {"success": True, "wishlist": wishlist}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
