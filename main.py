import logging
import os
from typing import List, Optional
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
import catalog
import orders
import payments
import pickup
from database import db, get_repository
from errors import (
    AuthenticationError,
    AuthorizationError,
    CanteenError,
    ConflictError,
    EmailTakenError,
    NotFoundError,
    PickupTokenNotFoundError,
    ValidationError,
)
from repository import Repository
from schemas import (
    Actor,
    LoginRequest,
    MenuCreate,
    MenuItem,
    MenuUpdate,
    OrderCreate,
    OrderStatusUpdate,
    OrderView,
    PaymentConfirm,
    PaymentCreate,
    PaymentResponse,
    RedeemRequest,
    RegisterRequest,
    SessionResponse,
    StockUpdate,
    User,
)

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Queueless Canteen API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# Error mapping
# -----------------------------

# Most specific first; the first matching family wins
ERROR_STATUS_CODES: List[tuple] = [
    (EmailTakenError, 409),
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 400),
    (AuthorizationError, 403),
    (AuthenticationError, 401),
]


@app.exception_handler(CanteenError)
async def canteen_error_handler(request: Request, exc: CanteenError) -> JSONResponse:
    """Map CanteenError subclasses to HTTP responses."""
    status_code = next((code for cls, code in ERROR_STATUS_CODES if isinstance(exc, cls)), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )

# -----------------------------
# Dependencies
# -----------------------------

def session_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    return auth.bearer_token(authorization)


def current_actor(
    token: Optional[str] = Depends(session_token),
    repo: Repository = Depends(get_repository),
) -> Actor:
    return auth.resolve(repo, token)

# -----------------------------
# Health/Test
# -----------------------------

@app.get("/")
def root():
    return {"message": "Queueless Canteen API running"}


@app.get("/api/health")
def health():
    return {"status": "ok"}


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
        else:
            response["database"] = "⚠️ In-memory storage"
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response

# -----------------------------
# Auth Endpoints
# -----------------------------

@app.post("/api/auth/register", response_model=SessionResponse)
def register(payload: RegisterRequest, repo: Repository = Depends(get_repository)):
    token, user = auth.register(repo, payload.name, payload.email, payload.password)
    return SessionResponse(token=token, user=user)


@app.post("/api/auth/login", response_model=SessionResponse)
def login(payload: LoginRequest, repo: Repository = Depends(get_repository)):
    token, user = auth.login(repo, payload.email, payload.password)
    return SessionResponse(token=token, user=user)


@app.post("/api/auth/logout")
def logout(
    actor: Actor = Depends(current_actor),
    token: Optional[str] = Depends(session_token),
    repo: Repository = Depends(get_repository),
):
    auth.logout(repo, token)
    return {"status": "ok"}


@app.get("/api/me", response_model=User)
def me(actor: Actor = Depends(current_actor), repo: Repository = Depends(get_repository)):
    doc = repo.get_user(actor.user_id)
    return User(id=doc["id"], name=doc["name"], email=doc["email"], role=doc["role"])

# -----------------------------
# Menu Endpoints
# -----------------------------

@app.get("/api/menu", response_model=List[MenuItem])
def list_menu(category: Optional[str] = None, repo: Repository = Depends(get_repository)):
    items = catalog.list_items(repo)
    if category:
        items = [i for i in items if i.category == category]
    return items


@app.post("/api/menu", response_model=MenuItem)
def create_menu_item(
    payload: MenuCreate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    return catalog.create_item(repo, actor, payload)


@app.put("/api/menu/{item_id}", response_model=MenuItem)
def update_menu_item(
    item_id: str,
    payload: MenuUpdate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    return catalog.update_item(repo, actor, item_id, payload)


@app.patch("/api/menu/{item_id}/stock", response_model=MenuItem)
def update_menu_stock(
    item_id: str,
    payload: StockUpdate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    return catalog.set_stock_and_availability(repo, actor, item_id, payload.stock, payload.available)


@app.delete("/api/menu/{item_id}")
def delete_menu_item(
    item_id: str,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    catalog.delete_item(repo, actor, item_id)
    return {"status": "deleted"}

# -----------------------------
# Payment Endpoints
# -----------------------------

@app.post("/api/payments/create-order", response_model=PaymentResponse)
def create_payment(
    payload: PaymentCreate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    payment = payments.create_payment(repo, actor, payload.amount)
    return PaymentResponse(payment_id=payment.id, amount=payment.amount, currency=payment.currency, status=payment.status)


@app.post("/api/payments/confirm", response_model=PaymentResponse)
def confirm_payment(
    payload: PaymentConfirm,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    payment = payments.confirm_payment(repo, actor, payload.payment_id)
    return PaymentResponse(payment_id=payment.id, amount=payment.amount, currency=payment.currency, status=payment.status)

# -----------------------------
# Order Endpoints
# -----------------------------

@app.get("/api/orders", response_model=List[OrderView])
def list_orders(actor: Actor = Depends(current_actor), repo: Repository = Depends(get_repository)):
    return orders.list_orders(repo, actor)


@app.post("/api/orders", response_model=OrderView)
def create_order(
    payload: OrderCreate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    order = orders.place_order(repo, actor, payload.items, payload.payment_method, payload.payment_id)
    return orders.to_view(order, include_token=True)


@app.post("/api/orders/redeem-by-token", response_model=OrderView)
def redeem_by_token(
    payload: RedeemRequest,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    order = pickup.redeem_by_token(repo, actor, payload.token)
    return orders.to_view(order, include_token=False)


@app.get("/api/orders/{order_id}", response_model=OrderView)
def get_order(
    order_id: str,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    return orders.get_order(repo, actor, order_id)


@app.patch("/api/orders/{order_id}/status", response_model=OrderView)
def set_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    order = orders.update_status(repo, actor, order_id, payload.status)
    return orders.to_view(order, include_token=False)


@app.post("/api/orders/{order_id}/redeem", response_model=OrderView)
def redeem_order(
    order_id: str,
    payload: RedeemRequest,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    order = pickup.redeem_for_order(repo, actor, order_id, payload.token)
    return orders.to_view(order, include_token=False)

# -----------------------------
# Pickup QR code for the order owner
# -----------------------------

@app.get("/api/orders/{order_id}/pickup-qr")
def pickup_qr(
    order_id: str,
    actor: Actor = Depends(current_actor),
    repo: Repository = Depends(get_repository),
):
    view = orders.get_order(repo, actor, order_id)
    if not view.pickup_token:
        raise PickupTokenNotFoundError(order_id)
    return Response(content=pickup.render_pickup_qr(view.pickup_token), media_type="image/png")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
