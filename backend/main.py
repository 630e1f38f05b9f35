from fastapi import FastAPI, Depends, HTTPException, status, Header, Body, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
import logging
import os
import uuid
import uvicorn

import models
import auth
import assistant
import action_blocks
import order_service
from database import engine, get_db, init_admin_account, wait_for_db
from errors import PizzeriaError, ValidationError, DirectiveParseError
from schemas import (
    UserCreate,
    UserResponse,
    UserLogin,
    PasswordChange,
    RoleUpdate,
    CreationResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentStatusUpdate,
    ReservationTimeUpdate,
    ChatRequest,
    ChatResponse,
    ConfirmRequest,
)
from redis_client import redis_client, rate_limit


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("pizzeria")

CHAT_RATE_LIMIT = int(os.getenv("CHAT_RATE_LIMIT", "20"))

app = FastAPI(title="Pizzeria Order API")

origins = [origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PizzeriaError)
async def pizzeria_error_handler(request: Request, exc: PizzeriaError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}")
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(problems)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return JSONResponse(status_code=405, content={"error": "Method not allowed"})
    return await http_exception_handler(request, exc)


@app.on_event("startup")
def startup_event():
    # Сначала дожидаемся готовности базы данных
    if wait_for_db():
        try:
            models.Base.metadata.create_all(bind=engine)
            logger.info("Database tables are ready")
            init_admin_account()
        except SQLAlchemyError as e:
            logger.error(f"Could not create database tables: {e}")
    else:
        logger.error("Database did not become available during startup")

    # После БД проверяем доступность Redis
    if redis_client.is_available():
        logger.info("Redis is available")
    else:
        logger.warning("Redis is not available, caching and rate limiting are disabled")


@app.get("/")
def read_root():
    return {"message": "Pizzeria API is working!"}


@app.get("/health")
def health_check():
    return {"status": "ok", "message": "API is running"}


@app.get("/cache/info")
def get_cache_info():
    """Получить информацию о состоянии кеша"""
    return redis_client.get_cache_info()


async def get_current_user(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    token = auth.bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = auth.verify_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def require_admin(current_user: models.User = Depends(get_current_user)):
    if current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Administrator access required")
    return current_user


@app.post("/cache/clear")
def clear_cache(current_user: models.User = Depends(require_admin)):
    return {"cleared": redis_client.clear_all_cache()}


# ========== Аккаунты ==========

@app.post("/register", response_model=UserResponse)
def register(user: UserCreate, db: Session = Depends(get_db)):
    # администраторов назначает только администратор, см. /users/{id}/role
    if user.role != "customer":
        raise HTTPException(status_code=403, detail="Only customer accounts can be registered")

    db_user = db.query(models.User).filter(models.User.username == user.username).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Username already registered")

    hashed_password = auth.get_password_hash(user.password)
    db_user = models.User(username=user.username, password=hashed_password, role=user.role)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Registered user {db_user.username} ({db_user.role})")
    return db_user


@app.post("/login")
def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = auth.authenticate_user(db, user.username, user.password)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")

    access_token = auth.create_access_token(data={"sub": db_user.username, "role": db_user.role})

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": {
            "id": db_user.id,
            "username": db_user.username,
            "role": db_user.role
        }
    }


@app.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: models.User = Depends(get_current_user)):
    return current_user


@app.put("/users/{user_id}/password")
def change_password(
    user_id: int,
    password_data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    if current_user.id != user_id:
        raise HTTPException(status_code=403, detail="You can only change your own password")

    current_user.password = auth.get_password_hash(password_data.new_password)
    db.commit()
    return {"message": "Password updated successfully"}


@app.put("/users/{user_id}/role", response_model=UserResponse)
def change_role(
    user_id: int,
    role_data: RoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin)
):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.role = role_data.role
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.username} is now {user.role} (changed by {current_user.username})")
    return user


# ========== Создание заказов и резерваций ==========

@app.post("/api/create-order", response_model=CreationResponse)
def create_order(
    payload: Dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    user_id = auth.resolve_user_id(authorization)
    return order_service.create_order(db, payload, user_id)


@app.post("/api/create-reservation", response_model=CreationResponse)
def create_reservation(
    payload: Dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    user_id = auth.resolve_user_id(authorization)
    return order_service.create_reservation(db, payload, user_id)


# ========== Ассистент ==========

@app.post("/api/ask-santo", response_model=ChatResponse)
@rate_limit(max_requests=CHAT_RATE_LIMIT, window=60)
async def ask_santo(request: Request, chat: ChatRequest):
    if not chat.history:
        raise ValidationError("No conversation history provided", ["history"])

    reply = await run_in_threadpool(
        assistant.assistant_client.generate_reply,
        [message.dict() for message in chat.history],
        chat.menuData,
        chat.storeStatus,
    )
    extracted = action_blocks.extract_action(reply)
    action = extracted.action.to_payload() if extracted.action else None
    return ChatResponse(reply=extracted.text, action=action)


@app.post("/api/chat/confirm", response_model=CreationResponse)
def confirm_chat_action(
    confirm: ConfirmRequest,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Пользователь подтвердил блок действия из чата: создаём заказ или резерву."""
    user_id = auth.resolve_user_id(authorization)
    data = {"details": confirm.action.details, "cart": confirm.action.cart}
    try:
        action = action_blocks.build_action(confirm.action.type, data)
    except DirectiveParseError as e:
        raise ValidationError(e.message)

    if isinstance(action, action_blocks.CreateReservationAction):
        return order_service.create_reservation(db, {"details": action.details.dict()}, user_id)

    details = action.details.dict()
    details["deliveryFee"] = order_service.delivery_fee_for(action.details)
    payload = {
        "details": details,
        "cart": [item.dict() for item in action.cart],
        "total": order_service.cart_total(action.cart, action.details),
        "orderId": confirm.orderId or uuid.uuid4().hex,
    }
    return order_service.create_order(db, payload, user_id)


# ========== Заказы ==========

def get_order_or_404(db: Session, order_id: str) -> models.Order:
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def save_order_change(db: Session, order: models.Order) -> OrderResponse:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error updating order {order.id}: {e}")
        raise HTTPException(status_code=500, detail="Error updating order")

    redis_client.invalidate_order_cache(order.id)
    db.refresh(order)
    return order_service.get_order_response(order)


@app.get("/me/orders", response_model=List[OrderResponse])
def get_my_orders(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    token = auth.bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user_id = auth.verify_identity_token(token)
    return [order_service.get_order_response(o) for o in order_service.list_orders(db, user_id=user_id)]


@app.get("/orders", response_model=List[OrderResponse])
def get_orders(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    return [order_service.get_order_response(o) for o in order_service.list_orders(db, status=status)]


@app.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, db: Session = Depends(get_db)):
    cached = redis_client.get_cached_order(order_id)
    if cached:
        return OrderResponse(**cached)

    order_response = order_service.get_order_response(get_order_or_404(db, order_id))
    redis_client.cache_order(order_id, order_response.dict())
    return order_response


@app.put("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    order = get_order_or_404(db, order_id)
    order.status = update.status
    if update.pickupTimeEstimate is not None:
        order.pickup_time_estimate = update.pickupTimeEstimate
    return save_order_change(db, order)


@app.put("/orders/{order_id}/payment-status", response_model=OrderResponse)
def update_order_payment_status(
    order_id: str,
    update: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    order = get_order_or_404(db, order_id)
    order.payment_status = update.paymentStatus
    return save_order_change(db, order)


@app.put("/orders/{order_id}/reservation-time", response_model=OrderResponse)
def update_reservation_time(
    order_id: str,
    update: ReservationTimeUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    order = get_order_or_404(db, order_id)
    if order.order_type != "local":
        raise HTTPException(status_code=400, detail="Only reservations have a reservation time")
    order.reservation_time = update.reservationTime
    return save_order_change(db, order)


@app.delete("/orders/{order_id}", response_model=OrderResponse)
def delete_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    # мягкое удаление: заказ остаётся в истории со статусом deleted
    order = get_order_or_404(db, order_id)
    order.status = "deleted"
    return save_order_change(db, order)


@app.delete("/orders/{order_id}/permanent")
def permanent_delete_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    order = get_order_or_404(db, order_id)
    try:
        db.delete(order)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error deleting order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Error deleting order")

    redis_client.invalidate_order_cache(order_id)
    return {"message": "Order deleted permanently"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
