from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import auth, crud
from .balance import balance_status, format_balance
from .database import engine, get_session, init_db
from .errors import AuthError, LedgerError
from .logging_config import setup_logging
from .models import Customer, Transaction, User
from .schemas import (
    CustomerCreate,
    CustomerListResponse,
    CustomerRead,
    CustomerResponse,
    CustomerUpdate,
    DeleteResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    TransactionCreate,
    TransactionDeleteResponse,
    TransactionListResponse,
    TransactionMutationResponse,
    TransactionRead,
    TransactionUpdate,
    UserRead,
    UserResponse,
)

logger = logging.getLogger(__name__)

API_PREFIX = os.getenv("LEDGER_API_PREFIX", "/api")
CORS_ORIGINS = [item.strip() for item in os.getenv("LEDGER_CORS_ORIGINS", "*").split(",") if item.strip()]

bearer_scheme = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    with Session(engine) as session:
        auth.ensure_default_admin(session)
    logger.info("Ledger backend ready at prefix '%s'", API_PREFIX)
    yield


app = FastAPI(title="Ledger Backend", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class UserContext:
    session: Session
    user: User


def require_user_context(
    session: Session = Depends(get_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> UserContext:
    token = credentials.credentials if credentials else None
    user = auth.get_user_by_token(session, token)
    return UserContext(session=session, user=user)


# --------------------------------------------------------------------------
# Error envelope
# --------------------------------------------------------------------------


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _format_validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query")]
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": ".".join(location), "message": message})
    return errors


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.as_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid data", errors=_format_validation_errors(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")


# --------------------------------------------------------------------------
# Serialisation helpers
# --------------------------------------------------------------------------


def _customer_to_schema(customer: Customer, balance: float) -> CustomerRead:
    payload = CustomerRead.model_validate(customer, from_attributes=True)
    payload.current_balance = balance
    payload.balance_status = balance_status(balance)
    payload.balance_label = format_balance(balance)
    return payload


def _transaction_response(txn: Transaction, balance: float) -> TransactionMutationResponse:
    data = TransactionRead.model_validate(txn, from_attributes=True).model_dump()
    return TransactionMutationResponse(**data, current_balance=balance)


# --------------------------------------------------------------------------
# Routes
# --------------------------------------------------------------------------

router = APIRouter(prefix=API_PREFIX)


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)):
    user = auth.authenticate_user(session, username=payload.username, password=payload.password)
    if not user:
        logger.warning("Failed login for '%s'", payload.username)
        raise AuthError("Invalid credentials")
    token = auth.issue_access_token(user)
    return LoginResponse(token=token, user=UserRead.model_validate(user, from_attributes=True))


@router.get("/auth/me", response_model=UserResponse)
def current_user(ctx: UserContext = Depends(require_user_context)):
    return UserResponse(user=UserRead.model_validate(ctx.user, from_attributes=True))


@router.post("/customers", response_model=CustomerResponse, status_code=201)
def create_customer_api(payload: CustomerCreate, ctx: UserContext = Depends(require_user_context)):
    customer = crud.create_customer(ctx.session, **payload.model_dump())
    return CustomerResponse(customer=_customer_to_schema(customer, 0.0))


@router.get("/customers", response_model=CustomerListResponse)
def list_customers_api(ctx: UserContext = Depends(require_user_context)):
    rows = crud.list_customers_with_balances(ctx.session)
    return CustomerListResponse(customers=[_customer_to_schema(customer, balance) for customer, balance in rows])


@router.get("/customers/{customer_id}", response_model=CustomerResponse)
def get_customer_api(customer_id: int, ctx: UserContext = Depends(require_user_context)):
    customer = crud.get_customer(ctx.session, customer_id)
    balance = crud.get_customer_balance(ctx.session, customer_id)
    return CustomerResponse(customer=_customer_to_schema(customer, balance))


@router.put("/customers/{customer_id}", response_model=CustomerResponse)
def update_customer_api(
    customer_id: int,
    payload: CustomerUpdate,
    ctx: UserContext = Depends(require_user_context),
):
    customer = crud.update_customer(ctx.session, customer_id, **payload.model_dump())
    balance = crud.get_customer_balance(ctx.session, customer_id)
    return CustomerResponse(customer=_customer_to_schema(customer, balance))


@router.delete("/customers/{customer_id}", response_model=DeleteResponse)
def delete_customer_api(customer_id: int, ctx: UserContext = Depends(require_user_context)):
    crud.delete_customer(ctx.session, customer_id)
    return DeleteResponse(message="Customer deleted")


@router.post("/transactions", response_model=TransactionMutationResponse, status_code=201)
def create_transaction_api(payload: TransactionCreate, ctx: UserContext = Depends(require_user_context)):
    txn, balance = crud.create_transaction(
        ctx.session,
        payload.customer_id,
        payload.type,
        payload.amount,
        description=payload.description,
        date=payload.date,
    )
    return _transaction_response(txn, balance)


@router.get("/transactions/customer/{customer_id}", response_model=TransactionListResponse)
def list_customer_transactions_api(customer_id: int, ctx: UserContext = Depends(require_user_context)):
    rows = crud.list_transactions_by_customer(ctx.session, customer_id)
    return TransactionListResponse(txns=[TransactionRead.model_validate(row, from_attributes=True) for row in rows])


@router.put("/transactions/{transaction_id}", response_model=TransactionMutationResponse)
def update_transaction_api(
    transaction_id: int,
    payload: TransactionUpdate,
    ctx: UserContext = Depends(require_user_context),
):
    txn, balance = crud.update_transaction(
        ctx.session,
        transaction_id,
        payload.type,
        payload.amount,
        description=payload.description,
        date=payload.date,
    )
    return _transaction_response(txn, balance)


@router.delete("/transactions/{transaction_id}", response_model=TransactionDeleteResponse)
def delete_transaction_api(transaction_id: int, ctx: UserContext = Depends(require_user_context)):
    _, balance = crud.delete_transaction(ctx.session, transaction_id)
    return TransactionDeleteResponse(current_balance=balance, message="Transaction deleted")


app.include_router(router)
