import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security.api_key import APIKeyHeader

from admin_gate import AdminAlreadyConfigured, AdminCredentialGate
from config import settings
from database import LocalCacheStore, init_db
from hardware_fingerprint import get_or_create_device_id
from license_keys import LicenseKeyValidator, issue_key, key_stats, purchase_key
from models import (
    AdminCredentialsRequest,
    AdminExistsResponse,
    AdminSessionResponse,
    AuthKey,
    DebtPaymentRequest,
    DebtRecord,
    DeviceResponse,
    FinancialRecord,
    HealthCheckResponse,
    IssueKeyRequest,
    KeyLoginResponse,
    KeyStatsResponse,
    KeyValidationRequest,
    Product,
    PurchaseKeyRequest,
    ShopProfile,
    Transaction,
)
from persistence import PersistenceFacade
from remote_store import RemoteStoreClient

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    cache = LocalCacheStore()
    facade = PersistenceFacade(RemoteStoreClient(), cache)
    app.state.facade = facade
    app.state.validator = LicenseKeyValidator(facade)
    app.state.admin_gate = AdminCredentialGate(facade)
    app.state.device_id = get_or_create_device_id(cache)
    logger.info("%s %s started (remote store: %s)", settings.APP_NAME, settings.APP_VERSION, settings.REMOTE_STORE_URL)
    yield


app = FastAPI(
    title="Lumina POS Data Service",
    description="Remote-first, offline-capable persistence and licensing for Lumina POS",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ADMIN_SESSION_HEADER = APIKeyHeader(name="X-Admin-Session", auto_error=False)


# Dependencies
def get_facade(request: Request) -> PersistenceFacade:
    return request.app.state.facade


def get_validator(request: Request) -> LicenseKeyValidator:
    return request.app.state.validator


def get_admin_gate(request: Request) -> AdminCredentialGate:
    return request.app.state.admin_gate


def get_device_id(request: Request) -> str:
    return request.app.state.device_id


def require_admin(
    token: Optional[str] = Depends(ADMIN_SESSION_HEADER),
    gate: AdminCredentialGate = Depends(get_admin_gate),
):
    if not gate.is_admin_session(token):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


# --- Authentication ---
@app.post("/api/auth/key", response_model=KeyLoginResponse)
async def login_with_key(
    request: KeyValidationRequest,
    validator: LicenseKeyValidator = Depends(get_validator),
    gate: AdminCredentialGate = Depends(get_admin_gate),
    device_id: str = Depends(get_device_id),
):
    """
    Validate a license key for this device.

    A configured administrative override key opens an admin session
    instead. Without an explicit deviceId the service's own device
    identifier is used.
    """
    token = gate.login_with_master_key(request.key)
    if token:
        return KeyLoginResponse(valid=True, isAdmin=True, sessionToken=token)

    result = await validator.validate(request.key, request.deviceId or device_id)
    return KeyLoginResponse(**result.model_dump())


@app.get("/api/auth/admin/exists", response_model=AdminExistsResponse)
async def admin_exists(gate: AdminCredentialGate = Depends(get_admin_gate)):
    return {"exists": await gate.credentials_exist()}


@app.post("/api/auth/admin/setup", response_model=AdminSessionResponse)
async def admin_setup(request: AdminCredentialsRequest, gate: AdminCredentialGate = Depends(get_admin_gate)):
    """Create the first admin account. Refused once one exists."""
    try:
        token = await gate.setup(request.username, request.password)
    except AdminAlreadyConfigured as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"sessionToken": token}


@app.post("/api/auth/admin/login", response_model=AdminSessionResponse)
async def admin_login(request: AdminCredentialsRequest, gate: AdminCredentialGate = Depends(get_admin_gate)):
    token = await gate.login(request.username, request.password)
    if not token:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"sessionToken": token}


@app.put("/api/admin/credentials", dependencies=[Depends(require_admin)])
async def update_admin_credentials(request: AdminCredentialsRequest, gate: AdminCredentialGate = Depends(get_admin_gate)):
    await gate.set_credentials(request.username, request.password)
    return {"success": True, "message": "Admin credentials updated"}


# --- License Keys ---
@app.get("/api/keys", response_model=List[AuthKey], dependencies=[Depends(require_admin)])
async def list_keys(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_keys()


@app.post("/api/keys", response_model=AuthKey, dependencies=[Depends(require_admin)])
async def create_key(request: IssueKeyRequest, facade: PersistenceFacade = Depends(get_facade)):
    return await issue_key(facade, request.duration, request.price)


@app.post("/api/keys/purchase", response_model=AuthKey)
async def buy_key(request: PurchaseKeyRequest, facade: PersistenceFacade = Depends(get_facade)):
    return await purchase_key(facade, request.duration)


@app.get("/api/keys/stats", response_model=KeyStatsResponse, dependencies=[Depends(require_admin)])
async def get_key_stats(facade: PersistenceFacade = Depends(get_facade)):
    return key_stats(await facade.get_keys())


@app.post("/api/keys/{key_id}/revoke", dependencies=[Depends(require_admin)])
async def revoke_key(key_id: str, facade: PersistenceFacade = Depends(get_facade)):
    await facade.revoke_key(key_id)
    return {"success": True, "message": "Key revoked"}


# --- Products ---
@app.get("/api/products", response_model=List[Product])
async def list_products(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_products()


@app.put("/api/products", response_model=Product)
async def save_product(product: Product, facade: PersistenceFacade = Depends(get_facade)):
    await facade.save_product(product)
    return product


@app.delete("/api/products/{product_id}")
async def delete_product(product_id: str, facade: PersistenceFacade = Depends(get_facade)):
    await facade.delete_product(product_id)
    return {"success": True}


# --- Transactions ---
@app.get("/api/transactions", response_model=List[Transaction])
async def list_transactions(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_transactions()


@app.post("/api/transactions", response_model=Transaction)
async def add_transaction(tx: Transaction, facade: PersistenceFacade = Depends(get_facade)):
    await facade.add_transaction(tx)
    return tx


# --- Debt ---
@app.get("/api/debts", response_model=List[DebtRecord])
async def list_debts(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_debts()


@app.post("/api/debts", response_model=DebtRecord)
async def add_debt(debt: DebtRecord, facade: PersistenceFacade = Depends(get_facade)):
    debt.status = debt.derive_status()
    await facade.save_debt(debt)
    return debt


@app.post("/api/debts/{debt_id}/payments", response_model=DebtRecord)
async def add_debt_payment(debt_id: str, request: DebtPaymentRequest, facade: PersistenceFacade = Depends(get_facade)):
    try:
        return await facade.add_debt_payment(debt_id, request.amount)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Finance ---
@app.get("/api/financials", response_model=List[FinancialRecord])
async def list_financial_records(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_financial_records()


@app.post("/api/financials", response_model=FinancialRecord)
async def add_financial_record(record: FinancialRecord, facade: PersistenceFacade = Depends(get_facade)):
    await facade.add_financial_record(record)
    return record


# --- Profile ---
@app.get("/api/profile", response_model=ShopProfile)
async def get_profile(facade: PersistenceFacade = Depends(get_facade)):
    return await facade.get_shop_profile()


@app.put("/api/profile", response_model=ShopProfile, dependencies=[Depends(require_admin)])
async def save_profile(profile: ShopProfile, facade: PersistenceFacade = Depends(get_facade)):
    await facade.save_shop_profile(profile)
    return profile


# --- Device & Health ---
@app.get("/api/device", response_model=DeviceResponse)
async def get_device(device_id: str = Depends(get_device_id)):
    return {"deviceId": device_id}


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(
    facade: PersistenceFacade = Depends(get_facade),
    device_id: str = Depends(get_device_id),
):
    """
    Health check endpoint for container orchestration.

    Reports whether the data layer is still talking to the remote store.
    """
    return {
        "status": "healthy",
        "service": "lumina-pos-data",
        "version": settings.APP_VERSION,
        "storeMode": facade.mode.value,
        "deviceId": device_id,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
