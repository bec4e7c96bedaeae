from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import hmac
import logging
import os
import secrets
import jwt

from .database import get_db
from .models import Vendor

logger = logging.getLogger(__name__)

# Security Config
SECRET_KEY = os.getenv("JWT_SECRET", "change-me-in-dotenv")
ALGORITHM = "HS256"
TOKEN_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
PBKDF2_ITERATIONS = 200_000

router = APIRouter(prefix="/auth", tags=["auth"])
bearer_scheme = HTTPBearer(auto_error=False)

STORE_CATEGORIES = (
    "Grocery Store", "Restaurant", "Bakery", "Boutique", "Electronics", "Cafe",
    "Pharmacy", "Liquor Shop", "Pet Shop", "Gift Shop", "Other",
)

class VendorLogin(BaseModel):
    email: str
    password: str

class VendorProfileUpdate(BaseModel):
    shop_name: str = Field(..., min_length=1)
    store_category: str = Field(..., min_length=1)
    owner_name: str = Field(..., min_length=1)
    phone_country_code: str = Field(..., min_length=1)
    phone_number: str = Field(..., pattern=r"^\d{7,15}$")
    city: str = Field(..., min_length=1)
    shop_full_address: str = Field(..., min_length=1)
    latitude: float
    longitude: float
    weekly_close_on: str = Field(..., min_length=1)
    opening_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    closing_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")

    @model_validator(mode="after")
    def _closing_after_opening(self):
        if self.store_category not in STORE_CATEGORIES:
            raise ValueError(f"store_category must be one of: {', '.join(STORE_CATEGORIES)}")
        # 00:00 -> 00:00 means open around the clock
        if self.opening_time == "00:00" and self.closing_time == "00:00":
            return self
        if self.closing_time <= self.opening_time:
            raise ValueError("Closing time must be after opening time.")
        return self

class VendorRegister(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)
    shop_name: str = Field(..., min_length=1)
    owner_name: Optional[str] = None
    store_category: str = "Other"
    city: Optional[str] = None

class VendorOut(BaseModel):
    vendor_id: str
    email: str
    shop_name: str
    store_category: Optional[str] = None
    owner_name: Optional[str] = None
    phone_country_code: Optional[str] = None
    phone_number: Optional[str] = None
    city: Optional[str] = None
    shop_full_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    weekly_close_on: Optional[str] = None
    opening_time: Optional[str] = None
    closing_time: Optional[str] = None
    is_active: bool = True
    role: str = "vendor"

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str
    vendor_id: str
    role: str

@dataclass(frozen=True)
class Identity:
    """The authenticated caller, injected into every vendor route."""
    vendor_id: str
    email: str
    role: str = "vendor"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"

def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return hmac.compare_digest(hash_password(password, salt), stored)

def create_access_token(vendor: Vendor) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": vendor.vendor_id,
        "email": vendor.email,
        "role": vendor.role or "vendor",
        "exp": expire,
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def _token_response(vendor: Vendor) -> dict:
    return {
        "access_token": create_access_token(vendor),
        "token_type": "bearer",
        "vendor_id": vendor.vendor_id,
        "role": vendor.role or "vendor",
    }


def get_current_vendor(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Identity:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise unauthorized
    vendor_id = payload.get("sub")
    if not vendor_id:
        raise unauthorized
    return Identity(vendor_id=vendor_id, email=payload.get("email", ""), role=payload.get("role", "vendor"))


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
def register(user: VendorRegister, db: Session = Depends(get_db)):
    email = user.email.strip().lower()
    if db.query(Vendor).filter(Vendor.email == email).first():
        raise HTTPException(status_code=400, detail="An account with this email already exists.")
    if user.store_category not in STORE_CATEGORIES:
        raise HTTPException(status_code=400, detail="Unknown store category.")

    vendor = Vendor(
        email=email,
        password_hash=hash_password(user.password),
        shop_name=user.shop_name,
        owner_name=user.owner_name,
        store_category=user.store_category,
        city=user.city,
        role="vendor",
    )
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    logger.info(f"Registered vendor {vendor.vendor_id} ({email})")
    return _token_response(vendor)

@router.post("/login", response_model=Token)
def login(user: VendorLogin, db: Session = Depends(get_db)):
    # 1. Fetch Vendor
    vendor = db.query(Vendor).filter(Vendor.email == user.email.strip().lower()).first()

    # 2. Verify Password
    if not vendor or not verify_password(user.password, vendor.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not vendor.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This vendor account is disabled.")

    # 3. Create Token
    return _token_response(vendor)

@router.get("/me", response_model=VendorOut)
def read_profile(identity: Identity = Depends(get_current_vendor), db: Session = Depends(get_db)):
    vendor = db.get(Vendor, identity.vendor_id)
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor details not found.")
    return vendor

@router.put("/me", response_model=VendorOut)
def update_profile(
    profile: VendorProfileUpdate,
    identity: Identity = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    vendor = db.get(Vendor, identity.vendor_id)
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor details not found.")
    for field, value in profile.model_dump().items():
        setattr(vendor, field, value)
    db.commit()
    db.refresh(vendor)
    logger.info(f"Updated profile for vendor {vendor.vendor_id}")
    return vendor
