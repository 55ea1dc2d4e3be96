import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AuthSession, AuthUser
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger("scenetalk.auth")
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

DEFAULT_REQUEST_LIMIT = 1000
GUEST_USERNAMES = {"guest", "guests"}


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	username: str


class RegisterRequest(BaseModel):
	model_config = ConfigDict(str_strip_whitespace=True)

	username: str = Field(min_length=3, max_length=128)
	password: str = Field(min_length=1)
	email: str = Field(min_length=3)
	phone: str = Field(min_length=3)


# Seed user kept in memory for local development
_seed_users: Dict[str, str] = {}


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def _ensure_seed_user() -> None:
	username = settings.seed_username
	password = settings.seed_password_plain
	if username and password and username not in _seed_users:
		_seed_users[username] = hash_password(password)


def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
	if username.lower() in GUEST_USERNAMES:
		return User(username=username.lower())
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if row and verify_password(password, row.password_hash):
		return User(username=username)
	_ensure_seed_user()
	hashed = _seed_users.get(username)
	if hashed and verify_password(password, hashed):
		return User(username=username)
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect username or password")
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.username, "jti": session_id})
	try:
		db.merge(AuthSession(session_id=session_id, username=user.username))
		db.commit()
	except Exception as e:
		logger.warning("Could not persist login session for %s: %s", user.username, e)
		db.rollback()
	return Token(access_token=access_token)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise credentials_exception
	username: Optional[str] = payload.get("sub")
	jti: Optional[str] = payload.get("jti")
	if username is None or jti is None:
		raise credentials_exception
	# The session row must still exist so tokens can be revoked server-side
	try:
		row = db.get(AuthSession, jti)
		if not row or row.username != username:
			raise credentials_exception
		row.last_activity_at = datetime.now(timezone.utc).replace(tzinfo=None)
		db.add(row)
		db.commit()
	except HTTPException:
		raise
	except Exception:
		raise credentials_exception
	return User(username=username)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	if req.username.lower() in GUEST_USERNAMES:
		raise HTTPException(status_code=400, detail="username is reserved")
	if db.query(AuthUser).filter(AuthUser.username == req.username).first():
		raise HTTPException(status_code=409, detail="username already exists")
	db.add(AuthUser(
		username=req.username,
		password_hash=hash_password(req.password),
		email=req.email,
		phone=req.phone,
		requests_limit=DEFAULT_REQUEST_LIMIT,
	))
	db.commit()
	logger.info("Registered learner %s", req.username)
	return {"ok": True}


def enforce_request_limit(db: Session, username: str) -> None:
	"""Count one AI request against the user's quota; 429 once it is used up."""
	row = db.query(AuthUser).filter(AuthUser.username == username).first()
	if row is None:
		return
	if row.requests_used >= row.requests_limit:
		raise HTTPException(status_code=429, detail="request limit reached")
	row.requests_used += 1
	db.add(row)
	db.commit()
