from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import ACCESS_TOKEN_EXPIRE_DAYS, ALGORITHM, BCRYPT_ROUNDS, SECRET_KEY
from database import get_db, parse_object_id
from errors import Unauthorized, ValidationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    return jwt.encode({"sub": str(user_id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: Optional[str]) -> str:
    """Return the user id carried by a bearer token."""
    if not token:
        raise Unauthorized("Unauthorized")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    return user_id


# Dependency: get current user
async def get_current_user(
    bearer: Optional[str] = Depends(oauth2_scheme),
    token: Optional[str] = Header(None),
    db=Depends(get_db),
) -> dict:
    user_id = decode_access_token(bearer or token)
    try:
        oid = parse_object_id(user_id, "token subject")
    except ValidationError:
        raise Unauthorized("Invalid token")
    user = db["user"].find_one({"_id": oid})
    if user is None:
        raise Unauthorized("Invalid token")
    return user
