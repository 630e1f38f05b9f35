from passlib.context import CryptContext
import jwt
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session
import logging
import secrets
import os

from errors import AuthVerificationError

logger = logging.getLogger(__name__)

# Используем другую схему если bcrypt не доступен
try:
    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
    # Проверим работу bcrypt
    pwd_context.hash("test")
except Exception as e:
    logger.warning(f"bcrypt is not available: {e}, falling back to pbkdf2_sha256")
    pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_secret_key():
    env_key = os.getenv("SECRET_KEY")
    if env_key:
        return env_key

    key_file = ".secret_key"
    if os.path.exists(key_file):
        try:
            with open(key_file, "r", encoding='utf-8') as f:
                return f.read().strip()
        except UnicodeDecodeError:
            # Если файл в неправильной кодировке, создаем новый
            logger.warning("Could not read the secret key file, generating a new one")
            os.remove(key_file)

    new_key = secrets.token_urlsafe(32)
    with open(key_file, "w", encoding='utf-8') as f:
        f.write(new_key)
    if os.name != 'nt':
        os.chmod(key_file, 0o600)
    logger.info("Generated a new SECRET_KEY")
    return new_key


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def authenticate_user(db: Session, username: str, password: str):
    from models import User
    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password):
        return None
    return user


def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def verify_token(token: str):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.replace("Bearer ", "", 1).strip() or None


def verify_identity_token(token: str) -> str:
    """Возвращает идентификатор пользователя (sub) или бросает AuthVerificationError."""
    payload = verify_token(token)
    if not payload:
        raise AuthVerificationError("Invalid or expired identity token")
    subject = payload.get("sub")
    if not subject:
        raise AuthVerificationError("Identity token has no subject")
    return str(subject)


def resolve_user_id(authorization: Optional[str]) -> Optional[str]:
    """
    Владелец заказа по заголовку Authorization.

    Личность здесь только обогащает запись: без токена или с плохим
    токеном заказ создаётся гостевым, поэтому ошибка лишь логируется.
    """
    token = bearer_token(authorization)
    if token is None:
        return None
    try:
        return verify_identity_token(token)
    except AuthVerificationError as e:
        logger.warning(f"Identity token rejected, creating an anonymous record: {e.message}")
        return None
