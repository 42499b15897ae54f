"""Session gate: registration, login and bearer-token resolution."""
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional, Tuple

from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthenticationError, EmailTakenError, ValidationError
from repository import Repository
from schemas import Actor, Role, User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, stored: str) -> bool:
    return check_password_hash(stored, password)


def _open_session(repo: Repository, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    repo.insert_session({"token": token, "user_id": user_id, "created_at": datetime.now(timezone.utc)})
    return token


def _public(doc: dict) -> User:
    return User(id=doc["id"], name=doc["name"], email=doc["email"], role=doc["role"])


def create_user(repo: Repository, name: str, email: str, password: str, role: Role = Role.STUDENT,
                user_id: Optional[str] = None) -> User:
    email = email.strip().lower()
    if not name or not email or not password:
        raise ValidationError("Missing fields")
    if repo.find_user_by_email(email):
        raise EmailTakenError(email)
    doc = {
        "id": user_id or uuid.uuid4().hex,
        "name": name,
        "email": email,
        "password_hash": hash_password(password),
        "role": Role(role).value,
    }
    repo.insert_user(doc)
    return _public(doc)


def register(repo: Repository, name: str, email: str, password: str) -> Tuple[str, User]:
    """Create a student account and open a session for it."""
    user = create_user(repo, name, email, password)
    logger.info("Registered user %s", user.id)
    return _open_session(repo, user.id), user


def login(repo: Repository, email: str, password: str) -> Tuple[str, User]:
    if not email or not password:
        raise ValidationError("Missing fields")
    doc = repo.find_user_by_email(email.strip().lower())
    if not doc or not verify_password(password, doc["password_hash"]):
        raise AuthenticationError("Invalid credentials")
    return _open_session(repo, doc["id"]), _public(doc)


def logout(repo: Repository, token: str) -> None:
    repo.delete_session(token)


def bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def resolve(repo: Repository, token: Optional[str]) -> Actor:
    """Map a session token to the acting user, or raise AuthenticationError."""
    if not token:
        raise AuthenticationError()
    session = repo.get_session(token)
    if not session:
        raise AuthenticationError()
    user = repo.get_user(session["user_id"])
    if not user:
        raise AuthenticationError()
    return Actor(user_id=user["id"], role=user["role"], name=user["name"])
