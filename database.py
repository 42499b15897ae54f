"""
Database Wiring

Builds the repository the API runs against. With DATABASE_URL and
DATABASE_NAME set, data lives in MongoDB; otherwise an in-memory
repository is used and nothing survives a restart.
"""

from pymongo import MongoClient
import logging
import os
import threading
from dotenv import load_dotenv
from typing import Optional

import auth
from repository import MemoryRepository, MongoRepository, Repository
from schemas import Role

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(database_url, tz_aware=True)
    db = _client[database_name]

_repository: Optional[Repository] = None
_repository_lock = threading.Lock()

# ------------- Seed data -------------

DEFAULT_USERS = [
    {"id": "u-admin", "name": "Canteen Admin", "email": "admin@canteen.com", "password": "admin123", "role": Role.ADMIN},
    {"id": "u-vendor", "name": "Stock Vendor", "email": "vendor@canteen.com", "password": "vendor123", "role": Role.VENDOR},
    {"id": "u-student", "name": "Demo Student", "email": "student@canteen.com", "password": "student123", "role": Role.STUDENT},
]

DEFAULT_MENU = [
    {"id": "m1", "name": "Veg Sandwich", "category": "Snacks", "price": 40, "prep_time": 8, "stock": 25, "available": True},
    {"id": "m2", "name": "Paneer Wrap", "category": "Wraps", "price": 75, "prep_time": 12, "stock": 18, "available": True},
    {"id": "m3", "name": "Masala Dosa", "category": "Meals", "price": 60, "prep_time": 10, "stock": 20, "available": True},
    {"id": "m4", "name": "Lemon Soda", "category": "Beverages", "price": 25, "prep_time": 3, "stock": 40, "available": True},
    {"id": "m5", "name": "Fruit Bowl", "category": "Healthy", "price": 50, "prep_time": 5, "stock": 12, "available": True},
]


def seed_defaults(repo: Repository) -> bool:
    """Load demo users and menu into an empty store. Returns True if anything was written."""
    if repo.count_users() > 0:
        return False
    for user in DEFAULT_USERS:
        auth.create_user(repo, user["name"], user["email"], user["password"], user["role"], user_id=user["id"])
    for item in DEFAULT_MENU:
        if not repo.get_menu_item(item["id"]):
            repo.insert_menu_item(dict(item))
    logger.info("Seeded %d users and %d menu items", len(DEFAULT_USERS), len(DEFAULT_MENU))
    return True


def build_repository() -> Repository:
    if db is not None:
        repo = MongoRepository(db)
        repo.ensure_indexes()
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory storage")
        repo = MemoryRepository()
    if os.getenv("SEED_DEFAULTS", "1") not in ("0", "false", "False"):
        seed_defaults(repo)
    return repo


def get_repository() -> Repository:
    """FastAPI dependency: the process-wide repository, built on first use."""
    global _repository
    if _repository is None:
        with _repository_lock:
            if _repository is None:
                _repository = build_repository()
    return _repository
