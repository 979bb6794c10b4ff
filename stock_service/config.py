import os
from dotenv import load_dotenv

load_dotenv() # Load .env file from project root if running locally

DATABASE_USER = os.getenv("POSTGRES_USER", "user")
DATABASE_PASSWORD = os.getenv("POSTGRES_PASSWORD", "password")
DATABASE_HOST = os.getenv("POSTGRES_HOST", "postgres") # Docker service name
DATABASE_PORT = os.getenv("POSTGRES_PORT", "5432")
DATABASE_NAME = os.getenv("POSTGRES_DB", "workshop_stock")

# Async database URL for SQLAlchemy; DATABASE_URL wins when set
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DATABASE_USER}:{DATABASE_PASSWORD}@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}",
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "10"))
DB_ECHO = os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")
CREATE_TABLES = os.getenv("CREATE_TABLES", "false").lower() in ("1", "true", "yes")

# For Uvicorn binding inside container
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "4000"))

# Single admin account and the bearer token handed out at login
API_TOKEN = os.getenv("API_TOKEN", "change-me")
ADMIN_USER = os.getenv("ADMIN_USER", "admin")
ADMIN_PASS = os.getenv("ADMIN_PASS", "admin")

UPLOAD_DIR = os.path.abspath(os.getenv("UPLOAD_DIR", "uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024))) # 5MB

DEFAULT_MINIMUM_STOCK = 3
