# ==========================================================================================================
# -------------- Configuration file for the Genealogy investment Flask application -------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))

class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set in production")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = os.getenv("DEBUG", "False").lower() in ("true", "1", "t")
    TESTING = False


    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'genealogy.db')}"


    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # SQLite pools reject sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {} if _database_url.startswith("sqlite") else {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }


    CURRENCY = os.getenv("CURRENCY", "USD")
    GENEALOGY_MAX_DEPTH = int(os.getenv("GENEALOGY_MAX_DEPTH", "5"))
    MIN_DEPOSIT = os.getenv("MIN_DEPOSIT", "10.00")
    MIN_WITHDRAWAL = os.getenv("MIN_WITHDRAWAL", "10.00")


    PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")
    CRYPTO_WALLET_ADDRESS = os.getenv("CRYPTO_WALLET_ADDRESS")
    CRYPTO_NETWORK = os.getenv("CRYPTO_NETWORK", "USDT-TRC20")

    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")


class TestingConfig(Config):
    """In-memory database and a fixed webhook secret for the test suite."""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PAYMENT_WEBHOOK_SECRET = "test-webhook-secret"
    CRYPTO_WALLET_ADDRESS = "TTestWalletAddress000000000000000"
