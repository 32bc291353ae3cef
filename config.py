"""Environment configuration for the cart API."""
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecommerce")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me-before-deploying")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Prices are whole INR units; discounts are rounded to the nearest unit
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

PORT = int(os.getenv("PORT", "8000"))
