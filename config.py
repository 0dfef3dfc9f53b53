import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

API_PREFIX = os.getenv("API_PREFIX", "/api/v1")
PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Custom order creation
ORDER_CREATE_ATTEMPTS = int(os.getenv("ORDER_CREATE_ATTEMPTS", 5))
ORDER_RETRY_DELAY_S = float(os.getenv("ORDER_RETRY_DELAY_S", 0.1))

# E-commerce orders, in PKR
MIN_ORDER_TOTAL = float(os.getenv("MIN_ORDER_TOTAL", 50))
