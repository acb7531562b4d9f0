import os
from dotenv import load_dotenv
load_dotenv()

class Settings:
    APP_NAME = os.getenv("APP_NAME", "roundengine")
    APP_ENV = os.getenv("APP_ENV", "dev")
    APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))
    TZ = os.getenv("TZ", "Asia/Kolkata")

    TRADING_API_BASE_URL = os.getenv("TRADING_API_BASE_URL", "http://127.0.0.1:5000/api")
    HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    REDIS_URL = os.getenv("REDIS_URL") or f"redis://{os.getenv('REDIS_HOST','127.0.0.1')}:{os.getenv('REDIS_PORT','6379')}/{os.getenv('REDIS_DB','0')}"
    CART_PERSIST = os.getenv("CART_PERSIST", "1") == "1"
    CART_OWNER = os.getenv("CART_OWNER", "default")

    # 轮次缓存
    ROUND_CACHE_TTL_SECONDS = int(os.getenv("ROUND_CACHE_TTL_SECONDS", "30"))
    ROUND_REFRESH_INTERVAL_SECONDS = int(os.getenv("ROUND_REFRESH_INTERVAL_SECONDS", "60"))
    UPCOMING_ROUNDS_LIMIT = int(os.getenv("UPCOMING_ROUNDS_LIMIT", "10"))

    # 本地模拟轮次（毫秒）
    LOCAL_ROUND_DURATION_MS = int(os.getenv("LOCAL_ROUND_DURATION_MS", "180000"))
    LOCAL_BETTING_DURATION_MS = int(os.getenv("LOCAL_BETTING_DURATION_MS", "150000"))
    LOCAL_TICK_MS = int(os.getenv("LOCAL_TICK_MS", "100"))
    LOCAL_RESTART_DELAY_MS = int(os.getenv("LOCAL_RESTART_DELAY_MS", "5000"))
    LOCAL_HISTORY_SIZE = int(os.getenv("LOCAL_HISTORY_SIZE", "10"))
    LOCAL_PAYOUT_MULTIPLIER = int(os.getenv("LOCAL_PAYOUT_MULTIPLIER", "2"))
    LOCAL_GAME_TYPE = os.getenv("LOCAL_GAME_TYPE", "color")

    # 购物车与服务费
    CART_MAX_ITEMS = int(os.getenv("CART_MAX_ITEMS", "20"))
    SERVICE_CHARGE_RATE = os.getenv("SERVICE_CHARGE_RATE", "0.10")
    SERVICE_CHARGE_MIN = os.getenv("SERVICE_CHARGE_MIN", "5")
    SERVICE_CHARGE_MODE = os.getenv("SERVICE_CHARGE_MODE", "additive")  # additive | deducted
    CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")

settings = Settings()
