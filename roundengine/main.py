# roundengine/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roundengine.core.config import settings

from roundengine.routers.rounds import router as rounds_router
from roundengine.routers.cart import router as cart_router
from roundengine.routers.local_round import router as local_round_router
import logging, sys

# 启动相关
from roundengine.services.bootstrap_service import (
    build_engine,
    startup_engine,
    shutdown_engine,
)

app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logging.getLogger("uvicorn.access").setLevel(logging.CRITICAL)
logging.getLogger("apscheduler").setLevel(logging.ERROR)  # 100ms tick 会刷屏

# 保留缓存刷新/提交日志
logging.getLogger("roundengine.services.round_cache").setLevel(logging.INFO)
logging.getLogger("roundengine.services.batch_service").setLevel(logging.INFO)

app.include_router(rounds_router)
app.include_router(cart_router)
app.include_router(local_round_router)


@app.on_event("startup")
async def on_startup() -> None:
    # 测试可预先注入 engine
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine()
    await startup_engine(app.state.engine)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await shutdown_engine(app.state.engine)


@app.get("/ping")
async def ping():
    return {"ok": True, "env": settings.APP_ENV}


@app.get("/healthz")
async def healthz():
    return {"status": "healthy"}
