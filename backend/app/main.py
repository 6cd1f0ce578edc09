"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app import models  # noqa: F401  (registers tables on Base)
from app.database import Base, engine
from app.api.deps import RateLimitExceeded, rate_limit_exceeded_handler
from app.api.search import router as search_router
from app.api.chat import router as chat_router
from app.api.eligibility import router as eligibility_router
from app.pipeline.rate_limit import InMemoryBucketStore, RateLimiter

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="TrialMatch API",
    description="Clinical trial matching - search, eligibility scoring and share links",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.rate_limiter = RateLimiter(InMemoryBucketStore(max_buckets=settings.rate_limit_max_buckets))

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(search_router)
app.include_router(chat_router)
app.include_router(eligibility_router)


@app.get("/api/health")
def health_check():
    return {"status": "ok", "service": "TrialMatch API"}
