from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from resume_engine.config import get_settings
from resume_engine.database import init_db
from resume_engine.middleware.correlation import CorrelationMiddleware, install_log_filter
from resume_engine.middleware.rate_limit import limiter
from resume_engine.routes import jobs, resumes
from resume_engine.services.gateway import get_gateway
from resume_engine.services.pipeline import get_pipeline
from resume_engine.services.redis_client import close_redis, init_redis, is_redis_healthy
from resume_engine.utils.logger import logger
from resume_engine.utils.metrics import get_snapshot

settings = get_settings()
install_log_filter()

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS - Explicit origins from config
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-ID", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)
app.add_middleware(CorrelationMiddleware)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.app_name}...")
    await init_db()
    await init_redis()
    logger.info(f"Backend ready at http://{settings.backend_host}:{settings.backend_port}")


@app.on_event("shutdown")
async def shutdown_event():
    await get_pipeline().wait_idle()
    await close_redis()
    logger.info("app.shutdown")


@app.get("/health")
async def health_check():
    circuits = get_gateway().get_circuit_states()
    degraded = any(state != "closed" for state in circuits.values())
    return {
        "status": "degraded" if degraded else "ok",
        "circuits": circuits,
        "redis": await is_redis_healthy(),
    }


@app.get("/metrics")
async def metrics():
    return get_snapshot()


@app.get("/")
async def root():
    return {"status": "ok"}


app.include_router(resumes.router, prefix="/api/resumes", tags=["Resumes"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "resume_engine.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug,
    )
