from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from dotenv import load_dotenv

from exam_proctor.core.config import settings
from exam_proctor.core.database import AsyncSessionLocal
from exam_proctor.core.exceptions import AssessmentServiceError
from exam_proctor.api.v1 import student, admin
from exam_proctor.services.expiry_scheduler import ExpiryScheduler

load_dotenv()

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

expiry_scheduler = ExpiryScheduler(
    AsyncSessionLocal,
    interval_seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS,
    grace_seconds=settings.EXPIRY_SHUTDOWN_GRACE_SECONDS,
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    expiry_scheduler.start()
    yield
    # Shutdown
    await expiry_scheduler.stop()

app = FastAPI(
    title="Exam Proctor API",
    description="Proctored online assessment API",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(AssessmentServiceError)
async def assessment_error_handler(request: Request, exc: AssessmentServiceError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.error_code},
        headers=headers,
    )

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"detail": f"{location}: {message}" if location else message, "code": "BAD_REQUEST"},
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
    )

# Include routers
app.include_router(student.router, prefix="/student", tags=["student"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])

@app.get("/")
async def root():
    return {"message": "Exam Proctor API is running"}

@app.get("/health")
async def health_check():
    """Basic health check endpoint"""
    return {"status": "healthy", "service": "exam-proctor-api"}

@app.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check including database connectivity and the expiry scheduler"""
    from sqlalchemy import text

    health_status = {
        "status": "healthy",
        "service": "exam-proctor-api",
        "environment": settings.ENVIRONMENT,
        "checks": {}
    }

    # Check database connectivity
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            await session.commit()
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    health_status["checks"]["expiry_scheduler"] = "running" if expiry_scheduler.running else "stopped"

    return health_status

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
