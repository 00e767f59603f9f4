import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stepwise.config import setup_logging, get_cors_settings
from stepwise.db.database import init_models
from stepwise.api import routes_admin, routes_student
from stepwise.services.errors import StepwiseError, AnswerValidationError

setup_logging()

logger = logging.getLogger("stepwise")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("Database schema is ready")
    yield


app = FastAPI(title="Stepwise", lifespan=lifespan)

# CORS
cors_config = get_cors_settings()
app.add_middleware(CORSMiddleware, **cors_config)


@app.exception_handler(StepwiseError)
async def stepwise_error_handler(request: Request, exc: StepwiseError):
    content = {"detail": exc.detail}
    if isinstance(exc, AnswerValidationError):
        content["requirement"] = exc.requirement
    return JSONResponse(status_code=exc.status_code, content=content)


# Роуты
app.include_router(routes_student.router, prefix="/api")
app.include_router(routes_admin.router, prefix="/api/admin")


@app.get("/api/health")
async def health():
    return {"message": "API is working!"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
