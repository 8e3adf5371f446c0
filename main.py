"""
Main FastAPI application entry point for Identity Reconciliation System
This file sets up the FastAPI application with proper configuration,
middleware, error mapping and the /identify endpoint. It serves as the
main entry point for both local development and AWS Lambda deployment.
"""

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import traceback
from datetime import datetime, timezone

from schemas.identify import ContactResponse, IdentifyRequest, IdentifyResponse, ErrorResponse
from services.identity_service import IdentityService, identity_service
from errors import (
    ContactNotFoundError,
    IntegrityFaultError,
    InvalidInputError,
    ReconciliationError,
    StorageUnavailableError,
)
from config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI application instance
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

ERROR_STATUS_CODES = {
    InvalidInputError: 400,
    ContactNotFoundError: 404,
    IntegrityFaultError: 500,
    StorageUnavailableError: 503,
}


def get_identity_service() -> IdentityService:
    """Dependency hook so tests can swap the service"""
    return identity_service


def _status_for(exc: ReconciliationError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_class):
            return status_code
    return 500


# Exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body validation errors as client errors"""
    logger.warning(f"Validation error for {request.url}: {exc.errors()}")

    error_details = []
    for error in exc.errors():
        error_details.append({
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    error_response = ErrorResponse(
        error="ValidationError",
        message="Request validation failed",
        details={"errors": error_details}
    )

    return JSONResponse(
        status_code=400,
        content=error_response.model_dump()
    )


@app.exception_handler(ReconciliationError)
async def reconciliation_exception_handler(request: Request, exc: ReconciliationError):
    """Map reconciliation errors to their HTTP status"""
    status_code = _status_for(exc)

    if isinstance(exc, IntegrityFaultError):
        logger.error(f"Integrity fault for {request.url}: {exc.message} {exc.details}")
        error_response = ErrorResponse(
            error=exc.error_code,
            message="Unable to process identity reconciliation request"
        )
    elif isinstance(exc, StorageUnavailableError):
        logger.warning(f"Database unavailable for {request.url}: {exc.message}")
        error_response = ErrorResponse(
            error=exc.error_code,
            message="Database is currently unavailable. Please try again later."
        )
    else:
        logger.warning(f"Request error for {request.url}: {exc.message}")
        error_response = ErrorResponse(
            error=exc.error_code,
            message=exc.message,
            details=exc.details or None
        )

    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(f"Unexpected error for {request.url}: {exc}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    error_response = ErrorResponse(
        error="InternalServerError",
        message="An unexpected error occurred"
    )

    return JSONResponse(
        status_code=500,
        content=error_response.model_dump()
    )


@app.get("/")
async def root():
    """
    Root endpoint that returns basic API information
    """
    return {
        "message": "Identity Reconciliation API is running",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check(service: IdentityService = Depends(get_identity_service)):
    """
    Health check endpoint for monitoring and load balancer health checks
    """
    connected = await service.db_manager.test_connection()

    return {
        "status": "healthy" if connected else "degraded",
        "environment": settings.ENVIRONMENT,
        "version": settings.API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "lambda": settings.is_lambda_environment(),
        "database": {
            "status": "connected" if connected else "disconnected",
            "rds_configured": bool(settings.RDS_HOSTNAME and settings.RDS_HOSTNAME != "localhost"),
            "ssl_mode": settings.DB_SSL_MODE
        }
    }


async def _identify_with_retry(service: IdentityService, request: IdentifyRequest) -> ContactResponse:
    """
    Re-run the whole unit of work when storage reports a transient failure
    (lost serialization race, dropped connection). Each attempt is atomic.
    """
    max_attempts = max(1, settings.IDENTIFY_MAX_ATTEMPTS)
    attempt = 1
    while True:
        try:
            return await service.identify_contact(request.email, request.phoneNumber)
        except StorageUnavailableError as e:
            if attempt >= max_attempts:
                raise
            logger.warning(f"Identify attempt {attempt}/{max_attempts} failed, retrying: {e}")
            attempt += 1


@app.post("/identify", response_model=IdentifyResponse)
async def identify_endpoint(
    request: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Main identity reconciliation endpoint

    Links customer identities based on email and/or phone number.
    Returns consolidated contact information including all linked emails,
    phone numbers, and secondary contact IDs.

    **Algorithm:**
    1. Find the cluster of contacts reachable from the email or phone
    2. If no matches -> create new primary contact
    3. If matches found -> oldest primary wins, other primaries are demoted
    4. New information -> create secondary contact
    5. Return consolidated contact information

    **Examples:**
    - New customer: Creates primary contact
    - Existing email + new phone: Creates secondary contact
    - Two existing primaries with shared info: Links them (older remains primary)
    """
    logger.info(f"Processing identify request: email={request.email}, phone={request.phoneNumber}")

    contact = await _identify_with_retry(service, request)

    logger.info(f"Successfully processed request. Primary contact ID: {contact.primaryContactId}")
    return IdentifyResponse(contact=contact)


@app.get("/contacts/{contact_id}", response_model=IdentifyResponse)
async def contact_summary_endpoint(
    contact_id: int,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Consolidated view of the cluster a contact belongs to
    Read-only: never creates, demotes or links anything
    """
    contact = await service.get_contact_summary(contact_id)
    return IdentifyResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1
    )
