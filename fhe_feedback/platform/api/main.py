"""
HTTP surface of the feedback ledger.

Ciphertexts travel base64-encoded; the caller's identity travels in the
X-Caller-Identity header. The in-process decryption oracle is driven through
POST /oracle/deliver, which stands in for the oracle calling back on its own.

Run:
    uvicorn --factory fhe_feedback.platform.api.main:create_app --port 8000
"""

import base64
import binascii
from typing import Dict, Optional

from fastapi import FastAPI, Header, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fhe_feedback.core.config_loader import AppConfig, load_and_validate_config
from fhe_feedback.core.error_handling import (
    AlreadyAggregated,
    AlreadyRevealed,
    CiphertextError,
    FeedbackLedgerError,
    InvalidRequest,
    NotFound,
    ProofInvalid,
    Unauthorized,
)
from fhe_feedback.ledger.feedback_ledger import EncryptedFeedbackInput
from fhe_feedback.platform.logging_utils import get_logger, setup_logger
from fhe_feedback.platform.observability.events import EventKind
from fhe_feedback.service import FeedbackService
from fhe_feedback.version import __version__

logger = get_logger("feedback_api")

CALLER_HEADER = "X-Caller-Identity"

ERROR_STATUS = {
    Unauthorized: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    AlreadyRevealed: status.HTTP_409_CONFLICT,
    AlreadyAggregated: status.HTTP_409_CONFLICT,
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    ProofInvalid: 422,
    CiphertextError: status.HTTP_400_BAD_REQUEST,
}

# --- Models ---

class FeedbackSubmission(BaseModel):
    """Base64-encoded ciphertexts."""
    service_type: str
    rating: str
    response_time: str
    comment: str


class AggregateUpdateRequest(BaseModel):
    feedback_id: int = Field(..., ge=1)


class DeliverRequest(BaseModel):
    request_id: Optional[int] = None


class ManagerGrant(BaseModel):
    identity: str


# --- App factory ---

def create_app(service: Optional[FeedbackService] = None, config: Optional[AppConfig] = None) -> FastAPI:
    if service is None:
        service = FeedbackService(config=config or load_and_validate_config())
    setup_logger("feedback_api", level=service.config.system.log_level)

    app = FastAPI(title="Encrypted Feedback Ledger", version=__version__)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FeedbackLedgerError)
    async def ledger_error_handler(request, exc: FeedbackLedgerError):
        code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        logger.warning(f"[API] {request.method} {request.url.path} rejected: {exc.code}")
        return JSONResponse(status_code=code, content={"error": exc.code, "detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request, exc: ValueError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid_argument", "detail": str(exc)},
        )

    def decode_blob(name: str, value: str) -> bytes:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise CiphertextError(f"Field {name!r} is not valid base64")

    # --- Health & Status ---

    @app.get("/health", tags=["System"])
    async def health_check():
        return {"status": "ok", "version": __version__, "available": service.is_available()}

    @app.get("/status", tags=["System"])
    async def system_status():
        return service.status()

    # --- Feedback ---

    @app.post("/feedback", tags=["Feedback"], status_code=status.HTTP_201_CREATED)
    async def submit_feedback(
        submission: FeedbackSubmission,
        caller: Optional[str] = Header(None, alias=CALLER_HEADER),
    ):
        backend = service.backend
        fields = EncryptedFeedbackInput(
            service_type=backend.deserialize(decode_blob("service_type", submission.service_type)),
            rating=backend.deserialize(decode_blob("rating", submission.rating)),
            response_time=backend.deserialize(decode_blob("response_time", submission.response_time)),
            comment=backend.deserialize(decode_blob("comment", submission.comment)),
        )
        feedback_id = service.submit_feedback(caller or "", fields)
        return {"feedback_id": feedback_id}

    @app.get("/feedback", tags=["Feedback"])
    async def list_feedback(search: Optional[str] = None):
        return {
            "feedback": [s.to_dict() for s in service.list_feedback(search)],
            "statistics": service.feedback_statistics(),
        }

    # --- Aggregates ---

    @app.post("/aggregates/oblivious", tags=["Aggregates"])
    async def update_aggregate_oblivious(body: AggregateUpdateRequest):
        service_types = service.update_aggregate_oblivious(body.feedback_id)
        return {"feedback_id": body.feedback_id, "service_types": service_types}

    @app.post("/aggregates/{service_type}/update", tags=["Aggregates"])
    async def update_aggregate(service_type: int, body: AggregateUpdateRequest):
        aggregate = service.update_aggregate(service_type, body.feedback_id)
        return {"service_type": service_type, "version": aggregate.version}

    @app.post("/aggregates/{service_type}/reveal", tags=["Aggregates"], status_code=status.HTTP_202_ACCEPTED)
    async def request_reveal(
        service_type: int,
        caller: Optional[str] = Header(None, alias=CALLER_HEADER),
    ):
        request_id = service.request_reveal(caller, service_type)
        return {"service_type": service_type, "request_id": request_id}

    @app.get("/aggregates/{service_type}/decrypted", tags=["Aggregates"])
    async def get_decrypted(service_type: int):
        snapshot = service.get_decrypted(service_type)
        result = snapshot.to_dict()
        result["state"] = service.reveal_state(service_type).value
        return result

    # --- Oracle ---

    @app.post("/oracle/deliver", tags=["Oracle"])
    async def deliver(body: DeliverRequest):
        outcome = service.deliver(body.request_id)
        results: Dict[str, Optional[str]] = {
            str(request_id): (None if error is None else error.code)
            for request_id, error in outcome.items()
        }
        return {"results": results}

    # --- Managers ---

    @app.post("/managers", tags=["Access"])
    async def grant_manager(
        body: ManagerGrant,
        caller: Optional[str] = Header(None, alias=CALLER_HEADER),
    ):
        granted = service.grant_manager(caller, body.identity)
        return {"identity": body.identity, "granted": granted}

    @app.delete("/managers/{identity}", tags=["Access"])
    async def revoke_manager(
        identity: str,
        caller: Optional[str] = Header(None, alias=CALLER_HEADER),
    ):
        revoked = service.revoke_manager(caller, identity)
        return {"identity": identity, "revoked": revoked}

    # --- Events ---

    @app.get("/events", tags=["System"])
    async def recent_events(
        limit: int = Query(50, ge=1, le=1000),
        kind: Optional[EventKind] = None,
    ):
        return {"events": [e.to_dict() for e in service.recent_events(limit=limit, kind=kind)]}

    logger.info("[API] Routes registered")
    return app


if __name__ == "__main__":
    import uvicorn

    config = load_and_validate_config()
    uvicorn.run(
        create_app(config=config),
        host=config.system.api_host,
        port=config.system.api_port,
        log_level=config.system.log_level.lower(),
    )
