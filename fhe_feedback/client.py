"""
Citizen-side client: encrypts a feedback form before it leaves the device.

Usage:
    client = FeedbackClient(backend)
    form = FeedbackForm(service_type=2, feedback_text="Quick and polite", satisfaction_level=5)
    fields = client.encrypt_form(form, response_time=30)
    feedback_id = service.submit_feedback("citizen-1", fields)
"""

import base64
from typing import Dict

from pydantic import BaseModel, Field

from fhe_feedback.ledger.feedback_ledger import FEEDBACK_FIELDS, EncryptedFeedbackInput
from fhe_feedback.shared.crypto.fhe_backend import FHEBackend


class FeedbackForm(BaseModel):
    """What a citizen fills in."""
    service_type: int = Field(..., ge=0)
    feedback_text: str = ""
    satisfaction_level: int = Field(..., ge=1, le=5)


class FeedbackClient:
    def __init__(self, backend: FHEBackend):
        self.backend = backend

    def encrypt_feedback(
        self,
        service_type: int,
        rating: int,
        response_time: int,
        comment: str = "",
    ) -> EncryptedFeedbackInput:
        return EncryptedFeedbackInput(
            service_type=self.backend.encrypt(service_type),
            rating=self.backend.encrypt(rating),
            response_time=self.backend.encrypt(response_time),
            comment=self.backend.encrypt_bytes(comment.encode("utf-8")),
        )

    def encrypt_form(self, form: FeedbackForm, response_time: int = 0) -> EncryptedFeedbackInput:
        return self.encrypt_feedback(
            service_type=form.service_type,
            rating=form.satisfaction_level,
            response_time=response_time,
            comment=form.feedback_text,
        )

    @staticmethod
    def to_payload(fields: EncryptedFeedbackInput) -> Dict[str, str]:
        """Base64 ciphertexts, as accepted by POST /feedback."""
        return {
            name: base64.b64encode(getattr(fields, name).blob).decode("ascii")
            for name in FEEDBACK_FIELDS
        }
