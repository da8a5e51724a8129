"""
Typed outcomes as HTTP responses
"""
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from pharmadispatch.core.logging import get_correlation_id
from pharmadispatch.domain.results import OUTCOME_HTTP_STATUS, Outcome


def outcome_response(outcome: Outcome, content: dict[str, Any]) -> JSONResponse:
    """200 for ok / no courier, 409 for not eligible, 402 for insufficient balance"""
    return JSONResponse(
        status_code=OUTCOME_HTTP_STATUS[outcome],
        content=jsonable_encoder(content),
        headers={"X-Correlation-ID": get_correlation_id()},
    )
