"""JSON responses for pydantic results.

Ledger records are strict models, so they are serialized here directly
rather than re-validated through ``response_model``.
"""

from pydantic import BaseModel
from starlette.responses import JSONResponse
from starlette.status import HTTP_200_OK


def model_response(model: BaseModel, status_code: int = HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(mode="json"))


def documented(model: type[BaseModel], description: str = "Successful Response") -> dict:
    """OpenAPI ``responses`` entry for a body serialized by model_response."""
    return {"model": model, "description": description}
