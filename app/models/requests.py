# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (rendered as INVALID_REQUEST error bodies)
# 2. OpenAPI documentation generation (visible at /docs)
#
# Uploads are multipart form data (UploadFile), not a JSON model.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class QueryRequest(BaseModel):
    """
    Request body for the query endpoints.

    Example:
        {"question": "When can the landlord keep the deposit?"}
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Question to answer from the document text",
        examples=["What happens if I end the lease early?"],
    )

    model_config = ConfigDict(str_strip_whitespace=True)
