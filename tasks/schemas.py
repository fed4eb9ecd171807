"""
Pydantic schemas for task payload configs.

These describe what a job's task_payload["config"] must look like for each
task kind. The API validates against them when a job is created and the
worker validates again before executing, because payloads can be edited in
the database behind the API's back.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


class ApiCallConfig(BaseModel):
    """Config for an API_CALL task: one outbound HTTP request."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(..., min_length=1, examples=["https://example.com/reports/nightly"])
    method: HttpMethod = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    params: Optional[dict[str, Any]] = None
    data: Any = None  # dict/list are sent as JSON, str as the raw body
    timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds; falls back to the worker's default"
    )

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value
