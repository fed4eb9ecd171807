"""
API_CALL task — performs one outbound HTTP request with httpx.

Example payload:
    {
        "type": "API_CALL",
        "config": {
            "url": "https://example.com/reports/nightly",
            "method": "POST",
            "headers": {"Authorization": "Bearer ..."},
            "data": {"date": "today"},
            "timeout": 10
        }
    }

Any status outside [200, 300) is a failure, as is a timeout or a connection
error. The error message carries the status and the first 100 characters
of the response body so the ledger shows why the call failed.
"""

import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from tasks.base import AbstractTaskHandler, InvalidTaskPayloadError, TaskExecutionError
from tasks.schemas import ApiCallConfig

logger = logging.getLogger(__name__)

BODY_EXCERPT_CHARS = 100


class ApiCallTask(AbstractTaskHandler):

    def __init__(self, default_timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        # transport is injectable so tests can use httpx.MockTransport
        self._default_timeout = default_timeout
        self._transport = transport

    def validate(self, config: dict) -> ApiCallConfig:
        if not isinstance(config, dict):
            raise InvalidTaskPayloadError("API_CALL task requires a 'config' object")
        try:
            return ApiCallConfig.model_validate(config)
        except ValidationError as e:
            raise InvalidTaskPayloadError(f"Invalid API_CALL config: {e}") from e

    def run(self, config: dict) -> str:
        call = self.validate(config)
        timeout = call.timeout or self._default_timeout

        request_kwargs = {"headers": call.headers, "params": call.params}
        if isinstance(call.data, (dict, list)):
            request_kwargs["json"] = call.data
        elif call.data is not None:
            request_kwargs["content"] = str(call.data)

        logger.info(f"Making {call.method} request to: {call.url}")
        try:
            with httpx.Client(
                timeout=timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = client.request(call.method, call.url, **request_kwargs)
        except httpx.TimeoutException as e:
            raise TaskExecutionError(
                f"API Call execution FAILED. Timed out after {timeout}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise TaskExecutionError(f"API Call execution FAILED. {e}") from e

        if not 200 <= response.status_code < 300:
            excerpt = _excerpt(response)
            raise TaskExecutionError(
                f"API Call execution FAILED. Status: {response.status_code}, Data: {excerpt}",
                status_code=response.status_code,
                body_excerpt=excerpt,
            )

        summary = (
            f"API Call SUCCESS. Status: {response.status_code}. "
            f"Data length: {len(response.text)} chars."
        )
        logger.info(summary)
        return summary

    @property
    def task_type(self) -> str:
        return "API_CALL"


def _excerpt(response: httpx.Response) -> str:
    try:
        text = json.dumps(response.json())
    except ValueError:
        text = response.text
    if len(text) > BODY_EXCERPT_CHARS:
        return text[:BODY_EXCERPT_CHARS] + "..."
    return text
