"""
Executor for ``endpoint_call`` steps.

Issues one HTTP request built from the step's merged configuration and the
step input, and turns the response into the step output.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from errors import StepExecutionError, StepConfigurationError, ErrorCode
from runbooks.endpoint_config import EndpointCallConfig, merge_headers, has_header
from runbooks.template import render_body_template, resolve_path

# Configure logger
logger = logging.getLogger(__name__)

# Statuses worth another attempt
RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)

_MISSING = object()


class EndpointCallExecutor:
    """
    Runs ``endpoint_call`` steps with ``requests``.

    Relative URLs are resolved against ``base_url``. Calls into this
    deployment's own ``/api/`` routes carry the triggering user in the
    ``x-internal-user-id`` header, plus ``x-internal-token`` when a shared
    token is configured.
    """

    def __init__(self, base_url: Optional[str] = None, internal_token: Optional[str] = None,
                 default_timeout: Optional[int] = None):
        # Import config when needed (avoids circular imports)
        from config import config

        self.base_url = (base_url or config.runbook.base_url).rstrip("/")
        self.internal_token = internal_token if internal_token is not None else config.runbook.internal_token
        self.default_timeout = default_timeout or config.runbook.default_timeout_seconds
        self.logger = logging.getLogger(__name__)

    def execute(self, step: Any, input_data: Any, user_id: Optional[str] = None,
                timeout: Optional[float] = None) -> Any:
        """
        Execute an endpoint call step.

        Args:
            step: The RunbookStep to execute
            input_data: Output of the previous step (or the initial input)
            user_id: User the execution runs on behalf of
            timeout: Request deadline in seconds

        Returns:
            The parsed response body, or the value selected by the
            step's response mapping

        Raises:
            StepExecutionError: If the request cannot be built, fails or
                returns a non-2xx status
        """
        try:
            call_config = EndpointCallConfig.from_step(step)
        except StepConfigurationError as e:
            raise StepConfigurationError(f"Endpoint call failed: {e.message}", e.code, e.details)

        url = self._resolve_url(call_config.url)
        timeout = timeout or self.default_timeout
        headers, body = self._build_request(call_config, input_data)

        if user_id and "/api/" in urlparse(url).path:
            headers["x-internal-user-id"] = str(user_id)
            if self.internal_token:
                headers["x-internal-token"] = self.internal_token

        self.logger.info(f"Executing {call_config.method} request to {url}")

        try:
            response = requests.request(
                method=call_config.method,
                url=url,
                headers=headers,
                data=body,
                timeout=timeout
            )
        except requests.exceptions.Timeout:
            self.logger.error(f"Request to {url} timed out after {timeout} seconds")
            raise StepExecutionError(
                f"Endpoint call failed: Request timed out after {timeout} seconds",
                ErrorCode.API_TIMEOUT_ERROR,
                {"url": url, "method": call_config.method, "timeout": timeout}
            )
        except requests.exceptions.ConnectionError as e:
            self.logger.error(f"Connection error for {url}: {str(e)}")
            raise StepExecutionError(
                f"Endpoint call failed: Connection error: {str(e)}",
                ErrorCode.API_CONNECTION_ERROR,
                {"url": url, "method": call_config.method}
            )
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Request error for {url}: {str(e)}")
            raise StepExecutionError(
                f"Endpoint call failed: Request error: {str(e)}",
                ErrorCode.API_RESPONSE_ERROR,
                {"url": url, "method": call_config.method}
            )

        self.logger.debug(f"Response received: Status {response.status_code}")

        if not 200 <= response.status_code < 300:
            raise StepExecutionError(
                f"Endpoint call failed: HTTP {response.status_code}: {response.reason}",
                ErrorCode.API_RESPONSE_ERROR,
                {"url": url, "method": call_config.method, "status_code": response.status_code},
                retryable=response.status_code in RETRYABLE_STATUS_CODES
            )

        data = self._parse_response(response)
        return self._apply_response_mapping(call_config, data)

    def _resolve_url(self, url: str) -> str:
        if url.startswith("/"):
            return f"{self.base_url}{url}"
        return url

    def _build_request(self, call_config: EndpointCallConfig, input_data: Any):
        """
        Build headers and body of the request.

        Returns:
            Tuple of (headers, body) where body is text or None
        """
        defaults: Dict[str, str] = {}
        body = None

        if call_config.body_template is not None:
            body = render_body_template(call_config.body_template, input_data)
            if not has_header(call_config.headers, "Content-Type"):
                defaults["Content-Type"] = "application/json"
        elif call_config.sends_input_as_body and input_data is not None:
            body = json.dumps(input_data)
            defaults["Content-Type"] = "application/json"

        return merge_headers(defaults, call_config.headers), body

    def _parse_response(self, response: requests.Response) -> Any:
        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return response.text

        try:
            return response.json()
        except ValueError as e:
            raise StepExecutionError(
                f"Endpoint call failed: Invalid JSON response: {str(e)}",
                ErrorCode.STEP_INVALID_OUTPUT,
                {"url": response.url},
                retryable=False
            )

    @staticmethod
    def _apply_response_mapping(call_config: EndpointCallConfig, data: Any) -> Any:
        mapping = call_config.response_mapping
        if mapping is None:
            return data

        output = data
        if mapping.output_path:
            output = resolve_path(data, mapping.output_path, _MISSING)
        if mapping.output_key:
            # An unresolved path leaves the key out entirely, a JSON null is kept
            return {mapping.output_key: output} if output is not _MISSING else {}
        return None if output is _MISSING else output
