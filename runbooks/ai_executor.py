"""
Executor for ``ai_operation`` steps and the standalone generate endpoint.

Renders a prompt template with the given variables, calls the configured
OpenAI-compatible endpoint and extracts the assistant message.
"""

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from errors import (
    APIError, EngineError, ErrorCode, ResourceNotFoundError, StepExecutionError,
    StepConfigurationError
)
from runbooks.catalog import AIEndpoint, CatalogStore, PromptTemplate, calculate_cost_cents
from runbooks.endpoint_executor import RETRYABLE_STATUS_CODES
from runbooks.template import render_template


class AIOperationExecutor:
    """
    Runs prompt templates against AI endpoints from the catalog.

    ``generate`` is the full call used by ``POST /api/generate``;
    ``execute`` adapts it to the step interface.
    """

    def __init__(self, catalog: Optional[CatalogStore] = None, max_retries: Optional[int] = None,
                 default_timeout: Optional[int] = None):
        # Import config when needed (avoids circular imports)
        from config import config

        self.catalog = catalog or CatalogStore()
        self.max_retries = max_retries if max_retries is not None else config.ai.max_retries
        self.default_timeout = default_timeout or config.ai.timeout
        self.logger = logging.getLogger(__name__)

    def _create_session(self) -> requests.Session:
        """Create a fresh session per call so worker threads never share one."""
        session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=frozenset(["GET", "POST"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def execute(self, step: Any, input_data: Any, user_id: Optional[str] = None,
                timeout: Optional[float] = None) -> Any:
        """
        Execute an AI operation step.

        A dict input is used as the template variables; any other input is
        exposed as the single variable ``input``.

        Args:
            step: The RunbookStep to execute
            input_data: Output of the previous step (or the initial input)
            user_id: User the execution runs on behalf of
            timeout: Request deadline in seconds

        Returns:
            The parsed JSON value for structured output templates,
            otherwise ``{"content": <assistant text>}``

        Raises:
            StepExecutionError: If the catalog entries are missing or the call fails
        """
        variables = input_data if isinstance(input_data, dict) else {"input": input_data}

        try:
            result = self.generate(step.endpoint_id, step.prompt_template_id, variables,
                                   user_id=user_id, timeout=timeout)
        except StepExecutionError:
            raise
        except ResourceNotFoundError as e:
            raise StepConfigurationError(e.message, e.code, e.details)
        except EngineError as e:
            status_code = e.details.get("status_code")
            # Client errors such as a rejected key will fail the same way again
            retryable = status_code is None or status_code in RETRYABLE_STATUS_CODES
            raise StepExecutionError(e.message, e.code, e.details, retryable=retryable)

        content = self.extract_content(result["response"])

        if result["structured_output"]:
            try:
                return json.loads(content)
            except ValueError as e:
                raise StepExecutionError(
                    f"AI response is not valid JSON: {str(e)}",
                    ErrorCode.STEP_INVALID_OUTPUT,
                    {"endpoint_id": step.endpoint_id}
                )

        return {"content": content}

    def generate(self, endpoint_id: str, prompt_template_id: str, variables: Optional[Dict[str, Any]] = None,
                 user_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Render a prompt template and call an AI endpoint with it.

        Args:
            endpoint_id: Id of an active AI endpoint
            prompt_template_id: Id of the prompt template
            variables: Template variables
            user_id: Caller, recorded in the request log
            timeout: Request deadline in seconds; defaults to the provider's

        Returns:
            Dictionary with the raw provider ``response``, an ``endpoint``
            and a ``prompt_template`` summary, and ``structured_output``

        Raises:
            ResourceNotFoundError: If the endpoint or template does not exist
            APIError: If the provider call fails
        """
        endpoint = self.catalog.get_active_endpoint(endpoint_id)
        if endpoint is None:
            raise ResourceNotFoundError("Endpoint not found or inactive", details={"endpoint_id": endpoint_id})
        if endpoint.model is None or endpoint.model.provider is None:
            raise StepConfigurationError(
                "Endpoint configuration is incomplete - missing model data",
                details={"endpoint_id": endpoint_id}
            )

        template = self.catalog.get_prompt_template(prompt_template_id)
        if template is None:
            raise ResourceNotFoundError("Prompt template not found",
                                        details={"prompt_template_id": prompt_template_id})

        request_body = self._build_request_body(endpoint, template, variables or {})
        provider = endpoint.model.provider
        url = f"{provider.base_url.rstrip('/')}{endpoint.api_path}"
        timeout = timeout or provider.global_timeout_seconds or self.default_timeout

        self.logger.info(f"Making AI API call to: {url}")
        self.logger.debug(f"Request body: {json.dumps(request_body)}")

        started = time.monotonic()
        response = self._send(endpoint, url, request_body, timeout)
        duration_ms = int((time.monotonic() - started) * 1000)

        if not 200 <= response.status_code < 300:
            self.logger.error(f"AI API error: {response.status_code} {response.text}")
            raise APIError(
                f"AI API error: {response.status_code} {response.reason}",
                self._error_code_for_status(response.status_code),
                {"status_code": response.status_code, "details": response.text}
            )

        try:
            ai_response = response.json()
        except ValueError:
            raise APIError("Invalid JSON response from API", ErrorCode.API_RESPONSE_ERROR)

        self._log_request(endpoint, template, user_id, request_body, ai_response,
                          response.status_code, duration_ms)

        return {
            "response": ai_response,
            "endpoint": endpoint.describe(),
            "prompt_template": template.describe(),
            "structured_output": template.structured_output_enabled,
        }

    def _build_request_body(self, endpoint: AIEndpoint, template: PromptTemplate,
                            variables: Dict[str, Any]) -> Dict[str, Any]:
        """Build the OpenAI-format request body."""
        system_prompt = render_template(template.system_prompt, variables)
        user_prompt = render_template(template.user_prompt_template, variables)

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        request_body = {
            "model": endpoint.model.model_identifier,
            "temperature": endpoint.default_temperature,
            "max_tokens": endpoint.default_max_tokens,
            "top_p": endpoint.default_top_p,
            "messages": messages,
        }

        # json_schema and pydantic schemas are both sent as JSON schema
        if template.structured_output_enabled:
            request_body["response_format"] = {
                "type": "json_schema",
                "json_schema": template.structured_output_schema,
            }

        return request_body

    def _get_headers(self, endpoint: AIEndpoint) -> Dict[str, str]:
        """Get request headers."""
        headers = {
            "Content-Type": "application/json",
        }

        api_key_env = endpoint.model.provider.api_key_env
        api_key = os.environ.get(api_key_env) if api_key_env else None
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        return headers

    def _send(self, endpoint: AIEndpoint, url: str, request_body: Dict[str, Any],
              timeout: float) -> requests.Response:
        try:
            session = self._create_session()
            return session.request(
                method=(endpoint.http_method or "POST").upper(),
                url=url,
                json=request_body,
                headers=self._get_headers(endpoint),
                timeout=timeout
            )
        except requests.exceptions.Timeout:
            raise APIError(
                f"Request timed out after {timeout} seconds",
                ErrorCode.API_TIMEOUT_ERROR
            )
        except requests.exceptions.RequestException as e:
            raise APIError(
                f"Network error: {str(e)}",
                ErrorCode.API_CONNECTION_ERROR
            )

    @staticmethod
    def _error_code_for_status(status_code: int) -> ErrorCode:
        if status_code == 401:
            return ErrorCode.API_AUTHENTICATION_ERROR
        if status_code == 429:
            return ErrorCode.API_RATE_LIMIT_ERROR
        return ErrorCode.API_RESPONSE_ERROR

    def _log_request(self, endpoint: AIEndpoint, template: PromptTemplate, user_id: Optional[str],
                     request_body: Dict[str, Any], ai_response: Any, status_code: int,
                     duration_ms: int) -> None:
        usage = ai_response.get("usage") if isinstance(ai_response, dict) else None
        try:
            self.catalog.log_request(
                endpoint_id=endpoint.id,
                prompt_template_id=template.id,
                user_id=user_id,
                request_payload=request_body,
                response_payload=ai_response,
                response_status=status_code,
                tokens_used=usage.get("total_tokens") if usage else None,
                cost_cents=calculate_cost_cents(usage, endpoint.model),
                duration_ms=duration_ms,
            )
        except Exception as e:
            # The call itself succeeded; a lost log row must not fail it
            self.logger.error(f"Error logging AI request: {e}")

    @staticmethod
    def extract_content(response: Any) -> str:
        """
        Extract the assistant text from an OpenAI-format response.

        Raises:
            StepExecutionError: If the response has no message content
        """
        try:
            content = response["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise StepExecutionError(
                "AI response did not contain a message",
                ErrorCode.STEP_INVALID_OUTPUT
            )
        return content if content is not None else ""
