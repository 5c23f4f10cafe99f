"""Vision model client: protocol plus the Ollama adapter."""

import base64
import logging
from typing import Optional, Protocol

import httpx
import ollama

from docvision.core.errors import (
    ContentPolicyRejection,
    InvocationError,
    InvocationTimeout,
    MalformedRequest,
    RateLimited,
    ServiceUnavailable,
)
from docvision.invocation.models import VisionResponse

logger = logging.getLogger(__name__)

_POLICY_STATUSES = {403, 451}


class VisionClient(Protocol):
    """One call to a multimodal model. Failures raise InvocationError subclasses."""

    def invoke(self, image: bytes, prompt: str, model: str, timeout: float) -> VisionResponse: ...


# ── Ollama ───────────────────────────────────────────────────────────


class OllamaVisionClient:
    """Sends the image base64-encoded alongside the prompt, temperature 0."""

    def __init__(self, host: Optional[str] = None):
        self.host = host
        self._clients: dict[float, ollama.Client] = {}

    def _client(self, timeout: float) -> ollama.Client:
        client = self._clients.get(timeout)
        if client is None:
            client = ollama.Client(host=self.host, timeout=timeout)
            self._clients[timeout] = client
        return client

    def invoke(self, image: bytes, prompt: str, model: str, timeout: float) -> VisionResponse:
        img_b64 = base64.b64encode(image).decode()
        try:
            response = self._client(timeout).chat(
                model=model,
                messages=[{"role": "user", "content": prompt, "images": [img_b64]}],
                options={"temperature": 0},
            )
        except ollama.ResponseError as exc:
            raise map_response_error(exc) from exc
        except httpx.TimeoutException as exc:
            raise InvocationTimeout(f"{model} timed out after {timeout}s") from exc
        except (httpx.TransportError, ConnectionError) as exc:
            raise ServiceUnavailable(f"Could not reach Ollama for {model}: {exc}") from exc

        return VisionResponse(
            text=response.message.content or "",
            model=model,
            input_tokens=response.prompt_eval_count,
            output_tokens=response.eval_count,
        )


def map_response_error(exc: ollama.ResponseError) -> InvocationError:
    """Classify an Ollama HTTP error as transient or not."""
    status = exc.status_code
    detail = f"HTTP {status}: {exc.error}"
    if status == 429:
        return RateLimited(detail)
    if status in _POLICY_STATUSES:
        return ContentPolicyRejection(detail)
    if status == 408:
        return InvocationTimeout(detail)
    if 400 <= status < 500:
        return MalformedRequest(detail)
    return ServiceUnavailable(detail)
