import json
import logging
import time
from typing import Dict, Any, List, Optional, Protocol
from datetime import datetime, timezone
from pathlib import Path

from ..errors import ConfigurationError, ProviderFailure

logger = logging.getLogger(__name__)


class AIProvider(Protocol):
    """What the verification orchestrator needs from a model provider."""

    def generate(self, model_id: str, prompt: str, *, temperature: float = 0.15,
                 max_output_tokens: int = 900, expect_json: bool = True,
                 timeout: Optional[float] = None) -> str:
        """Return the model's raw text, or raise ProviderFailure."""
        ...


class GeminiProvider:
    def __init__(self, api_key: Optional[str], log_calls: bool = True, log_dir: Optional[str] = None):
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self._genai = genai
        self.log_calls = log_calls
        self.log_dir = log_dir
        self.call_log: List[Dict[str, Any]] = []

    def generate(self, model_id: str, prompt: str, *, temperature: float = 0.15,
                 max_output_tokens: int = 900, expect_json: bool = True,
                 timeout: Optional[float] = None) -> str:
        """Call one Gemini model and log the interaction."""
        start = time.time()
        generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if expect_json:
            generation_config["response_mime_type"] = "application/json"
        request_options = {"timeout": timeout} if timeout else None

        try:
            model = self._genai.GenerativeModel(model_id)
            response = model.generate_content(
                prompt,
                generation_config=generation_config,
                request_options=request_options,
            )
            text = response.text
        except Exception as e:
            logger.warning(f"[Gemini:{model_id}] call failed: {str(e)}")
            raise ProviderFailure(f"{type(e).__name__}: {e}", model=model_id) from e

        latency_ms = (time.time() - start) * 1000
        if self.log_calls:
            self._log_call(model_id, prompt, text or "", latency_ms)
        return text or ""

    def _log_call(self, model_id: str, prompt: str, response: str, latency_ms: float):
        """Log LLM calls for debugging and cost analysis."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": "gemini",
            "model": model_id,
            "prompt_length": len(prompt),
            "latency_ms": latency_ms,
            "response_length": len(response),
        }

        self.call_log.append(log_entry)

        if self.log_dir:
            log_dir = Path(self.log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            with open(log_dir / "llm_calls.jsonl", "a") as f:
                f.write(json.dumps(log_entry) + "\n")

        logger.info(f"LLM Call: {log_entry}")
