import os
import json
import asyncio
import yaml
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from google import genai
from google.genai import types

from feed_digest.utils.logging_config import log_ai_interaction


DEFAULT_PROMPTS_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "prompts.yaml")


@dataclass
class AIResponse:
    content: str
    prompt_key: str
    model: str
    tokens_used: int
    response_time_ms: float


class AIServiceError(Exception):
    pass


class AIService:
    """
    Gemini client wrapper using the Google GenAI API.

    Prompts come from a YAML file keyed by prompt name; every call is bounded
    by ``timeout`` and any failure surfaces as ``AIServiceError``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        prompts_path: Optional[str] = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError("Gemini API key required. Set GEMINI_API_KEY or pass api_key parameter.")

        self.client = genai.Client(api_key=self.api_key)

        self.prompts_path = prompts_path or DEFAULT_PROMPTS_PATH
        self.prompts = self._load_prompts()

        params = self.prompts.get("parameters", {}) if isinstance(self.prompts, dict) else {}
        model_cfg = params.get("gemini", {})
        self.model = model or os.getenv("GEMINI_MODEL") or model_cfg.get("model", "gemini-2.5-flash")
        self.temperatures: Dict[str, float] = {
            k: float(v) for k, v in (params.get("temperatures") or {}).items()
        }
        self.max_tokens: Dict[str, int] = {
            k: int(v) for k, v in (params.get("max_output_tokens") or {}).items()
        }
        self.timeout = timeout

        self.logger = logging.getLogger(__name__)

    def _load_prompts(self) -> Dict[str, Any]:
        """Load prompts from YAML configuration file."""
        try:
            with open(self.prompts_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise AIServiceError(f"Prompts file not found at {self.prompts_path}") from e
        except yaml.YAMLError as e:
            raise AIServiceError(f"Error parsing YAML at {self.prompts_path}: {e}") from e

    async def generate(self, prompt_key: str, context: Dict[str, Any], json_mode: bool = False) -> str:
        """Render ``prompt_key`` with ``context`` and return the model's text."""
        response = await self.interact(prompt_key, context, json_mode=json_mode)
        return response.content

    async def interact(self, prompt_key: str, context: Dict[str, Any], json_mode: bool = False) -> AIResponse:
        messages = self._format_prompt(prompt_key, context)
        temperature = self.temperatures.get(prompt_key.split("_")[0], 0.3)
        max_tokens = self.max_tokens.get(prompt_key.split("_")[0], 4096)

        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            response = await self._call_gemini(messages, max_tokens, temperature, json_mode)
        except AIServiceError:
            log_ai_interaction(self.logger, prompt_key, self.model, 0, (loop.time() - start) * 1000.0, False)
            raise

        usage = getattr(response, "usage_metadata", None)
        tokens_used = int(getattr(usage, "total_token_count", 0) or 0) if usage else 0
        elapsed_ms = (loop.time() - start) * 1000.0
        log_ai_interaction(self.logger, prompt_key, self.model, tokens_used, elapsed_ms, True)

        content = self._extract_text_content(response)
        if not content:
            raise AIServiceError(f"Empty response for {prompt_key}")
        return AIResponse(
            content=content,
            prompt_key=prompt_key,
            model=self.model,
            tokens_used=tokens_used,
            response_time_ms=elapsed_ms,
        )

    async def _call_gemini(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> Any:
        system_instruction = None
        contents = []
        for msg in messages:
            if msg.get("role") == "system":
                system_instruction = msg["content"]
            else:
                contents.append(msg["content"])

        config_params: Dict[str, Any] = {
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_instruction:
            config_params["system_instruction"] = system_instruction
        if json_mode:
            config_params["response_mime_type"] = "application/json"

        try:
            return await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=types.GenerateContentConfig(**config_params),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            self.logger.error(f"Gemini API call timed out after {self.timeout:.0f} seconds")
            raise AIServiceError(f"Gemini API call timed out after {self.timeout:.0f} seconds") from e
        except Exception as e:  # noqa: BLE001
            self.logger.error(f"Gemini API call failed: {e}")
            raise AIServiceError(f"Gemini API call failed: {e}") from e

    def _format_prompt(self, prompt_key: str, context: Dict[str, Any]) -> List[Dict[str, str]]:
        """Construct messages from prompt templates and context."""
        cfg = self.prompts.get(prompt_key)
        if not cfg:
            raise AIServiceError(f"Unknown prompt: {prompt_key}")

        master_persona = self.prompts.get("master_persona", "")
        system_text = (master_persona + "\n" + cfg.get("system", "")).strip()
        template = cfg.get("template", "")
        try:
            user_text = template.format(**context)
        except (KeyError, IndexError, ValueError):
            user_text = template + "\n\nContext JSON:\n" + json.dumps(context, ensure_ascii=False)

        return [
            {"role": "system", "content": system_text},
            {"role": "user", "content": user_text},
        ]

    def _extract_text_content(self, response: Any) -> str:
        """Pull the text parts out of a Gemini response."""
        try:
            text = response.text
        except (AttributeError, ValueError):
            text = None
        if text:
            return text.strip()

        parts: List[str] = []
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "text", None):
                    parts.append(part.text)
        return "".join(parts).strip()
