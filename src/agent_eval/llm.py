from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TOGETHER_BASE_URL = "https://api.together.xyz/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"


class ModelCaller(Protocol):
  name: str
  model_id: str

  def generate_object(self, prompt: str, schema: Type[T], model: Optional[str] = None) -> T:
    ...


class StructuredOutputError(ValueError):
  pass


def parse_json_object(text: str) -> Dict[str, Any]:
  """Return the first JSON object found in ``text``."""
  decoder = json.JSONDecoder()
  idx = text.find("{")
  while idx != -1:
    try:
      obj, _ = decoder.raw_decode(text[idx:])
    except json.JSONDecodeError:
      idx = text.find("{", idx + 1)
      continue
    if isinstance(obj, dict):
      return obj
    idx = text.find("{", idx + 1)
  raise StructuredOutputError(f"Model response did not contain a JSON object: {text[:200]!r}")


@dataclass
class ChatCompletionsLLM:
  """Structured-output model caller over any OpenAI-compatible chat endpoint."""

  model: str = "gpt-4.1-mini"
  name: str = "openai"
  base_url: Optional[str] = None
  api_key: Optional[str] = None
  temperature: float = 0.0
  max_output_tokens: int = 4096
  client: Any = None

  def __post_init__(self) -> None:
    if self.client is None:
      kwargs: Dict[str, Any] = {}
      if self.base_url:
        kwargs["base_url"] = self.base_url
      if self.api_key:
        kwargs["api_key"] = self.api_key
      self.client = OpenAI(**kwargs)

  @property
  def model_id(self) -> str:
    return self.model

  def _messages(self, prompt: str, schema: Type[BaseModel]) -> List[Dict[str, str]]:
    schema_json = json.dumps(schema.model_json_schema(), ensure_ascii=False)
    return [
        {
            "role": "system",
            "content": "Reply with a single JSON object that validates against this JSON schema:\n" + schema_json,
        },
        {"role": "user", "content": prompt},
    ]

  def generate_object(self, prompt: str, schema: Type[T], model: Optional[str] = None) -> T:
    resp = self.client.chat.completions.create(
        model=model or self.model,
        messages=self._messages(prompt, schema),
        temperature=self.temperature,
        max_tokens=self.max_output_tokens,
        response_format={"type": "json_object"},
    )
    content = resp.choices[0].message.content or ""
    data = parse_json_object(content)
    try:
      return schema.model_validate(data)
    except ValidationError as e:
      raise StructuredOutputError(f"Model response failed schema validation: {e}") from e


@dataclass
class LLMConfig:
  provider: str = "openai"
  model: str = "gpt-4.1-mini"
  base_url: Optional[str] = None
  api_key: Optional[str] = None
  temperature: float = 0.0


class LLMFactory:

  @staticmethod
  def build(cfg: LLMConfig) -> ChatCompletionsLLM:
    provider = (cfg.provider or "").lower()
    if provider == "openai":
      return ChatCompletionsLLM(
          model=cfg.model, name="openai", base_url=cfg.base_url, api_key=cfg.api_key,
          temperature=cfg.temperature)
    if provider == "together":
      return ChatCompletionsLLM(
          model=cfg.model,
          name="together",
          base_url=cfg.base_url or TOGETHER_BASE_URL,
          api_key=cfg.api_key or os.getenv("TOGETHER_API_KEY"),
          temperature=cfg.temperature,
      )
    if provider == "ollama":
      # The OpenAI client insists on a key; ollama ignores it.
      return ChatCompletionsLLM(
          model=cfg.model,
          name="ollama",
          base_url=cfg.base_url or OLLAMA_BASE_URL,
          api_key=cfg.api_key or "ollama",
          temperature=cfg.temperature,
      )
    raise ValueError(f"Unknown LLM provider: {cfg.provider}")
