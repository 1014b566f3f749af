from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from interview_copilot.config import Settings
from interview_copilot.errors import ClassifierError, ClassifierTimeoutError
from interview_copilot.models.app_settings import ClassifierSettings

try:
    from llama_cpp import Llama, llama_supports_gpu_offload  # type: ignore
except Exception:  # pragma: no cover
    Llama = None  # type: ignore
    llama_supports_gpu_offload = None  # type: ignore

logger = logging.getLogger("interview_copilot.llm")


class ChatClient(Protocol):
    """A classifier backend: one system + user prompt in, raw text out."""

    name: str

    def complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> str:
        ...


# Loaded GGUF models are shared between tiers that point at the same file
_models: Dict[str, Any] = {}
_model_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _get_model_lock(key: str) -> threading.Lock:
    with _registry_lock:
        if key not in _model_locks:
            _model_locks[key] = threading.Lock()
        return _model_locks[key]


class LlamaChatClient:
    """Local GGUF model through llama-cpp, loaded on first use."""

    def __init__(
        self,
        model_path: Optional[str],
        models_dir: Path,
        llm_device: str = "auto",
        temperature: float = 0.1,
        max_tokens: int = 1024,
        n_ctx: int = 16384,
    ) -> None:
        self.model_path = model_path
        self.models_dir = models_dir
        self.llm_device = llm_device
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.n_ctx = n_ctx
        self.name = f"local:{Path(model_path).name if model_path else 'auto'}"

    def _ensure_model(self) -> tuple[Any, threading.Lock]:
        if Llama is None:
            raise ClassifierError(
                "llama-cpp-python is not available. Install it or configure a hosted provider."
            )
        path = _resolve_model_path(self.model_path, self.models_dir)
        key = str(path)
        lock = _get_model_lock(key)
        with lock:
            if key not in _models:
                logger.info("Loading local model", extra={"model_path": key})
                _models[key] = Llama(
                    model_path=key,
                    n_ctx=self.n_ctx,
                    n_gpu_layers=_determine_gpu_layers(self.llm_device),
                    verbose=False,
                )
        return _models[key], lock

    def complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> str:
        llm, lock = self._ensure_model()
        budget = max_tokens or self.max_tokens
        # llama.cpp contexts are not safe for concurrent generation
        with lock:
            try:
                resp = llm.create_chat_completion(
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                    temperature=self.temperature,
                    max_tokens=budget,
                    response_format={"type": "json_object"},
                )
                return str(resp["choices"][0]["message"]["content"])
            except (KeyError, IndexError, TypeError, ValueError) as e:
                # Fallback to plain completion for models without a chat template
                logger.debug("Chat completion failed (%s); using plain completion", e)
                prompt = f"System: {system}\n\nUser: {user}\n\nAssistant (JSON only):"
                comp = llm(prompt, max_tokens=budget, temperature=self.temperature)
                return str(comp.get("choices", [{}])[0].get("text", ""))


class OpenAICompatibleClient:
    """Hosted chat-completions endpoint (OpenAI, Moonshot, Cerebras, ...)."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str,
        timeout: float = 30.0,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        name: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.name = name or model

    def complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> str:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": int(max_tokens or self.max_tokens),
            "temperature": float(self.temperature),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.post(f"{self.base_url}/chat/completions", headers=headers, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise ClassifierTimeoutError(f"{self.name} request timed out") from e
        except requests.RequestException as e:
            raise ClassifierError(f"{self.name} request failed: {e}") from e
        if resp.status_code >= 400:
            raise ClassifierError(f"{self.name} API error {resp.status_code}: {resp.text}")
        try:
            return str(resp.json()["choices"][0]["message"]["content"])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ClassifierError(f"{self.name} returned an unexpected payload") from e


class FailoverChatClient:
    """Tries each provider in order and returns the first answer."""

    def __init__(self, clients: Sequence[ChatClient]) -> None:
        if not clients:
            raise ValueError("FailoverChatClient needs at least one client")
        self.clients = list(clients)
        self.name = "+".join(c.name for c in self.clients)

    def complete(self, system: str, user: str, max_tokens: Optional[int] = None) -> str:
        for client in self.clients:
            try:
                return client.complete(system, user, max_tokens)
            except ClassifierError as e:
                logger.warning("%s failed: %s, trying next...", client.name, e)
        raise ClassifierError("All AI providers exhausted")


_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def parse_json_response(text: str) -> Dict[str, Any]:
    """Decode a classifier reply into a JSON object.

    Markdown fences are removed first; if the reply still is not valid JSON
    the outermost {...} block is tried. Anything else is a ClassifierError.
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except ValueError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ClassifierError(f"No JSON object in classifier output: {cleaned[:200]!r}")
        try:
            data = json.loads(cleaned[start : end + 1])
        except ValueError as e:
            raise ClassifierError(f"Invalid JSON in classifier output: {cleaned[:200]!r}") from e
    if not isinstance(data, dict):
        raise ClassifierError(f"Classifier output is not a JSON object: {type(data).__name__}")
    return data


async def call_classifier(
    client: ChatClient,
    system: str,
    user: str,
    *,
    timeout: float,
    max_tokens: Optional[int] = None,
) -> str:
    """Run a blocking classifier call in a worker thread with a time budget."""
    try:
        text = await asyncio.wait_for(asyncio.to_thread(client.complete, system, user, max_tokens), timeout)
    except asyncio.TimeoutError as e:
        raise ClassifierTimeoutError(f"{client.name} timed out after {timeout:g}s") from e
    except ClassifierError:
        raise
    except Exception as e:
        raise ClassifierError(f"{client.name} failed: {e}") from e
    logger.debug("Raw classifier output from %s: %r", client.name, text)
    return text


def build_chat_client(
    cfg: ClassifierSettings,
    settings: Optional[Settings] = None,
    llm_device: str = "auto",
    timeout: float = 30.0,
) -> ChatClient:
    settings = settings or Settings()
    clients: List[ChatClient] = [_build_single(c, settings, llm_device, timeout) for c in [cfg, *cfg.fallbacks]]
    return clients[0] if len(clients) == 1 else FailoverChatClient(clients)


def _build_single(cfg: ClassifierSettings, settings: Settings, llm_device: str, timeout: float) -> ChatClient:
    if cfg.provider == "openai":
        if not cfg.base_url or not cfg.model:
            raise ValueError("Hosted classifier needs 'base_url' and 'model'")
        api_key = os.getenv(cfg.api_key_env or "") if cfg.api_key_env else None
        if not api_key:
            raise ValueError(f"API key environment variable {cfg.api_key_env!r} is not set")
        return OpenAICompatibleClient(
            base_url=cfg.base_url,
            model=cfg.model,
            api_key=api_key,
            timeout=timeout,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )
    return LlamaChatClient(
        model_path=cfg.model_path,
        models_dir=settings.models_dir / "llm",
        llm_device=llm_device,
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
    )


def _resolve_model_path(model_path: Optional[str], models_dir: Path) -> Path:
    if model_path:
        p = Path(os.path.expandvars(str(model_path))).expanduser()
        if p.exists():
            return p
        raise ClassifierError(f"LLM model file not found: {p}")

    found: List[Path] = []
    if models_dir.exists():
        for root, _, files in os.walk(models_dir):
            for f in files:
                if f.lower().endswith(".gguf"):
                    found.append(Path(root) / f)
    if found:
        return sorted(found)[0]
    raise ClassifierError(
        f"No local LLM model configured or found in {models_dir}. Configure a GGUF model path in settings."
    )


def _determine_gpu_layers(llm_device: str) -> int:
    device = str(llm_device or "auto").lower()
    if device == "cpu":
        return 0
    if llama_supports_gpu_offload is not None and bool(llama_supports_gpu_offload()):
        return 999
    return 0
