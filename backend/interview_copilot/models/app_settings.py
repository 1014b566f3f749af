from __future__ import annotations

from typing import Any, Dict, Optional, Literal
from pydantic import BaseModel, Field


class AnalysisSettings(BaseModel):
    """Tunables for buffering, escalation and role bootstrap."""

    # Periodic flush interval of the aggregation buffer
    buffer_window_seconds: float = Field(default=15.0, gt=0)
    # Batches below this word count are discarded on timer flushes
    min_words: int = Field(default=5, ge=0)
    # Transcript entries needed before role resolution is attempted
    role_threshold: int = Field(default=5, ge=1)
    # Earliest entries shown to the role classifier
    role_sample_size: int = Field(default=10, ge=1)
    # Time budget for each classifier call
    classifier_timeout_seconds: float = Field(default=30.0, gt=0)
    # Number of prior insights forming the differential state
    state_window: int = Field(default=1, ge=1)
    # Recent transcript lines given to the deep analyzer
    recent_context_size: int = Field(default=10, ge=0)
    # Recent transcript lines given to the escalation filter
    escalation_context_size: int = Field(default=5, ge=0)
    # One analysis call per segment (True) or one per flushed batch (False)
    analyze_per_segment: bool = Field(default=True)


class ClassifierSettings(BaseModel):
    """Selection of the model backing one classifier tier."""

    # local: GGUF model through llama-cpp; openai: hosted chat-completions API
    provider: Literal["local", "openai"] = Field(default="local")
    # Explicit .gguf path for the local provider; None -> first model in models_dir/llm
    model_path: Optional[str] = Field(default=None)
    # Model identifier for hosted providers
    model: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    # Name of the environment variable holding the API key (never the key itself)
    api_key_env: Optional[str] = Field(default=None)
    max_tokens: int = Field(default=1024, ge=16)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    # Further hosted providers tried in order when this one fails
    fallbacks: list["ClassifierSettings"] = Field(default_factory=list)


def _default_fast() -> ClassifierSettings:
    return ClassifierSettings(max_tokens=512)


def _default_deep() -> ClassifierSettings:
    return ClassifierSettings(max_tokens=1024)


class PipelineSettingsModel(BaseModel):
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    fast: ClassifierSettings = Field(default_factory=_default_fast)
    deep: ClassifierSettings = Field(default_factory=_default_deep)
    # Output budget for the final scorecard call
    scorecard_max_tokens: int = Field(default=4096, ge=256)
    scorecard_timeout_seconds: float = Field(default=180.0, gt=0)
    llm_device: Literal["auto", "cpu", "cuda"] = Field(default="auto")

    def to_dict(self) -> Dict[str, Any]:
        # Keep compatibility with current API shape
        return self.dict()


def deep_merge_dict(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            dst[k] = deep_merge_dict(dict(dst.get(k, {})), v)
        else:
            dst[k] = v
    return dst


_KNOWN_BLOCKS = ("analysis", "fast", "deep")


def migrate_settings_dict(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Migrate arbitrary settings payload to the supported structure.

    - Keep the 'analysis', 'fast' and 'deep' blocks when they are objects.
    - Accept legacy flat analysis keys (e.g. 'min_words') at top level.
    - Normalize 'llm_device' and drop unrelated keys.
    """
    result: Dict[str, Any] = {}
    if not isinstance(raw, dict):
        return result

    for block in _KNOWN_BLOCKS:
        value = raw.get(block)
        if isinstance(value, dict):
            result[block] = dict(value)

    legacy = {k: raw[k] for k in AnalysisSettings.__fields__ if k in raw}
    if legacy:
        result["analysis"] = deep_merge_dict(legacy, result.get("analysis", {}))

    for key in ("scorecard_max_tokens", "scorecard_timeout_seconds"):
        if key in raw:
            result[key] = raw[key]

    if "llm_device" in raw:
        dev = str(raw.get("llm_device", "auto")).lower()
        result["llm_device"] = dev if dev in {"auto", "cpu", "cuda"} else "auto"
    return result
