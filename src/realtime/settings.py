"""
src/realtime/settings.py
========================
Central place for every environment variable and default used by the
realtime conversation client.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from utils.ml_logging import get_logger

# Load environment variables from .env file
load_dotenv(override=False)
logger = get_logger("realtime.settings")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ------------------------------------------------------------------------------
# Realtime endpoint
# ------------------------------------------------------------------------------
DEFAULT_REALTIME_URL: str = "wss://api.openai.com/v1/realtime?model=gpt-realtime-mini"
REALTIME_API_URL: str = os.getenv("REALTIME_API_URL", DEFAULT_REALTIME_URL)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")

# ------------------------------------------------------------------------------
# Azure OpenAI (used instead of the endpoint above when set)
# ------------------------------------------------------------------------------
AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
AZURE_OPENAI_API_KEY: str = os.getenv("AZURE_OPENAI_API_KEY", "")
AZURE_OPENAI_DEPLOYMENT: str = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
AZURE_OPENAI_API_VERSION: str = os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-01-preview")

# ------------------------------------------------------------------------------
# Client behaviour
# ------------------------------------------------------------------------------
REALTIME_DEBUG: bool = _env_flag("REALTIME_DEBUG")
REALTIME_AUDIO_FORMAT: str = os.getenv("REALTIME_AUDIO_FORMAT", "pcm16")
REALTIME_SESSION_CONFIG_PATH: str = os.getenv("REALTIME_SESSION_CONFIG_PATH", "")
# 5 minutes of 24kHz audio
REALTIME_MAX_INPUT_BUFFER_SAMPLES: int = int(
    os.getenv("REALTIME_MAX_INPUT_BUFFER_SAMPLES", str(24000 * 60 * 5))
)

DEFAULT_SESSION_CONFIG: Dict[str, Any] = {
    "modalities": ["text", "audio"],
    "instructions": "",
    "voice": "verse",
    "input_audio_format": REALTIME_AUDIO_FORMAT,
    "output_audio_format": REALTIME_AUDIO_FORMAT,
    "input_audio_transcription": None,
    "turn_detection": None,
    "tools": [],
    "tool_choice": "auto",
    "temperature": 0.8,
    "max_response_output_tokens": 4096,
}


def load_session_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Read session overrides from a YAML file.

    Args:
        path: YAML file; defaults to REALTIME_SESSION_CONFIG_PATH.

    Returns:
        Dict[str, Any]: The overrides, or an empty dict when no path is configured.

    Raises:
        ValueError: If the file does not contain a mapping.
    """
    path = path or REALTIME_SESSION_CONFIG_PATH
    if not path:
        return {}

    with Path(path).open("r", encoding="utf-8") as fh:
        config = yaml.safe_load(fh) or {}
    if not isinstance(config, dict):
        raise ValueError(f"Session config in {path} must be a mapping, got {type(config).__name__}.")
    logger.info(f"Loaded session config overrides from {path}: {sorted(config)}")
    return config


def merge_session_config(
    defaults: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Merge overrides onto a copy of the defaults; `turn_detection` mappings merge key-wise.
    """
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if key == "turn_detection" and isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = copy.deepcopy(value)
    return merged
