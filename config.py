"""
Centralized configuration for rubric_eval.

Loads environment variables from .env and provides validated paths and settings.
Run-specific settings (models, assistants, criteria, test cases) live in the
run request YAML; see rubric_eval.pipeline.config.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def get_int_var(var_name: str, default: Optional[int] = None) -> Optional[int]:
    """Read a positive integer from the environment; blank or unset gives default."""
    value = os.getenv(var_name, "").strip()
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        print(f"Warning: Ignoring non-integer {var_name}={value!r}")
        return default
    if parsed <= 0:
        print(f"Warning: Ignoring non-positive {var_name}={parsed}")
        return default
    return parsed


# -- Paths -------------------------------------------------------------------


STATE_DIR = Path(os.getenv("RUBRIC_EVAL_STATE_DIR", str(Path.home() / ".rubric_eval")))
LOG_DIR = STATE_DIR / "logs"

# -- Settings -----------------------------------------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DEBUG = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

# Upper bound on in-flight remote calls per phase; None = one per test case
MAX_CONCURRENT_CALLS = get_int_var("MAX_CONCURRENT_CALLS")

OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")


def validate_config() -> None:
    """Validate that critical paths exist or can be created."""
    for path_var in [STATE_DIR, LOG_DIR]:
        if not path_var.exists():
            try:
                path_var.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create {path_var}: {e}")
