from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    project_root: Path
    data_dir: Path
    events_dir: Path
    memory_dir: Path
    memory_db_path: Path
    llm_api_key: str
    llm_base_url: str
    model_name: str
    model_temperature: float
    llm_timeout_seconds: float
    llm_max_retries: int
    max_workers: int
    memory_window_days: int
    tracker_key_pattern: str
    tracker_url_pattern: str


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    project_root = Path(__file__).resolve().parents[1]
    load_dotenv(project_root / ".env")

    data_dir = project_root / "data"
    memory_dir = data_dir / "memory"
    db_override = os.getenv("MEMORY_DB_PATH", "").strip()

    settings = Settings(
        project_root=project_root,
        data_dir=data_dir,
        events_dir=data_dir / "events",
        memory_dir=memory_dir,
        memory_db_path=Path(db_override) if db_override else memory_dir / "activity.db",
        llm_api_key=os.getenv("LLM_API_KEY", "").strip(),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1").strip(),
        model_name=os.getenv("LLM_MODEL", "llama-3.1-8b-instant").strip(),
        model_temperature=_env_float("MODEL_TEMPERATURE", 0.2),
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 30.0),
        llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
        max_workers=_env_int("MAX_WORKERS", 6),
        memory_window_days=_env_int("MEMORY_WINDOW_DAYS", 7),
        tracker_key_pattern=os.getenv(
            "TRACKER_KEY_PATTERN", r"\b[a-z][a-z0-9]+-\d+\b"
        ).strip(),
        tracker_url_pattern=os.getenv(
            "TRACKER_URL_PATTERN", r"linear\.app/[^\s)>\]]+"
        ).strip(),
    )
    ensure_directories(settings)
    return settings


def ensure_directories(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.events_dir.mkdir(parents=True, exist_ok=True)
    settings.memory_dir.mkdir(parents=True, exist_ok=True)
    settings.memory_db_path.parent.mkdir(parents=True, exist_ok=True)
