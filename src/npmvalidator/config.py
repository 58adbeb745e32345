"""Runtime configuration for data sources and AI providers."""

import os

from pydantic import BaseModel


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Base URLs, credentials and timeouts handed to every adapter.

    Nothing reads the process environment after construction; build one with
    ``Settings.from_env()`` or pass values directly (as the tests do).
    """

    registry_url: str = "https://registry.npmjs.org"
    downloads_url: str = "https://api.npmjs.org/downloads"
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None

    google_api_key: str | None = None
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_models: list[str] = ["gemini-2.5-flash", "gemini-2.5-flash-lite"]
    groq_api_key: str | None = None
    groq_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "llama-3.3-70b-versatile"
    use_ollama: bool = False
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"

    http_timeout: float = 30.0
    llm_timeout: float = 120.0
    user_agent: str = "npm-package-validator"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        values: dict = {
            "github_token": os.environ.get("GITHUB_TOKEN") or None,
            "google_api_key": os.environ.get("GOOGLE_API_KEY") or None,
            "groq_api_key": os.environ.get("GROQ_API_KEY") or None,
            "use_ollama": _env_flag("NPMVALIDATOR_USE_OLLAMA"),
        }
        if os.environ.get("OLLAMA_URL"):
            values["ollama_url"] = os.environ["OLLAMA_URL"]
        if os.environ.get("OLLAMA_MODEL"):
            values["ollama_model"] = os.environ["OLLAMA_MODEL"]
        if os.environ.get("NPMVALIDATOR_HTTP_TIMEOUT"):
            values["http_timeout"] = float(os.environ["NPMVALIDATOR_HTTP_TIMEOUT"])
        return cls(**values)
