"""
Configuration module for Supermemory.

Loads application settings from config.yaml and secrets from environment variables.
"""

import logging
import os
import contextvars
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Context variable carrying the owner id of the request being handled
request_context = contextvars.ContextVar("owner_id", default=None)


class RequestLogFilter(logging.Filter):
    """Filter to inject the current request's owner id into log records."""
    def filter(self, record):
        owner_id = request_context.get()
        if owner_id is not None:
            record.request_info = f" [{owner_id}]"
        else:
            record.request_info = ""
        return True


# Default config file path (overridable for deployments and tests)
CONFIG_FILE = Path(os.getenv("SUPERMEMORY_CONFIG", Path(__file__).parent.parent / "config.yaml"))


def _load_yaml_config() -> dict:
    """Load configuration from YAML file."""
    if CONFIG_FILE.exists():
        with open(CONFIG_FILE) as f:
            return yaml.safe_load(f) or {}
    return {}


# Load YAML config once at module import
_yaml_config = _load_yaml_config()


def _get_yaml(section: str, key: str, default=None):
    """Get a value from the YAML config."""
    return (_yaml_config.get(section) or {}).get(key, default)


@dataclass
class OpenAIConfig:
    """OpenAI API configuration."""
    # Secret from .env
    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    # Setting from YAML
    model: str = field(default_factory=lambda: _get_yaml("llm", "openai_model", "gpt-4o-mini"))


@dataclass
class OpenRouterConfig:
    """OpenRouter configuration (OpenAI-compatible API)."""
    # Secret from .env
    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    # Settings from YAML
    model: str = field(
        default_factory=lambda: _get_yaml("llm", "openrouter_model", "openai/gpt-4o-mini")
    )
    base_url: str = field(
        default_factory=lambda: _get_yaml("llm", "openrouter_base_url", "https://openrouter.ai/api/v1")
    )


@dataclass
class GoogleConfig:
    """Google Generative AI configuration."""
    # Secret from .env
    api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))
    # Setting from YAML
    model: str = field(default_factory=lambda: _get_yaml("llm", "google_model", "gemini-2.0-flash"))


@dataclass
class OllamaConfig:
    """Local Ollama server (OpenAI-compatible endpoint, no API key)."""
    model: str = field(default_factory=lambda: _get_yaml("llm", "ollama_model", "llama3.2"))
    base_url: str = field(
        default_factory=lambda: _get_yaml("llm", "ollama_base_url", "http://localhost:11434/v1")
    )


@dataclass
class AppConfig:
    """Application settings from YAML."""
    # LLM provider
    llm_provider: Literal["openai", "openrouter", "google", "ollama"] = field(
        default_factory=lambda: _get_yaml("llm", "provider", "openai")
    )
    temperature: float = field(
        default_factory=lambda: _get_yaml("llm", "temperature", 0.7)
    )
    max_tokens: int = field(
        default_factory=lambda: _get_yaml("llm", "max_tokens", 1000)
    )
    system_prompt: str = field(
        default_factory=lambda: _get_yaml(
            "llm",
            "system_prompt",
            "You are a helpful assistant with long-term memory. "
            "Use the relevant memories below when they help answer the user.",
        )
    )

    # Logging
    log_level: str = field(
        default_factory=lambda: _get_yaml("logging", "level", "INFO")
    )


@dataclass
class MemoryConfig:
    """Vector memory configuration."""
    store_type: Literal["local", "chroma", "pinecone", "pgvector"] = field(
        default_factory=lambda: _get_yaml("memory", "store_type", "local")
    )
    embedding_provider: Literal["local", "openai", "openrouter", "local+openai"] = field(
        default_factory=lambda: _get_yaml("memory", "embedding_provider", "local")
    )
    # Empty = provider default ("all-MiniLM-L6-v2" locally, "text-embedding-3-small" remotely)
    embedding_model: str = field(
        default_factory=lambda: _get_yaml("memory", "embedding_model", "")
    )
    # None = use model's default dimensions
    embedding_dimensions: int | None = field(
        default_factory=lambda: _get_yaml("memory", "embedding_dimensions", None)
    )

    # Backend settings
    storage_path: str = field(
        default_factory=lambda: _get_yaml("memory", "storage_path", "./data/memories")
    )
    collection_name: str = field(
        default_factory=lambda: _get_yaml("memory", "collection_name", "supermemory")
    )
    chroma_path: str = field(
        default_factory=lambda: _get_yaml("memory", "chroma_path", "./data/chroma")
    )
    chroma_host: str | None = field(
        default_factory=lambda: _get_yaml("memory", "chroma_host", None)
    )
    chroma_port: int = field(
        default_factory=lambda: _get_yaml("memory", "chroma_port", 8000)
    )
    pinecone_index: str = field(
        default_factory=lambda: _get_yaml("memory", "pinecone_index", "supermemory")
    )
    pinecone_cloud: str = field(
        default_factory=lambda: _get_yaml("memory", "pinecone_cloud", "aws")
    )
    pinecone_region: str = field(
        default_factory=lambda: _get_yaml("memory", "pinecone_region", "us-east-1")
    )
    # Secrets from .env
    pinecone_api_key: str = field(default_factory=lambda: os.getenv("PINECONE_API_KEY", ""))
    postgres_url: str = field(default_factory=lambda: os.getenv("POSTGRES_URL", ""))

    # Retrieval
    top_k: int = field(
        default_factory=lambda: _get_yaml("memory", "top_k", 5)
    )
    min_score: float = field(
        default_factory=lambda: _get_yaml("memory", "min_score", 0.3)
    )

    # Hosted backend timeouts and retries
    timeout_seconds: float = field(
        default_factory=lambda: _get_yaml("memory", "timeout_seconds", 30.0)
    )
    max_retries: int = field(
        default_factory=lambda: _get_yaml("memory", "max_retries", 3)
    )
    retry_base_delay: float = field(
        default_factory=lambda: _get_yaml("memory", "retry_base_delay", 0.5)
    )
    provision_timeout: float = field(
        default_factory=lambda: _get_yaml("memory", "provision_timeout", 60.0)
    )
    poll_interval: float = field(
        default_factory=lambda: _get_yaml("memory", "poll_interval", 2.0)
    )

    # Skip repeated facts and link updates when storing exchanges
    deduplicate: bool = field(
        default_factory=lambda: _get_yaml("memory", "deduplicate", True)
    )
    duplicate_threshold: float = field(
        default_factory=lambda: _get_yaml("memory", "duplicate_threshold", 0.85)
    )


@dataclass
class FilterConfig:
    """Store-worthiness filter configuration."""
    # False = heuristic only, no LLM call per exchange
    use_llm: bool = field(
        default_factory=lambda: _get_yaml("filter", "use_llm", True)
    )


@dataclass
class Config:
    """Main configuration container."""
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    openrouter: OpenRouterConfig = field(default_factory=OpenRouterConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    app: AppConfig = field(default_factory=AppConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)

    def setup_logging(self) -> logging.Logger:
        """Configure and return the application logger."""
        # Reset existing handlers to ensure clean configuration
        root = logging.getLogger()
        if root.handlers:
            for handler in list(root.handlers):
                root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s%(request_info)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Add filter to the handler created by basicConfig
        for handler in logging.getLogger().handlers:
            handler.addFilter(RequestLogFilter())

        return logging.getLogger("supermemory")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of missing/invalid settings.

        Returns:
            List of validation error messages, empty if all valid.
        """
        errors = []

        # Check if config.yaml exists
        if not CONFIG_FILE.exists():
            errors.append(f"Config file not found: {CONFIG_FILE} (copy config.yaml.example to config.yaml)")

        # Check LLM provider configuration
        if self.app.llm_provider == "openai" and not self.openai.api_key:
            errors.append("OPENAI_API_KEY is required when using OpenAI provider")
        elif self.app.llm_provider == "openrouter" and not self.openrouter.api_key:
            errors.append("OPENROUTER_API_KEY is required when using OpenRouter provider")
        elif self.app.llm_provider == "google" and not self.google.api_key:
            errors.append("GOOGLE_API_KEY is required when using Google provider")
        elif self.app.llm_provider not in ("openai", "openrouter", "google", "ollama"):
            errors.append(f"Unknown llm.provider: {self.app.llm_provider}")

        # Check memory backend configuration
        memory = self.memory
        if memory.store_type == "pinecone" and not memory.pinecone_api_key:
            errors.append("PINECONE_API_KEY is required when using the Pinecone store")
        elif memory.store_type == "pgvector" and not memory.postgres_url:
            errors.append("POSTGRES_URL is required when using the pgvector store")
        elif memory.store_type not in ("local", "chroma", "pinecone", "pgvector"):
            errors.append(f"Unknown memory.store_type: {memory.store_type}")

        if memory.embedding_provider in ("openai", "local+openai") and not self.openai.api_key:
            errors.append(f"OPENAI_API_KEY is required for {memory.embedding_provider} embeddings")
        elif memory.embedding_provider == "openrouter" and not self.openrouter.api_key:
            errors.append("OPENROUTER_API_KEY is required for openrouter embeddings")

        if not 0.0 <= float(memory.min_score) <= 1.0:
            errors.append(f"memory.min_score must be within [0, 1], got {memory.min_score}")
        if int(memory.top_k) < 1:
            errors.append(f"memory.top_k must be at least 1, got {memory.top_k}")

        return errors


# Global configuration instance
config = Config()
