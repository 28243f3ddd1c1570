"""Configuration models for chatmem stores, retrieval and providers."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

ProviderName = Literal["deepseek", "huggingface"]


class StoreConfig(BaseModel):
    """Configuration for the SQLite message store."""

    db_path: str = Field(
        default="~/.chatmem/chat_memory.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""

    enable_fts: bool = Field(
        default=True,
        description=(
            "Create the FTS5 index over message content. When False (or when the "
            "SQLite build lacks FTS5) full-text search falls back to a substring scan."
        ),
    )


class RetrievalConfig(BaseModel):
    """Configuration for the LTM relevance judge."""

    judge_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for the relevance micro-request.",
    )

    snippet_chars: int = Field(
        default=500,
        ge=50,
        description="Candidate messages longer than this are truncated in the judge prompt.",
    )


class ProviderConfig(BaseModel):
    """Provider selection and per-provider model defaults."""

    default_provider: ProviderName = "deepseek"
    deepseek_model: str = "deepseek-chat"
    huggingface_model: str = "Qwen/Qwen2.5-7B-Instruct"
    deepseek_api_base: str | None = None
    huggingface_api_base: str | None = None
    timeout: float = Field(default=120.0, gt=0)

    def model_for(self, provider: str) -> str:
        """Return the default model for *provider*."""
        if provider == "huggingface":
            return self.huggingface_model
        return self.deepseek_model

    def api_base_for(self, provider: str) -> str | None:
        if provider == "huggingface":
            return self.huggingface_api_base
        return self.deepseek_api_base


class ChatMemConfig(BaseModel):
    """
    Top-level configuration.

    Example::

        config = ChatMemConfig(
            store=StoreConfig(db_path="/var/lib/chat/chat_memory.db"),
            retrieval=RetrievalConfig(judge_temperature=0.1),
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)

    @classmethod
    def default(cls) -> ChatMemConfig:
        """Return a config instance with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, env_file: str | None = None) -> ChatMemConfig:
        """
        Build a config from environment variables.

        A ``.env`` file is loaded first (without overriding variables that are
        already set). Recognised variables:

        - ``CHATMEM_DB_PATH``
        - ``CHATMEM_DISABLE_FTS`` (``1``/``true`` disables the FTS5 index)
        - ``DEFAULT_PROVIDER`` (``deepseek`` or ``huggingface``)
        - ``DEEPSEEK_MODEL``, ``HUGGINGFACE_MODEL``
        - ``DEEPSEEK_API_BASE``, ``HUGGINGFACE_API_BASE``

        Provider API keys are read by litellm directly from the environment.
        """
        from dotenv import load_dotenv

        load_dotenv(env_file)

        store_kwargs: dict[str, object] = {}
        if db_path := os.environ.get("CHATMEM_DB_PATH"):
            store_kwargs["db_path"] = db_path
        if os.environ.get("CHATMEM_DISABLE_FTS", "").lower() in ("1", "true", "yes"):
            store_kwargs["enable_fts"] = False

        provider_kwargs: dict[str, object] = {}
        for env_key, field in (
            ("DEFAULT_PROVIDER", "default_provider"),
            ("DEEPSEEK_MODEL", "deepseek_model"),
            ("HUGGINGFACE_MODEL", "huggingface_model"),
            ("DEEPSEEK_API_BASE", "deepseek_api_base"),
            ("HUGGINGFACE_API_BASE", "huggingface_api_base"),
        ):
            value = os.environ.get(env_key)
            if value:
                provider_kwargs[field] = value

        return cls(
            store=StoreConfig(**store_kwargs),
            provider=ProviderConfig(**provider_kwargs),
        )
