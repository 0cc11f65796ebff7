from typing import Literal, Optional

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Confluence source
    confluence_base_url: str = "https://cwiki.apache.org/confluence"
    confluence_space_key: Optional[str] = None
    confluence_email: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("confluence_email", "confluence_username"),
    )
    confluence_api_token: Optional[SecretStr] = None
    confluence_request_retries: int = Field(default=3, ge=0)
    confluence_retry_base_delay_ms: int = Field(default=2000, gt=0)
    confluence_max_pages: int = Field(default=5, ge=1)  # batches per run
    confluence_page_limit: int = Field(default=25, ge=1)

    # Vector store
    vector_backend: Literal["pinecone", "faiss"] = "pinecone"
    pinecone_api_key: Optional[SecretStr] = None
    pinecone_index_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pinecone_index_name", "pinecone_index"),
    )
    pinecone_host: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pinecone_host", "pinecone_index_host"),
    )
    pinecone_environment: Optional[str] = None
    pinecone_namespace: str = "default"
    faiss_data_root: str = "data/faiss"

    # Language model providers
    provider: str = "qwen"

    openai_api_key: Optional[SecretStr] = None
    openai_api_url: Optional[str] = None
    openai_model: Optional[str] = None
    openai_embedding_model: Optional[str] = None

    qwen_api_key: Optional[SecretStr] = None
    qwen_api_url: Optional[str] = None
    qwen_model: Optional[str] = None
    qwen_embedding_model: Optional[str] = None

    provider_request_retries: int = Field(default=3, ge=0)
    provider_retry_base_delay_ms: int = Field(default=1000, gt=0)

    # Chunking
    chunk_min_tokens: int = Field(default=300, ge=1)
    chunk_max_tokens: int = Field(default=800, ge=1)

    # Retrieval
    qa_top_k: int = Field(default=5, ge=1, le=100)
    qa_similarity_threshold: float = 0.75
    qa_temperature: float = 0.2

    # Run artifacts
    vector_cache_path: str = "data/vector-cache.json"
    vectorize_log_path: str = "logs/vectorize-last-run.json"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("qa_similarity_threshold")
    @classmethod
    def clamp_threshold(cls, v: float) -> float:
        return min(1.0, max(0.0, v))

    @field_validator("confluence_space_key", "pinecone_host", "pinecone_environment")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


settings = Settings()
