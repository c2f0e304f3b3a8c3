from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


def find_env_file():
    """Find a .env file for local development, if any"""
    possible_paths = [
        Path(__file__).parent / '.env',
        Path.cwd() / '.env',
    ]
    for p in possible_paths:
        if p.exists():
            return str(p)
    return None  # fall back to plain environment variables


class Settings(BaseSettings):
    project_name: str = 'Smart Study API'

    # Database
    database_url: str = 'mongodb://localhost:27017'
    database_name: str = 'smart_study'

    # Auth
    jwt_secret: str = ''
    jwt_algorithm: str = 'HS256'
    token_expire_days: int = 7

    # AI provider (Groq)
    groq_api_key: str = ''
    groq_model: str = Field(
        default='llama-3.1-8b-instant',
        validation_alias=AliasChoices('GROQ_MODEL', 'LLM_GROQ_CHAT_MODEL'),
    )
    ai_timeout_seconds: float = 30.0
    explanation_concurrency: int = 8

    # OCR provider (OCR.space)
    ocr_space_api_key: str = ''
    ocr_space_url: str = 'https://api.ocr.space/parse/image'
    ocr_timeout_seconds: float = 60.0
    max_upload_mb: int = 10

    # CORS - comma separated origins or "*" for all
    cors_origins: str = '*'
    log_level: str = 'INFO'

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding='utf-8',
        extra='ignore',
    )

    @property
    def cors_origin_list(self) -> List[str]:
        if self.cors_origins.strip() == '*':
            return ['*']
        return [o.strip() for o in self.cors_origins.split(',') if o.strip()]

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
