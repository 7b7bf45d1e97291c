from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
MAX_TEXTS_PER_EMBEDDING_CALL = 100  # provider hard limit per request

PROFILE_REFRESH_INTERVAL_DAYS = 7
POLLER_USER_REFRESH_S = 300.0
IMAGE_DOWNLOAD_BATCH = 10

# library_type keys in the virtual_libraries table
MOVIE_RECS_LIBRARY = "movie-recs"
SERIES_RECS_LIBRARY = "series-recs"
CONTINUE_WATCHING_LIBRARY = "continue-watching"


class MarqueeSettings(BaseSettings):
    app_name: str = "Marquee Worker"
    log_level: str = "INFO"
    # storage
    database_url: str = "sqlite:///marquee.db"
    # media server
    media_server_type: Literal["emby", "jellyfin"] = "emby"
    media_server_url: str = "http://localhost:8096"
    media_server_api_key: str | None = None
    media_server_timeout_s: float = 30.0
    # embeddings
    openai_api_key: str | None = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_batch_size: int = Field(default=100, ge=1, le=MAX_TEXTS_PER_EMBEDDING_CALL)
    embedding_job_batch_size: int = Field(default=25, ge=1)
    rate_limit_backoff_s: float = 60.0
    rate_limit_max_retries: int = 3
    # virtual libraries
    strm_root: Path = Path("/strm")
    library_path_prefix: str = "/strm"  # same directory as seen by the media server
    download_images: bool = False
    use_streaming_url: bool = False
    recommendations_library_name: str = "{{username}}'s Picks"
    series_recommendations_library_name: str = "{{username}}'s Series Picks"
    recommendations_interval_hours: int = 24
    embeddings_interval_hours: int = 6
    # continue watching
    continue_watching_enabled: bool = True
    continue_watching_poll_interval_s: float = 60.0
    continue_watching_library_name: str = "{{username}}'s Continue Watching"
    continue_watching_excluded_library_ids: list[str] = Field(default_factory=list)
    # env config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
