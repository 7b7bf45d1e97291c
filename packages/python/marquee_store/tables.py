from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("provider_user_id", String, nullable=False, unique=True),
    Column("username", String, nullable=False),
    Column("display_name", String),
    Column("is_enabled", Boolean, nullable=False, default=True),
)

user_preferences = Table(
    "user_preferences",
    metadata,
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("excluded_library_ids", JSON, nullable=False, default=list),
    Column("include_watched", Boolean, nullable=False, default=False),
    Column("dislike_behavior", String, nullable=False, default="exclude"),  # exclude | ignore
    Column("recommendation_overrides", JSON, nullable=False, default=dict),  # {"movie": {...}, "series": {...}}
)

movies = Table(
    "movies",
    metadata,
    Column("id", String, primary_key=True),
    Column("provider_item_id", String, nullable=False, unique=True),
    Column("title", String, nullable=False),
    Column("original_title", String),
    Column("year", Integer),
    Column("overview", Text),
    Column("tagline", Text),
    Column("genres", JSON, nullable=False, default=list),
    Column("keywords", JSON, nullable=False, default=list),
    Column("directors", JSON, nullable=False, default=list),
    Column("cast_members", JSON, nullable=False, default=list),
    Column("studios", JSON, nullable=False, default=list),
    Column("community_rating", Float),
    Column("critic_rating", Float),
    Column("content_rating", String),
    Column("runtime_minutes", Integer),
    Column("tmdb_id", String),
    Column("imdb_id", String),
    Column("path", Text),
    Column("poster_url", Text),
    Column("backdrop_url", Text),
    Column("library_id", String),
)

series = Table(
    "series",
    metadata,
    Column("id", String, primary_key=True),
    Column("provider_item_id", String, nullable=False, unique=True),
    Column("title", String, nullable=False),
    Column("original_title", String),
    Column("year", Integer),
    Column("end_year", Integer),
    Column("overview", Text),
    Column("tagline", Text),
    Column("genres", JSON, nullable=False, default=list),
    Column("keywords", JSON, nullable=False, default=list),
    Column("studios", JSON, nullable=False, default=list),
    Column("network", String),
    Column("status", String),
    Column("community_rating", Float),
    Column("content_rating", String),
    Column("total_seasons", Integer),
    Column("total_episodes", Integer),
    Column("tmdb_id", String),
    Column("imdb_id", String),
    Column("path", Text),
    Column("poster_url", Text),
    Column("backdrop_url", Text),
    Column("library_id", String),
)

episodes = Table(
    "episodes",
    metadata,
    Column("id", String, primary_key=True),
    Column("series_id", String, ForeignKey("series.id", ondelete="CASCADE"), nullable=False),
    Column("provider_item_id", String, nullable=False, unique=True),
    Column("season_number", Integer),
    Column("episode_number", Integer),
    Column("title", String),
    Column("path", Text),
)

watch_history = Table(
    "watch_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("media_type", String, nullable=False),  # movie | episode
    Column("movie_id", String, ForeignKey("movies.id", ondelete="CASCADE")),
    Column("episode_id", String, ForeignKey("episodes.id", ondelete="CASCADE")),
    Column("play_count", Integer, nullable=False, default=1),
    Column("is_favorite", Boolean, nullable=False, default=False),
    Column("last_played_at", DateTime(timezone=True)),
)

user_ratings = Table(
    "user_ratings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("movie_id", String, ForeignKey("movies.id", ondelete="CASCADE")),
    Column("series_id", String, ForeignKey("series.id", ondelete="CASCADE")),
    Column("rating", Float, nullable=False),
)


def _embedding_table(name: str, item_table: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("item_id", String, ForeignKey(f"{item_table}.id", ondelete="CASCADE"), nullable=False),
        Column("model", String, nullable=False),
        Column("embedding", JSON, nullable=False),
        Column("canonical_text", Text),
        Column("created_at", DateTime(timezone=True)),
        UniqueConstraint("item_id", "model"),
    )


movie_embeddings = _embedding_table("movie_embeddings", "movies")
series_embeddings = _embedding_table("series_embeddings", "series")

user_taste_profiles = Table(
    "user_taste_profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("media_type", String, nullable=False),  # movie | series
    Column("embedding", JSON),
    Column("embedding_model", String),
    Column("auto_updated_at", DateTime(timezone=True)),
    Column("user_modified_at", DateTime(timezone=True)),
    Column("is_locked", Boolean, nullable=False, default=False),
    Column("refresh_interval_days", Integer, nullable=False, default=7),
    UniqueConstraint("user_id", "media_type"),
)

continue_watching = Table(
    "continue_watching",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("provider_item_id", String, nullable=False),
    Column("identity_key", String, nullable=False),
    Column("media_type", String, nullable=False),  # movie | episode
    Column("title", String, nullable=False),
    Column("year", Integer),
    Column("series_id", String),
    Column("series_name", String),
    Column("season_number", Integer),
    Column("episode_number", Integer),
    Column("tmdb_id", String),
    Column("imdb_id", String),
    Column("progress_percent", Float, nullable=False, default=0.0),
    Column("playback_position_ticks", BigInteger, nullable=False, default=0),
    Column("runtime_ticks", BigInteger, nullable=False, default=0),
    Column("last_played_at", DateTime(timezone=True)),
    Column("source_library_id", String),
    Column("source_library_name", String),
    Column("path", Text),
    Column("updated_at", DateTime(timezone=True)),
    UniqueConstraint("user_id", "provider_item_id"),
)

recommendation_runs = Table(
    "recommendation_runs",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("media_type", String, nullable=False),
    Column("status", String, nullable=False),  # running | completed | failed
    Column("candidates_count", Integer, nullable=False, default=0),
    Column("selected_count", Integer, nullable=False, default=0),
    Column("duration_ms", Integer),
    Column("error", Text),
    Column("config", JSON),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("finished_at", DateTime(timezone=True)),
)

recommendation_candidates = Table(
    "recommendation_candidates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("run_id", String, ForeignKey("recommendation_runs.id", ondelete="CASCADE"), nullable=False),
    Column("item_id", String, nullable=False),
    Column("rank", Integer, nullable=False),
    Column("is_selected", Boolean, nullable=False, default=False),
    Column("selected_rank", Integer),
    Column("similarity", Float),
    Column("novelty", Float),
    Column("rating_score", Float),
    Column("diversity_boost", Float),
    Column("base_score", Float),
    Column("final_score", Float),
)

virtual_libraries = Table(
    "virtual_libraries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("library_type", String, nullable=False),  # movie-recs | series-recs | continue-watching
    Column("name", String, nullable=False),
    Column("path", Text, nullable=False),
    Column("provider_library_id", String),
    Column("provider_library_guid", String),
    Column("created_at", DateTime(timezone=True)),
    UniqueConstraint("user_id", "library_type"),
)
