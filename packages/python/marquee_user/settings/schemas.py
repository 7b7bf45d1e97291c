from typing import Any, Literal

from pydantic import BaseModel, Field


class UserPreferences(BaseModel):
    user_id: str
    excluded_library_ids: list[str] = Field(default_factory=list)
    include_watched: bool = False
    dislike_behavior: Literal["exclude", "ignore"] = "exclude"
    # per media kind ("movie" / "series"), merged over the global MediaTypeConfig
    recommendation_overrides: dict[str, dict[str, Any]] = Field(default_factory=dict)
