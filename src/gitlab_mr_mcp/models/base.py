"""Base model for normalized GitLab data."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class GitLabModel(BaseModel):
    """Base model with common behavior for all normalized GitLab models.

    ``None`` marks a field the source did not supply; ``to_dict`` drops it so
    absent values never surface as placeholders.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
