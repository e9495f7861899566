"""Schemas for the content a chat model writes about a Cypher."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator


class CypherWriteup(BaseModel):
  """Name, lore and art direction for one Cypher.

  Fields the model leaves out or blank stay None so callers can fill them from defaults.
  """

  model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

  description: StrictStr | None = None
  artist_prompt: StrictStr | None = Field(default=None, alias="artistPrompt")
  name: StrictStr | None = None
  lore: StrictStr | None = None

  @field_validator("description", "artist_prompt", "name", "lore")
  @classmethod
  def _blank_to_none(cls, value: str | None) -> str | None:
    return value or None
