"""Trait rolling and content generation for Cyphers."""

from __future__ import annotations

import hashlib
import json
import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Final, Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError

from mint_engine.config import Settings
from mint_engine.jobs.models import RARITY_TIERS, RarityTier, Traits
from mint_engine.schema.generation import CypherWriteup

logger = logging.getLogger(__name__)

COLLECTION_NAME: Final[str] = "The Cyphers"
OPENROUTER_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"

# Percent weights; they sum to 100.
RARITY_WEIGHTS: Final[dict[RarityTier, int]] = {"LEGENDARY": 1, "EPIC": 5, "RARE": 15, "COMMON": 79}

RARITY_ROLES: Final[dict[RarityTier, tuple[str, ...]]] = {
  "LEGENDARY": ("Genesis Coder", "Manifesto Signer", "Root Key Holder"),
  "EPIC": ("Protocol Maintainer", "Infosec Specialist", "Zero-Day Hunter"),
  "RARE": ("Node Runner", "Ghost Identity", "Relay Operator"),
  "COMMON": ("Power User", "Anon", "Privacy Advocate", "Cipher Agent"),
}

MATERIALS: Final[dict[RarityTier, tuple[str, ...]]] = {
  "LEGENDARY": ("Gold Chrome", "Platinum", "Holographic Gold"),
  "EPIC": ("Silver Chrome", "Gunmetal", "Mercury"),
  "RARE": ("Steel", "Matte Black", "Brushed Titanium"),
  "COMMON": ("Chrome Black", "Classic Chrome", "Dark Aluminum"),
}

MASK_TYPES: Final[dict[RarityTier, tuple[str, ...]]] = {
  "LEGENDARY": ("Full Encryption Plate", "Genesis Visor", "Holographic Matrix"),
  "EPIC": ("Geometric Half-Mask", "Circuit-Board Skin", "Neural Interface"),
  "RARE": ("Tactical Goggles", "Face Scarf", "Data Visor"),
  "COMMON": ("Digital Blur", "Pixelation", "Basic Visor"),
}

ENCRYPTION_TYPES: Final[tuple[str, ...]] = ("PGP Block Scroll", "Hex Rain", "Binary Matrix", "AES Cipher Text", "RSA Key Fragments", "SHA-256 Hash Grid")
GLITCH_LEVELS: Final[tuple[str, ...]] = ("None", "Low", "Medium", "High")
BACKGROUNDS: Final[tuple[str, ...]] = ("Binary Rain", "Hex Code Scroll", "Terminal Grid", "Circuit Board", "Network Nodes", "Void Black")
# Neon accents: encryption cyan, relay magenta, terminal green, transport blue, warning orange.
ACCENT_COLORS: Final[tuple[str, ...]] = ("#00D9FF", "#FF00FF", "#00FF00", "#0080FF", "#FF5C00")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class MalformedGenerationError(ValueError):
  """Raised when a generator result cannot be stored as an artifact."""


@dataclass(frozen=True)
class GenerationResult:
  """Traits plus the content derived from them for one token."""

  token_id: int
  traits: Traits
  metadata: dict[str, Any]
  prompt: str
  content_reference: str
  model: str


class CypherGenerator(Protocol):
  """Contract for producing a collectible for a reserved token id."""

  async def generate(self, token_id: int) -> GenerationResult:
    """Roll traits and produce content for `token_id`."""


def determine_rarity(rng: random.Random | None = None) -> RarityTier:
  """Pick a rarity tier using the fixed percentage weights."""
  roll = (rng or random).random() * 100
  cumulative = 0
  for tier, weight in RARITY_WEIGHTS.items():
    cumulative += weight
    if roll < cumulative:
      return tier
  return "COMMON"


def roll_traits(rng: random.Random | None = None) -> Traits:
  """Roll a full trait set; role, mask and material depend on the rarity tier."""
  source = rng or random.Random()
  tier = determine_rarity(source)
  return Traits(
    rarity_tier=tier,
    rarity_role=source.choice(RARITY_ROLES[tier]),
    mask_type=source.choice(MASK_TYPES[tier]),
    material_type=source.choice(MATERIALS[tier]),
    encryption_type=source.choice(ENCRYPTION_TYPES),
    glitch_level=source.choice(GLITCH_LEVELS),
    background_style=source.choice(BACKGROUNDS),
    accent_color=source.choice(ACCENT_COLORS),
  )


def build_prompt(traits: Traits, token_id: int, max_supply: int) -> str:
  """Describe the portrait an image model should render for these traits."""
  return (
    "Create a highly detailed digital portrait of a Cypherpunk identity avatar.\n\n"
    f'Subject: Cypher #{token_id}, a "{traits.rarity_role}" from a collection of {max_supply:,} encrypted identities.\n'
    f"Mask: {traits.mask_type} made of {traits.material_type}, liquid chrome with realistic metallic reflections.\n"
    f"Background: {traits.background_style} with {traits.accent_color} neon accents.\n"
    f"Overlay: {traits.encryption_type}, subtle cryptographic symbols floating in front of the figure.\n"
    f"Glitch: {traits.glitch_level} RGB chromatic aberration and scan lines.\n"
    "Style: dark, high-contrast cyberpunk concept art inspired by the 1993 Cypherpunk Manifesto; "
    "portrait orientation, centered, single character, no text overlays."
  )


def build_metadata(token_id: int, traits: Traits, *, name: str, lore: str, model: str, max_supply: int) -> dict[str, Any]:
  """Assemble the public metadata document for an artifact."""
  return {
    "name": name,
    "description": lore,
    "tokenId": token_id,
    "attributes": [
      {"trait_type": "Rarity Tier", "value": traits.rarity_tier},
      {"trait_type": "Role", "value": traits.rarity_role},
      {"trait_type": "Mask Type", "value": traits.mask_type},
      {"trait_type": "Material", "value": traits.material_type},
      {"trait_type": "Encryption", "value": traits.encryption_type},
      {"trait_type": "Glitch Level", "value": traits.glitch_level},
      {"trait_type": "Background", "value": traits.background_style},
      {"trait_type": "Accent Color", "value": traits.accent_color},
    ],
    "generatedBy": model,
    "collection": COLLECTION_NAME,
    "totalSupply": max_supply,
  }


def canonical_json(document: dict[str, Any]) -> str:
  """Serialize with sorted keys and no whitespace so equal documents hash equally."""
  return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_reference(metadata: dict[str, Any]) -> str:
  return "sha256:" + hashlib.sha256(canonical_json(metadata).encode("utf-8")).hexdigest()


def parse_model_reply(text: str, traits: Traits, token_id: int, prompt: str) -> CypherWriteup:
  """Validate the JSON object in a chat reply, filling missing or invalid fields from defaults."""
  fallback = CypherWriteup(description=text.strip(), artist_prompt=prompt, name=f"Cypher #{token_id}", lore=f"A {traits.rarity_role} of the Cypherpunk resistance.")
  match = _JSON_OBJECT.search(text)
  if match is None:
    logger.warning("Generator reply had no JSON object token_id=%s; using fallback content", token_id)
    return fallback
  try:
    reply = CypherWriteup.model_validate_json(match.group(0))
  except ValidationError as exc:
    logger.warning("Generator reply failed validation token_id=%s errors=%s; using fallback content", token_id, exc.error_count())
    return fallback
  return fallback.model_copy(update=reply.model_dump(exclude_none=True))


def validate_generation(result: GenerationResult, token_id: int) -> None:
  """Raise MalformedGenerationError if the result cannot back an artifact for `token_id`."""
  if result.token_id != token_id:
    raise MalformedGenerationError(f"generator returned token {result.token_id} for token {token_id}")
  if result.traits.rarity_tier not in RARITY_TIERS:
    raise MalformedGenerationError(f"unknown rarity tier {result.traits.rarity_tier!r}")
  if not isinstance(result.metadata, dict) or not str(result.metadata.get("name") or "").strip():
    raise MalformedGenerationError("metadata is missing a name")
  if not result.content_reference.startswith("sha256:"):
    raise MalformedGenerationError("content reference is not a sha256 digest")


class TemplateCypherGenerator:
  """Generator that names Cyphers from their traits without calling a model."""

  model = "template"

  def __init__(self, *, max_supply: int, rng: random.Random | None = None) -> None:
    self._max_supply = max_supply
    self._rng = rng

  async def generate(self, token_id: int) -> GenerationResult:
    traits = roll_traits(self._rng)
    prompt = build_prompt(traits, token_id, self._max_supply)
    metadata = build_metadata(token_id, traits, name=f"Cypher #{token_id}", lore=f"A {traits.rarity_role} of the Cypherpunk resistance.", model=self.model, max_supply=self._max_supply)
    return GenerationResult(token_id=token_id, traits=traits, metadata=metadata, prompt=prompt, content_reference=content_reference(metadata), model=self.model)


class LlmCypherGenerator:
  """Generator that asks an OpenAI-compatible chat model (OpenRouter) for name, lore and art prompt."""

  def __init__(self, *, api_key: str, model: str, max_supply: int, base_url: str | None = None, rng: random.Random | None = None) -> None:
    self.model = model
    self._max_supply = max_supply
    self._rng = rng
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or OPENROUTER_BASE_URL)

  async def generate(self, token_id: int) -> GenerationResult:
    traits = roll_traits(self._rng)
    prompt = build_prompt(traits, token_id, self._max_supply)
    logger.info("Generating Cypher token_id=%s rarity=%s role=%s", token_id, traits.rarity_tier, traits.rarity_role)

    request = (
      "You are an expert concept artist creating a unique Cypherpunk NFT character.\n\n"
      f"{prompt}\n\n"
      "Provide a detailed visual description (200-300 words), a shorter artist prompt for an image model (50-100 words), "
      "a unique name for this Cypher, and a 2-3 sentence lore snippet.\n"
      "Respond with JSON using the keys: description, artistPrompt, name, lore."
    )
    response = await self._client.chat.completions.create(model=self.model, max_tokens=2048, messages=[{"role": "user", "content": request}])
    text = response.choices[0].message.content if response.choices else None
    if not text:
      raise MalformedGenerationError("model returned an empty reply")

    parsed = parse_model_reply(text, traits, token_id, prompt)
    metadata = build_metadata(token_id, traits, name=parsed.name, lore=parsed.lore, model=self.model, max_supply=self._max_supply)
    logger.info("Cypher generated token_id=%s name=%s", token_id, parsed.name)
    return GenerationResult(token_id=token_id, traits=traits, metadata=metadata, prompt=parsed.artist_prompt, content_reference=content_reference(metadata), model=self.model)


def build_generator(settings: Settings) -> CypherGenerator:
  """Use the chat model when an OpenRouter key is configured, otherwise name from templates."""
  if settings.openrouter_api_key:
    return LlmCypherGenerator(api_key=settings.openrouter_api_key, model=settings.generator_model, max_supply=settings.max_supply)
  logger.warning("OPENROUTER_API_KEY is not set; Cyphers will be generated from templates.")
  return TemplateCypherGenerator(max_supply=settings.max_supply)
