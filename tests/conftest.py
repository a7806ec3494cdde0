"""Pytest configuration and shared fixtures.

This module provides common fixtures and test doubles for the turn
engine test suite: a throwaway SQLite database seeded with a small
campaign, scripted dice, a keyword embedding service and a scripted
chat model.
"""

from __future__ import annotations

import copy
import json
import random
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import pytest

from dm_engine.core.config import EngineSettings, MemorySettings, Settings
from dm_engine.core.exceptions import EmbeddingError
from dm_engine.dm.llm import ChatResponse, ToolCallRequest
from dm_engine.engine.dice import DiceRoller
from dm_engine.models.entities import (
    AbilityScores,
    Campaign,
    CharacterState,
    HiddenObject,
    Location,
    Npc,
)
from dm_engine.models.enums import HiddenObjectType
from dm_engine.storage.database import Database


if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path


# =============================================================================
# Test Doubles
# =============================================================================


class LoadedDice(random.Random):
    """A ``random.Random`` whose ``randint`` returns scripted faces first.

    Once the script runs out it falls back to a fixed-seed stream, so
    tests that only care about some rolls stay reproducible.
    """

    def __init__(self) -> None:
        super().__init__(42)
        self.script: list[int] = []

    def push(self, *faces: int) -> "LoadedDice":
        self.script.extend(faces)
        return self

    def randint(self, a: int, b: int) -> int:
        if self.script:
            face = self.script.pop(0)
            if not a <= face <= b:
                raise AssertionError(f"scripted face {face} outside [{a}, {b}]")
            return face
        return super().randint(a, b)


KEYWORDS = ("dragon", "tavern", "sword", "mira", "goblin", "crypt", "gold", "king")


class KeywordEmbeddings:
    """Embeds text as keyword counts over a tiny fixed vocabulary.

    Texts sharing keywords are similar, texts without common keywords
    are orthogonal and text with no keywords at all embeds to zeros.
    """

    model = "keyword-test"
    dimension = len(KEYWORDS)

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in KEYWORDS]

    def embed_text(self, text: str) -> list[float]:
        return self.embed_texts([text])[0]

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding service unavailable", model_name=self.model)
        return [self._vector(text) for text in texts]


class ScriptedChatClient:
    """Chat model double that replays queued responses.

    Every call records a deep copy of the messages it was given. When
    the queue is empty it narrates ``default_narration``; queued
    exceptions are raised instead of returned.
    """

    def __init__(self, default_narration: str = "The torchlight flickers.") -> None:
        self.default_narration = default_narration
        self.queue: list[ChatResponse | Exception] = []
        self.calls: list[list[dict[str, Any]]] = []
        self.tools_seen: list[list[dict[str, Any]]] = []
        self.repeat: ChatResponse | None = None
        self._next_id = 0

    def call(self, name: str, arguments: dict[str, Any] | str | None = None) -> "ScriptedChatClient":
        """Queue a response requesting a single tool."""
        return self.calls_many((name, arguments))

    def calls_many(self, *requests: tuple[str, dict[str, Any] | str | None]) -> "ScriptedChatClient":
        """Queue one response requesting several tools at once."""
        tool_calls = []
        for name, arguments in requests:
            raw = arguments if isinstance(arguments, str) else json.dumps(arguments or {})
            tool_calls.append(ToolCallRequest(id=f"call_{self._next_id}", name=name, arguments=raw))
            self._next_id += 1
        self.queue.append(ChatResponse(content=None, tool_calls=tool_calls))
        return self

    def narrate(self, text: str | None) -> "ScriptedChatClient":
        self.queue.append(ChatResponse(content=text))
        return self

    def fail_with(self, exc: Exception) -> "ScriptedChatClient":
        self.queue.append(exc)
        return self

    def complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> ChatResponse:
        self.calls.append(copy.deepcopy(messages))
        self.tools_seen.append(tools)
        if self.repeat is not None:
            return self.repeat
        if not self.queue:
            return ChatResponse(content=self.default_narration)
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def system_prompts(self) -> list[str]:
        return [call[0]["content"] for call in self.calls]


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Reset the settings cache before and after each test."""
    from dm_engine.core.config import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings with the default loop cap and goal cadence."""
    return EngineSettings(
        max_tool_iterations=10,
        npc_goal_interval=3,
        npc_goal_increment=10,
        recent_mechanics_limit=10,
        history_limit=10,
    )


@pytest.fixture
def memory_settings() -> MemorySettings:
    """Memory settings sized for the keyword embedding vocabulary."""
    return MemorySettings(
        embedding_dimension=len(KEYWORDS),
        top_k=8,
        similarity_threshold=0.3,
        importance_weight=0.02,
    )


@pytest.fixture
def settings(engine_settings: EngineSettings, memory_settings: MemorySettings) -> Settings:
    return Settings(engine=engine_settings, memory=memory_settings)


# =============================================================================
# Dice and Service Doubles
# =============================================================================


@pytest.fixture
def loaded_dice() -> LoadedDice:
    """Scripted random source; call ``push`` to queue die faces."""
    return LoadedDice()


@pytest.fixture
def roller(loaded_dice: LoadedDice) -> DiceRoller:
    """DiceRoller driven by the scripted random source."""
    return DiceRoller(loaded_dice)


@pytest.fixture
def embedder() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture
def chat() -> ScriptedChatClient:
    return ScriptedChatClient()


# =============================================================================
# Model Factories
# =============================================================================


@pytest.fixture
def make_character() -> Callable[..., CharacterState]:
    """Factory for unsaved characters.

    Returns:
        Callable taking CharacterState overrides; ability scores may be
        given as plain keyword arguments (``dexterity=16``).
    """
    ability_names = set(AbilityScores.model_fields)

    def factory(**overrides: Any) -> CharacterState:
        abilities = {key: overrides.pop(key) for key in list(overrides) if key in ability_names}
        data: dict[str, Any] = {
            "id": 1,
            "campaign_id": 1,
            "name": "Test Rogue",
            "level": 5,
            "abilities": AbilityScores(**abilities),
            "current_hp": 30,
            "max_hp": 44,
            "armor_class": 15,
        }
        data.update(overrides)
        return CharacterState(**data)

    return factory


# =============================================================================
# Database Fixtures
# =============================================================================


@dataclass
class SeededCampaign:
    """Ids and rows of the seeded test campaign."""

    campaign: Campaign
    fighter: CharacterState
    wizard: CharacterState
    crypt: Location
    village: Location
    mira: Npc

    @property
    def id(self) -> int:
        return self.campaign.id


@pytest.fixture
def db(tmp_path: Path) -> Database:
    """Create an empty database in a temporary directory."""
    return Database(tmp_path / "dm_engine_test.db")


@pytest.fixture
def seeded(db: Database) -> SeededCampaign:
    """Seed a campaign owned by ``user-1``.

    Party:
        Thorin, level 5 dwarf fighter: passive perception 14,
            passive investigation 10.
        Elara, level 5 elf wizard: passive perception 12, passive
            investigation 17, slots L1: 4, L2: 3, L3: 2.

    The party starts in the crypt, which hides a trap (DC 12), a secret
    door (DC 15) and a clue nobody can notice passively (DC 20). Mira
    waits there with an open goal at 20%.
    """
    campaign = db.create_campaign("user-1", "The Sunken Crypt", "A gothic delve beneath a drowned chapel.")
    fighter = db.create_character(
        campaign.id,
        "Thorin",
        race="Dwarf",
        character_class="Fighter",
        level=5,
        abilities=AbilityScores(strength=16, dexterity=12, constitution=14, intelligence=10, wisdom=12, charisma=8),
        current_hp=44,
        max_hp=44,
        armor_class=18,
        skills={"athletics": True, "perception": True},
        saving_throws={"strength": True, "constitution": True},
        equipment=["Longsword", "Shield"],
    )
    wizard = db.create_character(
        campaign.id,
        "Elara",
        race="Elf",
        character_class="Wizard",
        level=5,
        abilities=AbilityScores(strength=8, dexterity=14, constitution=12, intelligence=18, wisdom=14, charisma=10),
        current_hp=28,
        max_hp=28,
        armor_class=12,
        skills={"arcana": True, "investigation": True},
        saving_throws={"intelligence": True, "wisdom": True},
        cantrips=["Fire Bolt"],
        spells=["Magic Missile", "Shield", "Fireball"],
        spell_slots={1: 4, 2: 3, 3: 2},
    )
    crypt = db.create_location(
        campaign.id,
        "Crypt Entrance",
        description="Damp stone steps descend into darkness.",
        location_type="dungeon",
        hidden_objects=[
            HiddenObject(name="Pressure Plate", dc=12, type=HiddenObjectType.TRAP, description="A loose flagstone"),
            HiddenObject(name="Loose Brick", dc=15, type=HiddenObjectType.SECRET_DOOR),
            HiddenObject(name="Ancient Sigil", dc=20, type=HiddenObjectType.CLUE),
        ],
    )
    village = db.create_location(campaign.id, "Saltmarsh Village", description="Fishing huts on stilts.")
    mira = db.create_npc(
        campaign.id,
        "Mira",
        description="A nervous acolyte",
        personality="Whispers, avoids eye contact",
        npc_type="quest_giver",
        current_goal="Find the lost relic",
        goal_progress=20,
        location_id=crypt.id,
    )
    db.update_game_state(campaign.id, current_location_id=crypt.id)
    db.mark_location_visited(crypt.id)
    return SeededCampaign(
        campaign=campaign,
        fighter=fighter,
        wizard=wizard,
        crypt=crypt,
        village=village,
        mira=mira,
    )
