"""
Seed card sets stored as JSON files.

Each file is ``{data_dir}/{card_set_id}.json`` and holds an array of cards:

    [{"id": "hsk1-1", "front": {"icon": "", "title": "你好", "description": "nǐ hǎo"},
      "back": {"icon": "", "title": "hello", "description": ""}}]
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from flashsync.domain.errors import CardSetError
from flashsync.domain.models import FlashcardContent, FlashcardData
from flashsync.domain.ports import SeedLoader

logger = logging.getLogger(__name__)


class ContentModel(BaseModel):
    icon: str = ""
    title: str
    description: str = ""


class FlashcardModel(BaseModel):
    id: str
    front: ContentModel
    back: ContentModel


_CARD_LIST = TypeAdapter(list[FlashcardModel])


class JsonSeedLoader(SeedLoader):
    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def path_for(self, card_set_id: str) -> Path:
        name = card_set_id if card_set_id.endswith(".json") else f"{card_set_id}.json"
        return self.data_dir / name

    async def load(self, card_set_id: str) -> list[FlashcardData]:
        path = self.path_for(card_set_id)
        if not path.is_file():
            raise CardSetError("CARD_SET_NOT_FOUND", card_set_id, path.name)

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CardSetError("CARD_SET_LOAD_FAILED", card_set_id, path.name, str(e)) from e

        try:
            models = _CARD_LIST.validate_python(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Invalid card set data in {path}: {e}")
            raise CardSetError("CARD_SET_INVALID_DATA", card_set_id, path.name, str(e)) from e

        if not models:
            raise CardSetError("CARD_SET_EMPTY", card_set_id, path.name)

        logger.info(f"Loaded {len(models)} seed cards from {path.name}")
        return [
            FlashcardData(
                id=m.id,
                front=FlashcardContent(**m.front.model_dump()),
                back=FlashcardContent(**m.back.model_dump()),
            )
            for m in models
        ]
