"""
Convert spreadsheet exports into seed card set JSON.

The CSV header names the card fields with slash paths; ``ID``, ``front/title``
and ``back/title`` are required, the icon and description columns are optional
and unknown columns are ignored. Rows that fail validation are reported and
skipped, the rest are written in the format ``JsonSeedLoader`` reads.
"""

import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError as PydanticValidationError

from flashsync.domain.errors import CardSetError

from .json_loader import FlashcardModel

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("ID", "front/title", "back/title")
OPTIONAL_COLUMNS = ("front/icon", "front/description", "back/icon", "back/description")


@dataclass
class ConversionReport:
    total_rows: int = 0
    cards: list[FlashcardModel] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def converted(self) -> int:
        return len(self.cards)


def _cell(row: dict, column: str) -> str:
    value = row.get(column)
    return value.strip() if isinstance(value, str) else ""


def convert_rows(headers: list[str], rows: Iterable[dict]) -> ConversionReport:
    """
    Validate CSV rows and turn them into flashcard models.

    Row numbers in messages count data rows from 1.

    Raises:
        ValueError: if a required column is missing from ``headers``.
    """
    present = {h.strip() for h in headers if h}
    missing = [c for c in REQUIRED_COLUMNS if c not in present]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    report = ConversionReport()
    seen: set[str] = set()
    for number, raw in enumerate(rows, start=1):
        report.total_rows += 1
        row = {k.strip(): v for k, v in raw.items() if isinstance(k, str)}
        values = {c: _cell(row, c) for c in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}

        empty = [c for c in REQUIRED_COLUMNS if not values[c]]
        if empty:
            report.errors.append(f"Row {number}: empty required fields ({', '.join(empty)})")
            continue
        if values["ID"] in seen:
            report.errors.append(f"Row {number}: duplicate ID {values['ID']!r}")
            continue

        try:
            card = FlashcardModel(
                id=values["ID"],
                front={
                    "icon": values["front/icon"],
                    "title": values["front/title"],
                    "description": values["front/description"],
                },
                back={
                    "icon": values["back/icon"],
                    "title": values["back/title"],
                    "description": values["back/description"],
                },
            )
        except PydanticValidationError as e:
            report.errors.append(f"Row {number}: {e.error_count()} invalid fields")
            continue

        missing_optional = [c for c in OPTIONAL_COLUMNS if c != "front/icon" and not values[c]]
        if missing_optional:
            report.warnings.append(f"Row {number}: missing {', '.join(missing_optional)}")

        seen.add(card.id)
        report.cards.append(card)

    return report


def convert_csv(src: Path, dest: Path) -> ConversionReport:
    """
    Read ``src`` and write the converted card set to ``dest``.

    Nothing is written when no row converts.

    Raises:
        CardSetError: if ``src`` is missing, unreadable or lacks required columns.
    """
    if not src.is_file():
        raise CardSetError("CARD_SET_NOT_FOUND", src.stem, src.name)

    try:
        with open(src, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f, skipinitialspace=True)
            headers = list(reader.fieldnames or [])
            logger.info(f"Detected {len(headers)} columns in {src.name}: {', '.join(headers)}")
            report = convert_rows(headers, (row for row in reader if any(row.values())))
    except OSError as e:
        raise CardSetError("CARD_SET_LOAD_FAILED", src.stem, src.name, str(e)) from e
    except (ValueError, csv.Error) as e:
        logger.error(f"Cannot convert {src}: {e}")
        raise CardSetError("CARD_SET_INVALID_DATA", src.stem, src.name, str(e)) from e

    logger.info(
        f"Converted {report.converted}/{report.total_rows} rows from {src.name} "
        f"({len(report.warnings)} warnings, {len(report.errors)} errors)"
    )
    if report.cards:
        dest.parent.mkdir(parents=True, exist_ok=True)
        payload = [card.model_dump() for card in report.cards]
        dest.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return report
