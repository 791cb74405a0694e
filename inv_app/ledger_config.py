from __future__ import annotations

import configparser
import json
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class TicketConfig(BaseModel):
    prefix: str = "Auto-Ticket: "
    min_value: int = 100000
    max_value: int = 999999

    @model_validator(mode="after")
    def _check_range(self) -> "TicketConfig":
        if self.min_value > self.max_value:
            raise ValueError("tickets.min_value must be <= tickets.max_value")
        return self


class NotesConfig(BaseModel):
    moved_to: str = "Moved TO a Location"
    moved_from: str = "Moved FROM a Location"
    removed_from: str = "Removed FROM a Location"
    adjusted: str = "Quantity adjusted"


class MaterialsConfig(BaseModel):
    types: List[str] = Field(
        default_factory=lambda: [
            "CARDS (PVC)",
            "CARDS (METAL)",
            "CHIPS",
            "CARRIERS",
            "ENVELOPES",
            "INSERTS",
            "LABELS",
            "OTHER",
        ]
    )
    # Types tracked in the vault rather than the warehouse floor.
    vault_types: List[str] = Field(
        default_factory=lambda: ["CARDS (PVC)", "CARDS (METAL)", "CHIPS"]
    )


class LedgerConfig(BaseModel):
    tickets: TicketConfig = Field(default_factory=TicketConfig)
    notes: NotesConfig = Field(default_factory=NotesConfig)
    materials: MaterialsConfig = Field(default_factory=MaterialsConfig)


def load_ledger_config(path: Optional[str] = None) -> LedgerConfig:
    """Load the ledger configuration from an INI (or JSON) file.

    The path defaults to ``LEDGER_CONFIG_PATH``; a missing file yields the
    built-in defaults.
    """
    cfg_path = Path(path or os.getenv("LEDGER_CONFIG_PATH", "inv_app/ledger_config.conf"))
    if not cfg_path.exists():
        return LedgerConfig()

    if cfg_path.suffix.lower() == ".json":
        data = json.loads(cfg_path.read_text(encoding="utf-8"))
        return LedgerConfig.model_validate(data)

    parser = configparser.ConfigParser()
    parser.read(cfg_path, encoding="utf-8")

    def get(section: str, key: str, default: str) -> str:
        # Values may carry meaningful trailing spaces (ticket prefix), so only
        # surrounding quotes are stripped.
        raw = parser.get(section, key, fallback=default)
        if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
            raw = raw[1:-1]
        return raw

    def get_int(section: str, key: str, default: int) -> int:
        return parser.getint(section, key, fallback=default)

    def get_list(section: str, key: str, default: List[str]) -> List[str]:
        raw = get(section, key, "")
        if not raw.strip():
            return list(default)
        parts = [p.strip() for p in raw.split(",")]
        return [p for p in parts if p]

    defaults = LedgerConfig()
    return LedgerConfig(
        tickets=TicketConfig(
            prefix=get("tickets", "prefix", defaults.tickets.prefix),
            min_value=get_int("tickets", "min_value", defaults.tickets.min_value),
            max_value=get_int("tickets", "max_value", defaults.tickets.max_value),
        ),
        notes=NotesConfig(
            moved_to=get("notes", "moved_to", defaults.notes.moved_to).strip(),
            moved_from=get("notes", "moved_from", defaults.notes.moved_from).strip(),
            removed_from=get("notes", "removed_from", defaults.notes.removed_from).strip(),
            adjusted=get("notes", "adjusted", defaults.notes.adjusted).strip(),
        ),
        materials=MaterialsConfig(
            types=get_list("materials", "types", defaults.materials.types),
            vault_types=get_list("materials", "vault_types", defaults.materials.vault_types),
        ),
    )
