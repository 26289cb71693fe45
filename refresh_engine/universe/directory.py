"""
Bursa Refresh — Instrument Directory
─────────────────────────────────────
Static universe + market-cap snapshot. The scheduler only ever reads it.

File format (JSON):
  {"instruments": [{"code": "1155", "name": "...", "core": false,
                    "market_cap": "125.8B"}, ...]}

Tiers are attached here via TierClassifier, so callers always get
Instrument(code, tier) and never have to classify themselves.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from refresh_engine.config import Settings, TierThresholds
from refresh_engine.errors import ConfigurationError
from refresh_engine.models import Instrument
from refresh_engine.orchestrator.priority_tiers import (
    TierClassifier, normalise_code, parse_market_cap,
)

log = logging.getLogger("br.directory")

BUNDLED_UNIVERSE = Path(__file__).parent / "data" / "universe.json"


class InstrumentDirectory(ABC):

    @abstractmethod
    def all(self) -> List[Instrument]: ...


class StaticInstrumentDirectory(InstrumentDirectory):
    """In-memory directory. Duplicate codes keep their first entry."""

    def __init__(self, entries: Iterable[dict], classifier: TierClassifier):
        self.classifier = classifier
        seen = set()
        out: List[Instrument] = []
        for e in entries:
            code = normalise_code(str(e.get("code", "")))
            if not code or code in seen:
                continue
            seen.add(code)
            cap = parse_market_cap(e.get("market_cap"))
            out.append(Instrument(
                code=code,
                tier=classifier.classify(code, cap),
                name=e.get("name"),
                market_cap=cap,
                is_core=classifier.is_core(code),
            ))
        self._instruments = out

    def all(self) -> List[Instrument]:
        return list(self._instruments)

    @classmethod
    def from_codes(
        cls,
        codes: Sequence[str],
        core_codes: Sequence[str] = (),
        market_caps: Optional[dict] = None,
        thresholds: Optional[TierThresholds] = None,
    ) -> "StaticInstrumentDirectory":
        caps = market_caps or {}
        return cls(
            [{"code": c, "market_cap": caps.get(c)} for c in codes],
            TierClassifier(core_codes, thresholds),
        )


def load_directory(settings: Settings) -> StaticInstrumentDirectory:
    """Read UNIVERSE_FILE (or the bundled snapshot) and classify every row."""
    path = Path(settings.universe_file) if settings.universe_file else BUNDLED_UNIVERSE
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigurationError(f"Universe file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Universe file is not valid JSON: {path} ({e})")

    entries = raw.get("instruments", []) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ConfigurationError(f"Universe file has no instrument list: {path}")

    core = [e.get("code") for e in entries if isinstance(e, dict) and e.get("core")]
    core.extend(settings.extra_core_codes)
    classifier = TierClassifier(core, settings.thresholds)
    directory = StaticInstrumentDirectory(
        [e for e in entries if isinstance(e, dict)], classifier
    )
    log.info(f"Universe loaded from {path.name}: {len(directory.all())} instruments, "
             f"{len(classifier.core_codes)} core")
    return directory
