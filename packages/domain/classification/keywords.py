"""
Keyword Loader - FODMAP keyword/synonym lists from YAML

Lists are configuration data; the rule-based classifier never hardcodes terms.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import structlog
import yaml

from packages.domain.classification.exceptions import KeywordConfigError

logger = structlog.get_logger()


@dataclass(frozen=True)
class KeywordSet:
    """Keywords for one FODMAP level plus synonym -> canonical keyword"""
    keywords: Tuple[str, ...] = ()
    synonyms: Dict[str, str] = field(default_factory=dict)

    def terms(self) -> List[Tuple[str, str]]:
        """(term, canonical keyword) pairs, keywords first"""
        pairs = [(keyword, keyword) for keyword in self.keywords]
        pairs.extend(self.synonyms.items())
        return pairs


@dataclass(frozen=True)
class KeywordConfig:
    low: KeywordSet
    high: KeywordSet
    ignore: Tuple[str, ...] = ()


def _parse_level(raw: Any, level: str) -> KeywordSet:
    if raw is None:
        return KeywordSet()
    if not isinstance(raw, dict):
        raise KeywordConfigError(f"'{level}' must be a mapping with keywords/synonyms")

    keywords = raw.get("keywords") or []
    synonyms = raw.get("synonyms") or {}
    if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
        raise KeywordConfigError(f"'{level}.keywords' must be a list of strings")
    if not isinstance(synonyms, dict):
        raise KeywordConfigError(f"'{level}.synonyms' must be a mapping")

    synonyms = {str(k): str(v) for k, v in synonyms.items()}
    for synonym, canonical in synonyms.items():
        if canonical not in keywords:
            logger.warning("synonym_canonical_not_listed",
                           level=level,
                           synonym=synonym,
                           canonical=canonical)

    return KeywordSet(keywords=tuple(keywords), synonyms=synonyms)


def parse_keyword_config(data: Dict[str, Any]) -> KeywordConfig:
    """Build a KeywordConfig from an already-loaded mapping"""
    if not isinstance(data, dict):
        raise KeywordConfigError("Keyword config must be a mapping")

    ignore = data.get("ignore") or []
    if not isinstance(ignore, list):
        raise KeywordConfigError("'ignore' must be a list of strings")

    return KeywordConfig(
        low=_parse_level(data.get("low"), "low"),
        high=_parse_level(data.get("high"), "high"),
        ignore=tuple(str(token) for token in ignore),
    )


def load_keyword_config(path: str | Path) -> KeywordConfig:
    """
    Load keyword lists from a YAML file.

    Raises:
        KeywordConfigError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise KeywordConfigError(f"Keyword file not found: {path}") from e
    except yaml.YAMLError as e:
        raise KeywordConfigError(f"Invalid YAML in {path}: {e}") from e

    config = parse_keyword_config(data)

    logger.info("keyword_config_loaded",
                path=str(path),
                low_terms=len(config.low.terms()),
                high_terms=len(config.high.terms()),
                ignore_tokens=len(config.ignore))

    return config
