"""Model id → webhook URL lookup, loaded from a JSON file.

Invalid entries are skipped with warnings instead of failing the whole load.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class LoadResult:
    """Usable models plus the non-fatal problems found while loading them."""
    models: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def validate_models(raw) -> LoadResult:
    """Keep entries whose id is a non-empty string and URL is http(s)."""
    result = LoadResult()
    if not isinstance(raw, dict):
        result.warnings.append("Models config must be a JSON object")
        return result

    for model_id, url in raw.items():
        if not isinstance(model_id, str) or not model_id.strip():
            result.warnings.append(f"Skipping model with invalid id: {model_id!r}")
            continue
        parsed = urlparse(url) if isinstance(url, str) else None
        if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
            result.warnings.append(f"Skipping model '{model_id}': invalid webhook URL")
            continue
        result.models[model_id] = url
    return result


class ModelRepository:
    """In-memory model registry."""

    def __init__(self, models: dict[str, str] | None = None):
        self._models = dict(models or {})

    @classmethod
    def from_file(cls, path: str) -> "ModelRepository":
        file = Path(path)
        if not file.exists():
            logger.warning("models.file_missing", path=path)
            return cls()

        try:
            raw = json.loads(file.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.error("models.invalid_json", path=path, error=str(e))
            return cls()

        result = validate_models(raw)
        for warning in result.warnings:
            logger.warning("models.entry_skipped", path=path, reason=warning)
        logger.info("models.loaded", path=path, count=len(result.models))
        return cls(result.models)

    def get_model_webhook_url(self, model_id: str) -> str | None:
        return self._models.get(model_id)

    def list_models(self) -> list[str]:
        return list(self._models)
