"""Tests for the model registry."""

import json

from webhook_bridge.core.model_repository import ModelRepository, validate_models


class TestValidateModels:

    def test_valid_entries(self):
        result = validate_models({
            "agent": "https://n8n.example.com/webhook/agent",
            "local": "http://localhost:5678/webhook/local",
        })
        assert list(result.models) == ["agent", "local"]
        assert result.warnings == []

    def test_invalid_entries_skipped(self):
        result = validate_models({
            "good": "https://n8n.example.com/webhook/good",
            "ftp": "ftp://example.com/x",
            "relative": "/webhook/x",
            "number": 42,
            "  ": "https://n8n.example.com/webhook/blank",
        })
        assert list(result.models) == ["good"]
        assert len(result.warnings) == 4

    def test_not_an_object(self):
        result = validate_models(["a", "b"])
        assert result.models == {}
        assert result.warnings == ["Models config must be a JSON object"]


class TestModelRepository:

    def test_lookup(self):
        repo = ModelRepository({"agent": "https://n8n.example.com/webhook/agent"})
        assert repo.get_model_webhook_url("agent") == "https://n8n.example.com/webhook/agent"
        assert repo.get_model_webhook_url("missing") is None
        assert repo.list_models() == ["agent"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text(json.dumps({
            "agent": "https://n8n.example.com/webhook/agent",
            "broken": "not a url",
        }))
        repo = ModelRepository.from_file(str(path))
        assert repo.list_models() == ["agent"]

    def test_missing_file(self, tmp_path):
        assert ModelRepository.from_file(str(tmp_path / "absent.json")).list_models() == []

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text("{not json")
        assert ModelRepository.from_file(str(path)).list_models() == []
