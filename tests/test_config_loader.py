"""Tests for submitter profile loading."""

import json

import pytest

from edi.config_loader import ConfigValidationError, load_submitter_config, parse_submitter_config
from edi.edi_837 import EDI837Config


class TestLoadSubmitterConfig:
    """Test cases for load_submitter_config."""

    def test_yaml_nested_under_submitter(self, tmp_path):
        path = tmp_path / "submitter.yaml"
        path.write_text(
            "submitter:\n"
            "  sender_id: '123456789'\n"
            "  receiver_id: CLEARINGHOUSE\n"
            "  submitter_name: ACME CHIROPRACTIC\n"
            "  submitter_id: '123456789'\n"
            "  usage_indicator: t\n"
            "  submitter_contact_phone: '5551234567'\n"
        )
        config = load_submitter_config(path)
        assert isinstance(config, EDI837Config)
        assert config.sender_id == "123456789"
        assert config.submitter_name == "ACME CHIROPRACTIC"
        assert config.usage_indicator == "T"
        assert config.submitter_contact_phone == "5551234567"

    def test_json_flat(self, tmp_path):
        path = tmp_path / "submitter.json"
        path.write_text(
            json.dumps(
                {
                    "sender_id": "S1",
                    "receiver_id": "R1",
                    "submitter_name": "N1",
                    "submitter_id": "S1",
                    "app_receiver_id": "R1-APP",
                }
            )
        )
        config = load_submitter_config(str(path))
        assert config.usage_indicator == "P"
        assert config.application_sender == "S1"
        assert config.application_receiver == "R1-APP"

    def test_missing_required_fields(self, tmp_path):
        path = tmp_path / "submitter.yml"
        path.write_text("sender_id: S1\nusage_indicator: X\n")
        with pytest.raises(ConfigValidationError) as exc_info:
            load_submitter_config(path)
        fields = {error["field"] for error in exc_info.value.errors}
        assert fields == {"receiver_id", "submitter_name", "submitter_id", "usage_indicator"}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("submitter: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="Invalid YAML"):
            load_submitter_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_submitter_config(tmp_path / "nope.yaml")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "submitter.ini"
        path.write_text("[submitter]\n")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_submitter_config(path)


class TestParseSubmitterConfig:
    def test_unknown_keys_are_ignored(self):
        config = parse_submitter_config(
            {
                "sender_id": "S1",
                "receiver_id": "R1",
                "submitter_name": "N1",
                "submitter_id": "S1",
                "favorite_color": "blue",
            }
        )
        assert config.sender_id == "S1"

    def test_not_a_mapping(self):
        with pytest.raises(ConfigValidationError, match="must be a mapping"):
            parse_submitter_config(["sender_id"])
