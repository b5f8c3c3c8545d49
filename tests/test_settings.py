"""Tests for catalai.settings — TOML engine config loading."""

from pathlib import Path

import pytest

from catalai.schemas.config import DEFAULT_CATEGORIES, EngineConfig
from catalai.settings import (
    CONFIG_DIR,
    feedback_db_path,
    load_engine_config,
    resolve_state_dir,
)


class TestLoadEngineConfig:
    def test_loads_packaged_defaults(self):
        config = load_engine_config()
        assert config.categories == DEFAULT_CATEGORIES
        assert config.routing.manual_review_below == 0.5
        assert config.routing.clarify_up_to == 0.90
        assert config.routing.marginal_clarify_up_to == 0.92
        assert config.quality.poor_max_words == 20
        assert config.quality.good_min_words == 50
        assert config.analysis.min_support == 3
        assert config.validation.sample_fraction == 0.10
        assert config.validation.min_sample == 10
        assert config.validation.max_sample == 1000
        assert config.provider.model == "gpt-4o-mini"

    def test_packaged_defaults_match_model_defaults(self):
        loaded = load_engine_config(CONFIG_DIR / "defaults.toml")
        defaults = EngineConfig()
        assert loaded.routing == defaults.routing
        assert loaded.quality == defaults.quality
        assert loaded.analysis == defaults.analysis
        assert loaded.validation == defaults.validation

    def test_missing_sections_fall_back(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text("[analysis]\nmin_support = 5\n", encoding="utf-8")
        config = load_engine_config(path)
        assert config.analysis.min_support == 5
        assert config.analysis.batch_size == 100
        assert config.routing.clarify_up_to == 0.90

    def test_custom_categories(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text('[categories]\norder = ["Manual", "Automated"]\n', encoding="utf-8")
        assert load_engine_config(path).categories == ("Manual", "Automated")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "nope.toml")

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text("[routing]\nmanual_review_below = 1.5\n", encoding="utf-8")
        with pytest.raises(ValueError, match=r"Invalid \[routing\]"):
            load_engine_config(path)

    def test_section_must_be_table(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text('quality = "high"\n', encoding="utf-8")
        with pytest.raises(ValueError, match="must be a table"):
            load_engine_config(path)

    def test_empty_category_order(self, tmp_path):
        path = tmp_path / "engine.toml"
        path.write_text("[categories]\norder = []\n", encoding="utf-8")
        with pytest.raises(ValueError, match="non-empty list"):
            load_engine_config(path)


class TestPaths:
    def test_state_dir_override(self, tmp_path):
        assert resolve_state_dir(EngineConfig(), tmp_path) == tmp_path

    def test_state_dir_expands_home(self):
        resolved = resolve_state_dir(EngineConfig())
        assert resolved == Path("~/.catalai").expanduser()

    def test_relative_feedback_db_anchored_at_state_dir(self, tmp_path):
        assert feedback_db_path(EngineConfig(), tmp_path) == tmp_path / "feedback.db"

    def test_absolute_feedback_db_kept(self, tmp_path):
        config = EngineConfig.model_validate(
            {"storage": {"feedback_db": str(tmp_path / "elsewhere.db")}},
        )
        assert feedback_db_path(config, Path("/unused")) == tmp_path / "elsewhere.db"
