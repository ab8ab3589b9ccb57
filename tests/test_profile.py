"""
Tests for CleaningProfile validation and serialization.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from trajclean.core.errors import ConfigError
from trajclean.models.profile import (
    DEFAULT_STAGE_ORDER,
    CleaningProfile,
    ResequencerParams,
    SizeFilterParams,
)


class TestDefaults:
    def test_default_profile_has_all_stages_in_order(self):
        profile = CleaningProfile.default()
        assert tuple(profile.stage_ids) == DEFAULT_STAGE_ORDER
        assert all(s.enabled for s in profile.stages)

    def test_default_parameters(self):
        profile = CleaningProfile.default()
        assert profile.stage("size_filter").parameters.min_size_mb == 10.0
        assert profile.stage("static_start_trimmer").parameters.window_size == 50
        assert profile.stage("anomaly_detector").parameters.threshold_sigma == 2.0
        assert profile.stage("resequencer").parameters.template == "test {number}.csv"


class TestRoundTrip:
    def test_json_round_trip(self, tmp_path):
        profile = CleaningProfile.default().with_stage("anomaly_detector", exclude=True, threshold_sigma=3.0)
        path = tmp_path / "profile.json"
        profile.save(path)

        loaded = CleaningProfile.load(path)
        assert loaded == profile
        assert json.loads(path.read_text())["stages"][6]["parameters"]["threshold_sigma"] == 3.0

    def test_yaml_round_trip(self, tmp_path):
        profile = CleaningProfile.default().with_stage("quaternion_column_remover", enabled=False)
        path = tmp_path / "profile.yaml"
        profile.save(path)

        loaded = CleaningProfile.load(path)
        assert loaded == profile
        assert loaded.stage("quaternion_column_remover").enabled is False

    def test_bare_list_accepted(self):
        profile = CleaningProfile.from_dict([
            {"stage_id": "size_filter", "parameters": {"min_size_mb": 0}},
            {"stage_id": "header_standardizer"},
            {"stage_id": "resequencer", "parameters": {"padding": 2}},
        ])
        assert profile.stage_ids == ["size_filter", "header_standardizer", "resequencer"]
        assert profile.stage("resequencer").parameters.padding == 2

    def test_to_dict_matches_yaml(self):
        profile = CleaningProfile.default()
        assert yaml.safe_load(profile.to_yaml()) == profile.to_dict()


class TestValidation:
    def test_template_without_placeholder(self):
        with pytest.raises(ConfigError, match="template"):
            CleaningProfile.from_stages([{"stage_id": "resequencer", "parameters": {"template": "out.csv"}}])

    def test_template_with_unknown_placeholder(self):
        with pytest.raises(ValidationError):
            ResequencerParams(template="test {n}.csv")
        with pytest.raises(ConfigError):
            CleaningProfile.from_stages([{"stage_id": "resequencer", "parameters": {"template": "{name}_{number}.csv"}}])

    def test_template_with_path_separator(self):
        with pytest.raises(ConfigError, match="path separators"):
            CleaningProfile.from_stages([{"stage_id": "resequencer", "parameters": {"template": "out/{number}.csv"}}])

    def test_negative_size(self):
        with pytest.raises(ConfigError, match="min_size_mb"):
            CleaningProfile.from_stages([{"stage_id": "size_filter", "parameters": {"min_size_mb": -1}}])

    def test_unknown_parameter(self):
        with pytest.raises(ConfigError):
            CleaningProfile.from_stages([{"stage_id": "size_filter", "parameters": {"max_size_mb": 3}}])

    def test_unknown_stage(self):
        with pytest.raises(ConfigError):
            CleaningProfile.from_stages([{"stage_id": "teleporter"}])

    def test_resequencer_must_be_last(self):
        with pytest.raises(ConfigError, match="last"):
            CleaningProfile.from_stages([{"stage_id": "resequencer"}, {"stage_id": "anomaly_detector"}])

    def test_canonical_stage_before_header_standardizer(self):
        with pytest.raises(ConfigError, match="header_standardizer"):
            CleaningProfile.from_stages([{"stage_id": "static_flight_detector"}, {"stage_id": "header_standardizer"}])

    def test_file_stage_after_corpus_stage(self):
        with pytest.raises(ConfigError, match="cannot follow"):
            CleaningProfile.from_stages([{"stage_id": "anomaly_detector"}, {"stage_id": "quaternion_column_remover"}])

    def test_duplicate_stage(self):
        with pytest.raises(ConfigError, match="Duplicate"):
            CleaningProfile.from_stages([{"stage_id": "size_filter"}, {"stage_id": "size_filter"}])

    def test_alias_to_unknown_field(self):
        with pytest.raises(ConfigError, match="aliases"):
            CleaningProfile.from_stages([
                {"stage_id": "header_standardizer", "parameters": {"aliases": {"alt": "altitude"}}}
            ])

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("stages: [unclosed")
        with pytest.raises(ConfigError, match="Malformed"):
            CleaningProfile.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            CleaningProfile.load(tmp_path / "nope.json")


class TestEdits:
    def test_with_stage_returns_new_profile(self):
        profile = CleaningProfile.default()
        stricter = profile.with_stage("size_filter", min_size_mb=25.0)

        assert stricter.stage("size_filter").parameters == SizeFilterParams(min_size_mb=25.0)
        assert profile.stage("size_filter").parameters.min_size_mb == 10.0

    def test_with_stage_invalid_value(self):
        with pytest.raises(ConfigError):
            CleaningProfile.default().with_stage("static_start_trimmer", window_size=0)

    def test_with_unknown_stage(self):
        profile = CleaningProfile.from_stages([{"stage_id": "size_filter"}])
        with pytest.raises(ConfigError, match="not in profile"):
            profile.with_stage("resequencer", padding=1)

    def test_chain_snapshot(self):
        profile = CleaningProfile.default()
        snapshot = profile.chain_snapshot(upto=1)
        assert [e["stage_id"] for e in snapshot] == ["size_filter", "header_standardizer"]
        assert snapshot[0] == {"stage_id": "size_filter", "enabled": True, "parameters": {"min_size_mb": 10.0}}
