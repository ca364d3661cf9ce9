"""Tests for AnalysisConfig and config file loading."""

import json

import pytest
import yaml

from balancefinder.config import AnalysisConfig, load_config
from balancefinder.core.errors import ConfigurationError


class TestAnalysisConfig:
    """Tests for building and validating AnalysisConfig."""

    def test_defaults(self):
        config = AnalysisConfig(outcome="diagnosis")

        assert config.filter.min_prevalence == 0.1
        assert config.zero_replacement.fraction == 0.65
        assert config.rarefaction.depth is None
        assert config.rarefaction.repetitions == 10
        assert config.permutation.n_permutations == 999
        assert config.selection.scoring == "f_statistic"
        assert config.validate() == []

    def test_from_dict_nested(self):
        config = AnalysisConfig.from_dict({
            "outcome": "diagnosis",
            "covariates": "age",
            "seed": 7,
            "rarefaction": {"depth": 1000, "metric": "observed"},
            "selection": {"max_taxa": 6},
        })

        assert config.covariates == ["age"]
        assert config.rarefaction.depth == 1000
        assert config.rarefaction.metric == "observed"
        assert config.rarefaction.repetitions == 10
        assert config.selection.max_taxa == 6

    def test_unknown_top_level_key(self):
        with pytest.raises(ConfigurationError, match="Unknown config keys"):
            AnalysisConfig.from_dict({"outcome": "x", "alpha": 0.05})

    def test_unknown_section_key(self):
        with pytest.raises(ConfigurationError, match="rarefaction"):
            AnalysisConfig.from_dict({"rarefaction": {"depht": 10}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            AnalysisConfig.from_dict({"filter": [0.1]})

    def test_validate_reports_every_problem(self):
        config = AnalysisConfig.from_dict({
            "filter": {"min_prevalence": 1.5},
            "permutation": {"n_permutations": 0},
            "selection": {"scoring": "aic", "max_taxa": 1},
        })
        errors = config.validate()

        assert any("outcome" in e for e in errors)
        assert any("min_prevalence" in e for e in errors)
        assert any("n_permutations" in e for e in errors)
        assert any("scoring" in e for e in errors)
        assert any("max_taxa" in e for e in errors)

    def test_check_raises(self):
        with pytest.raises(ConfigurationError, match="outcome column is required"):
            AnalysisConfig().check()

    def test_kruskal_with_covariates_invalid(self):
        config = AnalysisConfig.from_dict({
            "outcome": "diagnosis",
            "covariates": ["age"],
            "selection": {"scoring": "kruskal"},
        })
        assert any("kruskal" in e for e in config.validate())

    def test_outcome_as_covariate_invalid(self):
        config = AnalysisConfig(outcome="diagnosis", covariates=["diagnosis"])
        assert config.validate()

    def test_metadata_columns(self):
        config = AnalysisConfig.from_dict({
            "outcome": "diagnosis",
            "covariates": ["age"],
            "filter": {"stratify_by": ["diagnosis"]},
            "permutation": {"strata": "batch"},
        })
        assert config.metadata_columns() == ["diagnosis", "age", "batch"]

    def test_wrong_value_type_rejected(self):
        with pytest.raises(ConfigurationError, match="selection.max_taxa must be int"):
            AnalysisConfig.from_dict({"outcome": "dx", "selection": {"max_taxa": "20"}})

    def test_every_type_problem_reported(self):
        with pytest.raises(ConfigurationError) as excinfo:
            AnalysisConfig.from_dict({
                "outcome": "dx",
                "n_jobs": True,
                "filter": {"stratify_by": "site"},
                "rarefaction": {"depth": 1000.5},
            })
        message = str(excinfo.value)
        assert "n_jobs" in message
        assert "filter.stratify_by must be a list of str" in message
        assert "rarefaction.depth must be int or null" in message

    def test_int_accepted_for_float_field(self):
        config = AnalysisConfig.from_dict({"outcome": "dx", "selection": {"time_budget": 5}})
        assert config.validate() == []

    def test_validate_reports_type_problem_on_direct_construction(self):
        config = AnalysisConfig(outcome="dx")
        config.selection.max_taxa = "20"
        assert config.validate() == ["selection.max_taxa must be int, got str '20'"]
        with pytest.raises(ConfigurationError):
            config.check()

    def test_scoring_case_insensitive(self):
        config = AnalysisConfig.from_dict({"outcome": "dx", "selection": {"scoring": "F_STATISTIC"}})
        assert config.validate() == []

        config = AnalysisConfig.from_dict({
            "outcome": "dx", "covariates": ["age"], "selection": {"scoring": "Kruskal"},
        })
        assert any("kruskal" in e for e in config.validate())

    def test_to_dict_round_trip(self):
        config = AnalysisConfig.from_dict({"outcome": "diagnosis", "seed": 3,
                                           "selection": {"time_budget": 5.0}})
        assert AnalysisConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:
    """Tests for load_config()."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "analysis.yaml"
        path.write_text(yaml.safe_dump({
            "outcome": "diagnosis",
            "n_jobs": 2,
            "permutation": {"n_permutations": 99, "strata": "batch"},
        }))

        config = load_config(path)
        assert config.outcome == "diagnosis"
        assert config.n_jobs == 2
        assert config.permutation.strata == "batch"

    def test_json(self, tmp_path):
        path = tmp_path / "analysis.json"
        path.write_text(json.dumps({"outcome": "diagnosis", "selection": {"scoring": "r_squared"}}))

        assert load_config(path).selection.scoring == "r_squared"

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == AnalysisConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "analysis.toml"
        path.write_text("outcome = 'x'")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("outcome: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{outcome: ")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- outcome\n- diagnosis\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)
