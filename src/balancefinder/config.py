"""
Analysis configuration with YAML/JSON file support.

Every parameter of a run lives in one AnalysisConfig tree. It can be built in
code, loaded from a YAML or JSON file, and partially overridden by CLI flags.
The whole tree is validated before any computation starts, and every problem
is reported at once.

Example config (YAML):

    outcome: diagnosis
    covariates: [age]
    seed: 42
    n_jobs: 4
    filter:
      min_prevalence: 0.1
    rarefaction:
      depth: 5000
      repetitions: 20
    permutation:
      n_permutations: 999
    selection:
      scoring: f_statistic
      max_taxa: 20
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union, get_args, get_origin, get_type_hints

import yaml

from balancefinder.core.errors import ConfigurationError
from balancefinder.diversity.rarefaction import DIVERSITY_METRICS
from balancefinder.stats.scoring import ScoringRule

__all__ = [
    'FilterConfig',
    'ZeroReplacementConfig',
    'RarefactionConfig',
    'PermutationConfig',
    'SelectionConfig',
    'AnalysisConfig',
    'load_config',
]


@dataclass
class FilterConfig:
    """Prevalence filter configuration."""
    min_prevalence: float = 0.1
    stratify_by: List[str] = field(default_factory=list)
    min_group_size: int = 5


@dataclass
class ZeroReplacementConfig:
    """Multiplicative zero replacement configuration."""
    fraction: float = 0.65


@dataclass
class RarefactionConfig:
    """Rarefaction configuration. depth=None rarefies to the smallest library."""
    depth: Optional[int] = None
    repetitions: int = 10
    metric: str = "shannon"


@dataclass
class PermutationConfig:
    """PERMANOVA configuration."""
    n_permutations: int = 999
    strata: Optional[str] = None


@dataclass
class SelectionConfig:
    """Greedy balance selection configuration."""
    scoring: str = "f_statistic"
    min_improvement: float = 0.0
    max_taxa: int = 20
    max_iterations: int = 50
    time_budget: Optional[float] = None
    reference: Optional[str] = None
    strict: bool = False


_SECTIONS = {
    "filter": FilterConfig,
    "zero_replacement": ZeroReplacementConfig,
    "rarefaction": RarefactionConfig,
    "permutation": PermutationConfig,
    "selection": SelectionConfig,
}


def _build_section(name: str, cls: type, values: Any) -> Any:
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ConfigurationError(
            f"Config section '{name}' must be a mapping, got {type(values).__name__}",
            stage="config", precondition="section is a mapping",
        )
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in config section '{name}': {unknown}. Valid: {sorted(known)}",
            stage="config", precondition="known config keys",
        )
    return cls(**values)


def _type_name(hint: Any) -> str:
    if hint is type(None):
        return "null"
    if get_origin(hint) is Union:
        return " or ".join(_type_name(arg) for arg in get_args(hint))
    if get_origin(hint) is list:
        return f"a list of {_type_name(get_args(hint)[0])}"
    return hint.__name__


def _matches(hint: Any, value: Any) -> bool:
    if hint is type(None):
        return value is None
    origin = get_origin(hint)
    if origin is Union:
        return any(_matches(arg, value) for arg in get_args(hint))
    if origin is list:
        return isinstance(value, list) and all(_matches(get_args(hint)[0], v) for v in value)
    # bool is an int subclass; True is not a count
    if hint is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, hint)


def _type_problems(config: Any, prefix: str = "") -> List[str]:
    """Fields whose value does not match the dataclass annotation."""
    problems = []
    hints = get_type_hints(type(config))
    for f in fields(config):
        hint = hints[f.name]
        value = getattr(config, f.name)
        path = prefix + f.name
        if is_dataclass(hint):
            if isinstance(value, hint):
                problems.extend(_type_problems(value, path + "."))
            else:
                problems.append(f"{path} must be a mapping, got {type(value).__name__}")
        elif not _matches(hint, value):
            problems.append(f"{path} must be {_type_name(hint)}, got {type(value).__name__} {value!r}")
    return problems


@dataclass
class AnalysisConfig:
    """
    Complete configuration of one analysis run.

    Attributes:
        outcome: Metadata column holding the categorical outcome
        covariates: Numeric metadata columns adjusted for in balance models
        seed: Seed for rarefaction and permutations (None = not reproducible)
        n_jobs: Worker threads for rarefaction repetitions and permutation chunks
    """
    outcome: str = ""
    covariates: List[str] = field(default_factory=list)
    seed: Optional[int] = None
    n_jobs: int = 1
    filter: FilterConfig = field(default_factory=FilterConfig)
    zero_replacement: ZeroReplacementConfig = field(default_factory=ZeroReplacementConfig)
    rarefaction: RarefactionConfig = field(default_factory=RarefactionConfig)
    permutation: PermutationConfig = field(default_factory=PermutationConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AnalysisConfig:
        """
        Build a config tree from a nested mapping.

        Raises:
            ConfigurationError: On unknown keys, malformed sections or values
                of the wrong type
        """
        data = dict(data or {})
        top_level = {"outcome", "covariates", "seed", "n_jobs"}
        unknown = sorted(set(data) - top_level - set(_SECTIONS))
        if unknown:
            raise ConfigurationError(
                f"Unknown config keys: {unknown}",
                stage="config", precondition="known config keys",
            )
        sections = {name: _build_section(name, section_cls, data.pop(name, None))
                    for name, section_cls in _SECTIONS.items()}
        covariates = data.pop("covariates", None) or []
        if isinstance(covariates, str):
            covariates = [covariates]
        if isinstance(covariates, (list, tuple)):
            covariates = list(covariates)
        config = cls(covariates=covariates, **data, **sections)

        problems = _type_problems(config)
        if problems:
            raise ConfigurationError(
                "Invalid configuration types: " + "; ".join(problems),
                stage="config", precondition="config values of the declared types",
            )
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> List[str]:
        """Return every configuration problem (empty list if valid)."""
        # Range checks below assume well-typed values
        errors: List[str] = _type_problems(self)
        if errors:
            return errors

        if not self.outcome:
            errors.append("outcome column is required")
        if self.outcome and self.outcome in self.covariates:
            errors.append(f"outcome '{self.outcome}' is also listed as a covariate")
        if self.n_jobs < 1:
            errors.append(f"n_jobs must be >= 1, got {self.n_jobs}")
        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            errors.append(f"seed must be a non-negative integer, got {self.seed!r}")

        if not 0 < self.filter.min_prevalence < 1:
            errors.append(f"filter.min_prevalence must be in (0, 1), got {self.filter.min_prevalence}")
        if self.filter.min_group_size < 1:
            errors.append(f"filter.min_group_size must be >= 1, got {self.filter.min_group_size}")

        if not 0 < self.zero_replacement.fraction < 1:
            errors.append(f"zero_replacement.fraction must be in (0, 1), got {self.zero_replacement.fraction}")

        if self.rarefaction.depth is not None and self.rarefaction.depth <= 0:
            errors.append(f"rarefaction.depth must be positive, got {self.rarefaction.depth}")
        if self.rarefaction.repetitions < 1:
            errors.append(f"rarefaction.repetitions must be >= 1, got {self.rarefaction.repetitions}")
        if self.rarefaction.metric not in DIVERSITY_METRICS:
            errors.append(f"rarefaction.metric must be one of {sorted(DIVERSITY_METRICS)}, "
                          f"got '{self.rarefaction.metric}'")

        if self.permutation.n_permutations < 1:
            errors.append(f"permutation.n_permutations must be >= 1, got {self.permutation.n_permutations}")

        try:
            rule = ScoringRule.parse(self.selection.scoring)
        except ConfigurationError:
            valid_rules = [r.value for r in ScoringRule]
            errors.append(f"selection.scoring must be one of {valid_rules}, got '{self.selection.scoring}'")
        else:
            if rule is ScoringRule.KRUSKAL and self.covariates:
                errors.append("selection.scoring 'kruskal' does not support covariates")
        if self.selection.min_improvement < 0:
            errors.append(f"selection.min_improvement must be >= 0, got {self.selection.min_improvement}")
        if self.selection.max_taxa < 2:
            errors.append(f"selection.max_taxa must be >= 2, got {self.selection.max_taxa}")
        if self.selection.max_iterations < 1:
            errors.append(f"selection.max_iterations must be >= 1, got {self.selection.max_iterations}")
        if self.selection.time_budget is not None and self.selection.time_budget <= 0:
            errors.append(f"selection.time_budget must be positive, got {self.selection.time_budget}")

        return errors

    def check(self) -> None:
        """
        Raise if the configuration is invalid.

        Raises:
            ConfigurationError: Listing every problem found by validate()
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(errors),
                stage="config", precondition="valid configuration",
            )

    def metadata_columns(self) -> List[str]:
        """Metadata columns the run reads."""
        columns = [self.outcome] + list(self.covariates) + list(self.filter.stratify_by)
        if self.permutation.strata:
            columns.append(self.permutation.strata)
        return list(dict.fromkeys(c for c in columns if c))


def load_config(config_path: Path | str) -> AnalysisConfig:
    """
    Load an AnalysisConfig from a YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        AnalysisConfig (not yet validated)

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("analysis.yaml"))
        >>> config.selection.scoring
        'f_statistic'
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            elif suffix == '.json':
                data = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json",
                    stage="config", precondition="YAML or JSON config file",
                )
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}", stage="config") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}", stage="config") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Config file must contain a mapping at top level",
            stage="config", precondition="top-level mapping",
        )

    return AnalysisConfig.from_dict(data)
