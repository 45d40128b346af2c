"""Configuration management for genotype refinement and site filtering."""

from __future__ import annotations

import hashlib
import json
import yaml
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import InvalidConfigurationError

# Expected heterozygosity of SNP sites in human samples.
SNP_HETEROZYGOSITY = 1e-3
DEFAULT_DE_NOVO_RATE = 1e-6

DE_NOVO_SCALINGS = ("power", "linear")
TWO_PASS_MODES = ("buffer", "restream")
SAMPLE_REDUCTIONS = ("median", "max")


@dataclass
class PriorOptions:
    """Options controlling the population prior and the de novo rate."""
    global_prior_snp: float = SNP_HETEROZYGOSITY
    global_prior_indel: float = SNP_HETEROZYGOSITY
    de_novo_rate: float = DEFAULT_DE_NOVO_RATE
    de_novo_scaling: str = "power"
    use_discovered_counts: bool = True
    prefer_discovered_over_mle: bool = False
    ignore_missing_panel_sites: bool = False
    pseudocount_if_absent_from_panel: int = 0
    use_flat_prior_for_indels: bool = False

    def validate(self) -> None:
        if self.global_prior_snp < 0 or self.global_prior_indel < 0:
            raise InvalidConfigurationError(
                "Dirichlet pseudocount mass must be non-negative",
                {"global_prior_snp": self.global_prior_snp, "global_prior_indel": self.global_prior_indel},
            )
        if self.pseudocount_if_absent_from_panel < 0:
            raise InvalidConfigurationError(
                "pseudocount_if_absent_from_panel must be non-negative",
                {"pseudocount_if_absent_from_panel": self.pseudocount_if_absent_from_panel},
            )
        if not 0.0 <= self.de_novo_rate <= 1.0:
            raise InvalidConfigurationError(
                "de_novo_rate must be between 0 and 1", {"de_novo_rate": self.de_novo_rate}
            )
        if self.de_novo_scaling not in DE_NOVO_SCALINGS:
            raise InvalidConfigurationError(
                f"de_novo_scaling must be one of {DE_NOVO_SCALINGS}",
                {"de_novo_scaling": self.de_novo_scaling},
            )


@dataclass
class PosteriorOptions:
    """Phase-control flags for posterior synthesis."""
    skip_population_priors: bool = False
    skip_family_priors: bool = False
    family_biallelic_only: bool = True
    strict: bool = False
    max_genotype_quality: int = 99
    workers: int = 1

    def validate(self) -> None:
        if self.max_genotype_quality < 0:
            raise InvalidConfigurationError("max_genotype_quality must be non-negative")
        if self.workers < 1:
            raise InvalidConfigurationError("workers must be at least 1", {"workers": self.workers})


@dataclass
class FilterConfig:
    """Thresholds and execution mode of the two-phase filtering engine."""
    thresholds: Dict[str, float] = field(default_factory=dict)
    two_pass_mode: str = "buffer"
    inclusive_median: bool = False
    artifact_sample_reduction: str = "median"
    workers: int = 1

    def threshold_for(self, filter_name: str, default: float = 0.5) -> float:
        return float(self.thresholds.get(filter_name, default))

    def validate(self) -> None:
        for name, threshold in self.thresholds.items():
            if not 0.0 <= float(threshold) <= 1.0:
                raise InvalidConfigurationError(
                    f"threshold for filter {name} must be between 0 and 1",
                    {"filter_name": name, "threshold": threshold},
                )
        if self.two_pass_mode not in TWO_PASS_MODES:
            raise InvalidConfigurationError(
                f"two_pass_mode must be one of {TWO_PASS_MODES}",
                {"two_pass_mode": self.two_pass_mode},
            )
        if self.artifact_sample_reduction not in SAMPLE_REDUCTIONS:
            raise InvalidConfigurationError(
                f"artifact_sample_reduction must be one of {SAMPLE_REDUCTIONS}",
                {"artifact_sample_reduction": self.artifact_sample_reduction},
            )
        if self.workers < 1:
            raise InvalidConfigurationError("workers must be at least 1", {"workers": self.workers})


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class RefinementConfig:
    """Top-level configuration."""
    run_id: str = "refine_run"
    priors: PriorOptions = field(default_factory=PriorOptions)
    posteriors: PosteriorOptions = field(default_factory=PosteriorOptions)
    filtering: FilterConfig = field(default_factory=FilterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    def config_hash(self) -> str:
        """Compute deterministic hash of configuration."""
        config_str = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    def validate(self) -> "RefinementConfig":
        self.priors.validate()
        self.posteriors.validate()
        self.filtering.validate()
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefinementConfig":
        try:
            return cls(
                run_id=data.get('run_id', 'refine_run'),
                priors=PriorOptions(**data.get('priors', {})),
                posteriors=PosteriorOptions(**data.get('posteriors', {})),
                filtering=FilterConfig(**data.get('filtering', {})),
                logging=LoggingConfig(**data.get('logging', {})),
            )
        except TypeError as e:
            raise InvalidConfigurationError(f"Unrecognized configuration option: {e}") from e


def load_config(path: str | Path) -> RefinementConfig:
    """Load and validate configuration from YAML file."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Configuration file must contain a mapping: {path}")
    return RefinementConfig.from_dict(data).validate()


def dump_config(config: RefinementConfig, path: str | Path) -> None:
    """Save configuration to YAML file."""
    with open(path, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False)
