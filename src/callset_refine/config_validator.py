"""
Configuration validation for callset-refine.

Provides validation of raw configuration dictionaries with detailed error
reporting, before they are turned into ``RefinementConfig`` objects.
"""

from typing import Dict, Any, List, Tuple
import logging
from pathlib import Path

from .config import DE_NOVO_SCALINGS, SAMPLE_REDUCTIONS, TWO_PASS_MODES
from .exceptions import InvalidConfigurationError


class ConfigValidator:
    """Validate configuration parameters."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.errors = []
        self.warnings = []

    def validate_config(self, config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """Validate complete configuration.

        Args:
            config: Configuration dictionary to validate

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        known_sections = {'run_id', 'priors', 'posteriors', 'filtering', 'logging'}
        for key in config:
            if key not in known_sections:
                self.warnings.append(f"Unknown configuration key ignored: {key}")

        if 'priors' in config:
            self._validate_prior_config(config['priors'])

        if 'posteriors' in config:
            self._validate_posterior_config(config['posteriors'])

        if 'filtering' in config:
            self._validate_filter_config(config['filtering'])

        if 'logging' in config:
            self._validate_logging_config(config['logging'])

        self._validate_general_config(config)

        is_valid = len(self.errors) == 0
        for warning in self.warnings:
            self.logger.warning(warning)
        return is_valid, self.errors, self.warnings

    def _validate_prior_config(self, prior_config: Dict[str, Any]) -> None:
        """Validate prior options."""
        if not isinstance(prior_config, dict):
            self.errors.append("priors must be a mapping")
            return

        for key in ['global_prior_snp', 'global_prior_indel']:
            if key in prior_config:
                value = prior_config[key]
                if not isinstance(value, (int, float)) or isinstance(value, bool):
                    self.errors.append(f"priors.{key} must be numeric")
                elif value < 0:
                    self.errors.append(f"priors.{key} must be non-negative")
                elif value > 1:
                    self.warnings.append(f"priors.{key} is large ({value}), the global prior will dominate sparse panels")

        if 'de_novo_rate' in prior_config:
            rate = prior_config['de_novo_rate']
            if not isinstance(rate, (int, float)) or isinstance(rate, bool):
                self.errors.append("priors.de_novo_rate must be numeric")
            elif not 0.0 <= rate <= 1.0:
                self.errors.append("priors.de_novo_rate must be between 0.0 and 1.0")
            elif rate > 1e-3:
                self.warnings.append(f"priors.de_novo_rate is very high ({rate}), consider <= 1e-6")
            elif rate == 0:
                self.warnings.append("priors.de_novo_rate of 0 forbids any Mendelian violation")

        if 'de_novo_scaling' in prior_config:
            if prior_config['de_novo_scaling'] not in DE_NOVO_SCALINGS:
                self.errors.append(f"priors.de_novo_scaling must be one of {', '.join(DE_NOVO_SCALINGS)}")

        if 'pseudocount_if_absent_from_panel' in prior_config:
            count = prior_config['pseudocount_if_absent_from_panel']
            if not isinstance(count, int) or isinstance(count, bool):
                self.errors.append("priors.pseudocount_if_absent_from_panel must be an integer")
            elif count < 0:
                self.errors.append("priors.pseudocount_if_absent_from_panel must be non-negative")

        for key in ['use_discovered_counts', 'prefer_discovered_over_mle',
                    'ignore_missing_panel_sites', 'use_flat_prior_for_indels']:
            if key in prior_config and not isinstance(prior_config[key], bool):
                self.errors.append(f"priors.{key} must be a boolean")

    def _validate_posterior_config(self, posterior_config: Dict[str, Any]) -> None:
        """Validate posterior phase-control flags."""
        if not isinstance(posterior_config, dict):
            self.errors.append("posteriors must be a mapping")
            return

        for key in ['skip_population_priors', 'skip_family_priors', 'family_biallelic_only', 'strict']:
            if key in posterior_config and not isinstance(posterior_config[key], bool):
                self.errors.append(f"posteriors.{key} must be a boolean")

        if posterior_config.get('skip_population_priors') and posterior_config.get('skip_family_priors'):
            self.warnings.append("both population and family priors are skipped; posteriors will equal likelihoods")

        if 'max_genotype_quality' in posterior_config:
            gq = posterior_config['max_genotype_quality']
            if not isinstance(gq, int) or gq < 0:
                self.errors.append("posteriors.max_genotype_quality must be a non-negative integer")

        if 'workers' in posterior_config:
            workers = posterior_config['workers']
            if not isinstance(workers, int) or workers < 1:
                self.errors.append("posteriors.workers must be a positive integer")

    def _validate_filter_config(self, filter_config: Dict[str, Any]) -> None:
        """Validate filtering thresholds and mode."""
        if not isinstance(filter_config, dict):
            self.errors.append("filtering must be a mapping")
            return

        thresholds = filter_config.get('thresholds', {})
        if not isinstance(thresholds, dict):
            self.errors.append("filtering.thresholds must be a mapping of filter name to threshold")
        else:
            for name, threshold in thresholds.items():
                if not isinstance(threshold, (int, float)) or isinstance(threshold, bool):
                    self.errors.append(f"filtering.thresholds.{name} must be numeric")
                elif not 0.0 <= threshold <= 1.0:
                    self.errors.append(f"filtering.thresholds.{name} must be between 0.0 and 1.0")
                elif threshold in (0.0, 1.0):
                    self.warnings.append(
                        f"filtering.thresholds.{name} is {threshold}; the filter will "
                        f"{'fire on any evidence' if threshold == 0.0 else 'never fire'}"
                    )

        if 'two_pass_mode' in filter_config:
            if filter_config['two_pass_mode'] not in TWO_PASS_MODES:
                self.errors.append(f"filtering.two_pass_mode must be one of {', '.join(TWO_PASS_MODES)}")

        if 'artifact_sample_reduction' in filter_config:
            if filter_config['artifact_sample_reduction'] not in SAMPLE_REDUCTIONS:
                self.errors.append(
                    f"filtering.artifact_sample_reduction must be one of {', '.join(SAMPLE_REDUCTIONS)}"
                )

        if 'workers' in filter_config:
            workers = filter_config['workers']
            if not isinstance(workers, int) or workers < 1:
                self.errors.append("filtering.workers must be a positive integer")

    def _validate_logging_config(self, logging_config: Dict[str, Any]) -> None:
        if not isinstance(logging_config, dict):
            self.errors.append("logging must be a mapping")
            return
        level = logging_config.get('level', 'INFO')
        if str(level).upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            self.errors.append(f"logging.level is not a recognized level: {level}")

    def _validate_general_config(self, config: Dict[str, Any]) -> None:
        """Validate general configuration parameters."""
        if 'run_id' in config:
            run_id = config['run_id']
            if not isinstance(run_id, str):
                self.errors.append("run_id must be a string")
            elif not run_id.strip():
                self.errors.append("run_id cannot be empty")
            elif not run_id.replace('_', '').replace('-', '').isalnum():
                self.warnings.append("run_id should contain only alphanumeric characters, dashes, and underscores")


def validate_config_file(config_path: Path) -> Tuple[bool, List[str], List[str]]:
    """Validate a configuration file.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Tuple of (is_valid, errors, warnings)

    Raises:
        InvalidConfigurationError: If file cannot be read or parsed
    """
    import yaml

    if not config_path.exists():
        raise InvalidConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(f"Invalid YAML in configuration file: {e}") from e
    except (IOError, OSError) as e:
        raise InvalidConfigurationError(f"Cannot read configuration file: {e}") from e

    if not isinstance(config, dict):
        raise InvalidConfigurationError("Configuration file must contain a dictionary")

    validator = ConfigValidator()
    return validator.validate_config(config)
