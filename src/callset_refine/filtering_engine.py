"""
Two-phase filtering engine.

Sites are streamed once so every registered strategy can accumulate data,
each strategy then learns its parameters exactly once, and a second pass
decides which filters fire at every site.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Union

import pandas as pd

from .config import FilterConfig
from .exceptions import EngineStateError, InvalidConfigurationError, MissingAnnotationError
from .filters import (
    ArtifactPosteriorFilter,
    BackgroundErrorFilter,
    FilterStrategy,
    LowQualityFilter,
)
from .io import BufferedSource, SiteSource
from .logging_config import StageTimer
from .parallel import bounded_map
from .reducers import weighted_median
from .variants import Site, probability_to_phred

logger = logging.getLogger(__name__)


class EnginePhase(Enum):
    IDLE = "idle"
    LEARNING = "learning"
    DECIDING = "deciding"
    DONE = "done"


@dataclass
class FilterVerdict:
    """Filtering outcome for one site."""
    site_id: str
    filters: FrozenSet[str] = frozenset()
    error_probabilities: Dict[str, List[float]] = field(default_factory=dict)
    summaries: Dict[str, float] = field(default_factory=dict)
    annotations: Dict[str, float] = field(default_factory=dict)
    missing_annotations: List[MissingAnnotationError] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.filters


@dataclass
class _Registration:
    strategy: FilterStrategy
    threshold: float
    lock: threading.Lock = field(default_factory=threading.Lock)


def _alt_weights(site: Site) -> List[float]:
    depths = site.alt_depths()
    if depths is None or sum(depths) <= 0:
        return [1.0] * len(site.alts)
    return [float(d) for d in depths]


class TwoPhaseFilterEngine:
    """Drives registered strategies through learning and deciding passes.

    The engine moves through ``IDLE -> LEARNING -> DECIDING -> DONE`` and is
    single-use: strategies are registered while idle and verdicts are
    available once it is done.
    """

    def __init__(self, workers: int = 1, inclusive_median: bool = False):
        if workers < 1:
            raise InvalidConfigurationError("workers must be at least 1", {"workers": workers})
        self.workers = workers
        self.inclusive_median = inclusive_median
        self.phase = EnginePhase.IDLE
        self._registrations: List[_Registration] = []
        self._verdicts: List[FilterVerdict] = []

    @property
    def strategies(self) -> List[FilterStrategy]:
        return [r.strategy for r in self._registrations]

    @property
    def verdicts(self) -> List[FilterVerdict]:
        self._require(EnginePhase.DONE, "verdicts")
        return list(self._verdicts)

    def _require(self, phase: EnginePhase, operation: str) -> None:
        if self.phase is not phase:
            raise EngineStateError(
                f"Cannot {operation} while the engine is {self.phase.value}; expected {phase.value}",
                {"phase": self.phase.value, "expected": phase.value},
            )

    def register(self, strategy: FilterStrategy, threshold: float) -> None:
        """Add a strategy that fires when its site summary exceeds ``threshold``.

        Raises:
            EngineStateError: If the engine has already started
            InvalidConfigurationError: For thresholds outside [0, 1] or duplicate filter names
        """
        self._require(EnginePhase.IDLE, "register a strategy")
        if not 0.0 <= threshold <= 1.0:
            raise InvalidConfigurationError(
                f"threshold for filter {strategy.filter_name} must be between 0 and 1",
                {"filter_name": strategy.filter_name, "threshold": threshold},
            )
        if any(r.strategy.filter_name == strategy.filter_name for r in self._registrations):
            raise InvalidConfigurationError(
                f"Filter {strategy.filter_name} is already registered",
                {"filter_name": strategy.filter_name},
            )
        self._registrations.append(_Registration(strategy, float(threshold)))

    def _map(self, func, sites: Iterable[Site]) -> Iterator:
        return bounded_map(func, sites, self.workers)

    def _learn_site(self, site: Site) -> None:
        for registration in self._registrations:
            strategy = registration.strategy
            if strategy.missing_annotations(site):
                continue
            estimate = strategy.error_probabilities(site)
            with registration.lock:
                strategy.accumulate(site, estimate)

    def _decide_site(self, site: Site) -> FilterVerdict:
        verdict = FilterVerdict(site_id=site.site_id)
        weights = _alt_weights(site)
        fired = set()

        for registration in self._registrations:
            strategy = registration.strategy
            missing = strategy.missing_annotations(site)
            if missing:
                for annotation in missing:
                    error = MissingAnnotationError(strategy.filter_name, annotation, site.site_id)
                    verdict.missing_annotations.append(error)
                    if strategy.strict_annotations:
                        logger.warning(str(error))
                continue

            probabilities = strategy.error_probabilities(site)
            if len(probabilities) != len(site.alts):
                raise ValueError(
                    f"Filter {strategy.filter_name} returned {len(probabilities)} probabilities "
                    f"for {len(site.alts)} alternate alleles at {site.site_id}"
                )
            summary = weighted_median(zip(weights, probabilities), self.inclusive_median)

            verdict.error_probabilities[strategy.filter_name] = list(probabilities)
            verdict.summaries[strategy.filter_name] = summary
            if strategy.posterior_annotation_name:
                verdict.annotations[strategy.posterior_annotation_name] = probability_to_phred(summary)
            if summary > registration.threshold:
                fired.add(strategy.filter_name)

        verdict.filters = frozenset(fired)
        return verdict

    def _decide(self, source: SiteSource) -> None:
        self.phase = EnginePhase.DECIDING
        with StageTimer(logger, "filter decision pass") as timer:
            for verdict in self._map(self._decide_site, source.open()):
                self._verdicts.append(verdict)
                timer.tick()
        self.phase = EnginePhase.DONE

    def run(self, source: Union[SiteSource, Iterable[Site]]) -> List[FilterVerdict]:
        """Learn from every site, then decide every site.

        Args:
            source: A ``SiteSource``; plain iterables are buffered on the first pass

        Returns:
            One verdict per input site, in input order
        """
        self._require(EnginePhase.IDLE, "run")
        source = as_source(source)

        self.phase = EnginePhase.LEARNING
        with StageTimer(logger, "filter learning pass") as timer:
            for _ in self._map(self._learn_site, source.open()):
                timer.tick()
        for registration in self._registrations:
            registration.strategy.learn_parameters_and_clear()

        self._decide(source)
        return list(self._verdicts)

    def run_single_pass(self, source: Union[SiteSource, Iterable[Site]]) -> List[FilterVerdict]:
        """Decide every site without a learning pass."""
        self._require(EnginePhase.IDLE, "run")
        self._decide(as_source(source))
        return list(self._verdicts)


def as_source(sites: Union[SiteSource, Iterable[Site]]) -> SiteSource:
    if hasattr(sites, "open"):
        return sites
    return BufferedSource(sites)


def default_strategies(inclusive_median: bool = False, artifact_sample_reduction: str = "median") -> List[FilterStrategy]:
    return [
        ArtifactPosteriorFilter(inclusive_median=inclusive_median, sample_reduction=artifact_sample_reduction),
        BackgroundErrorFilter(),
        LowQualityFilter(),
    ]


def build_engine(
    config: Optional[FilterConfig] = None,
    strategies: Optional[Sequence[FilterStrategy]] = None,
) -> TwoPhaseFilterEngine:
    """Engine with ``strategies`` (or the default set) registered at the configured thresholds."""
    config = config or FilterConfig()
    config.validate()
    engine = TwoPhaseFilterEngine(workers=config.workers, inclusive_median=config.inclusive_median)
    if strategies is None:
        strategies = default_strategies(config.inclusive_median, config.artifact_sample_reduction)
    for strategy in strategies:
        engine.register(strategy, config.threshold_for(strategy.filter_name))
    return engine


def verdicts_to_frame(verdicts: Sequence[FilterVerdict]) -> pd.DataFrame:
    """One row per input site with its filter status and per-filter summaries."""
    rows = []
    for verdict in verdicts:
        row = {
            "site_id": verdict.site_id,
            "filter": ";".join(sorted(verdict.filters)) if verdict.filters else "PASS",
            "passed": verdict.passed,
            "missing_annotations": ";".join(
                f"{e.filter_name}:{e.annotation}" for e in verdict.missing_annotations
            ),
        }
        for name, summary in verdict.summaries.items():
            row[name] = summary
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=["site_id", "filter", "passed", "missing_annotations"])
    return pd.DataFrame(rows)


def filter_report(verdicts: Sequence[FilterVerdict], filter_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Per-filter counts of sites flagged and sites skipped for missing annotations."""
    if filter_names is None:
        names = set()
        for verdict in verdicts:
            names.update(verdict.summaries)
            names.update(e.filter_name for e in verdict.missing_annotations)
        filter_names = sorted(names)

    n_sites = len(verdicts)
    rows = []
    for name in filter_names:
        flagged = sum(1 for v in verdicts if name in v.filters)
        missing = sum(
            1 for v in verdicts if any(e.filter_name == name for e in v.missing_annotations)
        )
        rows.append({
            "filter": name,
            "n_sites": n_sites,
            "n_flagged": flagged,
            "n_missing_annotations": missing,
            "fraction_flagged": flagged / n_sites if n_sites else 0.0,
        })
    return pd.DataFrame(rows, columns=["filter", "n_sites", "n_flagged", "n_missing_annotations", "fraction_flagged"])
