"""callset-refine: genotype posterior refinement and two-phase variant filtering."""

from __future__ import annotations

__version__ = "0.1.0"

# Data model
from .variants import Site, SampleGenotype, PanelRecord, PopulationObservation
from .pedigree import Pedigree, PedigreeTrio

# Posterior refinement
from .priors import PriorCombiner, PriorDistribution
from .family import FamilyRefiner, refine_trio
from .posteriors import PosteriorSynthesizer
from .pipeline import PosteriorPipeline

# Filtering
from .reducers import WeightedMedianReducer, weighted_median
from .filters import (
    ArtifactPosteriorFilter,
    BackgroundErrorFilter,
    ErrorType,
    FilterStrategy,
    LowQualityFilter,
)
from .filtering_engine import EnginePhase, FilterVerdict, TwoPhaseFilterEngine

# Configuration and I/O
from .config import RefinementConfig, load_config, dump_config
from .io import BufferedSource, InMemoryPanel, ReopenableSource

__all__ = [
    "__version__",
    # Data model
    "Site",
    "SampleGenotype",
    "PanelRecord",
    "PopulationObservation",
    "Pedigree",
    "PedigreeTrio",
    # Posteriors
    "PriorCombiner",
    "PriorDistribution",
    "FamilyRefiner",
    "refine_trio",
    "PosteriorSynthesizer",
    "PosteriorPipeline",
    # Filtering
    "WeightedMedianReducer",
    "weighted_median",
    "FilterStrategy",
    "ErrorType",
    "ArtifactPosteriorFilter",
    "BackgroundErrorFilter",
    "LowQualityFilter",
    "TwoPhaseFilterEngine",
    "EnginePhase",
    "FilterVerdict",
    # Configuration and I/O
    "RefinementConfig",
    "load_config",
    "dump_config",
    "BufferedSource",
    "ReopenableSource",
    "InMemoryPanel",
]
