"""
BalanceFinder - Compositional Diversity and Balance Discovery for Microbiome Tables

Quantifies alpha diversity under rarefaction and beta diversity in Aitchison
geometry, tests outcome groups with PERMANOVA, and discovers a log-ratio
balance of two taxon groups that best separates a categorical outcome.
"""

__version__ = "0.1.0"

from balancefinder.core.taxonmatrix import TaxonMatrix
from balancefinder.core.transform import Transform
from balancefinder.core.quality import QualityFlag
from balancefinder.config import AnalysisConfig, load_config
from balancefinder.pipeline import AnalysisResult, run_analysis

__all__ = [
    "TaxonMatrix",
    "Transform",
    "QualityFlag",
    "AnalysisConfig",
    "load_config",
    "AnalysisResult",
    "run_analysis",
]
