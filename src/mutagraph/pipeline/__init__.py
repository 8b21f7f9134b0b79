"""Optimization pipeline: equivalence, subsumption, clustering, change detection."""

from mutagraph.pipeline.changes import ChangeDetector, ChangeSet
from mutagraph.pipeline.clustering import Cluster, ClusterSelector
from mutagraph.pipeline.equivalence import EquivalenceFilter
from mutagraph.pipeline.subsumption import SubsumptionReducer

__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "Cluster",
    "ClusterSelector",
    "EquivalenceFilter",
    "SubsumptionReducer",
]
