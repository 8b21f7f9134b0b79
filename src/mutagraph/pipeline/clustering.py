"""Cluster selection: execute one representative per group of sites."""

from __future__ import annotations

from dataclasses import dataclass, field

from mutagraph.mutation.models import MutationSite, SiteResult


@dataclass
class Cluster:
    key: tuple
    members: list[MutationSite] = field(default_factory=list)

    @property
    def representative(self) -> MutationSite:
        """Hardest member; earlier scan order wins ties."""
        return max(self.members, key=lambda s: (s.hardness, -s.order))

    @property
    def followers(self) -> list[MutationSite]:
        rep = self.representative
        return [m for m in self.members if m is not rep]


class ClusterSelector:
    """Groups sites by a configurable key.

    Keys:
        operator: the operator id.
        location: file, form and coordinate with `prefix_trim` trailing
            segments dropped.
        shape: operator category and the parent node's label.
        None: every site is its own cluster.

    A killed cluster may contain weaker members that were never executed;
    their verdict is the representative's.
    """

    def __init__(self, by: str | None = None, prefix_trim: int = 0) -> None:
        if by not in (None, "operator", "location", "shape"):
            raise ValueError(f"Unknown cluster key: {by}")
        self.by = by
        self.prefix_trim = max(0, prefix_trim)

    def key(self, site: MutationSite) -> tuple:
        if self.by == "operator":
            return ("operator", site.operator_id)
        if self.by == "location":
            coordinate = site.coordinate
            if self.prefix_trim:
                coordinate = coordinate[: max(0, len(coordinate) - self.prefix_trim)]
            return ("location", site.file, site.form_id, coordinate)
        if self.by == "shape":
            return ("shape", site.category, site.parent_label)
        return ("site", site.id)

    def group(self, sites: list[MutationSite]) -> list[Cluster]:
        """Clusters in order of first appearance."""
        clusters: dict[tuple, Cluster] = {}
        for site in sites:
            key = self.key(site)
            if key not in clusters:
                clusters[key] = Cluster(key)
            clusters[key].members.append(site)
        return list(clusters.values())

    @staticmethod
    def propagate(cluster: Cluster, result: SiteResult) -> list[SiteResult]:
        """Copy the representative's settled verdict to every other member."""
        rep = cluster.representative
        return [
            SiteResult(
                site=member,
                verdict=result.verdict,
                tests=list(result.tests),
                failed_tests=list(result.failed_tests),
                reason=result.reason,
                propagated_from=rep.id,
            )
            for member in cluster.followers
        ]
