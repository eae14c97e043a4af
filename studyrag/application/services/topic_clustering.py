"""Topic clustering — k-means++ over chunk embeddings with cosine distance.

Used by generation planning when a scope has no usable chapter structure.
Pure Python and deterministic for a given ``random.Random`` instance.
"""

import logging
import random
from dataclasses import dataclass

from studyrag.application.services.embedding_service import cosine_similarity
from studyrag.domain.entities import MaterialChunk

logger = logging.getLogger(__name__)

_MAX_ITERATIONS = 10


@dataclass
class TopicCluster:
    """A group of semantically close chunks and the mean of their vectors."""

    chunks: list[MaterialChunk]
    centroid: list[float] | None = None

    @property
    def size(self) -> int:
        return len(self.chunks)


def mean_vector(vectors: list[list[float]]) -> list[float] | None:
    """Component-wise mean; ``None`` for an empty list."""
    if not vectors:
        return None
    dims = len(vectors[0])
    totals = [0.0] * dims
    for vector in vectors:
        for d in range(dims):
            totals[d] += vector[d]
    return [t / len(vectors) for t in totals]


def _initial_centroids(vectors: list[list[float]], k: int, rng: random.Random) -> list[list[float]]:
    """k-means++ seeding: each new centroid is drawn with probability ~ distance²."""
    if len(vectors) <= k:
        return [list(v) for v in vectors]

    first = rng.randrange(len(vectors))
    centroids = [vectors[first]]
    used = {first}

    while len(centroids) < k:
        weights = []
        for index, vector in enumerate(vectors):
            if index in used:
                weights.append(0.0)
                continue
            distance = min(1 - cosine_similarity(vector, c) for c in centroids)
            weights.append(distance * distance)

        total = sum(weights)
        if total <= 0:
            break

        threshold = rng.random() * total
        chosen = None
        for index, weight in enumerate(weights):
            if weight <= 0:
                continue
            chosen = index
            threshold -= weight
            if threshold <= 0:
                break
        if chosen is None or chosen in used:
            break
        centroids.append(vectors[chosen])
        used.add(chosen)

    return centroids


def _nearest(vector: list[float], centroids: list[list[float]]) -> int:
    best, best_similarity = 0, -2.0
    for index, centroid in enumerate(centroids):
        similarity = cosine_similarity(vector, centroid)
        if similarity > best_similarity:
            best, best_similarity = index, similarity
    return best


def cluster_chunks(
    chunks: list[MaterialChunk],
    num_clusters: int,
    *,
    rng: random.Random | None = None,
    max_iterations: int = _MAX_ITERATIONS,
) -> list[TopicCluster]:
    """Partition embedded chunks into at most ``num_clusters`` topic clusters.

    Chunks without an embedding are left out of the clustering. When fewer
    than two clusters are possible, or nothing is embedded, all chunks come
    back as one cluster without a centroid. Clusters are returned largest
    first; empty clusters are dropped.
    """
    if not chunks:
        return []

    k = min(num_clusters, len(chunks))
    embedded = [c for c in chunks if c.is_embedded]
    if k <= 1 or not embedded:
        return [TopicCluster(chunks=list(chunks))]

    rng = rng or random.Random(0)
    vectors = [c.embedding for c in embedded]
    centroids = _initial_centroids(vectors, k, rng)
    assignments = [-1] * len(vectors)

    for _ in range(max_iterations):
        updated = [_nearest(v, centroids) for v in vectors]
        if updated == assignments:
            break
        assignments = updated

        for c in range(len(centroids)):
            members = [vectors[i] for i, a in enumerate(assignments) if a == c]
            if members:
                centroids[c] = mean_vector(members)

    clusters = []
    for c, centroid in enumerate(centroids):
        members = [embedded[i] for i, a in enumerate(assignments) if a == c]
        if members:
            clusters.append(TopicCluster(chunks=members, centroid=centroid))

    clusters.sort(key=lambda cluster: cluster.size, reverse=True)
    logger.debug(
        "Clustered %d chunks into %d topics (requested %d)",
        len(embedded),
        len(clusters),
        num_clusters,
    )
    return clusters
