"""Geometric post-processing for detector and matcher outputs.

Pure numpy functions shared by every model variant. Selection steps return
int64 index arrays into the caller's original arrays so keypoints, scores
and descriptors stay index-aligned through the whole pipeline.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray


def _as_indices(indices: ArrayLike | None, n: int) -> NDArray[np.int64]:
    if indices is None:
        return np.arange(n, dtype=np.int64)
    return np.asarray(indices, dtype=np.int64).reshape(-1)


def filter_keypoints(
    xy: ArrayLike,
    scores: ArrayLike,
    keypoint_threshold: float,
    image_size: tuple[int, int] | None = None,
    remove_borders: bool = False,
    border_margin: int = 0,
) -> NDArray[np.int64]:
    """Confidence and border filter.

    Args:
        xy: Keypoint positions [N, 2+] (x, y first)
        scores: Confidence per keypoint [N]
        keypoint_threshold: Keypoints scoring strictly below are dropped
        image_size: (width, height) of the source image, required when
            remove_borders is set
        remove_borders: Also drop keypoints near the image edges
        border_margin: Border width in pixels

    Returns:
        Ascending indices of the surviving keypoints
    """
    xy = np.asarray(xy, dtype=np.float64)
    if xy.ndim == 1:
        xy = xy.reshape(-1, 2)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if len(xy) != len(scores):
        msg = f"keypoints ({len(xy)}) and scores ({len(scores)}) must have the same length"
        raise ValueError(msg)

    keep = scores >= keypoint_threshold

    if remove_borders:
        if image_size is None:
            msg = "image_size is required when remove_borders is enabled"
            raise ValueError(msg)
        width, height = image_size
        margin = border_margin
        x = xy[:, 0]
        y = xy[:, 1]
        keep &= (x >= margin) & (x < width - margin)
        keep &= (y >= margin) & (y < height - margin)

    return np.flatnonzero(keep).astype(np.int64)


def select_top_k(
    scores: ArrayLike,
    max_keypoints: int,
    indices: ArrayLike | None = None,
) -> NDArray[np.int64]:
    """Rank by score and keep at most ``max_keypoints``.

    Ties keep the order of ``indices`` (ascending original order when
    omitted).

    Returns:
        Indices into ``scores``, highest score first
    """
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    indices = _as_indices(indices, len(scores))
    if len(indices) == 0 or max_keypoints <= 0:
        return np.empty(0, dtype=np.int64)

    order = np.argsort(-scores[indices], kind="stable")
    return indices[order[:max_keypoints]]


def nms(
    xy: ArrayLike,
    scores: ArrayLike,
    radius: float,
    indices: ArrayLike | None = None,
) -> NDArray[np.int64]:
    """Greedy spatial non-maximum suppression.

    Visits candidates by descending score and accepts one only if every
    previously accepted keypoint is at least ``radius`` pixels away.

    Args:
        xy: Keypoint positions [N, 2+]
        scores: Confidence per keypoint [N]
        radius: Suppression radius in pixels (<= 0 disables suppression)
        indices: Candidate subset (all keypoints when omitted)

    Returns:
        Accepted indices, highest score first
    """
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    indices = _as_indices(indices, len(scores))
    if len(indices) == 0:
        return indices

    ranked = indices[np.argsort(-scores[indices], kind="stable")]
    if radius <= 0:
        return ranked

    points = np.asarray(xy, dtype=np.float64)[:, :2]
    radius_sq = float(radius) * float(radius)

    accepted: list[int] = []
    accepted_xy = np.empty((len(ranked), 2), dtype=np.float64)
    for idx in ranked:
        p = points[idx]
        n = len(accepted)
        if n:
            d = accepted_xy[:n] - p
            if np.any(np.einsum("ij,ij->i", d, d) < radius_sq):
                continue
        accepted_xy[n] = p
        accepted.append(int(idx))

    return np.asarray(accepted, dtype=np.int64)


def normalize_descriptors(desc: ArrayLike) -> NDArray[np.float32]:
    """L2 normalize descriptors.

    Zero vectors are returned unchanged.

    Args:
        desc: Descriptors [N, D] or [H, W, D]

    Returns:
        Normalized float32 descriptors with same shape
    """
    desc = np.asarray(desc, dtype=np.float32)
    if desc.size == 0:
        return desc.copy()
    norm = np.linalg.norm(desc, axis=-1, keepdims=True)
    safe = np.where(norm > 0, norm, 1.0).astype(np.float32)
    return desc / safe


def compute_similarity_matrix(
    desc_1: ArrayLike,
    desc_2: ArrayLike,
) -> NDArray[np.float32]:
    """Cosine similarity between all descriptor pairs.

    Args:
        desc_1: Descriptors [N1, D]
        desc_2: Descriptors [N2, D]

    Returns:
        Similarity matrix [N1, N2]
    """
    return normalize_descriptors(desc_1) @ normalize_descriptors(desc_2).T


def _best_pair_per_index(column: NDArray[np.int64], order: NDArray[np.int64]) -> NDArray[np.int64]:
    # order ranks pairs by descending score; the first hit per index is its best pair
    _, first = np.unique(column[order], return_index=True)
    return order[first]


def mutual_check(
    matches: ArrayLike,
    scores: ArrayLike,
    mutual_threshold: float = 0.0,
) -> NDArray[np.int64]:
    """Reciprocal nearest-neighbor filter.

    A pair ``(i, j)`` survives if it is the best-scoring pair among all pairs
    containing ``i``, the best-scoring pair among all pairs containing ``j``,
    and its score is at least ``mutual_threshold``. Equal scores resolve to
    the earlier pair.

    Args:
        matches: Candidate index pairs [M, 2]
        scores: Score per pair [M]
        mutual_threshold: Minimum score of a retained pair

    Returns:
        Ascending indices of the retained pairs
    """
    matches = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if len(matches) != len(scores):
        msg = f"matches ({len(matches)}) and scores ({len(scores)}) must have the same length"
        raise ValueError(msg)
    if len(matches) == 0:
        return np.empty(0, dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    best_for_query = _best_pair_per_index(matches[:, 0], order)
    best_for_train = _best_pair_per_index(matches[:, 1], order)

    reciprocal = np.intersect1d(best_for_query, best_for_train)
    return reciprocal[scores[reciprocal] >= mutual_threshold].astype(np.int64)


def reciprocal_flags(matches: ArrayLike, scores: ArrayLike) -> NDArray[np.bool_]:
    """Per-pair flag telling whether the pair passes the reciprocal check."""
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    flags = np.zeros(len(scores), dtype=bool)
    flags[mutual_check(matches, scores, mutual_threshold=-np.inf)] = True
    return flags


def ratio_test(
    matches: ArrayLike,
    scores: ArrayLike,
    ratio: float,
) -> NDArray[np.int64]:
    """Distinctiveness test on similarity scores.

    Each query index keeps its best pair only when its second-best candidate
    scores at most ``ratio`` times the best. Queries with a single
    candidate always keep it.

    Returns:
        Ascending indices of the retained pairs
    """
    matches = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if len(matches) == 0:
        return np.empty(0, dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    queries = matches[order, 0]
    keep: list[int] = []
    # order is score-descending, so a stable sort by query groups best-first
    grouped = order[np.argsort(queries, kind="stable")]
    boundaries = np.flatnonzero(np.diff(matches[grouped, 0])) + 1
    for group in np.split(grouped, boundaries):
        best = scores[group[0]]
        if len(group) == 1 or scores[group[1]] <= ratio * best:
            keep.append(int(group[0]))

    return np.sort(np.asarray(keep, dtype=np.int64))


def filter_matches_by_score(
    scores: ArrayLike,
    match_threshold: float,
    indices: ArrayLike | None = None,
) -> NDArray[np.int64]:
    """Drop pairs scoring below ``match_threshold``.

    Returns:
        The subset of ``indices`` (all pairs when omitted) that pass, in order
    """
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    indices = _as_indices(indices, len(scores))
    if len(indices) == 0:
        return indices
    return indices[scores[indices] >= match_threshold]


def valid_match_indices(
    matches: ArrayLike,
    num_keypoints_1: int,
    num_keypoints_2: int,
) -> NDArray[np.int64]:
    """Indices of pairs referencing valid positions in both keypoint sets."""
    matches = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
    valid = (
        (matches[:, 0] >= 0)
        & (matches[:, 0] < num_keypoints_1)
        & (matches[:, 1] >= 0)
        & (matches[:, 1] < num_keypoints_2)
    )
    return np.flatnonzero(valid).astype(np.int64)


def match_ratio(num_matches: int, num_keypoints: int) -> float:
    """Fraction of keypoints in the first set that were matched."""
    if num_keypoints <= 0:
        return 0.0
    return float(num_matches) / float(num_keypoints)
