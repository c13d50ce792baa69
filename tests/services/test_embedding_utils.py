import asyncio
import math

import pytest

from claimflow.services.embedding_utils import (
	cosine_similarity,
	deterministic_embedding,
	generate_embedding,
)


def test_cosine_identical_and_orthogonal():
	assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)
	assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == 0.0


def test_cosine_empty_or_zero_norm_scores_zero():
	assert cosine_similarity([], [1.0]) == 0.0
	assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_uses_common_prefix():
	# Only the first two components take part.
	assert cosine_similarity([1.0, 0.0, 5.0], [1.0, 0.0]) == pytest.approx(1.0)
	assert cosine_similarity([3.0, 4.0], [3.0, 4.0, 100.0]) == pytest.approx(1.0)


def test_deterministic_embedding_is_stable():
	first = deterministic_embedding("Likes tea")
	assert first == deterministic_embedding("Likes tea")
	assert len(first) == 16
	assert all(0.0 <= x < 1.0 for x in first)
	assert math.isclose(cosine_similarity(first, first), 1.0)


def test_generate_embedding_offline_uses_local_vector():
	vector = asyncio.run(generate_embedding("Buy tea"))
	assert vector == deterministic_embedding("Buy tea")
