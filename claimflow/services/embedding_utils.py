"""
Embedding utilities for proposal validation.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

from claimflow.config import (
	get_embedding_model_name,
	get_openai_api_key,
	is_ai_disabled,
	is_langfuse_enabled,
)
from claimflow.services.llm import shared_client


logger = logging.getLogger("claimflow.embedding")


async def generate_embedding(text: str) -> List[float]:
	"""
	Generate an embedding for text using OpenAI, or a deterministic local vector.

	The local vector is only used when no OpenAI key is configured (offline
	development and tests). API failures propagate so callers can decide how to
	treat an inconclusive comparison.
	"""
	api_key = (get_openai_api_key() or "").strip()
	if not api_key or is_ai_disabled():
		return deterministic_embedding(text)

	model = get_embedding_model_name()
	client = shared_client(api_key, traced=is_langfuse_enabled())
	resp = await client.embeddings.create(model=model, input=text)
	embedding = list(resp.data[0].embedding)
	logger.debug("[embedding.ok] model=%s dimension=%s", model, len(embedding))
	return embedding


def deterministic_embedding(text: str, dimension: int = 16) -> List[float]:
	# Map text to a small vector using a linear congruential sequence seeded by
	# its character codes. Identical text always maps to the identical vector.
	seed = sum(ord(c) for c in text) or 1
	vec = []
	for _ in range(dimension):
		seed = (1103515245 * seed + 12345) & 0x7FFFFFFF
		vec.append((seed % 1000) / 1000.0)
	return vec


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
	"""Cosine similarity over the common prefix of two vectors.

	Empty or zero-norm vectors score 0.
	"""
	if not vec_a or not vec_b:
		return 0.0
	dot = 0.0
	norm_a = 0.0
	norm_b = 0.0
	for a, b in zip(vec_a, vec_b):
		dot += a * b
		norm_a += a * a
		norm_b += b * b
	if norm_a == 0 or norm_b == 0:
		return 0.0
	return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
