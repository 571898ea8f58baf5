"""Helpers turning a generation spec into wire requests."""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import replace

from atelier.domain import GenerationSpec
from atelier.providers import ArtifactProfile, RemoteRequest

MAX_SEED = 2**31 - 1


def clamp_seed(seed: int, variations: int) -> int:
    """Keep ``seed + variations`` within the remote seed range."""

    return max(0, min(seed, MAX_SEED - variations))


def resolve_seed(spec: GenerationSpec, variations: int) -> int:
    if spec.custom_seed is not None:
        return clamp_seed(spec.custom_seed, variations)
    return random.randint(0, MAX_SEED - variations)


def build_requests(
    profile: ArtifactProfile,
    spec: GenerationSpec,
    *,
    seed: int | None,
    references: Mapping[str, str] | None = None,
) -> list[RemoteRequest]:
    """Clone one request per variation, incrementing the seed for each clone."""

    variations = profile.effective_variations(spec)
    base = RemoteRequest(
        kind=spec.kind,
        refinement_mode=spec.refinement_mode,
        channels=profile.channels,
        prompt=spec.prompt,
        negative_prompt=spec.negative_prompt,
        model_id=spec.model_id,
        seed=seed,
        references=dict(references or {}),
    )
    return [
        replace(base, seed=None if seed is None else seed + index) for index in range(variations)
    ]


__all__ = ["MAX_SEED", "build_requests", "clamp_seed", "resolve_seed"]
