"""Artifact profile registry."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from atelier.domain import ArtifactKind, GenerationSpec

from .base import ArtifactProfile
from .profiles import DEFAULT_PROFILES


@dataclass(slots=True)
class ProfileRegistry:
    """Runtime registry mapping artifact kinds to their profiles."""

    _profiles: dict[ArtifactKind, ArtifactProfile] = field(default_factory=dict)

    def register(self, profile: ArtifactProfile, *, override: bool = False) -> None:
        if not override and profile.kind in self._profiles:
            existing = self._profiles[profile.kind]
            msg = f"Profile for {profile.kind} already registered ({existing.display_name})"
            raise ValueError(msg)
        self._profiles[profile.kind] = profile

    def get(self, kind: ArtifactKind) -> ArtifactProfile:
        try:
            return self._profiles[kind]
        except KeyError as exc:
            msg = f"Unknown artifact kind {kind}"
            raise KeyError(msg) from exc

    def list_profiles(self) -> Iterable[ArtifactProfile]:
        return tuple(self._profiles.values())

    def require(self, spec: GenerationSpec) -> ArtifactProfile:
        """Return the profile for ``spec`` after checking it supports the combination."""

        profile = self.get(spec.kind)
        profile.ensure_supported(spec)
        return profile


def default_registry() -> ProfileRegistry:
    registry = ProfileRegistry()
    for profile in DEFAULT_PROFILES:
        registry.register(profile)
    return registry


__all__ = ["ProfileRegistry", "default_registry"]
