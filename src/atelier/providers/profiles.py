"""Built-in artifact profiles."""

from __future__ import annotations

from atelier.domain import ArtifactKind, RefinementMode

from .base import ArtifactProfile

IMAGE_PROFILE = ArtifactProfile(
    kind=ArtifactKind.IMAGE,
    display_name="Image",
    channels=("image",),
    supported_modes=frozenset({RefinementMode.GENERATION, RefinementMode.UPSCALE}),
    extension=".png",
)

# Material maps are generated together and only usable as a set.
MATERIAL_PROFILE = ArtifactProfile(
    kind=ArtifactKind.MATERIAL,
    display_name="Material",
    channels=("albedo", "normal", "height", "metallic", "roughness", "occlusion"),
    supported_modes=frozenset({RefinementMode.GENERATION, RefinementMode.PBR}),
    extension=".png",
    auto_apply_modes=frozenset({RefinementMode.PBR}),
)

ANIMATION_PROFILE = ArtifactProfile(
    kind=ArtifactKind.ANIMATION,
    display_name="Animation",
    channels=("animation",),
    supported_modes=frozenset({RefinementMode.GENERATION}),
    extension=".fbx",
)

AUDIO_PROFILE = ArtifactProfile(
    kind=ArtifactKind.AUDIO,
    display_name="Audio",
    channels=("audio",),
    supported_modes=frozenset({RefinementMode.GENERATION}),
    extension=".wav",
    max_variations=8,
)

DEFAULT_PROFILES = (IMAGE_PROFILE, MATERIAL_PROFILE, ANIMATION_PROFILE, AUDIO_PROFILE)

__all__ = [
    "ANIMATION_PROFILE",
    "AUDIO_PROFILE",
    "DEFAULT_PROFILES",
    "IMAGE_PROFILE",
    "MATERIAL_PROFILE",
]
