"""Static Replicate parameters for each image-to-image model tier."""

import math
from dataclasses import dataclass

from img2img.services.exceptions import InvalidModelError

PROVIDER = "replicate"

ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "9:16", "16:9")
VALID_NUM_OUTPUTS = (1, 2, 4)

_Z_IMAGE_TURBO_VERSION = (
    "prunaai/z-image-turbo-img2img:"
    "5c958e90e0f904240629ee35c69196e3bd790b5528c0696705ebdb1656871dd8"
)


@dataclass(frozen=True)
class ModelConfig:
    """Versioned Replicate parameters and pricing for one model tier."""

    version: str
    default_strength: float
    default_lora_scale: float
    default_guidance_scale: float
    default_output_quality: int
    default_inference_steps: int
    credits_per_image: float

    @property
    def model_id(self) -> str:
        """Provider model id without the version hash."""
        return self.version.split(":", 1)[0]


MODEL_CONFIGS: dict[str, ModelConfig] = {
    "max": ModelConfig(
        version=_Z_IMAGE_TURBO_VERSION,
        default_strength=0.6,
        default_lora_scale=-0.03,
        default_guidance_scale=0,
        default_output_quality=80,
        default_inference_steps=14,
        credits_per_image=1.5,
    ),
    "standard": ModelConfig(
        version=_Z_IMAGE_TURBO_VERSION,
        default_strength=0.5,
        default_lora_scale=-0.03,
        default_guidance_scale=0,
        default_output_quality=70,
        default_inference_steps=10,
        credits_per_image=1.0,
    ),
    "turbo": ModelConfig(
        version=_Z_IMAGE_TURBO_VERSION,
        default_strength=0.7,
        default_lora_scale=-0.03,
        default_guidance_scale=0,
        default_output_quality=60,
        default_inference_steps=6,
        credits_per_image=0.5,
    ),
}


def get_model_config(model: str) -> ModelConfig:
    """Look up configuration for a model identifier.

    Raises:
        InvalidModelError: If model is not "max", "standard" or "turbo"
    """
    try:
        return MODEL_CONFIGS[model]
    except (KeyError, TypeError):
        raise InvalidModelError(str(model)) from None


def calculate_credits(config: ModelConfig, image_count: int) -> float:
    """Credits for image_count generated images, rounded half-up to one decimal."""
    return math.floor(config.credits_per_image * image_count * 10 + 0.5) / 10
