"""Model configuration and credit calculation tests."""

import pytest

from img2img.services.exceptions import InvalidModelError
from img2img.services.image_generation.model_configs import (
    MODEL_CONFIGS,
    calculate_credits,
    get_model_config,
)


def test_known_models():
    assert set(MODEL_CONFIGS) == {"max", "standard", "turbo"}

    turbo = get_model_config("turbo")
    assert turbo.default_strength == 0.7
    assert turbo.default_output_quality == 60
    assert turbo.default_inference_steps == 6
    assert turbo.model_id == "prunaai/z-image-turbo-img2img"


@pytest.mark.parametrize("model", ["ultra", "", "MAX", None])
def test_unknown_model_rejected(model):
    with pytest.raises(InvalidModelError):
        get_model_config(model)


@pytest.mark.parametrize(
    "model, count, expected",
    [
        ("max", 1, 1.5),
        ("max", 2, 3.0),
        ("max", 3, 4.5),
        ("standard", 4, 4.0),
        ("turbo", 1, 0.5),
        ("turbo", 3, 1.5),
        ("turbo", 0, 0.0),
    ],
)
def test_calculate_credits(model, count, expected):
    assert calculate_credits(get_model_config(model), count) == expected
