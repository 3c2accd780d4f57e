"""Tests for preprocessing strategies, scene selection and edge maps."""

import numpy as np
import pytest

from docquad.edges import auto_canny_thresholds, detect_edges
from docquad.preprocessing import (
    DEFAULT_STRATEGIES,
    WHITE_ON_WHITE_STRATEGIES,
    PreprocessStrategy,
    Preprocessor,
    StrategySelector,
    analyze_scene,
)

from conftest import make_rect_frame


def white_on_white_frame() -> np.ndarray:
    return make_rect_frame(background=200, foreground=215)


def test_default_order():
    assert DEFAULT_STRATEGIES == (
        PreprocessStrategy.STANDARD,
        PreprocessStrategy.CLAHE_ENHANCED,
        PreprocessStrategy.SATURATION_CHANNEL,
        PreprocessStrategy.BILATERAL,
        PreprocessStrategy.HEAVY_MORPH,
    )


def test_white_on_white_order():
    assert WHITE_ON_WHITE_STRATEGIES == (
        PreprocessStrategy.DOG,
        PreprocessStrategy.GRADIENT_MAGNITUDE,
        PreprocessStrategy.LAB_CLAHE,
        PreprocessStrategy.CLAHE_ENHANCED,
        PreprocessStrategy.MULTICHANNEL_FUSION,
        PreprocessStrategy.ADAPTIVE_THRESHOLD,
    )


def test_binary_output_flags():
    binary = {s for s in PreprocessStrategy if s.is_binary_output}
    assert binary == {
        PreprocessStrategy.ADAPTIVE_THRESHOLD,
        PreprocessStrategy.GRADIENT_MAGNITUDE,
        PreprocessStrategy.MULTICHANNEL_FUSION,
        PreprocessStrategy.DIRECTIONAL_GRADIENT,
    }
    assert PreprocessStrategy.LAB_CLAHE.canny_thresholds == (30, 60)
    assert PreprocessStrategy.HEAVY_MORPH.close_kernel == 5


def test_scene_classification(rect_frame):
    assert not analyze_scene(rect_frame).is_white_on_white
    assert analyze_scene(white_on_white_frame()).is_white_on_white


def test_selector_picks_list_by_scene(rect_frame):
    selector = StrategySelector()
    assert selector.select(rect_frame) == list(DEFAULT_STRATEGIES)

    selector.reset()
    assert selector.select(white_on_white_frame()) == list(WHITE_ON_WHITE_STRATEGIES)


def test_selector_caches_scene(rect_frame):
    selector = StrategySelector()
    selector.select(rect_frame)
    # Cached classification survives a scene change until the cache expires
    assert selector.select(white_on_white_frame()) == list(DEFAULT_STRATEGIES)

    for _ in range(StrategySelector.SCENE_CACHE_FRAMES):
        result = selector.select(white_on_white_frame())
    assert result == list(WHITE_ON_WHITE_STRATEGIES)


@pytest.mark.parametrize("strategy", list(PreprocessStrategy))
def test_every_strategy_produces_frame_sized_output(strategy, rect_frame):
    result = Preprocessor().apply(rect_frame, strategy)
    assert result.is_edge_map == strategy.is_binary_output
    assert result.image.dtype == np.uint8
    assert result.image.ndim == 2

    edge_map = result.to_edge_map()
    assert edge_map.shape[:2] == rect_frame.shape[:2]
    assert set(np.unique(edge_map)).issubset({0, 255})


def test_saturation_on_grayscale_input(rect_frame):
    gray = rect_frame[:, :, 0].copy()
    result = Preprocessor().apply(gray, PreprocessStrategy.SATURATION_CHANNEL)
    assert result.image.shape == gray.shape


def test_empty_frame_rejected():
    with pytest.raises(ValueError):
        Preprocessor().apply(np.zeros((0, 0, 3), dtype=np.uint8), PreprocessStrategy.STANDARD)


def test_auto_canny_bounds():
    assert auto_canny_thresholds(np.zeros((10, 10), dtype=np.uint8)) == (10, 30)
    low, high = auto_canny_thresholds(np.full((10, 10), 255, dtype=np.uint8))
    assert low == 170
    assert high == 250


def test_edges_outline_rectangle(rect_frame):
    edges = detect_edges(rect_frame[:, :, 0])
    assert edges[80, 300] == 255 or edges[81, 300] == 255 or edges[79, 300] == 255
    assert edges[240, 320] == 0


def test_last_scene_does_not_advance_cache(rect_frame):
    selector = StrategySelector()
    assert selector.last_scene is None
    selector.select(rect_frame)
    scene = selector.last_scene
    assert scene is not None and not scene.is_white_on_white
    assert selector.last_scene is scene
    assert selector._frames_since_analysis == 1
