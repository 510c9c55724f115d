from __future__ import annotations

import itertools

import pytest

from cosmos_errors import ImageDimensionsUnknown
from cosmos_viewer.viewport_mapper import (
    ImageDimensions,
    ViewportState,
    fraction_in_bounds,
    home_state,
    image_fraction_to_viewport_pixel,
    viewport_pixel_to_image_fraction,
)

DIMS = ImageDimensions(4000.0, 3000.0)

STATES = [
    ViewportState(1.0, 0.5, 0.375, 0.0, 1024.0, 768.0),
    ViewportState(7.3, 0.21, 0.64, 0.0, 1024.0, 768.0),
    ViewportState(0.4, -0.2, 1.1, 0.0, 800.0, 1200.0),
    ViewportState(2.5, 0.5, 0.375, 90.0, 1024.0, 768.0),
    ViewportState(13.0, 0.77, 0.12, 33.5, 1920.0, 1080.0),
]
FRACTIONS = [0.0, 0.25, 0.4, 0.5, 0.999, 1.0]


@pytest.mark.parametrize("state", STATES)
def test_fraction_pixel_round_trip(state):
    for x_fraction, y_fraction in itertools.product(FRACTIONS, FRACTIONS):
        screen = image_fraction_to_viewport_pixel(x_fraction, y_fraction, state, DIMS)
        recovered = viewport_pixel_to_image_fraction(screen[0], screen[1], state, DIMS)
        assert recovered == pytest.approx((x_fraction, y_fraction), abs=1e-9)


def test_home_view_maps_corners_to_container_edges():
    state = home_state(DIMS, 1024.0, 768.0)
    assert state.zoom == pytest.approx(1.0)
    assert image_fraction_to_viewport_pixel(0.0, 0.0, state, DIMS) == pytest.approx((0.0, 0.0))
    assert image_fraction_to_viewport_pixel(1.0, 1.0, state, DIMS) == pytest.approx((1024.0, 768.0))
    assert image_fraction_to_viewport_pixel(0.5, 0.5, state, DIMS) == pytest.approx((512.0, 384.0))


def test_home_view_fits_tall_images():
    tall = ImageDimensions(1000.0, 4000.0)
    state = home_state(tall, 1000.0, 1000.0)
    top = image_fraction_to_viewport_pixel(0.5, 0.0, state, tall)
    bottom = image_fraction_to_viewport_pixel(0.5, 1.0, state, tall)
    assert top[1] == pytest.approx(0.0)
    assert bottom[1] == pytest.approx(1000.0)


def test_zoom_scales_distance_from_centre():
    base = ViewportState(1.0, 0.5, 0.375, 0.0, 1024.0, 768.0)
    zoomed = base.with_changes(zoom=2.0)
    near = image_fraction_to_viewport_pixel(0.75, 0.5, base, DIMS)
    far = image_fraction_to_viewport_pixel(0.75, 0.5, zoomed, DIMS)
    assert far[0] - 512.0 == pytest.approx(2 * (near[0] - 512.0))


def test_rotation_turns_clockwise_about_centre():
    state = ViewportState(1.0, 0.5, 0.375, 90.0, 1024.0, 768.0)
    x, y = image_fraction_to_viewport_pixel(0.75, 0.5, state, DIMS)
    assert (x, y) == pytest.approx((512.0, 384.0 + 256.0))


def test_clicks_outside_the_image_are_not_clamped():
    state = home_state(DIMS, 1024.0, 768.0).with_changes(zoom=0.5)
    x_fraction, y_fraction = viewport_pixel_to_image_fraction(1.0, 1.0, state, DIMS)
    assert x_fraction < 0.0
    assert y_fraction < 0.0
    assert not fraction_in_bounds(x_fraction, y_fraction)


def test_pure_functions_are_repeatable():
    state = STATES[4]
    first = image_fraction_to_viewport_pixel(0.3, 0.6, state, DIMS)
    assert image_fraction_to_viewport_pixel(0.3, 0.6, state, DIMS) == first


@pytest.mark.parametrize("dims", [None, ImageDimensions(0.0, 100.0), ImageDimensions(100.0, float("nan"))])
def test_unknown_dimensions_are_a_precondition_failure(dims):
    state = STATES[0]
    with pytest.raises(ImageDimensionsUnknown):
        image_fraction_to_viewport_pixel(0.5, 0.5, state, dims)
    with pytest.raises(ImageDimensionsUnknown):
        viewport_pixel_to_image_fraction(10.0, 10.0, state, dims)


def test_degenerate_viewport_is_rejected():
    with pytest.raises(ValueError):
        image_fraction_to_viewport_pixel(0.5, 0.5, ViewportState(0.0, 0.5, 0.5), DIMS)
