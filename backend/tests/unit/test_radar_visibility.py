import pytest

from liveradar.domain.radar import geodesy, visibility
from liveradar.domain.radar.models import AccessTier, RadiusConfiguration, VisibilityTier

THRESHOLDS = (150.0, 500.0, 1_000.0, 3_000.0, 5_000.0)


@pytest.mark.parametrize(
	"distance, expected",
	[
		(0.0, VisibilityTier.IMMEDIATE),
		(149.9, VisibilityTier.IMMEDIATE),
		(150.0, VisibilityTier.NEAR),
		(750.0, VisibilityTier.MEDIUM),
		(2_000.0, VisibilityTier.FAR),
		(4_999.0, VisibilityTier.EDGE),
		(5_000.0, VisibilityTier.HIDDEN),
		(12_000.0, VisibilityTier.HIDDEN),
	],
)
def test_tier_boundaries(distance, expected):
	assert visibility.tier(distance, THRESHOLDS) is expected


def test_tier_is_monotonic_in_distance():
	previous = VisibilityTier.IMMEDIATE
	for meters in range(0, 6_000, 25):
		current = visibility.tier(float(meters), THRESHOLDS)
		assert current >= previous
		previous = current


def test_blur_is_zero_inside_floor_and_grows_to_one():
	assert visibility.blur(0.0, 5_000, 150) == 0.0
	assert visibility.blur(149.0, 5_000, 150) == 0.0
	assert visibility.blur(2_500.0, 5_000, 150) == pytest.approx(0.5 ** 0.7)
	assert visibility.blur(5_000.0, 5_000, 150) == 1.0
	assert visibility.blur(7_500.0, 5_000, 150) == 1.0


def test_opacity_fades_after_sixty_percent_of_radius():
	assert visibility.opacity(0.0, 5_000) == 1.0
	assert visibility.opacity(2_999.0, 5_000) == 1.0
	assert visibility.opacity(4_000.0, 5_000) == pytest.approx(0.65)
	assert visibility.opacity(5_000.0, 5_000) == pytest.approx(0.3)
	assert visibility.opacity(9_000.0, 5_000) == pytest.approx(0.3)


def test_radar_position_centre_and_rim():
	assert visibility.radar_position(0.0, 123.0, 5_000) == pytest.approx((0.5, 0.5))
	assert visibility.radar_position(5_000.0, 0.0, 5_000) == pytest.approx((0.5, 0.05))
	assert visibility.radar_position(5_000.0, 90.0, 5_000) == pytest.approx((0.95, 0.5))
	assert visibility.radar_position(5_000.0, 180.0, 5_000) == pytest.approx((0.5, 0.95))
	assert visibility.radar_position(5_000.0, 270.0, 5_000) == pytest.approx((0.05, 0.5))


def test_radar_position_caps_the_radius():
	x, y = visibility.radar_position(20_000.0, 90.0, 5_000)
	assert (x, y) == pytest.approx((0.95, 0.5))
	for bearing in range(0, 360, 30):
		x, y = visibility.radar_position(1e9, float(bearing), 5_000)
		assert 0.0 <= x <= 1.0 and 0.0 <= y <= 1.0


@pytest.mark.parametrize(
	"meters, label",
	[
		(12.0, "here"),
		(49.9, "here"),
		(75.0, "75m"),
		(130.1, "130m"),
		(455.0, "460m"),
		(1_234.0, "1.2km"),
		(9_940.0, "9.9km"),
		(12_600.0, "13km"),
	],
)
def test_distance_label(meters, label):
	assert visibility.distance_label(meters) == label


def test_default_configuration_is_valid():
	config = RadiusConfiguration()
	assert config.thresholds == THRESHOLDS
	assert config.immediate_floor_m == 150.0


@pytest.mark.parametrize(
	"kwargs",
	[
		{"thresholds": (150.0, 500.0, 1_000.0, 3_000.0)},
		{"thresholds": (150.0, 100.0, 1_000.0, 3_000.0, 5_000.0)},
		{"thresholds": (150.0, 150.0, 1_000.0, 3_000.0, 5_000.0)},
		{"thresholds": (0.0, 500.0, 1_000.0, 3_000.0, 5_000.0)},
		{"standard_radius_m": 20_000.0},
		{"premium_radius_m": 50_000_000.0},
	],
)
def test_invalid_configuration_is_rejected(kwargs):
	with pytest.raises(ValueError):
		RadiusConfiguration(**kwargs)


def test_effective_radius_per_tier():
	config = RadiusConfiguration()
	assert config.radius_for(AccessTier.STANDARD) == 5_000.0
	assert config.radius_for(AccessTier.PREMIUM) == 15_000.0
	assert config.radius_for(AccessTier.PRIVILEGED) == 40_000_000.0
	assert config.radius_for(AccessTier.STANDARD, global_reach=True) == 40_000_000.0


def test_edge_ceiling_stretches_to_wider_radius():
	config = RadiusConfiguration()
	assert config.thresholds_for(5_000.0) == THRESHOLDS
	assert config.thresholds_for(1_000.0) == THRESHOLDS
	assert config.thresholds_for(15_000.0)[-1] == 15_000.0
	assert visibility.tier(12_000.0, config.thresholds_for(15_000.0)) is VisibilityTier.EDGE


def test_close_neighbours_are_immediate_and_unblurred():
	config = RadiusConfiguration()
	radius = config.radius_for(AccessTier.STANDARD)
	meters = geodesy.distance(52.5200, 13.4050, 52.5210, 13.4060)
	assert meters == pytest.approx(130.0, abs=1.0)
	assert visibility.tier(meters, config.thresholds_for(radius)) is VisibilityTier.IMMEDIATE
	assert visibility.blur(meters, radius, config.immediate_floor_m) == 0.0
	assert visibility.opacity(meters, radius) == 1.0
