"""
Unit tests for local-maxima peak detection
"""
import random
from datetime import datetime, timedelta, timezone

import pytest

from floodpeaks.models import Sample, SourceTag
from floodpeaks.peak_detector import PeakDetectorConfig, find_peaks

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def hourly(values, start=T0, step=timedelta(hours=1)):
    """Build a series with one sample per step."""
    return [Sample(start + i * step, float(v)) for i, v in enumerate(values)]


class TestBasicDetection:
    """Tests for single-peak detection."""

    def test_single_peak(self):
        """A simple rise and fall should produce one peak at the top."""
        samples = hourly([1.0, 2.0, 3.0, 2.0, 1.0])
        config = PeakDetectorConfig(min_separation=timedelta(minutes=30), min_prominence=0.5)
        peaks = find_peaks(samples, config)
        assert len(peaks) == 1
        assert peaks[0].observed_time == T0 + timedelta(hours=2)
        assert peaks[0].value == 3.0

    def test_key_is_observed_time(self):
        """Plain peaks are identified by their observed time."""
        peaks = find_peaks(hourly([0, 1, 0]), PeakDetectorConfig(min_prominence=0.5))
        assert peaks[0].key == peaks[0].observed_time

    def test_source_tag_attached(self):
        """Every event carries the series' source tag."""
        peaks = find_peaks(hourly([0, 1, 0]), PeakDetectorConfig(min_prominence=0.5), source=SourceTag.FORECAST)
        assert peaks[0].source is SourceTag.FORECAST

    @pytest.mark.parametrize("values", [[], [1.0], [1.0, 2.0]])
    def test_short_series_has_no_peaks(self, values):
        """Fewer than 3 samples cannot contain an interior maximum."""
        assert find_peaks(hourly(values)) == []

    def test_endpoints_are_not_peaks(self):
        """A series rising to its last sample has no peak."""
        assert find_peaks(hourly([1, 2, 3, 4, 5]), PeakDetectorConfig(min_prominence=0.1)) == []


class TestProminence:
    """Tests for the prominence filter."""

    def test_small_bump_rejected(self):
        """Bumps below the minimum prominence are noise."""
        samples = hourly([1.0, 1.02, 1.0, 1.0])
        assert find_peaks(samples, PeakDetectorConfig(min_prominence=0.05)) == []

    def test_flat_series_has_no_peaks(self):
        """Every flat sample is a candidate, but none is prominent."""
        assert find_peaks(hourly([2.0] * 10)) == []

    def test_neighborhood_radius_limits_minimum(self):
        """Only samples inside the radius count toward the local minimum."""
        # The trough at index 0 is outside a radius of 1 around the peak at index 6
        samples = hourly([0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 5.2, 5.0])
        narrow = PeakDetectorConfig(min_prominence=0.5, neighborhood_radius=1)
        wide = PeakDetectorConfig(min_prominence=0.5, neighborhood_radius=6)
        assert find_peaks(samples, narrow) == []
        assert [p.value for p in find_peaks(samples, wide)] == [5.2]


class TestSeparation:
    """Tests for declustering by minimum separation."""

    CONFIG = PeakDetectorConfig(min_separation=timedelta(hours=5), min_prominence=0.5)

    def test_higher_later_peak_replaces(self):
        """Within the separation, a strictly higher later peak wins."""
        peaks = find_peaks(hourly([0, 2, 0, 3, 0]), self.CONFIG)
        assert len(peaks) == 1
        assert peaks[0].observed_time == T0 + timedelta(hours=3)
        assert peaks[0].value == 3.0

    def test_lower_later_peak_dropped(self):
        """Within the separation, a lower later peak is dropped."""
        peaks = find_peaks(hourly([0, 3, 0, 2, 0]), self.CONFIG)
        assert [(p.observed_time, p.value) for p in peaks] == [(T0 + timedelta(hours=1), 3.0)]

    def test_distant_peaks_both_kept(self):
        """Peaks a tidal cycle apart are both kept."""
        values = [0.0] * 25
        values[3] = 3.0
        values[16] = 2.5
        peaks = find_peaks(hourly(values), self.CONFIG)
        assert [p.observed_time for p in peaks] == [T0 + timedelta(hours=3), T0 + timedelta(hours=16)]

    def test_plateau_keeps_first_sample(self):
        """A flat top resolves to the first sample reaching the maximum."""
        peaks = find_peaks(hourly([0, 3, 3, 3, 0]), self.CONFIG)
        assert len(peaks) == 1
        assert peaks[0].observed_time == T0 + timedelta(hours=1)

    @pytest.mark.parametrize("seed", range(20))
    def test_random_series_respect_separation(self, seed):
        """No two peaks are ever closer than the separation, and output is time-ordered."""
        rng = random.Random(seed)
        values = [rng.uniform(0, 5) for _ in range(300)]
        config = PeakDetectorConfig(
            min_separation=timedelta(minutes=rng.choice([15, 60, 180, 300])),
            min_prominence=rng.choice([0.0, 0.1, 1.0]),
            neighborhood_radius=rng.choice([1, 3, 6]),
        )
        peaks = find_peaks(hourly(values, step=timedelta(minutes=15)), config)
        for prev, cur in zip(peaks, peaks[1:]):
            assert cur.observed_time > prev.observed_time
            assert cur.observed_time - prev.observed_time >= config.min_separation
