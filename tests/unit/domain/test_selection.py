"""Tests for algorithm selection."""

from tempokey.domain.entities import AlgorithmOutcome, FeatureSource, TrackFeatures
from tempokey.domain.selection import reselect, select_key, select_tempo

TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"


class TestSelectTempo:
    """Test the tempo tie-break."""

    def test_tie_goes_to_essentia(self) -> None:
        essentia = AlgorithmOutcome(tempo=120.0, tempo_confidence=0.5)
        librosa = AlgorithmOutcome(tempo=60.0, tempo_confidence=0.5)

        assert select_tempo(essentia, librosa) == FeatureSource.ESSENTIA

    def test_librosa_wins_when_strictly_more_confident(self) -> None:
        essentia = AlgorithmOutcome(tempo=120.0, tempo_confidence=0.5)
        librosa = AlgorithmOutcome(tempo=60.0, tempo_confidence=0.51)

        assert select_tempo(essentia, librosa) == FeatureSource.LIBROSA

    def test_missing_confidence_counts_as_zero(self) -> None:
        essentia = AlgorithmOutcome(tempo=120.0)
        librosa = AlgorithmOutcome(tempo=60.0, tempo_confidence=0.1)

        assert select_tempo(essentia, librosa) == FeatureSource.LIBROSA

    def test_only_librosa_has_value(self) -> None:
        assert (
            select_tempo(AlgorithmOutcome(), AlgorithmOutcome(tempo=99.0))
            == FeatureSource.LIBROSA
        )

    def test_none_outcomes(self) -> None:
        assert select_tempo(None, None) == FeatureSource.ESSENTIA


class TestSelectKey:
    """Key selection is independent of tempo selection."""

    def test_key_and_tempo_can_differ(self) -> None:
        essentia = AlgorithmOutcome(
            tempo=120.0, tempo_confidence=0.9, key="A", scale="minor", key_confidence=0.2
        )
        librosa = AlgorithmOutcome(
            tempo=60.0, tempo_confidence=0.1, key="C", scale="major", key_confidence=0.8
        )

        assert select_tempo(essentia, librosa) == FeatureSource.ESSENTIA
        assert select_key(essentia, librosa) == FeatureSource.LIBROSA


class TestSelectedValues:
    """Test the values a record displays."""

    def test_manual_pin_wins(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0, key="A", scale="minor"),
            tempo_selected=FeatureSource.MANUAL,
            key_selected=FeatureSource.MANUAL,
            manual_tempo=128.0,
            manual_key="F#",
            manual_scale="major",
        )

        assert record.selected_tempo == 128.0
        assert record.selected_key == "F#"
        assert record.selected_scale == "major"

    def test_librosa_selection(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0),
            librosa=AlgorithmOutcome(tempo=60.0),
            tempo_selected=FeatureSource.LIBROSA,
        )

        assert record.selected_tempo == 60.0

    def test_falls_back_to_whatever_exists(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            librosa=AlgorithmOutcome(key="D", scale="minor"),
            key_selected=FeatureSource.ESSENTIA,
        )

        assert record.selected_key == "D"
        assert record.selected_scale == "minor"
        assert record.selected_tempo is None

    def test_unresolved_mismatch_serves_nothing(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0, key="A", scale="minor"),
            tempo_selected=FeatureSource.ESSENTIA,
            key_selected=FeatureSource.ESSENTIA,
            identity_mismatch=True,
        )

        assert record.mismatch_unresolved is True
        assert record.selected_tempo is None
        assert record.selected_key is None
        assert record.selected_scale is None
        # algorithm outputs stay for diagnostics
        assert record.essentia.tempo == 120.0

    def test_mismatch_reviewed_as_match_is_served(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0, key="A", scale="minor"),
            identity_mismatch=True,
            mismatch_review_status="match",
        )

        assert record.mismatch_unresolved is False
        assert record.selected_tempo == 120.0
        assert record.selected_key == "A"


class TestReselect:
    """Test reselect()."""

    def test_manual_selection_survives(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0, key="A"),
            tempo_selected=FeatureSource.MANUAL,
            manual_tempo=128.0,
        )

        reselect(record)

        assert record.tempo_selected == FeatureSource.MANUAL
        assert record.key_selected == FeatureSource.ESSENTIA

    def test_manual_selection_dropped_without_keep(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            librosa=AlgorithmOutcome(tempo=90.0),
            tempo_selected=FeatureSource.MANUAL,
            manual_tempo=128.0,
        )

        reselect(record, keep_manual=False)

        assert record.tempo_selected == FeatureSource.LIBROSA

    def test_manual_selection_without_value_is_replaced(self) -> None:
        record = TrackFeatures(
            track_id=TRACK_ID,
            essentia=AlgorithmOutcome(tempo=120.0),
            tempo_selected=FeatureSource.MANUAL,
        )

        reselect(record)

        assert record.tempo_selected == FeatureSource.ESSENTIA

    def test_no_outputs_means_no_selection(self) -> None:
        record = TrackFeatures(track_id=TRACK_ID, tempo_selected=FeatureSource.ESSENTIA)

        reselect(record)

        assert record.tempo_selected is None
        assert record.key_selected is None
