"""Selection rules: which algorithm's tempo/key to serve.

Hey future me - the tie-break goes to ESSENTIA. Librosa only wins when its confidence is
STRICTLY higher. Missing confidence counts as 0. This looks arbitrary and it is, but cached
selections and user expectations depend on it - don't "improve" it to >=!
"""

from tempokey.domain.entities import AlgorithmOutcome, FeatureSource, TrackFeatures


def _pick(
    value_a: object | None,
    confidence_a: float | None,
    value_b: object | None,
    confidence_b: float | None,
) -> FeatureSource:
    if value_b is None:
        return FeatureSource.ESSENTIA
    if value_a is None:
        return FeatureSource.LIBROSA
    if (confidence_b or 0.0) > (confidence_a or 0.0):
        return FeatureSource.LIBROSA
    return FeatureSource.ESSENTIA


def select_tempo(
    essentia: AlgorithmOutcome | None, librosa: AlgorithmOutcome | None
) -> FeatureSource:
    """Pick the algorithm whose tempo should be served."""
    essentia = essentia or AlgorithmOutcome()
    librosa = librosa or AlgorithmOutcome()
    return _pick(
        essentia.tempo,
        essentia.tempo_confidence,
        librosa.tempo,
        librosa.tempo_confidence,
    )


def select_key(
    essentia: AlgorithmOutcome | None, librosa: AlgorithmOutcome | None
) -> FeatureSource:
    """Pick the algorithm whose key/scale should be served (independent of tempo)."""
    essentia = essentia or AlgorithmOutcome()
    librosa = librosa or AlgorithmOutcome()
    return _pick(
        essentia.key,
        essentia.key_confidence,
        librosa.key,
        librosa.key_confidence,
    )


def selected_tempo(record: TrackFeatures) -> float | None:
    """Tempo to display: manual pin, selected algorithm, then whatever exists.

    Nothing is served while the record carries an unresolved identity mismatch. The merge
    keeps older algorithm values around and they belong to audio we no longer trust.
    """
    if record.mismatch_unresolved:
        return None
    if record.tempo_selected == FeatureSource.MANUAL and record.manual_tempo is not None:
        return record.manual_tempo
    if record.tempo_selected == FeatureSource.LIBROSA and record.librosa.tempo is not None:
        return record.librosa.tempo
    if record.essentia.tempo is not None:
        return record.essentia.tempo
    return record.librosa.tempo


def selected_key(record: TrackFeatures) -> tuple[str | None, str | None]:
    """(key, scale) to display, same precedence as selected_tempo()."""
    if record.mismatch_unresolved:
        return None, None
    if record.key_selected == FeatureSource.MANUAL and record.manual_key is not None:
        return record.manual_key, record.manual_scale
    if record.key_selected == FeatureSource.LIBROSA and record.librosa.key is not None:
        return record.librosa.key, record.librosa.scale
    if record.essentia.key is not None:
        return record.essentia.key, record.essentia.scale
    return record.librosa.key, record.librosa.scale


def reselect(record: TrackFeatures, keep_manual: bool = True) -> None:
    """Recompute tempo_selected/key_selected from the stored algorithm outputs.

    A MANUAL selection survives when keep_manual is set and the pin still has a value.
    Records without any algorithm output get no selection at all.
    """
    if not (
        keep_manual
        and record.tempo_selected == FeatureSource.MANUAL
        and record.manual_tempo is not None
    ):
        if record.essentia.tempo is None and record.librosa.tempo is None:
            record.tempo_selected = None
        else:
            record.tempo_selected = select_tempo(record.essentia, record.librosa)

    if not (
        keep_manual
        and record.key_selected == FeatureSource.MANUAL
        and record.manual_key is not None
    ):
        if record.essentia.key is None and record.librosa.key is None:
            record.key_selected = None
        else:
            record.key_selected = select_key(record.essentia, record.librosa)
