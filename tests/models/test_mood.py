import math

from whisperwalls.models.mood import (
    EMOTION_ORDER,
    NEUTRAL_MOOD,
    EmotionEnum,
    EmotionScores,
    MoodVector,
    dominant_emotion,
)


def test_emotion_order_is_declaration_order():
    assert EMOTION_ORDER[0] == EmotionEnum.JOY
    assert EMOTION_ORDER[-1] == EmotionEnum.ANTICIPATION
    assert len(EMOTION_ORDER) == 8


def test_neutral_mood_values():
    assert NEUTRAL_MOOD.sentiment == 0.0
    assert NEUTRAL_MOOD.intensity == 0.3
    assert NEUTRAL_MOOD.emotions.joy == 0.5
    assert NEUTRAL_MOOD.emotions.trust == 0.5
    assert NEUTRAL_MOOD.dominant_emotion == EmotionEnum.JOY


def test_from_payload_clamps_and_drops_unknown_keys():
    mood = MoodVector.from_payload(
        {
            "emotions": {"joy": 1.7, "anger": -0.2, "boredom": 0.9, "fear": "0.4"},
            "sentiment": -3,
            "intensity": math.nan,
        }
    )

    assert mood.emotions.joy == 1.0
    assert mood.emotions.anger == 0.0
    assert mood.emotions.fear == 0.4
    assert mood.sentiment == -1.0
    assert mood.intensity == 0.0
    assert not hasattr(mood.emotions, "boredom")


def test_from_payload_tolerates_garbage():
    mood = MoodVector.from_payload({"emotions": None, "sentiment": "very happy"})
    assert mood.sentiment == 0.0
    assert all(v == 0.0 for v in mood.emotions.as_dict().values())


def test_dominant_emotion_argmax():
    mood = MoodVector(emotions=EmotionScores(fear=0.9, joy=0.2))
    assert dominant_emotion(mood) == EmotionEnum.FEAR


def test_dominant_emotion_tie_goes_to_first_in_order():
    mood = MoodVector(emotions=EmotionScores(sadness=0.6, trust=0.6))
    assert dominant_emotion(mood) == EmotionEnum.SADNESS
