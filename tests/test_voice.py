import pytest

from groundchat.voice import RecognitionResult, append_transcript, final_transcript


@pytest.mark.parametrize(
    "question, transcript, expected",
    [
        ("", "door is stuck", "door is stuck"),
        ("   ", "door is stuck", "door is stuck"),
        ("The lift", "stops between floors", "The lift stops between floors"),
        ("The lift  ", "  stops", "The lift stops"),
        ("The lift", "", "The lift"),
    ],
)
def test_append_transcript(question, transcript, expected):
    assert append_transcript(question, transcript) == expected


def test_final_transcript_ignores_interim_results():
    results = [
        RecognitionResult(transcript="door ", is_final=True),
        RecognitionResult(transcript="is stu", is_final=False),
        RecognitionResult(transcript="is stuck ", is_final=True),
    ]
    assert final_transcript(results) == "door is stuck"
    assert final_transcript([RecognitionResult(transcript="maybe")]) == ""
