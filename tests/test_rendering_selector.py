import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from ocr_models import Transcript
from rendering_selector import score_transcript, select_best


def test_score_combines_engine_confidence_and_text_signals():
    t = Transcript("Total amount Rs 450 on 12/03/2024 receipt", 0.8, "standard")
    score, reasons = score_transcript(t)
    # 0.8 + currency 0.05 + digits 0.05 + keywords 3 x 0.02
    assert score == pytest.approx(0.96)
    assert "currency" in reasons
    assert "digits" in reasons


def test_length_bonus_steps():
    short = score_transcript(Transcript("a" * 50, 0.5, "standard"))[0]
    medium = score_transcript(Transcript("a" * 150, 0.5, "standard"))[0]
    long = score_transcript(Transcript("a" * 350, 0.5, "standard"))[0]
    assert medium == pytest.approx(short + 0.1)
    assert long == pytest.approx(short + 0.2)


def test_equal_scores_prefer_standard_method():
    text = "Total: Rs. 450.00"
    transcripts = [
        Transcript(text, 0.7, "denoised"),
        Transcript(text, 0.7, "high-contrast"),
        Transcript(text, 0.7, "standard"),
    ]
    assert select_best(transcripts).method == "standard"


def test_equal_scores_prefer_longer_text():
    transcripts = [Transcript("abc", 0.5, "standard"), Transcript("abcd", 0.5, "denoised")]
    assert select_best(transcripts).method == "denoised"


def test_higher_score_wins_regardless_of_method():
    transcripts = [
        Transcript("garbled", 0.3, "standard"),
        Transcript("Total: Rs. 450.00 Date 12/03/2024", 0.6, "denoised"),
    ]
    assert select_best(transcripts).method == "denoised"


def test_no_transcripts():
    assert select_best([]) is None
