from __future__ import annotations

from checkin.safety_policy import HARD_STOP_PHRASES, matched_hard_stops, matches_hard_stop


def test_red_flag_phrases_match_case_insensitively() -> None:
    assert matches_hard_stop("I have CRUSHING chest pain")
    assert matches_hard_stop("my incision won't stop bleeding")
    assert matches_hard_stop("I feel confused and dizzy")
    assert matches_hard_stop("the pain is spreading down my leg")
    assert matches_hard_stop("I had a fever of 104 last night")
    assert matches_hard_stop("should I call 911?")


def test_curly_apostrophe_matches_straight_phrase() -> None:
    assert matches_hard_stop("I can’t breathe when I lie down")


def test_ordinary_recovery_talk_does_not_match() -> None:
    assert not matches_hard_stop("a little sore around the incision")
    assert not matches_hard_stop("same as yesterday, ok")
    assert not matches_hard_stop("")
    assert not matches_hard_stop("   ")


def test_phrases_do_not_match_inside_other_words() -> None:
    # "stroke" must not fire on "strokes" of a paintbrush, nor "911" inside a longer number.
    assert not matches_hard_stop("I did a few brushstrokes today")
    assert not matches_hard_stop("my zip code is 59112")


def test_matched_hard_stops_reports_catalog_order() -> None:
    hits = matched_hard_stops("crushing chest pain and shortness of breath")
    assert hits == ["chest pain", "crushing", "shortness of breath"]
    assert all(h in HARD_STOP_PHRASES for h in hits)


def test_inflected_radiating_pain_matches() -> None:
    assert matches_hard_stop("the pain radiates down my left arm")
    assert matches_hard_stop("it spreads to my back")
    assert matches_hard_stop("a shooting pain into my jaw")
    assert matched_hard_stops("the pain radiates down my left arm") == ["radiating pain"]


def test_numeric_fever_readings_match() -> None:
    assert matches_hard_stop("my fever is 104")
    assert matches_hard_stop("temperature was 103.5 this morning")
    assert matches_hard_stop("my temp is 39.8")
    assert matched_hard_stops("my fever is 104") == ["fever reading"]


def test_normal_temperatures_and_spreading_ointment_do_not_match() -> None:
    assert not matches_hard_stop("my temperature was 98.6")
    assert not matches_hard_stop("low fever, about 100.4")
    assert not matches_hard_stop("I spread the ointment on the incision")
