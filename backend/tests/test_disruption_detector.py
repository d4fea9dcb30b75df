"""Tests for the disruption detector and its phrase parser."""

from treninfo.core.disruption_detector import detect, parse_disruption_phrases
from treninfo.core.models import (
    DisruptionEvidence,
    DisruptionType,
    LastDetection,
    StopRecord,
    TimePoint,
)

T0 = 1_715_328_000_000  # 2024-05-10 10:00 Rome


def make_stops(departed: bool = False, arrived_at: int = -1) -> tuple[StopRecord, ...]:
    """Milano -> Bologna -> Firenze -> Roma, with real times up to ``arrived_at``."""
    names = ["Milano", "Bologna", "Firenze", "Roma"]
    stops = []
    for i, name in enumerate(names):
        arrival = None if i == 0 else TimePoint(
            scheduled_epoch=T0 + i * 3_600_000,
            actual_epoch=T0 + i * 3_600_000 if 0 < i <= arrived_at else None,
        )
        departure = None if i == len(names) - 1 else TimePoint(
            scheduled_epoch=T0 + i * 3_600_000 + 120_000,
            actual_epoch=T0 + i * 3_600_000 + 120_000 if (i == 0 and departed) or 0 < i < arrived_at else None,
        )
        stops.append(StopRecord(station_name=name, arrival=arrival, departure=departure))
    return tuple(stops)


def test_parse_segment_phrase():
    boundary = parse_disruption_phrases("Treno cancellato da Milano a Roma")
    assert boundary.cancelled_from == "Milano"
    assert boundary.cancelled_to == "Roma"
    assert boundary.terminated_at is None


def test_parse_arrives_at_phrase():
    boundary = parse_disruption_phrases("Il treno arriva a Firenze Santa Maria Novella. Corsa cancellata.")
    assert boundary.terminated_at == "Firenze Santa Maria Novella"
    assert boundary.cancelled_from == "Firenze Santa Maria Novella"


def test_parse_limited_phrase():
    boundary = parse_disruption_phrases("Corsa limitata fino a Bologna Centrale.")
    assert boundary.terminated_at == "Bologna Centrale"
    assert boundary.cancelled_from == "Bologna Centrale"
    assert boundary.cancelled_to is None


def test_parse_nothing_structured():
    assert parse_disruption_phrases("Treno soppresso per sciopero") is None
    assert parse_disruption_phrases("") is None
    assert parse_disruption_phrases(None) is None


def test_no_evidence_is_none():
    info = detect(DisruptionEvidence(), make_stops(departed=True, arrived_at=1))
    assert info.type == DisruptionType.NONE
    assert info.reason_text == ""


def test_cancelled_before_departure_is_full_suppression():
    evidence = DisruptionEvidence(subtitle="Treno cancellato da Milano a Roma")
    info = detect(evidence, make_stops(departed=False))
    assert info.type == DisruptionType.FULL_SUPPRESSION
    assert info.origin == "Milano"
    assert info.destination == "Roma"
    assert info.reason_text == "Treno cancellato da Milano a Roma"


def test_cancelled_after_departure_is_segment():
    evidence = DisruptionEvidence(subtitle="Treno cancellato da Milano a Roma")
    info = detect(evidence, make_stops(departed=True))
    assert info.type == DisruptionType.SEGMENT
    assert info.cancelled_from_station == "Milano"
    assert info.cancelled_to_station == "Roma"


def test_cancel_flag_alone_suppresses():
    info = detect(DisruptionEvidence(cancelled_flag=True), make_stops())
    assert info.type == DisruptionType.FULL_SUPPRESSION


def test_partial_keyword_falls_back_to_last_real_stop():
    evidence = DisruptionEvidence(notices=("Il treno termina la corsa per guasto",))
    info = detect(evidence, make_stops(departed=True, arrived_at=2))
    assert info.type == DisruptionType.SEGMENT
    assert info.terminated_at_station == "Firenze"
    assert info.cancelled_from_station == "Firenze"
    assert info.cancelled_to_station == "Roma"


def test_suppressed_stop_list_marks_partial():
    evidence = DisruptionEvidence(suppressed_stations=("Firenze",))
    info = detect(evidence, make_stops(departed=True, arrived_at=1))
    assert info.type == DisruptionType.SEGMENT
    assert info.terminated_at_station == "Bologna"


def test_partial_before_departure_is_not_a_segment():
    evidence = DisruptionEvidence(route_variation="Corsa limitata a Bologna")
    info = detect(evidence, make_stops(departed=False))
    assert info.type == DisruptionType.NONE
    assert info.reason_text == "Corsa limitata a Bologna"


def test_arrival_anywhere_counts_as_departed():
    """A missing origin departure does not hide a real arrival further on."""
    evidence = DisruptionEvidence(subtitle="Treno soppresso")
    info = detect(evidence, make_stops(departed=False, arrived_at=1))
    assert info.type == DisruptionType.SEGMENT


def test_last_real_stop_preferred_over_last_detection():
    stops = make_stops(departed=True)
    evidence = DisruptionEvidence(subtitle="Treno interrotto")
    info = detect(evidence, stops, last_detection=LastDetection(station_name="Lodi"))
    # origin departure is real, so the origin is the last real stop
    assert info.terminated_at_station == "Milano"

    info = detect(evidence, (), "Milano", "Roma", LastDetection(station_name="Lodi"))
    assert info.type == DisruptionType.NONE


def test_full_suppression_never_has_real_departures():
    for subtitle in ("Treno cancellato", "Treno soppresso", ""):
        for departed in (False, True):
            stops = make_stops(departed=departed)
            info = detect(DisruptionEvidence(subtitle=subtitle), stops)
            if info.type == DisruptionType.FULL_SUPPRESSION:
                assert all(s.real_departure is None for s in stops)


def test_intermediate_departure_alone_means_departed():
    """Only Bologna reports a real departure; the run has still left its origin."""
    stops = (
        StopRecord(station_name="Milano", departure=TimePoint(scheduled_epoch=T0)),
        StopRecord(
            station_name="Bologna",
            arrival=TimePoint(scheduled_epoch=T0 + 3_600_000),
            departure=TimePoint(scheduled_epoch=T0 + 3_720_000, actual_epoch=T0 + 3_720_000),
        ),
        StopRecord(station_name="Roma", arrival=TimePoint(scheduled_epoch=T0 + 7_200_000)),
    )
    info = detect(DisruptionEvidence(subtitle="Treno cancellato da Bologna a Roma"), stops)
    assert info.type == DisruptionType.SEGMENT
    assert info.cancelled_from_station == "Bologna"
    assert info.cancelled_to_station == "Roma"
