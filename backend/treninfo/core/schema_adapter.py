"""Reduce any known backend response shape to a canonical TrainSnapshot.

Shapes are tried in a fixed order, richest first:

  1. principali  - ``payload.principali`` or ``payload.data.principali``
  2. treno       - ``payload.treno`` with a ``numeroTreno``
  3. enriched    - ``{ok, originCode, technical, referenceTimestamp, data: <RFI>}``
  4. rfi         - a bare RFI andamentoTreno document

Control envelopes (errors, selection prompts, empty answers) are checked
before any shape. Individual bad fields degrade to None; only a payload that
matches no shape and has no train number becomes an error result.
"""

import logging
import re
import time
from collections.abc import Callable, Mapping

from treninfo.core.delays import effective_delay_minutes, resolve_delay
from treninfo.core.disruption_detector import detect
from treninfo.core.errors import NoData, SelectionRequired, UpstreamError
from treninfo.core.models import (
    AdaptResult,
    Choice,
    DisruptionEvidence,
    EmptyResult,
    ErrorResult,
    LastDetection,
    Platform,
    SelectionContext,
    SelectionResult,
    StopRecord,
    TimePoint,
    TrainResult,
    TrainSnapshot,
)
from treninfo.core.time_resolver import base_day_of, first_absolute, resolve, resolve_absolute
from treninfo.core.train_kind import resolve_train_kind

logger = logging.getLogger(__name__)

SELECTION_FLAGS = (
    "needsSelection",
    "richiestaSelezione",
    "requireSelection",
    "selectionRequired",
    "selezioneRichiesta",
)

# RFI stop type marking a call that will not be served
RFI_SUPPRESSED_STOP_TYPE = 3

_ROMAN = {
    "I": 1, "II": 2, "III": 3, "IV": 4, "V": 5, "VI": 6, "VII": 7, "VIII": 8,
    "IX": 9, "X": 10, "XI": 11, "XII": 12, "XIII": 13, "XIV": 14, "XV": 15,
    "XVI": 16, "XVII": 17, "XVIII": 18, "XIX": 19, "XX": 20,
}
_ROMAN_PREFIX_RE = re.compile(r"^([IVX]+)\b(.*)$")

_CANCELLED_STATES = {"soppresso", "cancellato", "cancelled"}
_PARTIAL_STATES = {"parziale", "limitato", "partial"}


# --- field helpers -------------------------------------------------------


def _text(value) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, Mapping):
        for key in ("nome", "name", "stazione", "sigla", "codice", "label"):
            if value.get(key):
                return _text(value[key])
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(t for t in (_text(v) for v in value) if t)
    s = " ".join(str(value).split())
    return "" if s in ("--", "-") else s


def _first(doc: Mapping, *keys):
    for key in keys:
        value = doc.get(key)
        if value is not None and value != "":
            return value
    return None


def _texts(value) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(t for t in (_text(v) for v in value) if t)
    t = _text(value)
    return (t,) if t else ()


def normalize_platform(raw) -> str | None:
    """'IV Est' -> '4 Est'; blanks and dashes -> None."""
    s = _text(raw)
    if not s:
        return None
    m = _ROMAN_PREFIX_RE.match(s.upper())
    if m and m.group(1) in _ROMAN:
        return f"{_ROMAN[m.group(1)]}{s[len(m.group(1)):]}"
    return s


def _number_text(value) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = str(value).strip()
    return s or None


class _Clock:
    """Resolves stop times in timetable order, rolling bare clocks past midnight."""

    def __init__(self, base_day_ms: int | None, now_ms: int) -> None:
        self.base_day_ms = base_day_ms
        self.now_ms = now_ms
        self.previous_ms: int | None = None

    def at(self, raw, advance: bool = False) -> int | None:
        ms = resolve(raw, self.base_day_ms, self.now_ms, self.previous_ms)
        if advance and ms is not None:
            self.previous_ms = ms
        return ms


def _time_point(
    scheduled: int | None,
    predicted: int | None,
    actual: int | None,
    stop_delay: int | None,
    global_delay: int | None,
    has_real_time: bool,
) -> TimePoint:
    if actual is not None:
        predicted = None
    elif predicted is None and scheduled is not None:
        delay = effective_delay_minutes(stop_delay, global_delay, has_real_time)
        if delay is not None:
            predicted = scheduled + delay * 60_000
    return TimePoint(
        scheduled_epoch=scheduled,
        predicted_epoch=predicted,
        actual_epoch=actual,
        delay_minutes=stop_delay,
    )


def _is_suppressed(stop: Mapping, name: str, suppressed_names: set[str]) -> bool:
    if stop.get("soppressa") is True or stop.get("soppresso") is True or stop.get("isSuppressed") is True:
        return True
    if stop.get("actualFermataType") == RFI_SUPPRESSED_STOP_TYPE:
        return True
    return name.lower() in suppressed_names


def _suppressed_names(doc: Mapping) -> tuple[str, ...]:
    return _texts(doc.get("fermateSoppresse"))


def _base_day(raw_times: list, context: SelectionContext, now_ms: int) -> int:
    """Rome midnight of the run: first absolute stop time, else the request, else today."""
    anchor = first_absolute(raw_times)
    if anchor is None:
        anchor = context.reference_timestamp_ms
    return base_day_of(anchor if anchor is not None else now_ms)


# --- stop extractors -----------------------------------------------------


def _block(value) -> Mapping:
    if isinstance(value, Mapping):
        return value
    return {"programmato": value} if value is not None else {}


def _block_delay(block: Mapping, stop_delay: int | None) -> int | None:
    value = resolve_delay(block.get("ritardo"), block.get("ritardo"))
    return value if value is not None else stop_delay


def _extract_orari_stops(
    raw_stops: list,
    global_delay: int | None,
    suppressed: tuple[str, ...],
    context: SelectionContext,
    now_ms: int,
) -> tuple[StopRecord, ...]:
    """Stops whose times sit in ``orari.arrivo/partenza = {programmato, probabile, reale}``."""
    stops = [s for s in raw_stops if isinstance(s, Mapping)]
    blocks = []
    for stop in stops:
        orari = stop.get("orari") if isinstance(stop.get("orari"), Mapping) else {}
        blocks.append((_block(orari.get("arrivo")), _block(orari.get("partenza"))))

    raw_times = [
        b.get(k) for pair in blocks for b in pair for k in ("programmato", "reale", "probabile")
    ]
    clock = _Clock(_base_day(raw_times, context, now_ms), now_ms)
    suppressed_names = {s.lower() for s in suppressed}
    last = len(stops) - 1

    records = []
    for i, (stop, (arr, dep)) in enumerate(zip(stops, blocks)):
        name = _text(_first(stop, "stazione", "nomeStazione", "stationName", "nome"))
        stop_delay = resolve_delay(_first(stop, "ritardoMinuti", "ritardo"), stop.get("ritardo"))

        arr_sched = clock.at(arr.get("programmato"), advance=True)
        dep_sched = clock.at(dep.get("programmato"), advance=True)
        arr_real = clock.at(arr.get("reale"))
        dep_real = clock.at(dep.get("reale"))
        has_real = arr_real is not None or dep_real is not None

        arrival = None
        if i > 0:
            arrival = _time_point(
                arr_sched,
                clock.at(arr.get("probabile")),
                arr_real,
                _block_delay(arr, stop_delay),
                global_delay,
                has_real,
            )
        departure = None
        if i < last:
            departure = _time_point(
                dep_sched,
                clock.at(dep.get("probabile")),
                dep_real,
                _block_delay(dep, stop_delay),
                global_delay,
                has_real,
            )

        binari = stop.get("binari") if isinstance(stop.get("binari"), Mapping) else {}
        platform = Platform(
            planned=normalize_platform(
                _first(binari, "programmato", "previsto") or _first(stop, "binarioProgrammato", "binario")
            ),
            actual=normalize_platform(_first(binari, "effettivo", "reale") or stop.get("binarioEffettivo")),
        )

        records.append(
            StopRecord(
                station_name=name,
                station_code=_number_text(_first(stop, "idStazione", "codiceStazione", "codStazione", "id")),
                arrival=arrival,
                departure=departure,
                platform=platform,
                is_suppressed=_is_suppressed(stop, name, suppressed_names),
            )
        )
    return tuple(records)


def _extract_rfi_stops(
    raw_stops: list,
    global_delay: int | None,
    suppressed: tuple[str, ...],
    context: SelectionContext,
    now_ms: int,
) -> tuple[StopRecord, ...]:
    """Stops with flat RFI fields (``arrivo_teorico``, ``partenzaReale``, ``effettiva``...)."""
    stops = [s for s in raw_stops if isinstance(s, Mapping)]
    raw_times = [
        s.get(k)
        for s in stops
        for k in ("partenza_teorica", "arrivo_teorico", "programmata", "partenzaReale", "arrivoReale")
    ]
    clock = _Clock(_base_day(raw_times, context, now_ms), now_ms)
    suppressed_names = {s.lower() for s in suppressed}
    # "effettiva" is only trustworthy once the run has really departed somewhere
    any_real_departure = any(s.get("partenzaReale") not in (None, "") for s in stops)
    last = len(stops) - 1

    records = []
    for i, stop in enumerate(stops):
        name = _text(_first(stop, "stazione", "nomeStazione"))
        generic_delay = resolve_delay(stop.get("ritardo"))

        arr_sched = dep_sched = None
        if i > 0:
            arr_sched = clock.at(_first(stop, "arrivo_teorico", "programmata"), advance=True)
        if i < last:
            dep_sched = clock.at(_first(stop, "partenza_teorica", "programmata"), advance=True)

        arr_real = clock.at(stop.get("arrivoReale")) if i > 0 else None
        if arr_real is None and i > 0 and any_real_departure:
            arr_real = clock.at(stop.get("effettiva"))
        dep_real = clock.at(stop.get("partenzaReale")) if i < last else None
        has_real = arr_real is not None or dep_real is not None

        arrival = None
        if i > 0:
            arr_delay = resolve_delay(stop.get("ritardoArrivo"))
            arrival = _time_point(
                arr_sched, None, arr_real,
                arr_delay if arr_delay is not None else generic_delay,
                global_delay, has_real,
            )
        departure = None
        if i < last:
            dep_delay = resolve_delay(stop.get("ritardoPartenza"))
            departure = _time_point(
                dep_sched, None, dep_real,
                dep_delay if dep_delay is not None else generic_delay,
                global_delay, has_real,
            )

        if i == 0:
            planned_keys = ("binarioProgrammatoPartenzaDescrizione", "binarioProgrammatoArrivoDescrizione")
            actual_keys = ("binarioEffettivoPartenzaDescrizione", "binarioEffettivoArrivoDescrizione")
        else:
            planned_keys = ("binarioProgrammatoArrivoDescrizione", "binarioProgrammatoPartenzaDescrizione")
            actual_keys = ("binarioEffettivoArrivoDescrizione", "binarioEffettivoPartenzaDescrizione")
        platform = Platform(
            planned=normalize_platform(_first(stop, *planned_keys)),
            actual=normalize_platform(_first(stop, *actual_keys)),
        )

        records.append(
            StopRecord(
                station_name=name,
                station_code=_number_text(_first(stop, "id", "idStazione")),
                arrival=arrival,
                departure=departure,
                platform=platform,
                is_suppressed=_is_suppressed(stop, name, suppressed_names),
            )
        )
    return tuple(records)


# --- shape extractors ----------------------------------------------------


def _evidence(doc: Mapping, suppressed: tuple[str, ...]) -> DisruptionEvidence:
    stato = doc.get("statoViaggio") if isinstance(doc.get("statoViaggio"), Mapping) else {}
    state_words = {
        _text(stato.get("stato")).lower(),
        _text(doc.get("statoTreno")).lower(),
    }
    cancelled = doc.get("trenoSoppresso") is True or bool(state_words & _CANCELLED_STATES)
    partial = bool(state_words & _PARTIAL_STATES)

    notices = _texts(doc.get("compProvvedimenti")) + _texts(_first(doc, "aggiornamentoRfi", "messaggioRfi"))
    return DisruptionEvidence(
        subtitle=_text(_first(doc, "subTitle", "sottotitolo")),
        route_variation=_text(doc.get("compVariazionePercorso")),
        notices=notices,
        cancelled_flag=cancelled,
        partial_flag=partial,
        suppressed_stations=suppressed,
    )


def _last_detection(doc: Mapping) -> LastDetection:
    ril = _first(doc, "ultimoRil", "ultimoRilevamento")
    if isinstance(ril, Mapping):
        station = _text(_first(ril, "luogo", "stationName", "stazione"))
        epoch = resolve_absolute(_first(ril, "timestamp", "epochMs"))
    else:
        station = _text(doc.get("stazioneUltimoRilevamento"))
        epoch = resolve_absolute(doc.get("oraUltimoRilevamento"))
    return LastDetection(station_name=station or None, epoch_ms=epoch)


def _snapshot(
    doc: Mapping,
    number,
    stop_extractor: Callable,
    kind_values: tuple,
    context: SelectionContext,
    now_ms: int,
) -> TrainSnapshot:
    global_delay = resolve_delay(
        _first(doc, "ritardoMinuti", "ritardo"),
        doc.get("ritardo"),
        doc.get("compRitardo"),
    )
    suppressed = _suppressed_names(doc)
    raw_stops = doc.get("fermate") if isinstance(doc.get("fermate"), list) else []
    stops = stop_extractor(raw_stops, global_delay, suppressed, context, now_ms)

    origin = _text(_first(doc, "origine", "stazionePartenza", "origin")) or (stops[0].station_name if stops else "")
    destination = _text(_first(doc, "destinazione", "stazioneArrivo", "destination")) or (
        stops[-1].station_name if stops else ""
    )
    kind = resolve_train_kind(*kind_values)
    evidence = _evidence(doc, suppressed)
    last_detection = _last_detection(doc)

    return TrainSnapshot(
        number=_number_text(number) or "",
        kind_label=kind.code,
        kind_category=kind.category,
        origin=origin,
        destination=destination,
        stops=stops,
        global_delay_minutes=global_delay,
        disruption=detect(evidence, stops, origin, destination, last_detection),
        evidence=evidence,
        last_detection=last_detection,
        selection_context=context,
    )


def _principali_doc(payload: Mapping) -> Mapping | None:
    doc = payload.get("principali")
    if not isinstance(doc, Mapping) and isinstance(payload.get("data"), Mapping):
        doc = payload["data"].get("principali")
    return doc if isinstance(doc, Mapping) else None


def _orari_kind_values(doc: Mapping) -> tuple:
    return (
        _text(doc.get("tipoTreno")),
        doc.get("categoria"),
        doc.get("compNumeroTreno"),
        doc.get("categoriaDescrizione"),
    )


def _extract_principali(payload: Mapping, context: SelectionContext, now_ms: int) -> TrainSnapshot:
    doc = _principali_doc(payload)
    number = _first(doc, "numeroTreno", "numero") or payload.get("numeroTreno")
    return _snapshot(doc, number, _extract_orari_stops, _orari_kind_values(doc), context, now_ms)


def _extract_treno(payload: Mapping, context: SelectionContext, now_ms: int) -> TrainSnapshot:
    doc = payload["treno"]
    return _snapshot(doc, doc.get("numeroTreno"), _extract_orari_stops, _orari_kind_values(doc), context, now_ms)


def _rfi_kind_values(doc: Mapping) -> tuple:
    return (doc.get("categoria"), doc.get("compNumeroTreno"), doc.get("categoriaDescrizione"))


def _extract_rfi(payload: Mapping, context: SelectionContext, now_ms: int) -> TrainSnapshot:
    return _snapshot(payload, payload.get("numeroTreno"), _extract_rfi_stops, _rfi_kind_values(payload), context, now_ms)


def _extract_enriched(payload: Mapping, context: SelectionContext, now_ms: int) -> TrainSnapshot:
    return _extract_rfi(payload["data"], context, now_ms)


def _is_rfi_document(doc) -> bool:
    return isinstance(doc, Mapping) and isinstance(doc.get("fermate"), list) and (
        "numeroTreno" in doc or "compNumeroTreno" in doc
    )


SHAPES: list[tuple[str, Callable[[Mapping], bool], Callable]] = [
    ("principali", lambda p: _principali_doc(p) is not None, _extract_principali),
    (
        "treno",
        lambda p: isinstance(p.get("treno"), Mapping) and p["treno"].get("numeroTreno") not in (None, ""),
        _extract_treno,
    ),
    ("enriched", lambda p: _is_rfi_document(p.get("data")), _extract_enriched),
    ("rfi", _is_rfi_document, _extract_rfi),
]


# --- context and choices -------------------------------------------------


def _merged_context(payload: Mapping, context: SelectionContext | None) -> SelectionContext:
    """Request context wins; the wrapper fills whatever the request left out."""
    context = context or SelectionContext()
    return SelectionContext(
        choice=context.choice,
        technical_id=context.technical_id or _number_text(payload.get("technical")),
        origin_code=context.origin_code or _number_text(payload.get("originCode")),
        reference_timestamp_ms=(
            context.reference_timestamp_ms
            if context.reference_timestamp_ms is not None
            else resolve_absolute(payload.get("referenceTimestamp"))
        ),
        date=context.date or _number_text(payload.get("date")),
    )


def _choice(raw: Mapping, index: int) -> Choice:
    technical = _number_text(_first(raw, "technical", "technicalId", "idTecnico"))
    label = _text(_first(raw, "display", "label", "rawLine")) or technical or f"#{index + 1}"
    return Choice(
        label=label,
        selection_context=SelectionContext(
            choice=_number_text(raw.get("choice")) or str(index),
            technical_id=technical,
            origin_code=_number_text(_first(raw, "originCode", "codiceOrigine")),
            reference_timestamp_ms=resolve_absolute(_first(raw, "epochMs", "referenceTimestamp", "timestamp")),
            date=_number_text(raw.get("date")),
        ),
    )


def _has_data(payload: Mapping) -> bool:
    return any(payload.get(k) not in (None, {}, []) for k in ("data", "principali", "treno", "fermate"))


# --- public API ----------------------------------------------------------


def adapt(payload, context: SelectionContext | None = None, now_ms: int | None = None) -> AdaptResult:
    """Map a raw backend payload to a tagged result. Never raises."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if not isinstance(payload, Mapping):
        return ErrorResult(message="Unrecognized response from the train backend")

    message = _text(_first(payload, "error", "message", "messaggio"))

    if payload.get("ok") is False:
        return ErrorResult(message=message or "The train backend reported an error")

    if any(payload.get(flag) for flag in SELECTION_FLAGS):
        raw_choices = payload.get("choices")
        if isinstance(raw_choices, list) and raw_choices:
            choices = tuple(_choice(c, i) for i, c in enumerate(raw_choices) if isinstance(c, Mapping))
            logger.debug("Selection required, %d candidates", len(choices))
            return SelectionResult(choices=choices, message=message)
        return ErrorResult(message=message or "Selection required but no candidates were returned")

    if payload.get("ok") is True and not _has_data(payload):
        return EmptyResult(message=message or "No train found")

    merged = _merged_context(payload, context)
    for name, matches, extract in SHAPES:
        if matches(payload):
            snapshot = extract(payload, merged, now_ms)
            logger.debug(
                "Adapted %s payload for train %s: %d stops, disruption %s",
                name, snapshot.number, len(snapshot.stops), snapshot.disruption.type.value,
            )
            return TrainResult(snapshot=snapshot)

    number = _number_text(_first(payload, "numeroTreno", "trainNumber", "number"))
    if number:
        logger.debug("Unknown payload shape, keeping identity of train %s only", number)
        return TrainResult(snapshot=TrainSnapshot(number=number, selection_context=merged))

    logger.debug("Unrecognized payload keys: %s", sorted(payload)[:20])
    return ErrorResult(message=message or "Unrecognized response from the train backend")


def require_train(result: AdaptResult) -> TrainSnapshot:
    """Unwrap a train result or raise the matching error."""
    if isinstance(result, TrainResult):
        return result.snapshot
    if isinstance(result, SelectionResult):
        raise SelectionRequired(result.choices, result.message)
    if isinstance(result, EmptyResult):
        raise NoData(result.message or "No train found")
    raise UpstreamError(result.message)
