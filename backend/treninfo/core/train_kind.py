"""Resolve the commercial category of a train from the many label fields upstream uses."""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class TrainKind:
    code: str
    label: str
    category: str  # high-speed, intercity, regional, bus, unknown


UNKNOWN_KIND = TrainKind(code="UNK", label="Sconosciuto", category="unknown")

# Ordered by specificity; the bare "R" rule must stay near the end.
_RULES: list[tuple[tuple[str, ...], str, str]] = [
    (("FRECCIAROSSA", "FRECCIAROSSA AV", "FRECCIAROSSAAV", "FR", "FR AV", "FRAV", "FR EC"), "FR", "high-speed"),
    (("FRECCIARGENTO", "FRECCIARGENTO AV", "FRECCIARGENTOAV", "FA", "FA AV"), "FA", "high-speed"),
    (("FRECCIABIANCA", "FB"), "FB", "intercity"),
    (("ITALO", "ITALO AV", "ITALOAV", "NTV", "ITA"), "ITA", "high-speed"),
    (("TGV",), "TGV", "high-speed"),
    (("EUROSTAR", "EUROSTAR CITY", "EUROSTARCITY", "ES", "ESC", "ES CITY", "ES AV", "ESAV"), "ES", "high-speed"),
    (("INTERCITY NOTTE", "INTERCITYNOTTE", "ICN"), "ICN", "intercity"),
    (("INTERCITY", "IC"), "IC", "intercity"),
    (("EUROCITY", "EC"), "EC", "intercity"),
    (("EURONIGHT", "EN"), "EN", "intercity"),
    (("RAILJET", "RJ"), "RJ", "intercity"),
    (("ESPRESSO", "EXP"), "EXP", "intercity"),
    (("REGIONALE VELOCE", "REGIONALEVELOCE", "RV", "RGV"), "RV", "regional"),
    (("REGIONALE", "REG"), "REG", "regional"),
    (("INTERREGIONALE", "IR"), "IREG", "regional"),
    (("REGIOEXPRESS", "REGIO EXPRESS", "RE"), "REX", "regional"),
    (("LEONARDO EXPRESS", "LEONARDOEXPRESS", "LEONARDO", "LEX"), "LEX", "regional"),
    (("MALPENSA EXPRESS", "MALPENSAEXPRESS", "MXP"), "MXP", "regional"),
    (("TROPEA EXPRESS", "TROPEAEXPRESS", "TROPEA", "TEXP"), "TEXP", "regional"),
    (("CIVITAVECCHIA EXPRESS", "CIVITAVECCHIAEXPRESS", "CIVITAVECCHIA", "CEXP"), "CEXP", "regional"),
    (("PANORAMA EXPRESS", "PANORAMAEXPRESS", "PE"), "PEXP", "regional"),
    (("DIRETTISSIMO", "DD"), "DD", "regional"),
    (("DIRETTO", "DIR"), "DIR", "regional"),
    (("ACCELERATO", "ACC"), "ACC", "regional"),
    (("SUBURBANO", "SERVIZIO SUBURBANO", "SUB"), "SUB", "regional"),
    (("METROPOLITANO", "MET", "METROPOLITANA", "SFM"), "MET", "regional"),
    (("FERROVIE LAZIALI", "FL"), "FL", "regional"),
    (("AIRLINK",), "Airlink", "regional"),
    (("R",), "R", "regional"),
    (("BUS", "BU", "FI"), "BUS", "bus"),
]

_PREFIX_RE = re.compile(r"^([A-Z]{1,4})\b")


def _lookup(token: str) -> TrainKind | None:
    for matches, code, category in _RULES:
        if token in matches:
            return TrainKind(code=code, label=code, category=category)
    return None


def resolve_train_kind(*raw_values) -> TrainKind:
    """First value that maps to a known kind wins ("FR 9544" -> FR)."""
    for raw in raw_values:
        if not raw:
            continue
        normalized = " ".join(str(raw).upper().split())

        prefix = _PREFIX_RE.match(normalized)
        if prefix:
            kind = _lookup(prefix.group(1))
            if kind:
                return kind

        kind = _lookup(normalized)
        if kind:
            return kind
    return UNKNOWN_KIND
