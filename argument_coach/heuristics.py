"""
Heuristic Step Validators

Cheap, deterministic, locale-aware checks that decide whether a piece of text
plausibly fits a step's role in the argument. They run independently of the
model so that an overconfident model response is never the only judge of
whether a step is done.

Supported locales: "en" and "es". Anything else falls back to "en".
"""

import re
from typing import Callable, Dict, List, Mapping, Optional, Pattern

from argument_coach.steps import STEP_ORDER, Step

DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = ("en", "es")

MIN_FIELD_LENGTH = 10
MIN_QUALIFIER_LENGTH = 5


def _compile(patterns: List[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# --- Pattern tables ---------------------------------------------------------

_CLAIM_EVIDENCE_OPENERS = {
    "en": re.compile(
        r"^(studies show|according to|research indicates|data shows|statistics|\d+%)",
        re.IGNORECASE,
    ),
    "es": re.compile(
        r"^(los estudios muestran|según|la investigación indica|los datos muestran|estadísticas|\d+%)",
        re.IGNORECASE,
    ),
}

_CLAIM_BARE_FACTS = {
    "en": re.compile(r"^(the sky is blue|water is wet|\d+ \+ \d+ =)", re.IGNORECASE),
    "es": re.compile(r"^(el cielo es azul|el agua está mojada|\d+ \+ \d+ =)", re.IGNORECASE),
}

_GROUNDS_MARKERS = {
    "en": _compile([
        r"\d+%",
        r"\d+\s*(people|percent|million|billion|thousand)",
        r"according to",
        r"study|research|survey|report",
        r"for example|for instance|such as",
        r"observed|found|discovered|measured",
        r"data|evidence|statistics",
    ]),
    "es": _compile([
        r"\d+%",
        r"\d+\s*(personas|por ciento|millones|miles)",
        r"según|de acuerdo con",
        r"estudio|investigación|encuesta|informe",
        r"por ejemplo|como por ejemplo|tales como",
        r"observó|encontró|descubrió|midió",
        r"datos|evidencia|estadísticas",
    ]),
}

_WARRANT_MARKERS = {
    "en": _compile([
        r"if\s+.+\s+then",
        r"when\s+.+\s+(it|we|they|this)",
        r"because\s+.+\s+(leads to|results in|causes|means)",
        r"generally|typically|usually|often",
        r"principle|rule|law|theory",
        r"implies|suggests|indicates|demonstrates",
        r"therefore|thus|hence|consequently",
        r"the more.+the more",
        r"leads to|results in|causes|enables",
    ]),
    "es": _compile([
        r"si\s+.+\s+entonces",
        r"cuando\s+.+\s+(esto|nosotros|ellos|se)",
        r"porque\s+.+\s+(conduce a|resulta en|causa|significa)",
        r"generalmente|típicamente|usualmente|a menudo",
        r"principio|regla|ley|teoría",
        r"implica|sugiere|indica|demuestra",
        r"por lo tanto|así|por ende|en consecuencia",
        r"cuanto más.+más",
        r"conduce a|resulta en|causa|permite",
    ]),
}

_BACKING_MARKERS = {
    "en": _compile([
        r"according to",
        r"\(\d{4}\)",
        r"et al\.",
        r"study|research|publication|paper|article",
        r"expert|authority|specialist",
        r"law|regulation|policy|standard",
        r"bible|scripture|quran|torah",
        r"constitution|amendment|statute",
        r"theory of|principle of|law of",
        r"professor|doctor|dr\.",
        r"university|institute|organization",
        r"source:|citation:|reference:",
    ]),
    "es": _compile([
        r"según|de acuerdo con",
        r"\(\d{4}\)",
        r"et al\.",
        r"estudio|investigación|publicación|artículo",
        r"experto|autoridad|especialista",
        r"ley|regulación|política|norma|estándar",
        r"biblia|escritura|corán|torá",
        r"constitución|enmienda|estatuto",
        r"teoría de|principio de|ley de",
        r"profesor|doctor|dra?\.",
        r"universidad|instituto|organización",
        r"fuente:|cita:|referencia:",
    ]),
}

_QUALIFIER_MARKERS = {
    "en": _compile([
        r"probably|likely|possibly|perhaps",
        r"most|many|some|few",
        r"usually|typically|generally|often",
        r"in most cases|in many situations",
        r"under (normal|certain|these) conditions",
        r"tends to|is likely to",
        r"with (high|some|reasonable) (probability|certainty|confidence)",
        r"assuming|given that|provided that",
        r"almost|nearly|virtually",
        r"to a (large|certain|significant) extent",
    ]),
    "es": _compile([
        r"probablemente|posiblemente|quizás|tal vez",
        r"la mayoría|muchos|algunos|pocos",
        r"usualmente|típicamente|generalmente|a menudo",
        r"en la mayoría de los casos|en muchas situaciones",
        r"bajo (condiciones|circunstancias) (normales|ciertas|estas)",
        r"tiende a|es probable que",
        r"con (alta|cierta|razonable) (probabilidad|certeza|confianza)",
        r"asumiendo|dado que|siempre que",
        r"casi|prácticamente|virtualmente",
        r"en (gran|cierta|significativa) medida",
    ]),
}

_REBUTTAL_MARKERS = {
    "en": _compile([
        r"unless|except|however|but",
        r"would not (apply|hold|work)",
        r"exception|counter|objection",
        r"on the other hand",
        r"might argue|could argue|some say",
        r"in cases where|when.+does not",
        r"fails when|breaks down when",
        r"limitation|weakness|flaw",
        r"critic|opponent|skeptic",
        r"challenge|question|dispute",
    ]),
    "es": _compile([
        r"a menos que|excepto|sin embargo|pero",
        r"no (aplicaría|funcionaría|serviría)",
        r"excepción|contra|objeción",
        r"por otro lado|por otra parte",
        r"podría argumentar|algunos dicen|se podría decir",
        r"en casos donde|cuando.+no",
        r"falla cuando|no funciona cuando",
        r"limitación|debilidad|defecto",
        r"crítico|oponente|escéptico",
        r"desafío|cuestionamiento|disputa",
    ]),
}

_REWRITE_REQUEST = {
    "en": re.compile(
        r"\b(re-?write|improve|rephrase|re-?word|polish|fix)\b|help me (word|phrase|write)",
        re.IGNORECASE,
    ),
    "es": re.compile(
        r"\b(reescrib\w*|mejor[aá]\w*|reformul\w*|corrig\w*|arregl\w*|pul[ei]\w*)\b"
        r"|ay[uú]dame a (redactar|escribir|expresar)",
        re.IGNORECASE,
    ),
}


# --- Helpers ----------------------------------------------------------------

def normalize_locale(value: Optional[str]) -> str:
    """
    Map a locale tag or an Accept-Language header to a supported locale.

    "es-MX" -> "es", "es;q=0.9,en" -> "es", "fr" -> "en", None -> "en".
    """
    if not value:
        return DEFAULT_LOCALE
    first = value.split(",")[0].split(";")[0].strip().lower()
    primary = first.replace("_", "-").split("-")[0]
    return primary if primary in SUPPORTED_LOCALES else DEFAULT_LOCALE


def _any_match(patterns: List[Pattern[str]], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


# --- Per-step validators ----------------------------------------------------

def is_valid_claim(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """A claim is one arguable assertion, not evidence and not a bare fact."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_FIELD_LENGTH:
        return False
    if _CLAIM_EVIDENCE_OPENERS[locale].search(trimmed):
        return False
    if _CLAIM_BARE_FACTS[locale].search(trimmed):
        return False
    return True


def is_valid_grounds(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """Concrete evidence: numbers, citations, examples. Long concrete text also passes."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_FIELD_LENGTH:
        return False
    return _any_match(_GROUNDS_MARKERS[locale], trimmed) or len(trimmed) > 50


def is_valid_warrant(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """A general principle bridging grounds to claim (conditional or causal phrasing)."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_FIELD_LENGTH:
        return False
    return _any_match(_WARRANT_MARKERS[locale], trimmed) or len(trimmed) > 40


def is_valid_backing(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """Sources, authorities or foundations behind grounds or warrant."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_FIELD_LENGTH:
        return False
    return _any_match(_BACKING_MARKERS[locale], trimmed) or len(trimmed) > 30


def is_valid_qualifier(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """Certainty or scope language. Qualifiers may be short."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_QUALIFIER_LENGTH:
        return False
    return _any_match(_QUALIFIER_MARKERS[locale], trimmed) or len(trimmed) >= MIN_QUALIFIER_LENGTH


def is_valid_rebuttal(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """Exceptions, counter-arguments, conditions under which the claim fails."""
    locale = normalize_locale(locale)
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_FIELD_LENGTH:
        return False
    return _any_match(_REBUTTAL_MARKERS[locale], trimmed) or len(trimmed) > 30


STEP_VALIDATORS: Dict[Step, Callable[[str, str], bool]] = {
    Step.CLAIM: is_valid_claim,
    Step.GROUNDS: is_valid_grounds,
    Step.WARRANT: is_valid_warrant,
    Step.GROUNDS_BACKING: is_valid_backing,
    Step.WARRANT_BACKING: is_valid_backing,
    Step.QUALIFIER: is_valid_qualifier,
    Step.REBUTTAL: is_valid_rebuttal,
}


def validate_step(step: Step, text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """validator(step, text, locale) -> bool"""
    return STEP_VALIDATORS[Step(step)](text, locale)


# --- Draft-level helpers ----------------------------------------------------

def step_completion_status(fields: Mapping[Step, str], locale: str = DEFAULT_LOCALE) -> Dict[Step, bool]:
    """Per-step pass/fail for a full set of draft fields."""
    return {step: validate_step(step, fields.get(step, "") or "", locale) for step in STEP_ORDER}


def first_incomplete_step(fields: Mapping[Step, str], locale: str = DEFAULT_LOCALE) -> Optional[Step]:
    status = step_completion_status(fields, locale)
    for step in STEP_ORDER:
        if not status[step]:
            return step
    return None


def is_argument_complete(fields: Mapping[Step, str], locale: str = DEFAULT_LOCALE) -> bool:
    return all(
        (fields.get(step) or "").strip() and validate_step(step, fields.get(step) or "", locale)
        for step in STEP_ORDER
    )


def is_explicit_rewrite_request(text: str, locale: str = DEFAULT_LOCALE) -> bool:
    """Did the user ask the coach to reword, improve or fix their text?"""
    if not text:
        return False
    locale = normalize_locale(locale)
    if _REWRITE_REQUEST[locale].search(text):
        return True
    # Mixed-language users often type the English verb
    return locale != DEFAULT_LOCALE and bool(_REWRITE_REQUEST[DEFAULT_LOCALE].search(text))
