"""
Rule-based booking-intent classifier for carrier call transcripts.

Two signals gate the result:

- Signal A (commitment): a strong booking phrase, or at least two distinct
  phrases from the broker verification script.
- Signal B (grounding): a load reference, or a plausible freight rate.

meets_intent_threshold requires both. Casual agreement words ("sounds good")
or stray numbers alone never pass.

Entity extraction runs independently of the gate. Each extractor is an
ordered list of (pattern, extractor) pairs; the first pattern that yields a
value wins. Nothing in this module raises on odd input.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Tuple

# ============================================================================
# SCORING WEIGHTS - additive, not normalized to 100
# ============================================================================

STRONG_COMMITMENT_WEIGHT = 40
VERIFICATION_SCRIPT_WEIGHT = 25
LOAD_REFERENCE_WEIGHT = 15
RATE_INFO_WEIGHT = 10
CARRIER_NAME_WEIGHT = 5
CALLBACK_WEIGHT = 5

# Freight-rate plausibility bounds (USD, whole load)
RATE_MIN = 100
RATE_MAX = 10000

MIN_VERIFICATION_PHRASES = 2

# Shorter tokens ("load 3 pallets") are quantities, not load numbers
MIN_REFERENCE_LENGTH = 3

STRONG_BOOKING_PHRASES = [
    "i'll take it",
    "i will take it",
    "we'll take it",
    "we will take it",
    "book it",
    "book the load",
    "book that load",
    "i'll haul it",
    "we can haul it",
    "lock it in",
    "send me the rate con",
    "send over the rate con",
    "send the rate confirmation",
    "i want the load",
    "i want that load",
    "sign me up",
]

VERIFICATION_SCRIPT_PHRASES = [
    "mc number",
    "dot number",
    "motor carrier number",
    "company name",
    "callback number",
    "best number to reach",
    "truck number",
    "trailer type",
    "equipment type",
    "driver name",
    "insurance",
    "empty at",
]

CALLBACK_PHRASES = [
    "call me back",
    "call you back",
    "give me a call back",
    "call back later",
    "get back to me",
    "reach me later",
    "not a good time",
    "text me",
]

_DIGIT_WORDS = {
    "zero": "0", "oh": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

Extractor = Callable[[re.Match], Optional[str]]

# ============================================================================
# RESULT
# ============================================================================


@dataclass
class IntentAnalysisResult:
    """Signals, score and extracted entities for one transcript."""

    score: int = 0
    has_strong_commitment: bool = False
    has_verification_script: bool = False
    has_load_reference: bool = False
    has_rate_info: bool = False
    carrier_name: Optional[str] = None
    rate_offered: Optional[float] = None
    rate_requested: Optional[float] = None
    callback_needed: bool = False
    load_reference: Optional[str] = None
    meets_intent_threshold: bool = False
    matched_phrases: List[str] = field(default_factory=list)

    @property
    def signal_a(self) -> bool:
        return self.has_strong_commitment or self.has_verification_script

    @property
    def signal_b(self) -> bool:
        return self.has_load_reference or self.has_rate_info


# ============================================================================
# EXTRACTORS
# ============================================================================


def _reference(m: re.Match) -> Optional[str]:
    value = m.group(1).strip(" -#:")
    if len(re.sub(r"[^a-z0-9]", "", value)) < MIN_REFERENCE_LENGTH:
        return None
    return value.upper()


def _spelled_digits(m: re.Match) -> Optional[str]:
    words = re.findall(r"[a-z]+", m.group(1))
    digits = "".join(_DIGIT_WORDS[w] for w in words if w in _DIGIT_WORDS)
    return digits or None


def _amount(m: re.Match) -> Optional[str]:
    return m.group(1).replace(",", "")


def _thousands(m: re.Match) -> Optional[str]:
    return str(float(m.group(1)) * 1000)


_REF_TOKEN = r"([a-z0-9-]*\d[a-z0-9-]*)"
_REF_PREFIX = r"\s*(?:number|num|no\.?)?\s*#?\s*:?\s*(?:is\s+)?"
_SPELLED = r"((?:(?:zero|oh|one|two|three|four|five|six|seven|eight|nine)[\s,-]*){3,})"
_AMOUNT = r"(\d{1,2},\d{3}|\d{3,5})(?!,?\d)"

LOAD_REFERENCE_PATTERNS: List[Tuple[Pattern, Extractor]] = [
    (re.compile(r"\bload" + _REF_PREFIX + _REF_TOKEN), _reference),
    (re.compile(r"\breference" + _REF_PREFIX + _REF_TOKEN), _reference),
    (re.compile(r"\bload" + _REF_PREFIX + _SPELLED), _spelled_digits),
]

RATE_OFFERED_PATTERNS: List[Tuple[Pattern, Extractor]] = [
    (re.compile(r"\$\s?" + _AMOUNT + r"(?:\.\d{1,2})?"), _amount),
    (re.compile(r"\b" + _AMOUNT + r"\s*(?:dollars|bucks|usd)\b"), _amount),
    (re.compile(r"\brate\s+(?:is|of|at|would be|will be)\s+" + _AMOUNT + r"\b"), _amount),
    (re.compile(r"\b(\d{1,2}(?:\.\d{1,2})?)\s*k\b"), _thousands),
]

RATE_REQUESTED_PATTERNS: List[Tuple[Pattern, Extractor]] = [
    (
        re.compile(
            r"\b(?:can you do|could you do|would you do|how about|what about|"
            r"i need|i'd need|i would need|meet me at|go up to|bump it to)\s+\$?\s?"
            + _AMOUNT
        ),
        _amount,
    ),
]

_COMPANY_SUFFIX = r"(?:trucking|transport|transportation|logistics|freight|express|carriers?|lines|hauling)"

CARRIER_NAME_PATTERNS: List[Tuple[Pattern, Optional[Extractor]]] = [
    (re.compile(r"company(?:'s)? name is\s+([a-z0-9&' .-]{2,60}?)\s*(?:[.,!?\n]|$)"), None),
    (
        re.compile(
            r"\b(?:calling from|calling with|i'm with|i am with|we're with|we are with|this is)\s+"
            r"((?:[a-z0-9&'-]+\s+){0,3}" + _COMPANY_SUFFIX + r"(?:\s+(?:llc|inc|co))?)\b"
        ),
        None,
    ),
    (re.compile(r"\b((?:[a-z0-9&'-]+\s+){1,3}" + _COMPANY_SUFFIX + r"\s+(?:llc|inc|co))\b"), None),
]


def _first_match(
    text: str,
    patterns: List[Tuple[Pattern, Optional[Extractor]]],
    accept: Callable[[str], bool] = lambda value: True,
) -> Optional[str]:
    """Return the first accepted value, trying patterns in declared order."""
    for pattern, extractor in patterns:
        for m in pattern.finditer(text):
            try:
                value = extractor(m) if extractor else m.group(1).strip()
            except (ValueError, IndexError):
                continue
            if value and accept(value):
                return value
    return None


def _plausible_rate(value: str) -> bool:
    try:
        amount = float(value)
    except ValueError:
        return False
    return RATE_MIN <= amount <= RATE_MAX


def _to_rate(value: Optional[str]) -> Optional[float]:
    return float(value) if value is not None else None


def _normalize(transcript: str) -> str:
    return transcript.replace("’", "'").replace("‘", "'").lower()


def extract_load_reference(text: str) -> Optional[str]:
    return _first_match(_normalize(text), LOAD_REFERENCE_PATTERNS)


def extract_rate_offered(text: str) -> Optional[float]:
    return _to_rate(_first_match(_normalize(text), RATE_OFFERED_PATTERNS, _plausible_rate))


def extract_rate_requested(text: str) -> Optional[float]:
    return _to_rate(_first_match(_normalize(text), RATE_REQUESTED_PATTERNS, _plausible_rate))


def extract_carrier_name(text: str) -> Optional[str]:
    name = _first_match(_normalize(text), CARRIER_NAME_PATTERNS)
    return name.title() if name else None


def detect_callback_needed(text: str) -> bool:
    lowered = _normalize(text)
    return any(phrase in lowered for phrase in CALLBACK_PHRASES)


# ============================================================================
# CLASSIFIER
# ============================================================================


def classify_intent(transcript: Optional[str]) -> IntentAnalysisResult:
    """
    Score a transcript for genuine booking intent.

    Args:
        transcript: Speaker-labeled transcript text ("user: ...\\nagent: ...")

    Returns:
        IntentAnalysisResult; an empty transcript yields the all-false result
    """
    result = IntentAnalysisResult()
    if not transcript or not transcript.strip():
        return result

    text = _normalize(transcript)

    strong = [p for p in STRONG_BOOKING_PHRASES if p in text]
    verification = [p for p in VERIFICATION_SCRIPT_PHRASES if p in text]
    result.matched_phrases = strong + verification
    result.has_strong_commitment = bool(strong)
    result.has_verification_script = len(verification) >= MIN_VERIFICATION_PHRASES

    result.load_reference = extract_load_reference(text)
    result.rate_offered = extract_rate_offered(text)
    result.rate_requested = extract_rate_requested(text)
    result.carrier_name = extract_carrier_name(text)
    result.callback_needed = detect_callback_needed(text)

    result.has_load_reference = result.load_reference is not None
    result.has_rate_info = result.rate_offered is not None or result.rate_requested is not None

    result.meets_intent_threshold = result.signal_a and result.signal_b

    score = 0
    if result.has_strong_commitment:
        score += STRONG_COMMITMENT_WEIGHT
    if result.has_verification_script:
        score += VERIFICATION_SCRIPT_WEIGHT
    if result.has_load_reference:
        score += LOAD_REFERENCE_WEIGHT
    if result.has_rate_info:
        score += RATE_INFO_WEIGHT
    if result.carrier_name:
        score += CARRIER_NAME_WEIGHT
    if result.callback_needed:
        score += CALLBACK_WEIGHT
    result.score = score

    return result
