"""PII detection and redaction.

Each column is scored two ways: its name against known PII name tokens, and
its values against format regexes. The two signals combine into one
confidence per column; columns above the threshold are reported with
redacted sample matches only. Raw values never leave this module.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import pandas as pd

from csvsense.agents.contracts import (
    ComplianceFlag,
    PIIColumn,
    PIIType,
    Regulation,
    RiskLevel,
    SecurityProfile,
    SecurityRecommendation,
    Severity,
)
from csvsense.profiling.type_inference import TypedColumn, build_typed_column


# ---------------------------------------------------------------------------
# Detection rules
# ---------------------------------------------------------------------------

NAME_TOKENS: dict[PIIType, list[str]] = {
    PIIType.EMAIL: ["email", "e_mail", "email_address", "mail"],
    PIIType.PHONE: ["phone", "phone_number", "mobile", "cell", "telephone", "tel"],
    PIIType.SSN: ["ssn", "social_security", "social_security_number"],
    PIIType.CREDIT_CARD: ["credit_card", "card_number", "cc_number", "ccnum", "credit_card_number"],
    PIIType.IP_ADDRESS: ["ip", "ip_address", "ipaddr", "ipv4"],
    PIIType.DATE_OF_BIRTH: ["dob", "date_of_birth", "birth_date", "birthdate", "birthday"],
    PIIType.NAME: ["name", "first_name", "last_name", "full_name", "firstname", "lastname", "surname"],
    PIIType.ADDRESS: ["address", "street", "street_address", "zip", "zipcode", "zip_code", "postal_code"],
    PIIType.PASSPORT: ["passport", "passport_number"],
    PIIType.DRIVER_LICENSE: ["driver_license", "drivers_license", "license_number", "licence"],
}

# Too ambiguous to count as a partial match ("product_name", "tel_aviv_office")
_NO_PARTIAL = frozenset({"name", "tel", "cell", "mail", "ip", "zip"})

EXACT_NAME_CONFIDENCE = 0.9
PARTIAL_NAME_CONFIDENCE = 0.7


@dataclass(frozen=True)
class ValuePattern:
    pii_type: PIIType
    regex: re.Pattern
    confidence: float
    needs_name_hint: bool = False


VALUE_PATTERNS: list[ValuePattern] = [
    ValuePattern(PIIType.EMAIL, re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)+$"), 0.95),
    ValuePattern(PIIType.SSN, re.compile(r"^\d{3}-\d{2}-\d{4}$"), 0.95),
    ValuePattern(PIIType.CREDIT_CARD, re.compile(r"^(\d{4}[- ]?){3}\d{4}$|^\d{13,19}$"), 0.8),
    ValuePattern(PIIType.PHONE, re.compile(r"^(\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}$"), 0.9),
    ValuePattern(
        PIIType.IP_ADDRESS,
        re.compile(r"^((25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(25[0-5]|2[0-4]\d|1?\d?\d)$"),
        0.9,
    ),
    # Any date column matches this shape, so it only counts next to a name hint
    ValuePattern(
        PIIType.DATE_OF_BIRTH,
        re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4})$"),
        0.7,
        needs_name_hint=True,
    ),
]

MIN_MATCH_RATIO = 0.1
NAME_AND_FORMAT_BOOST = 0.1
LUHN_BOOST = 0.1
SCAN_LIMIT = 1000

RISK_BY_TYPE: dict[PIIType, RiskLevel] = {
    PIIType.SSN: RiskLevel.CRITICAL,
    PIIType.CREDIT_CARD: RiskLevel.CRITICAL,
    PIIType.PASSPORT: RiskLevel.CRITICAL,
    PIIType.EMAIL: RiskLevel.HIGH,
    PIIType.PHONE: RiskLevel.HIGH,
    PIIType.DATE_OF_BIRTH: RiskLevel.HIGH,
    PIIType.NAME: RiskLevel.MEDIUM,
    PIIType.ADDRESS: RiskLevel.MEDIUM,
    PIIType.DRIVER_LICENSE: RiskLevel.MEDIUM,
    PIIType.IP_ADDRESS: RiskLevel.MEDIUM,
}

_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

REGULATIONS_BY_TYPE: dict[PIIType, list[Regulation]] = {
    PIIType.EMAIL: [Regulation.GDPR, Regulation.CCPA],
    PIIType.NAME: [Regulation.GDPR, Regulation.CCPA],
    PIIType.ADDRESS: [Regulation.GDPR, Regulation.CCPA],
    PIIType.PHONE: [Regulation.GDPR, Regulation.CCPA],
    PIIType.IP_ADDRESS: [Regulation.GDPR, Regulation.CCPA],
    PIIType.PASSPORT: [Regulation.GDPR],
    PIIType.DRIVER_LICENSE: [Regulation.GDPR, Regulation.CCPA],
    PIIType.SSN: [Regulation.SOX, Regulation.CCPA],
    PIIType.CREDIT_CARD: [Regulation.PCI_DSS],
    PIIType.DATE_OF_BIRTH: [Regulation.HIPAA, Regulation.GDPR],
}

REQUIREMENTS: dict[Regulation, list[str]] = {
    Regulation.GDPR: ["Lawful basis for processing", "Right to erasure", "Data minimisation"],
    Regulation.CCPA: ["Disclosure of collected categories", "Opt-out of sale"],
    Regulation.HIPAA: ["Minimum necessary access", "Audit controls"],
    Regulation.PCI_DSS: ["Mask primary account numbers", "Encrypt cardholder data at rest"],
    Regulation.SOX: ["Access controls over financial records", "Retention policy"],
}


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

def redact_value(value: object, pii_type: PIIType) -> str:
    """Mask a single value so it cannot be recovered."""
    text = str(value)
    if pii_type is PIIType.EMAIL and "@" in text:
        local, domain = text.split("@", 1)
        return f"{local[:2]}***@{domain}"
    if pii_type is PIIType.PHONE:
        digits = re.sub(r"\D", "", text)
        if len(digits) >= 7:
            return f"{digits[:3]}-***-{digits[-4:]}"
        return "***-***-****"
    if pii_type is PIIType.SSN:
        return "XXX-XX-XXXX"
    if pii_type is PIIType.CREDIT_CARD:
        return "XXXX-XXXX-XXXX-XXXX"
    if pii_type is PIIType.IP_ADDRESS:
        first = text.split(".", 1)[0]
        return f"{first}.***.***.***"
    if pii_type is PIIType.DATE_OF_BIRTH:
        return "****-**-**"
    if pii_type is PIIType.NAME:
        return f"{text[:1]}***" if text else "***"
    return "[REDACTED]"


def redact_column(column: TypedColumn, pii_type: PIIType) -> TypedColumn:
    """Re-type a column from its masked values.

    Statistics and samples built from the result only ever see redacted
    text, so no raw value survives into the profile.
    """
    masked = column.raw.map(lambda v: redact_value(v, pii_type), na_action="ignore")
    return build_typed_column(column.name, masked)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def _name_tokens(column_name: str) -> list[str]:
    spaced = re.sub(r"([a-z])([A-Z])", r"\1_\2", column_name)
    return [t for t in re.split(r"[^a-z0-9]+", spaced.lower()) if t]


def match_column_name(column_name: str) -> tuple[PIIType, float] | None:
    """Best PII type suggested by the column name alone."""
    tokens = _name_tokens(column_name)
    normalized = "_".join(tokens)
    best: tuple[PIIType, float] | None = None
    for pii_type, names in NAME_TOKENS.items():
        for candidate in names:
            if normalized == candidate:
                return pii_type, EXACT_NAME_CONFIDENCE
            if candidate in _NO_PARTIAL:
                continue
            parts = candidate.split("_")
            if _contains_run(tokens, parts) and (best is None or best[1] < PARTIAL_NAME_CONFIDENCE):
                best = (pii_type, PARTIAL_NAME_CONFIDENCE)
    return best


def _contains_run(tokens: list[str], parts: list[str]) -> bool:
    n = len(parts)
    return any(tokens[i:i + n] == parts for i in range(len(tokens) - n + 1))


def luhn_valid(number: str) -> bool:
    digits = [int(d) for d in re.sub(r"\D", "", number)]
    if len(digits) < 13:
        return False
    total = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


@dataclass
class _Detection:
    pii_type: PIIType
    confidence: float
    method: str
    ratio: float
    matches: list[str]


def detect_column(name: str, raw: pd.Series) -> _Detection | None:
    """Score one column; ``raw`` holds the column's string values (nulls as NA)."""
    by_name = match_column_name(name)
    values = raw.dropna().astype(str).str.strip()
    values = values[values != ""].iloc[:SCAN_LIMIT]

    by_value: _Detection | None = None
    if len(values):
        for pattern in VALUE_PATTERNS:
            if pattern.needs_name_hint and (by_name is None or by_name[0] is not pattern.pii_type):
                continue
            hits = values[values.str.match(pattern.regex)]
            ratio = len(hits) / len(values)
            if ratio < MIN_MATCH_RATIO:
                continue
            confidence = pattern.confidence * min(ratio * 2, 1.0)
            if pattern.pii_type is PIIType.CREDIT_CARD:
                luhn_ratio = hits.map(luhn_valid).mean()
                if luhn_ratio < 0.5:
                    continue
                if luhn_ratio > 0.8:
                    confidence += LUHN_BOOST
            if by_value is None or confidence > by_value.confidence:
                by_value = _Detection(pattern.pii_type, confidence, "pattern", ratio, hits.iloc[:3].tolist())

    if by_name and by_value and by_name[0] is by_value.pii_type:
        by_value.confidence = max(by_name[1], by_value.confidence) + NAME_AND_FORMAT_BOOST
        by_value.method = "combined"
        detection = by_value
    elif by_value and (by_name is None or by_value.confidence >= by_name[1]):
        detection = by_value
    elif by_name:
        detection = _Detection(by_name[0], by_name[1], "column_name", 0.0, values.iloc[:3].tolist())
    else:
        return None

    detection.confidence = round(min(detection.confidence, 1.0), 4)
    return detection


def risk_for(pii_type: PIIType, confidence: float) -> RiskLevel:
    if confidence < 0.5:
        return RiskLevel.LOW
    return RISK_BY_TYPE.get(pii_type, RiskLevel.MEDIUM)


def max_risk(levels: list[RiskLevel]) -> RiskLevel:
    if not levels:
        return RiskLevel.LOW
    return max(levels, key=_RISK_ORDER.index)


def scan_security(columns: dict[str, pd.Series], threshold: float = 0.5) -> SecurityProfile:
    """Detect PII across columns and build the dataset's security profile.

    Args:
        columns: Column name -> string values (nulls as NA)
        threshold: Minimum confidence for a column to be reported

    Returns:
        SecurityProfile with redacted sample matches
    """
    pii_columns: list[PIIColumn] = []
    for name, raw in columns.items():
        detection = detect_column(name, raw)
        if detection is None or detection.confidence <= threshold:
            continue
        pii_columns.append(PIIColumn(
            column=name,
            pii_type=detection.pii_type,
            confidence=detection.confidence,
            detection_method=detection.method,
            match_ratio=round(detection.ratio, 4),
            risk_level=risk_for(detection.pii_type, detection.confidence),
            sample_matches=[redact_value(v, detection.pii_type) for v in detection.matches],
        ))

    risk = max_risk([c.risk_level for c in pii_columns])
    return SecurityProfile(
        pii_columns=pii_columns,
        risk_level=risk,
        has_redaction=bool(pii_columns),
        recommendations=_recommendations(pii_columns),
        compliance_flags=_compliance(pii_columns),
    )


def _compliance(pii_columns: list[PIIColumn]) -> list[ComplianceFlag]:
    by_regulation: dict[Regulation, list[str]] = {}
    for col in pii_columns:
        for regulation in REGULATIONS_BY_TYPE.get(col.pii_type, []):
            by_regulation.setdefault(regulation, []).append(col.column)
    return [
        ComplianceFlag(regulation=reg, columns=cols, requirements=REQUIREMENTS[reg])
        for reg, cols in sorted(by_regulation.items(), key=lambda kv: kv[0].value)
    ]


def _recommendations(pii_columns: list[PIIColumn]) -> list[SecurityRecommendation]:
    if not pii_columns:
        return []
    names = [c.column for c in pii_columns]
    critical = [c.column for c in pii_columns if c.risk_level is RiskLevel.CRITICAL]
    recs = [
        SecurityRecommendation(
            type="redaction",
            priority=Severity.HIGH,
            description="Redact PII columns in exports and shared results",
            columns=names,
        ),
        SecurityRecommendation(
            type="access_control",
            priority=Severity.MEDIUM,
            description="Restrict access to the raw upload to its owner",
            columns=names,
        ),
        SecurityRecommendation(
            type="audit_logging",
            priority=Severity.LOW,
            description="Log queries that touch PII columns",
            columns=names,
        ),
    ]
    if critical:
        recs.insert(0, SecurityRecommendation(
            type="encryption",
            priority=Severity.CRITICAL,
            description="Encrypt critical identifiers at rest",
            columns=critical,
        ))
    return recs
