"""Keyword detection of topics outside the core experts' mandate."""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class DomainTriggers:
    display_name: str
    specialist_type: str
    triggers: List[str]


@dataclass
class ExternalDomainDetection:
    detected: bool
    domain: Optional[str] = None
    domain_display_name: Optional[str] = None
    trigger_words: List[str] = field(default_factory=list)
    specialist_type: Optional[str] = None


# Consulted in insertion order; the first category with a hit wins.
DOMAIN_TRIGGERS: Dict[str, DomainTriggers] = {
    "neurological-attention": DomainTriggers(
        display_name="Neurological / attention",
        specialist_type="attention and ADHD specialist",
        triggers=[
            "attention deficit", "ADHD", "ADD", "Concerta", "Ritalin", "neurologist",
            "attention assessment", "attention medication", "attention problems",
            "severe concentration problems", "Vyvanse", "atomoxetine", "Strattera",
        ],
    ),
    "psychiatric": DomainTriggers(
        display_name="Psychiatric",
        specialist_type="psychiatry and medication specialist",
        triggers=[
            "psychiatrist", "psychiatric medication", "SSRI", "antidepressants",
            "mood stabilizers", "severe side effects", "psychiatric hospitalization",
            "lithium", "antipsychotic", "benzodiazepines", "Klonopin", "Cipralex",
            "Paxil", "Lexapro",
        ],
    ),
    "medical": DomainTriggers(
        display_name="Medical",
        specialist_type="medical aspects specialist",
        triggers=[
            "chronic illness", "neurological", "medical diagnosis", "MRI", "EEG",
            "blood tests", "syndrome", "surgery", "epilepsy", "cancer", "diabetes",
            "heart disease", "autoimmune",
        ],
    ),
    "legal": DomainTriggers(
        display_name="Legal",
        specialist_type="legal aspects specialist",
        triggers=[
            "lawyer", "attorney", "lawsuit", "sexual harassment", "domestic violence",
            "restraining order", "police", "file a complaint", "legal contract",
            "legal agreement", "divorce", "custody", "injunction",
        ],
    ),
    "financial": DomainTriggers(
        display_name="Financial",
        specialist_type="financial aspects specialist",
        triggers=[
            "heavy debt", "insolvency", "bankruptcy", "foreclosure",
            "can't pay the mortgage", "huge loans", "financial advisor", "accountant",
            "debt collection", "wage garnishment", "financial collapse",
        ],
    ),
    "employment-legal": DomainTriggers(
        display_name="Employment law",
        specialist_type="employment law specialist",
        triggers=[
            "wrongful termination", "unlawful dismissal", "discrimination at work",
            "workplace bullying", "labor court", "harassment at work",
            "disciplinary hearing", "workers' rights",
        ],
    ),
    "diagnostic": DomainTriggers(
        display_name="Diagnostic",
        specialist_type="psychological assessment specialist",
        triggers=[
            "didactic assessment", "psychodiagnostic", "DSM", "formal diagnosis",
            "psychological assessment", "psychometric tests",
            "learning disability assessment",
        ],
    ),
    "addiction": DomainTriggers(
        display_name="Addiction",
        specialist_type="addiction specialist",
        triggers=[
            "heavy drug use", "alcoholism", "gambling addiction", "weed all day",
            "rehab", "detox", "hard drugs", "cocaine", "heroin", "binge drinking",
            "drinking every day",
        ],
    ),
}


def _trigger_pattern(trigger: str) -> "re.Pattern[str]":
    # Acronyms (ADD, DSM, MRI) only match in capitals so "add" in prose does not fire.
    flags = 0 if trigger.isupper() else re.IGNORECASE
    return re.compile(r"(?<!\w)" + re.escape(trigger) + r"(?!\w)", flags)


_COMPILED: Dict[str, List[tuple]] = {
    domain: [(trigger, _trigger_pattern(trigger)) for trigger in entry.triggers]
    for domain, entry in DOMAIN_TRIGGERS.items()
}


def detect_external_domain(text: str) -> ExternalDomainDetection:
    """Return the first domain whose triggers appear in `text`, with every matched trigger."""
    if not text:
        return ExternalDomainDetection(detected=False)

    normalized = text.replace("’", "'")
    for domain, patterns in _COMPILED.items():
        matched = [trigger for trigger, pattern in patterns if pattern.search(normalized)]
        if matched:
            entry = DOMAIN_TRIGGERS[domain]
            return ExternalDomainDetection(
                detected=True,
                domain=domain,
                domain_display_name=entry.display_name,
                trigger_words=matched,
                specialist_type=entry.specialist_type,
            )
    return ExternalDomainDetection(detected=False)


def clarification_question(detection: ExternalDomainDetection) -> str:
    return (
        "You mentioned a topic that is outside the direct mandate of the parliament "
        f"members ({detection.domain_display_name}). Would you like us to add a "
        f"{detection.specialist_type} to the conversation? They will offer general "
        "information and perspective, but will not diagnose or recommend a specific "
        "treatment, legal step or financial move."
    )


def all_domain_types() -> List[str]:
    return list(DOMAIN_TRIGGERS.keys())
