"""
Quality threshold evaluation.

Pure functions: given a verifiable item and a QualityThreshold, decide whether
the item clears every configured check. Unset optional thresholds skip their
check; every configured check must pass.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from dms_shared.schemas.auto_approval import QualityThreshold
from dms_shared.schemas.common import VerifiableType
from dms_shared.schemas.items import VerifiableItem

# ---------------------------------------------------------------------------
# Mandatory fields per (target type, subtype)
# ---------------------------------------------------------------------------

ASSESSMENT_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "HEALTH": (
        "hasFunctionalClinic",
        "numberHealthFacilities",
        "healthFacilityType",
        "qualifiedHealthWorkers",
        "hasMedicineSupply",
        "hasMedicalSupplies",
        "hasMaternalChildServices",
        "commonHealthIssues",
    ),
    "WASH": (
        "isWaterSufficient",
        "waterSource",
        "waterQuality",
        "hasToilets",
        "numberToilets",
        "toiletType",
        "hasSolidWasteDisposal",
        "hasHandwashingFacilities",
    ),
    "SHELTER": (
        "areSheltersSufficient",
        "shelterTypes",
        "numberShelters",
        "shelterCondition",
        "needsRepair",
        "needsTarpaulin",
        "needsBedding",
    ),
    "FOOD": (
        "foodSource",
        "availableFoodDurationDays",
        "additionalFoodRequiredPersons",
        "additionalFoodRequiredHouseholds",
        "malnutritionCases",
        "feedingProgramExists",
    ),
    "SECURITY": (
        "isAreaSecure",
        "securityThreats",
        "hasSecurityPresence",
        "securityProvider",
        "incidentsReported",
        "restrictedMovement",
    ),
    "POPULATION": (
        "totalHouseholds",
        "totalPopulation",
        "populationMale",
        "populationFemale",
        "populationUnder5",
        "pregnantWomen",
        "lactatingMothers",
        "personWithDisability",
        "elderlyPersons",
        "separatedChildren",
        "numberLivesLost",
        "numberInjured",
    ),
    "PRELIMINARY": (
        "incidentType",
        "severity",
        "affectedPopulationEstimate",
        "affectedHouseholdsEstimate",
        "immediateNeedsDescription",
        "accessibilityStatus",
        "priorityLevel",
    ),
}

RESPONSE_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "HEALTH": (
        "medicinesDelivered",
        "medicalSuppliesDelivered",
        "healthWorkersDeployed",
        "patientsTreated",
    ),
    "WASH": (
        "waterDeliveredLiters",
        "waterContainersDistributed",
        "toiletsConstructed",
        "hygieneKitsDistributed",
    ),
    "SHELTER": (
        "sheltersProvided",
        "tarpaulinsDistributed",
        "beddingKitsDistributed",
        "repairsCompleted",
    ),
    "FOOD": (
        "foodItemsDelivered",
        "householdsServed",
        "personsServed",
        "nutritionSupplementsProvided",
    ),
    "SECURITY": (
        "securityPersonnelDeployed",
        "checkpointsEstablished",
        "patrolsCompleted",
        "incidentsResolved",
    ),
    "POPULATION": (
        "evacuationsCompleted",
        "familiesReunited",
        "documentationProvided",
        "referralsMade",
    ),
}


def required_fields(target_type: VerifiableType, subtype: str) -> tuple[str, ...]:
    table = (
        ASSESSMENT_REQUIRED_FIELDS
        if target_type == VerifiableType.ASSESSMENT
        else RESPONSE_REQUIRED_FIELDS
    )
    return table.get(subtype, ())


def _is_empty(value: Any) -> bool:
    # False and 0 are answers, not gaps
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def missing_required_fields(
    target_type: VerifiableType, subtype: str, data: Mapping[str, Any]
) -> list[str]:
    return [
        name
        for name in required_fields(target_type, subtype)
        if _is_empty(data.get(name))
    ]


def compute_completeness(
    target_type: VerifiableType, subtype: str, data: Mapping[str, Any]
) -> float:
    """Percentage (0..100) of the mandatory fields that carry a value."""
    fields = required_fields(target_type, subtype)
    if not fields:
        return 100.0
    filled = len(fields) - len(missing_required_fields(target_type, subtype, data))
    return round(filled * 100.0 / len(fields), 2)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _minutes_since(submitted_at: datetime, now: datetime) -> float:
    if submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    return (now - submitted_at).total_seconds() / 60.0


def _checks(
    item: VerifiableItem, threshold: QualityThreshold, now: datetime
) -> list[tuple[bool, str]]:
    """Every configured check as (passed, failure reason)."""
    checks: list[tuple[bool, str]] = [
        (
            item.completeness >= threshold.completeness_percentage,
            f"Completeness {item.completeness:g}% is below "
            f"{threshold.completeness_percentage:g}%",
        )
    ]

    if threshold.required_fields_complete:
        missing = missing_required_fields(item.target_type, item.subtype, item.data)
        checks.append((not missing, f"Missing required fields: {', '.join(missing)}"))

    if threshold.has_media_attachments:
        checks.append((item.media_count > 0, "No media attachments"))

    if threshold.gps_accuracy_meters is not None:
        accuracy = item.gps_accuracy_meters
        if accuracy is None:
            checks.append((False, "GPS accuracy not reported"))
        else:
            checks.append((
                accuracy <= threshold.gps_accuracy_meters,
                f"GPS accuracy {accuracy:g}m exceeds {threshold.gps_accuracy_meters:g}m",
            ))

    if threshold.assessor_reputation_score is not None:
        reputation = item.submitter_reputation
        if reputation is None:
            checks.append((False, "Submitter reputation unknown"))
        else:
            checks.append((
                reputation >= threshold.assessor_reputation_score,
                f"Submitter reputation {reputation:g} is below "
                f"{threshold.assessor_reputation_score:g}",
            ))

    if threshold.time_since_submission is not None:
        elapsed = _minutes_since(item.submitted_at, now)
        checks.append((
            elapsed <= threshold.time_since_submission,
            f"Submitted {int(elapsed)} minutes ago, limit is "
            f"{threshold.time_since_submission} minutes",
        ))

    return checks


def explain(
    item: VerifiableItem, threshold: QualityThreshold, now: Optional[datetime] = None
) -> list[str]:
    """Return the reasons the item fails the threshold (empty when it passes)."""
    now = now or datetime.now(timezone.utc)
    return [reason for passed, reason in _checks(item, threshold, now) if not passed]


def evaluate(
    item: VerifiableItem, threshold: QualityThreshold, now: Optional[datetime] = None
) -> bool:
    return not explain(item, threshold, now)


def score(
    item: VerifiableItem, threshold: QualityThreshold, now: Optional[datetime] = None
) -> float:
    """Share of configured checks the item passes, as a percentage."""
    now = now or datetime.now(timezone.utc)
    checks = _checks(item, threshold, now)
    passed = sum(1 for ok, _ in checks if ok)
    return round(passed * 100.0 / len(checks), 2)
