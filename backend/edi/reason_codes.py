"""Static X12 reason code reference tables.

CARC (Claim Adjustment Reason Codes) and RARC (Remittance Advice Remark
Codes) descriptions, CAS group code meanings, and the denial category each
CARC maps to.
"""

from __future__ import annotations

from enum import Enum

# CAS (Claim Adjustment Segment) group codes
CAS_GROUP_CODES: dict[str, str] = {
    "CO": "Contractual Obligation",
    "PI": "Payer Initiated Reduction",
    "PR": "Patient Responsibility",
    "OA": "Other Adjustment",
    "CR": "Correction/Reversal",
}

CONTRACTUAL_GROUP = "CO"
PATIENT_RESPONSIBILITY_GROUP = "PR"

CARC_CODES: dict[str, str] = {
    "1": "Deductible amount",
    "2": "Coinsurance amount",
    "3": "Copayment amount",
    "4": "The procedure code is inconsistent with the modifier used",
    "5": "The procedure code/bill type is inconsistent with the place of service",
    "6": "The procedure/revenue code is inconsistent with the patient's age",
    "15": "The authorization number is missing, invalid, or does not apply",
    "16": "Claim/service lacks information needed for adjudication",
    "18": "Duplicate claim/service",
    "22": "This care may be covered by another payer",
    "23": "The impact of prior payer(s) adjudication",
    "24": "Charges are covered under a capitation agreement",
    "26": "Expenses incurred prior to coverage",
    "27": "Expenses incurred after coverage terminated",
    "29": "The time limit for filing has expired",
    "31": "Patient cannot be identified as our insured",
    "32": "Our records indicate that this dependent is not an eligible dependent",
    "33": "Insured has no dependent coverage",
    "39": "Services denied at the time authorization/pre-certification was requested",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "49": "This is a non-covered service because it is a routine/preventive exam",
    "50": "These are non-covered services because this is not deemed a medical necessity",
    "56": "Procedure/treatment has not been deemed proven to be effective",
    "57": "Payment denied/reduced because the payer deems the information submitted does not support this level of service",
    "58": "Treatment was deemed by the payer to have been rendered in an inappropriate or invalid place of service",
    "59": "Processed based on multiple or concurrent procedure rules",
    "96": "Non-covered charge(s)",
    "97": "The benefit for this service is included in the payment/allowance for another service",
    "109": "Claim/service not covered by this payer/contractor",
    "119": "Benefit maximum for this time period or occurrence has been reached",
    "151": "Payment adjusted because the payer deems the information submitted does not support this many/frequency of services",
    "167": "This is not, or is no longer, a covered diagnosis",
    "197": "Precertification/authorization/notification absent",
    "198": "Precertification/notification/authorization/pre-treatment exceeded",
    "199": "Revenue code and procedure code do not match",
    "204": "This service/equipment/drug is not covered under the patient's current benefit plan",
    "252": "An attachment/other documentation is required to adjudicate this claim/service",
    "253": "Sequestration - reduction in federal payment",
    "B1": "Non-covered visits",
    "B4": "Late filing penalty",
    "B5": "Coverage/program guidelines were not met or were exceeded",
    "B7": "This provider was not certified/eligible to be paid for this procedure/service on this date of service",
    "B15": "This service/procedure requires that a qualifying service/procedure be received and covered",
    "B16": "'New Patient' qualifications were not met",
}

RARC_CODES: dict[str, str] = {
    "M1": "X-ray not taken within the past 12 months or near enough to admission date",
    "M2": "Not paid separately when the patient is an inpatient",
    "M15": "Separately billed services/tests have been bundled as they are considered components of the same procedure",
    "M20": "Missing/incomplete/invalid HCPCS",
    "N30": "Patient ineligible for this service",
    "N56": "Procedure code billed is not correct/valid for the services billed or the date of service billed",
    "N95": "This provider type/provider specialty may not bill this service",
    "N130": "Consult plan benefit documents/guidelines for information about restrictions for this service",
    "N425": "Statutorily excluded service(s)",
    "N432": "Adjustment based on a Recovery Audit",
    "MA04": "Secondary payment cannot be considered without the identity of or payment information from the primary payer",
    "MA130": "Your claim contains incomplete and/or invalid information, and no appeal rights are afforded",
}


class DenialCategory(str, Enum):
    """Categorical reason a service line was denied."""

    CODING = "coding"
    BUNDLING = "bundling"
    ELIGIBILITY = "eligibility"
    AUTHORIZATION = "authorization"
    MEDICAL_NECESSITY = "medical_necessity"
    TIMELY_FILING = "timely_filing"
    DUPLICATE = "duplicate"
    DOCUMENTATION = "documentation"
    COORDINATION_OF_BENEFITS = "coordination_of_benefits"
    OTHER = "other"


CARC_DENIAL_CATEGORIES: dict[str, DenialCategory] = {
    "4": DenialCategory.CODING,
    "5": DenialCategory.CODING,
    "6": DenialCategory.CODING,
    "49": DenialCategory.CODING,
    "97": DenialCategory.BUNDLING,
    "59": DenialCategory.BUNDLING,
    "26": DenialCategory.ELIGIBILITY,
    "27": DenialCategory.ELIGIBILITY,
    "31": DenialCategory.ELIGIBILITY,
    "32": DenialCategory.ELIGIBILITY,
    "33": DenialCategory.ELIGIBILITY,
    "39": DenialCategory.ELIGIBILITY,
    "15": DenialCategory.AUTHORIZATION,
    "197": DenialCategory.AUTHORIZATION,
    "198": DenialCategory.AUTHORIZATION,
    "199": DenialCategory.AUTHORIZATION,
    "50": DenialCategory.MEDICAL_NECESSITY,
    "56": DenialCategory.MEDICAL_NECESSITY,
    "57": DenialCategory.MEDICAL_NECESSITY,
    "58": DenialCategory.MEDICAL_NECESSITY,
    "96": DenialCategory.MEDICAL_NECESSITY,
    "167": DenialCategory.MEDICAL_NECESSITY,
    "204": DenialCategory.MEDICAL_NECESSITY,
    "29": DenialCategory.TIMELY_FILING,
    "18": DenialCategory.DUPLICATE,
    "16": DenialCategory.DOCUMENTATION,
    "24": DenialCategory.DOCUMENTATION,
    "252": DenialCategory.DOCUMENTATION,
    "22": DenialCategory.COORDINATION_OF_BENEFITS,
    "23": DenialCategory.COORDINATION_OF_BENEFITS,
    "109": DenialCategory.COORDINATION_OF_BENEFITS,
}


def split_adjustment_code(code: str) -> tuple[str, str]:
    """Split a ``GROUP-REASON`` code such as ``CO-45``.

    Bare reason codes come back with an empty group.
    """
    group, sep, reason = code.partition("-")
    if not sep:
        return "", code
    return group, reason


def describe_carc(code: str) -> str:
    """Describe a CARC, accepting either ``45`` or ``CO-45``."""
    _, reason = split_adjustment_code(code)
    return CARC_CODES.get(reason, "Unknown")


def describe_rarc(code: str) -> str:
    return RARC_CODES.get(code, "Unknown")


def group_category(group_code: str) -> str:
    """Human-readable CAS group name, or the raw code when unknown."""
    return CAS_GROUP_CODES.get(group_code, group_code)


def denial_category(code: str) -> DenialCategory | None:
    """Denial category for a CARC, or None when it is not a denial reason."""
    _, reason = split_adjustment_code(code)
    return CARC_DENIAL_CATEGORIES.get(reason)
