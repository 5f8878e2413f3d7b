"""Reason codes surfaced to reviewers and applicants"""

REASON_CODES = {
    # Positive (RC01-RC05)
    "RC01": "High and stable monthly income",
    "RC02": "Low debt-to-income ratio",
    "RC03": "Significant employment tenure",
    "RC04": "Formal employment with indefinite contract",
    "RC05": "Positive credit history",
    # Warning (RC06-RC10)
    "RC06": "Monthly income just sufficient for the requested amount",
    "RC07": "Moderate debt-to-income ratio",
    "RC08": "Limited employment tenure",
    "RC09": "Independent or temporary employment",
    "RC10": "No verifiable credit history",
    # Negative (RC11-RC15)
    "RC11": "Insufficient monthly income",
    "RC12": "Very high debt-to-income ratio",
    "RC13": "Insufficient employment tenure",
    "RC14": "Unstable employment situation",
    "RC15": "Negative or doubtful credit history",
    # Validation (RC16-RC20)
    "RC16": "Requested amount outside the allowed range",
    "RC17": "Requested term outside the allowed range",
    "RC18": "Applicant age does not meet requirements",
    "RC19": "Monthly installment exceeds payment capacity",
    "RC20": "Incomplete or invalid documentation",
}

# Sub-score category -> (positive, warning, negative), in priority order
CATEGORY_CODES = {
    "income": ("RC01", "RC06", "RC11"),
    "debt_to_income": ("RC02", "RC07", "RC12"),
    "employment": ("RC03", "RC08", "RC13"),
    "employment_type": ("RC04", "RC09", "RC14"),
    "credit_history": ("RC05", "RC10", "RC15"),
}

AMOUNT_OUT_OF_RANGE = "RC16"
TERM_OUT_OF_RANGE = "RC17"
AGE_BELOW_MINIMUM = "RC18"
INSTALLMENT_EXCEEDS_CAPACITY = "RC19"
INCOMPLETE_DOCUMENTATION = "RC20"


def describe_reason_code(code: str) -> str:
    return REASON_CODES.get(code, "Unknown reason code")
