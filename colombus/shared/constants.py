CONSULTANT = "consultant"
RH = "rh"
COACH = "coach"
FORMATEUR = "formateur"
FORMATEUR_EXTERNE = "formateur_externe"
MANAGER = "manager"

ROLE_ATTRS = {
    CONSULTANT: "is_consultant",
    RH: "is_rh",
    COACH: "is_coach",
    FORMATEUR: "is_formateur",
    FORMATEUR_EXTERNE: "is_formateur_externe",
    MANAGER: "is_manager",
}

# RH and managers are always consultants as well
IMPLIED_ROLES = {
    RH: [CONSULTANT],
    MANAGER: [CONSULTANT],
}

P1 = "P1"
P2 = "P2"
P3 = "P3"
PRIORITIES = (P1, P2, P3)
QUOTA_PRIORITIES = (P1, P2)

INTEREST_PENDING = "pending"
INTEREST_APPROVED = "approved"
INTEREST_CONVERTED = "converted"
INTEREST_REJECTED = "rejected"
INTEREST_WITHDRAWN = "withdrawn"
INTEREST_ACTIVE = (INTEREST_PENDING, INTEREST_APPROVED)

COACH_PENDING = "pending"
COACH_APPROVED = "approved"

REGISTRATION_PENDING = "pending"
REGISTRATION_VALIDATED = "validated"
REGISTRATION_CANCELLED = "cancelled"
REGISTRATION_COMPLETED = "completed"
REGISTRATION_ACTIVE = (REGISTRATION_PENDING, REGISTRATION_VALIDATED)

SESSION_OPEN = "open"
SESSION_FULL = "full"
SESSION_COMPLETED = "completed"
SESSION_CANCELLED = "cancelled"
SESSION_CLOSED_STATUSES = (SESSION_COMPLETED, SESSION_CANCELLED)

MODALITIES = ("presentiel", "distanciel", "hybride")
SENIORITY_LEVELS = ("junior", "confirme", "senior", "expert")

COACH_VALIDATION_ONLY_KEY = "coach_validation_only"
QUOTA_RESET_AT_KEY = "quota_reset_at"
