class DomainError(Exception):
    """Base class for domain failures."""

    reason: str = "domain_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TenantResolutionError(DomainError):
    reason = "tenant_unresolved"


class TenantRequiredError(TenantResolutionError):
    reason = "tenant_required"


class TenantNotFoundError(TenantResolutionError):
    reason = "tenant_not_found"


class TenantInactiveError(TenantResolutionError):
    reason = "tenant_inactive"


class ReservationRejectedError(DomainError):
    """A booking request that failed validation. Carries the offending field."""

    reason = "rejected"
    field: str | None = None


class PartySizeOutOfRangeError(ReservationRejectedError):
    reason = "party_size_out_of_range"
    field = "party_size"


class SlotUnavailableError(ReservationRejectedError):
    reason = "slot_unavailable"
    field = "time"


class DateAtCapacityError(ReservationRejectedError):
    reason = "date_at_capacity"
    field = "date"


class InvalidContactError(ReservationRejectedError):
    reason = "invalid_contact"

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message)
        self.field = field


class ReservationNotFoundError(DomainError):
    reason = "reservation_not_found"


class InvalidStatusTransitionError(DomainError):
    reason = "invalid_status_transition"


class InvalidScheduleError(DomainError):
    reason = "invalid_schedule"


class AllocationExhaustedError(DomainError):
    reason = "slug_allocation_exhausted"


class SlugConflictError(DomainError):
    reason = "slug_conflict"


class VersionConflictError(DomainError):
    reason = "version_conflict"
