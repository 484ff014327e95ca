"""Exception types shared across the ingestion pipeline."""


class FacilityIngestError(Exception):
    """Base class for pipeline errors."""


class ParseError(FacilityIngestError):
    """Topic or payload could not be mapped to an event."""


class TenantGateError(FacilityIngestError):
    """Tenant is unknown or deactivated."""

    def __init__(self, company: str, reason: str):
        super().__init__(f"Company '{company}' {reason}")
        self.company = company
        self.reason = reason


class StoreError(FacilityIngestError):
    """A document store operation failed."""


class NotificationError(FacilityIngestError):
    """A push notification could not be delivered."""

    def __init__(self, token: str, detail: str):
        super().__init__(f"Push to {token[:12]}... failed: {detail}")
        self.token = token
        self.detail = detail
