"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed or insufficient; the caller can correct and retry"""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFound(DomainException):
    """Aggregate or referenced entity does not exist for the tenant"""

    def __init__(self, entity: str, entity_id: str, tenant_id: str | None = None):
        super().__init__(f"{entity} {entity_id} not found" + (f" for tenant {tenant_id}" if tenant_id else ""))
        self.entity = entity
        self.entity_id = entity_id
        self.tenant_id = tenant_id


class InvalidTransition(DomainException):
    """Status change is not in the transition table"""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InvalidState(DomainException):
    """Application is not in the status the operation requires"""

    def __init__(self, application_id: str, current_status: str, expected_status: str):
        super().__init__(
            f"Application {application_id} is {current_status}, expected {expected_status}"
        )
        self.application_id = application_id
        self.current_status = current_status
        self.expected_status = expected_status


class ApplicationFinalized(DomainException):
    """Application was disbursed and can no longer change"""

    def __init__(self, application_id: str):
        super().__init__(f"Application {application_id} is disbursed and cannot be modified")
        self.application_id = application_id


class DuplicateRequest(DomainException):
    """Disbursement request id was already processed"""

    def __init__(self, request_id: str):
        super().__init__(f"Disbursement request {request_id} was already processed")
        self.request_id = request_id


class AlreadyDisbursed(DomainException):
    """Application was already disbursed under another request"""

    def __init__(self, application_id: str):
        super().__init__(f"Application {application_id} was already disbursed")
        self.application_id = application_id


class InvalidAccount(DomainException):
    """Destination account is missing, inactive, or owned by someone else"""

    def __init__(self, account_id: str, reason: str):
        super().__init__(f"Account {account_id} cannot receive the disbursement: {reason}")
        self.account_id = account_id
        self.reason = reason


class InvalidLoanTerms(DomainException):
    """Loan amount or term is missing, non-numeric, or not positive"""

    def __init__(self, application_id: str, reason: str):
        super().__init__(f"Application {application_id} has invalid loan terms: {reason}")
        self.application_id = application_id
        self.reason = reason


class NoBranchAvailable(DomainException):
    """No active branch exists for the tenant"""

    def __init__(self, tenant_id: str, district: str):
        super().__init__(f"No branch available for district {district} (tenant {tenant_id})")
        self.tenant_id = tenant_id
        self.district = district
