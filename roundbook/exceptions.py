"""Exception hierarchy for the scheduling core and its document store"""


class RoundbookError(Exception):
    """Base class for all roundbook errors"""


class OwnerNotResolvedError(RoundbookError):
    """Raised when an operation is attempted without a resolved owner account"""

    def __init__(self, message: str = "Not authenticated - unable to determine account owner"):
        super().__init__(message)


class StoreError(RoundbookError):
    """Base class for document store failures"""


class IndexUnavailableError(StoreError):
    """The store cannot serve this query (missing composite index or unsupported filter)"""


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DocumentExistsError(StoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class BatchCommitError(StoreError):
    """An atomic batch was rejected. None of its operations were applied."""


class ClientNotFoundError(RoundbookError):
    def __init__(self, client_id: str):
        super().__init__(f"Client {client_id} not found")
        self.client_id = client_id


class PlanNotFoundError(RoundbookError):
    def __init__(self, plan_id: str):
        super().__init__(f"Service plan {plan_id} not found")
        self.plan_id = plan_id


class ScheduleRegenerationError(RoundbookError):
    """Job creation failed after the old jobs were already deleted"""

    def __init__(self, message: str, deleted: int):
        super().__init__(message)
        self.deleted = deleted


class PlanExpiredError(RoundbookError):
    """The plan's last service date has passed, so it cannot be reactivated"""

    def __init__(self, plan_id: str, last_service_date: str):
        super().__init__(f"Service plan {plan_id} ended on {last_service_date}; extend its last service date first")
        self.plan_id = plan_id
        self.last_service_date = last_service_date
