"""
Custom exceptions for the CTF board services with user-friendly error messages.
"""

class CTFBoardException(Exception):
    """Base exception for CTF board errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class StoreError(CTFBoardException):
    """Raised when a document store operation fails."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Store error during {operation}: {details}",
            f"❌ Database error during {operation}. Please try again later."
        )
        self.operation = operation

class DocumentNotFoundError(StoreError):
    """Raised when an update targets a document that does not exist."""
    def __init__(self, collection: str, doc_id: str):
        super().__init__(
            f"update {collection}/{doc_id}",
            "document does not exist"
        )
        self.collection = collection
        self.doc_id = doc_id

class BatchLimitExceededError(CTFBoardException):
    """Raised when a write batch would exceed the store's operation limit."""
    def __init__(self, limit: int):
        super().__init__(
            f"Write batch exceeds the limit of {limit} operations",
            "❌ Too many changes for a single batch."
        )
        self.limit = limit

class InsufficientPrivilegeError(CTFBoardException):
    """Raised when the caller lacks the role an operation requires."""
    def __init__(self, uid: str, required_role: str):
        super().__init__(
            f"User {uid} lacks required role '{required_role}'",
            f"❌ You must be an {required_role} to use this tool."
        )
        self.uid = uid
        self.required_role = required_role

class RecalculationError(CTFBoardException):
    """Raised when a leaderboard recalculation aborts part way through."""
    def __init__(self, mode: str, committed: int, total: int, details: str = None):
        super().__init__(
            f"{mode} recalculation failed after {committed}/{total} user updates: {details}",
            f"❌ Recalculation failed after {committed}/{total} users were updated. Run it again to finish."
        )
        self.mode = mode
        self.committed = committed
        self.total = total

class RecalculationInProgressError(CTFBoardException):
    """Raised when another process holds the recalculation lock."""
    def __init__(self):
        super().__init__(
            "Leaderboard recalculation lock is held",
            "❌ A leaderboard recalculation is already running. Please wait for it to finish."
        )
