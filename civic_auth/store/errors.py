from __future__ import annotations


class StoreError(Exception):
    pass


class StoreUnavailable(StoreError):
    pass


class DuplicateUser(StoreError):
    def __init__(self, email: str) -> None:
        super().__init__(f"user already exists: {email}")
        self.email = email


class UnknownUser(StoreError):
    def __init__(self, email: str) -> None:
        super().__init__(f"no user for email: {email}")
        self.email = email
