"""Setup failures raised before a nested block is started."""


class ScopeSetupError(Exception):
    """The OBS scope could not be established; the nested block never ran."""

    def __init__(self, message: str, run_id: str = "") -> None:
        super().__init__(message)
        self.run_id = run_id


class CredentialLookupError(ScopeSetupError):
    """The credential store failed (as opposed to not knowing the id)."""

    def __init__(self, credentials_id: str, run_id: str = "") -> None:
        super().__init__(f"Credential lookup failed for '{credentials_id}'", run_id)
        self.credentials_id = credentials_id


class BodyStartError(ScopeSetupError):
    """The engine refused to schedule the nested block."""
