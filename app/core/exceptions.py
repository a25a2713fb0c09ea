"""Core custom exceptions for the application."""


class PipelineError(Exception):
    """Base exception for pipeline-related errors."""


class ConfigurationError(PipelineError):
    """Exception for configuration-related errors (e.g., missing templates, invalid settings)."""


class RunAlreadyActive(PipelineError):
    """Raised when a generation run is started for a report that already has one in flight."""


# --- Enhancement -------------------------------------------------------------


class EnhancementTaskFailure(Exception):
    """A single field enhancement failed. Recovered inside the worker by keeping the raw text."""


class EnhancementTimeout(EnhancementTaskFailure):
    """The enhancement call exceeded its bounded wait."""


class EnhancementServiceError(EnhancementTaskFailure):
    """The enhancement service returned an error or an unusable response."""


class EnhancementBatchFailure(PipelineError):
    """Internal control-flow failure of an enhancement batch. Aborts the whole run."""


# --- Assembly ----------------------------------------------------------------


class AssemblyError(PipelineError):
    """Base exception for document assembly failures. Carries a stable ``kind`` for clients."""

    kind = "assembly_error"


class TemplateLoadError(AssemblyError):
    kind = "template_load_error"


class SubstitutionError(AssemblyError):
    """A known placeholder is malformed in the template and cannot be substituted."""

    kind = "substitution_error"

    def __init__(self, message: str, tokens: list[str] | None = None):
        super().__init__(message)
        self.tokens = tokens or []


class PhotoBindingError(AssemblyError):
    """Photo slot bindings do not match the slots declared by the template."""

    kind = "photo_binding_error"


class TooManyPhotos(AssemblyError):
    kind = "too_many_photos"

    def __init__(self, photo_count: int, max_slots: int):
        super().__init__(f"{photo_count} photos supplied but the template only has {max_slots} photo slots")
        self.photo_count = photo_count
        self.max_slots = max_slots


class DocumentUploadError(AssemblyError):
    """The finished document could not be handed off to the cloud document service."""

    kind = "document_upload_error"


# --- Attachments -------------------------------------------------------------


class AttachmentFetchFailure(Exception):
    """Photo attachments could not be retrieved. The run continues without photos."""
