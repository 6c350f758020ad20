from __future__ import annotations


class WafScopeError(Exception):
    """Base error for wafscope."""


class ProviderConfigError(WafScopeError):
    """Missing or invalid provider configuration."""


class ResourceApiError(WafScopeError):
    """Resource API (ARM) request failure."""


class ResourceAuthError(ResourceApiError):
    """Resource API authentication/authorization failure."""


class NotesStoreError(WafScopeError):
    """Notes store request failure."""


class PolicyMappingError(WafScopeError):
    """Raw policy record is missing required identity fields."""


class NoteKeyError(WafScopeError):
    """Note key cannot be derived from the supplied fields."""


class InvalidEntityTypeError(NoteKeyError):
    """Entity type is not one of the annotatable kinds."""
