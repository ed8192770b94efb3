from __future__ import annotations


class IngestError(RuntimeError):
    status_code = 500


class IngressError(IngestError):
    status_code = 400


class AddressResolutionError(IngestError):
    status_code = 400


class UnknownTokenError(IngestError):
    status_code = 403


class ExtractionInvalid(IngestError):
    pass


class PersistenceError(IngestError):
    pass
