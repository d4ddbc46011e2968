from .base import Answer, HelpEntry, RecordKind, Service, ServiceKind

__all__ = ["Answer", "HelpEntry", "RecordKind", "Service", "ServiceKind"]
