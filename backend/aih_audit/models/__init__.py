from .records import AuditRecord, Movement, ServiceEncounter
from .denials import Denial, DenialType
from .archive import ArchivedRecord, ArchivedMovement, ArchivedDenial, ArchivedServiceEncounter

__all__ = [
    'AuditRecord', 'Movement', 'ServiceEncounter',
    'Denial', 'DenialType',
    'ArchivedRecord', 'ArchivedMovement', 'ArchivedDenial', 'ArchivedServiceEncounter',
]
