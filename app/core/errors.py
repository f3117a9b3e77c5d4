"""
Erreurs métier de la couche de cohérence des références.

- Unauthenticated     : pas d'identité courante -> redirection vers le login
- ReferenceNotFound   : référence vers un document absent (absorbée en placeholder)
- DocumentNotFound    : écriture/lecture directe sur un document absent
- PartialWriteFailure : une étape d'une création multi-documents a échoué
- TransportFailure    : le store est indisponible (erreur réessayable)
"""

from typing import List, Optional


class ChoreError(Exception):
    pass


class Unauthenticated(ChoreError):
    def __init__(self, message: str = "unauthenticated"):
        super().__init__(message)


class ReferenceNotFound(ChoreError):
    def __init__(self, path: str):
        super().__init__(f"Reference not found: {path}")
        self.path = path


class DocumentNotFound(ChoreError):
    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}")
        self.path = path


class TransportFailure(ChoreError):
    pass


class PartialWriteFailure(ChoreError):
    """Le document principal existe mais une back-référence n'a pas été écrite."""

    def __init__(
        self,
        entity: str,
        entity_id: Optional[str],
        failed_step: str,
        completed_steps: List[str],
        cause: Optional[BaseException] = None,
        action: str = "create",
    ):
        super().__init__(f"Failed to {action} {entity} (step '{failed_step}' failed)")
        self.action = action
        self.entity = entity
        self.entity_id = entity_id
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.cause = cause
