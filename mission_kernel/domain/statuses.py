"""
Mission status, role and reason vocabularies.

Values are the wire codes stored in the database and exchanged with the
mobile and dispatch clients; they are French upper-case codes inherited from
the field-service application and must not be translated.
"""

from enum import Enum


class MissionStatus(str, Enum):
    """Lifecycle status of a mission."""

    BROUILLON = "BROUILLON"
    PUBLIEE = "PUBLIEE"
    ACCEPTEE = "ACCEPTEE"
    PLANIFIEE = "PLANIFIEE"
    EN_ROUTE = "EN_ROUTE"
    EN_INTERVENTION = "EN_INTERVENTION"
    EN_PAUSE = "EN_PAUSE"
    TERMINEE = "TERMINEE"
    FACTURABLE = "FACTURABLE"
    FACTUREE = "FACTUREE"
    PAYEE = "PAYEE"
    CLOTUREE = "CLOTUREE"
    ANNULEE = "ANNULEE"


class Role(str, Enum):
    """Actor role tags supplied by the identity provider."""

    ADMIN = "ADMIN"
    DISPATCH = "DISPATCH"
    TECH = "TECH"
    ST = "ST"  # sous-traitant (subcontractor)
    SAL = "SAL"  # sales / billing
    CLIENT = "CLIENT"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Case-insensitive lookup; raises ValueError for unknown roles."""
        if isinstance(value, Role):
            return value
        return cls(str(value).strip().upper())


class ReportStatus(str, Enum):
    A_VALIDER = "A_VALIDER"
    VALIDE = "VALIDE"
    REJETE = "REJETE"


class BillingStatus(str, Enum):
    FACTURABLE = "FACTURABLE"
    FACTUREE = "FACTUREE"
    PAYEE = "PAYEE"


class PauseReason(str, Enum):
    CLIENT_ABSENT = "client_absent"
    ACCES_IMPOSSIBLE = "acces_impossible"
    PIECES_MANQUANTES = "pieces_manquantes"
    SECURITE = "securite"
    CONTRE_ORDRE = "contre_ordre"


class RejectionReason(str, Enum):
    PHOTOS_INSUFFISANTES = "photos_insuffisantes"
    MESURES_MANQUANTES = "mesures_manquantes"
    SIGNATURE_MANQUANTE = "signature_manquante"
    INCOHERENCE_RAPPORT = "incoherence_rapport"


# Statuses in which a technician is working the mission in the field
ACTIVE_STATUSES: frozenset[MissionStatus] = frozenset(
    {
        MissionStatus.ACCEPTEE,
        MissionStatus.PLANIFIEE,
        MissionStatus.EN_ROUTE,
        MissionStatus.EN_INTERVENTION,
        MissionStatus.EN_PAUSE,
    }
)
