"""
caregate: patient-data access control for a multi-tenant records platform.

Decides, for every doctor/patient pair, whether the doctor may read or
write the patient's records, keeps the grant, request and relationship
ledgers behind that decision, and gates individual encrypted records on
hospital/department attributes.

The HTTP application lives in `caregate.app.main`; the attribute policy
gate is importable on its own for record pipelines that run outside the
API process.
"""

__all__ = [
    "decrypt_record",
    "encrypt_record",
]

from .app.domain.abe import decrypt_record, encrypt_record

__version__ = "0.1.0"
