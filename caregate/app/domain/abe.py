"""Attribute policy gate for record payloads.

A record payload is sealed with a fresh AES-256-GCM key and tagged with a
conjunctive attribute policy such as ``(hospital:H1 AND department:D1)``.
The key is stored next to the ciphertext, so the policy is enforced here,
at decrypt time, and not by the cipher.
"""
from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENCRYPTION_ALGORITHM = "ABE"
REDACTED = "[Encrypted]"
KEY_BYTES = 32
NONCE_BYTES = 12


@dataclass
class SealedPayload:
    encrypted_data: str
    encrypted_key: str
    policy: str
    is_encrypted: bool = True

    @property
    def encryption_details(self) -> Dict[str, str]:
        return {"policy_id": self.policy, "encryption_algorithm": ENCRYPTION_ALGORITHM}


def generate_policy(attributes: Mapping[str, str]) -> str:
    conditions = [f"{name}:{value}" for name, value in attributes.items()]
    return f"({' AND '.join(conditions)})"


def parse_policy(policy: str) -> Dict[str, str]:
    cleaned = policy.replace("(", "").replace(")", "")
    parsed: Dict[str, str] = {}
    for condition in cleaned.split(" AND "):
        if not condition:
            continue
        name, _, value = condition.partition(":")
        parsed[name] = value
    return parsed


def satisfies_policy(required: Mapping[str, str], attributes: Mapping[str, Any]) -> bool:
    if not required:
        return False
    return all(attributes.get(name) and attributes.get(name) == value for name, value in required.items())


def encrypt_record(payload: Mapping[str, Any], attributes: Mapping[str, str]) -> SealedPayload:
    """Seal ``payload`` under a conjunction of every attribute/value pair given."""
    if not attributes:
        raise ValueError("at least one attribute is required to build a policy")
    key = AESGCM.generate_key(bit_length=KEY_BYTES * 8)
    nonce = os.urandom(NONCE_BYTES)
    plaintext = json.dumps(payload, default=str).encode("utf-8")
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return SealedPayload(
        encrypted_data=base64.b64encode(nonce + ciphertext).decode("ascii"),
        encrypted_key=key.hex(),
        policy=generate_policy(attributes),
    )


def decrypt_record(record: Any, caller_attributes: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the sealed payload, or None when the caller's attributes miss the policy.

    ``record`` may be a SealedPayload, a MedicalRecord row or a plain mapping.
    """
    encrypted_data = _field(record, "encrypted_data")
    if not _field(record, "is_encrypted"):
        return json.loads(encrypted_data) if encrypted_data else None

    if not satisfies_policy(parse_policy(_field(record, "policy") or ""), caller_attributes):
        return None

    raw = base64.b64decode(encrypted_data)
    key = bytes.fromhex(_field(record, "encrypted_key"))
    plaintext = AESGCM(key).decrypt(raw[:NONCE_BYTES], raw[NONCE_BYTES:], None)
    return json.loads(plaintext.decode("utf-8"))


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)
