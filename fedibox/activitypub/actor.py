"""
Actor Module

Creates local actors: key pair generation, the published actor document
and the stored actor Record (private key kept in the hidden metadata
block). Run as a script to provision an actor:

    python -m fedibox.activitypub.actor alice --display-name "Alice"
"""

import argparse
import logging
from typing import Any, Dict, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..config import Settings, get_settings
from ..database import PostgresRecordStore, RecordStore
from .constants import AS_CONTEXT, SECURITY_CONTEXT
from .signature import key_id_for

logger = logging.getLogger(__name__)


def generate_key_pair(key_size: int = 2048) -> Tuple[str, str]:
    """
    Generate an RSA key pair for signing deliveries.

    Returns:
        Tuple of (PKCS8 private key PEM, SubjectPublicKeyInfo public key PEM)
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('utf-8')
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode('utf-8')
    return private_pem, public_pem


def build_actor_document(settings: Settings, name: str, public_key_pem: str,
                         display_name: Optional[str] = None) -> Dict[str, Any]:
    """Generate the public actor profile."""
    actor_id = settings.actor_iri(name)
    return {
        "@context": [AS_CONTEXT, SECURITY_CONTEXT],
        "id": actor_id,
        "type": "Person",
        "name": display_name or name,
        "preferredUsername": name,
        "inbox": f"{actor_id}/inbox",
        "outbox": settings.outbox_iri(name),
        "followers": f"{actor_id}/followers",
        "following": f"{actor_id}/following",
        "liked": f"{actor_id}/liked",
        "publicKey": {
            "id": key_id_for(actor_id),
            "owner": actor_id,
            "publicKeyPem": public_key_pem,
        },
    }


def create_local_actor(store: RecordStore, settings: Settings, name: str,
                       display_name: Optional[str] = None,
                       key_pair: Optional[Tuple[str, str]] = None) -> Dict[str, Any]:
    """
    Create and store a local actor if it does not exist yet.

    Args:
        store: Record store
        settings: Instance settings
        name: Actor username
        display_name: Optional display name
        key_pair: Optional (private PEM, public PEM); generated when omitted

    Returns:
        The stored public actor document
    """
    private_pem, public_pem = key_pair or generate_key_pair()
    actor = build_actor_document(settings, name, public_pem, display_name)
    actor['_meta'] = {'privateKey': private_pem}
    if store.save(actor):
        logger.info(f"Created actor {actor['id']}")
    else:
        logger.info(f"Actor {actor['id']} already exists")
    return store.get(actor['id'])


def main():
    parser = argparse.ArgumentParser(description="Create a local actor")
    parser.add_argument("name", help="actor username")
    parser.add_argument("--display-name", default=None)
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    store = PostgresRecordStore.from_settings(settings)
    try:
        actor = create_local_actor(store, settings, args.name, args.display_name)
        print(actor['id'])
    finally:
        store.close()


if __name__ == "__main__":
    main()
