"""Spruce Demo - hybrid post-quantum handshake and messaging between alice and bob."""

import argparse
import logging
from dataclasses import replace

from .client import Client
from .directory import InMemoryKeyDirectory
from .error import AuthenticationFailure
from .mailbox import InMemoryMailbox
from .primitives import Provider
from .types import ProtocolConfig, decode_envelope


def main(argv=None):
    """Run the alice/bob demo."""
    parser = argparse.ArgumentParser(description="Spruce hybrid PQ messaging demo")
    parser.add_argument("--kem", choices=["kyber768", "demo"], default="kyber768")
    parser.add_argument("--aead", choices=["aes-256-gcm", "chacha20-poly1305"], default="aes-256-gcm")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ProtocolConfig(kem=args.kem, aead=args.aead)
    provider = Provider.from_config(config)
    directory = InMemoryKeyDirectory()
    mailbox = InMemoryMailbox()

    print("=== Spruce Hybrid PQ Demo (Python) ===\n")
    print(f"Provider: {provider}")

    print("\nGenerating identities for alice and bob...")
    alice = Client("alice", provider, directory, mailbox, config)
    bob = Client("bob", provider, directory, mailbox, config)

    with alice, bob:
        print("\nAlice initiating handshake to bob...")
        hs = alice.connect("bob")
        print(f"  Handshake id: {hs.handshake_id}")
        print(f"  Ephemeral X25519 key: {len(hs.ephemeral_pub)} bytes")
        print(f"  KEM ciphertext: {len(hs.kem_ct)} bytes")
        print(f"  Signature: {len(hs.signature)} bytes")

        print("Bob accepting handshake...")
        for delivery in bob.poll():
            if not delivery.ok:
                print(f"  Handshake from {delivery.sender} rejected: {delivery.error}")
                return 1
        print("✓ Session established")

        print("\n--- Message Exchange ---")
        for text in ["hello", "Harvest now, decrypt never!"]:
            print(f"\nAlice sends: \"{text}\"")
            msg = alice.send("bob", text)
            print(f"  Ciphertext: {len(msg.ciphertext)} bytes, nonce: {msg.nonce.hex()}")
            for delivery in bob.poll():
                if delivery.ok:
                    print(f"Bob receives: \"{delivery.plaintext.decode('utf-8')}\"")
                else:
                    print(f"Bob rejected a message: {type(delivery.error).__name__}")

        print("\n--- Tampering ---")
        alice.send("bob", "hello")
        (wire,) = mailbox.drain("bob")
        msg = decode_envelope(wire)
        tampered = bytearray(msg.ciphertext)
        tampered[0] ^= 0x01
        print("Flipping one ciphertext bit in transit...")
        try:
            bob.receive(replace(msg, ciphertext=bytes(tampered)))
            print("Tampered message was accepted (unexpected)")
            return 1
        except AuthenticationFailure as e:
            print(f"✓ Tampered message rejected: {type(e).__name__}")

    print("\n=== Demo Complete ===")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
