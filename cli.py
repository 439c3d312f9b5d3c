#!/usr/bin/env python3
"""Simple CLI for inspecting and managing the local AmberInk session key"""

import argparse
import asyncio
import os
import sys
from decimal import Decimal
from typing import Optional

from amberink.config import settings
from amberink.core.encryption.key_cache import EncryptionKeyCache
from amberink.core.publishing.orchestrator import PublishOrchestrator
from amberink.core.recovery.errors import AmberInkError
from amberink.core.wallet.session_manager import SessionKeyManager
from amberink.core.wallet.store import JsonFileStore
from amberink.logging_config import bind_owner, clear_log_context, setup_logging
from amberink.providers.gateway import GatewayClient
from amberink.providers.irys import IrysGraphQLIndex
from amberink.providers.rpc import ChainClient
from amberink.providers.wallet import LocalAccountWallet
from amberink.services.funding import BalanceController

OWNER_KEY_ENV = "AMBERINK_OWNER_PRIVATE_KEY"
WEI_PER_ETH = Decimal(10) ** 18


def owner_wallet(chain: ChainClient) -> LocalAccountWallet:
    private_key = os.getenv(OWNER_KEY_ENV)
    if not private_key:
        raise SystemExit(f"❌ Set {OWNER_KEY_ENV} to the owner wallet's private key")
    return LocalAccountWallet(private_key, chain)


def format_eth(wei: int) -> str:
    return f"{Decimal(wei) / WEI_PER_ETH:.6f} ETH"


async def cli_status(owner: Optional[str]):
    """Show the stored key, its on-chain record and balance"""
    store = JsonFileStore(settings.session_key_store_path)
    async with ChainClient() as chain:
        wallet = None if owner else owner_wallet(chain)
        owner = owner or wallet.address
        bind_owner(owner)
        manager = SessionKeyManager(wallet=wallet, chain=chain, store=store)

        key = manager.get_stored(owner)
        print(f"\n🔑 Session key status ({settings.environment})")
        print("=" * 50)
        print(f"Owner: {owner}")
        if key is None:
            print("No session key stored for this owner")
            return

        record, now, problem = await manager.inspect(key)
        balance = await manager.get_balance(key.address)
        print(f"Session key: {key.address}")
        print(f"Valid until: {key.valid_until} (chain time {now})")
        print(f"Balance: {format_eth(balance)}")
        print(f"Nonce: {record.nonce}")
        print(f"Spent: {format_eth(record.spent_amount)} of {format_eth(record.spending_limit)}")
        print(f"Selectors: {', '.join(sorted(record.allowed_selectors)) or '-'}")
        if problem is None:
            print("✅ Active")
        else:
            print(f"⚠️  Not usable: {problem.message}")


async def cli_withdraw():
    store = JsonFileStore(settings.session_key_store_path)
    async with ChainClient() as chain:
        wallet = owner_wallet(chain)
        bind_owner(wallet.address)
        manager = SessionKeyManager(wallet=wallet, chain=chain, store=store)
        key = manager.get_stored(wallet.address)
        if key is None:
            print("No session key stored for this owner")
            return
        tx_hash = await manager.withdraw_all(key.address)
        print(f"💸 Withdrawal sent: {tx_hash}")


async def cli_revoke():
    store = JsonFileStore(settings.session_key_store_path)
    async with ChainClient() as chain:
        wallet = owner_wallet(chain)
        bind_owner(wallet.address)
        manager = SessionKeyManager(wallet=wallet, chain=chain, store=store)
        tx_hash = await manager.revoke()
        if tx_hash is None:
            print("No session key stored for this owner")
        else:
            print(f"🗑️  Session key revoked: {tx_hash}")


async def cli_resolve(article_id: str, visibility: Optional[int]):
    """Print an article's latest content, decrypted when a cached signature exists"""
    store = JsonFileStore(settings.session_key_store_path)
    gateway = GatewayClient()
    index = IrysGraphQLIndex()
    async with ChainClient() as chain:
        orchestrator = PublishOrchestrator(
            uploader=None,
            store=store,
            balance=BalanceController(chain, wallet=None),
            gateway=gateway,
            index=index,
            key_cache=EncryptionKeyCache(store),
        )
        try:
            article = await orchestrator.resolve_article(article_id, visibility=visibility)
        finally:
            await gateway.aclose()
            await index.aclose()

    print(f"\n📄 {article.article_id} (manifest {article.manifest_id})")
    print("=" * 50)
    if article.pending:
        print("Encrypted content has not been indexed yet")
    elif article.encrypted and not article.decrypted:
        print("Content is encrypted and no cached signature exists on this device")
    else:
        print(article.content)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AmberInk session key CLI")
    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser("status", help="Show the stored session key")
    status_parser.add_argument("owner", nargs="?", help=f"Owner address (default: from {OWNER_KEY_ENV})")

    subparsers.add_parser("withdraw", help="Withdraw the session key balance to the owner")
    subparsers.add_parser("revoke", help="Revoke the session key on-chain and forget it")

    resolve_parser = subparsers.add_parser("resolve", help="Print an article's latest content")
    resolve_parser.add_argument("article_id", help="Permanent manifest id of the article")
    resolve_parser.add_argument("--visibility", type=int, choices=[0, 1, 2], help="On-chain visibility flag")

    return parser


async def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging()
    command = args.command.lower()

    try:
        if command == "status":
            await cli_status(args.owner)
        elif command == "withdraw":
            await cli_withdraw()
        elif command == "revoke":
            await cli_revoke()
        elif command == "resolve":
            await cli_resolve(args.article_id, args.visibility)
        else:
            print(f"❌ Unknown command: {command}")
            parser.print_help()
    except AmberInkError as e:
        print(f"❌ {e.message}")
        if e.suggested_action:
            print(f"   {e.suggested_action}")
        sys.exit(1)
    finally:
        clear_log_context()


if __name__ == "__main__":
    asyncio.run(main())
