#!/usr/bin/env python3
"""
RingDEX Ring CLI

Command-line tools for building, signing and dry-running rings.

Usage:
    ringdex-ring order-hash <order_file> [--engine ADDRESS]
    ringdex-ring sign-order <order_file> --key HEX [--engine ADDRESS]
    ringdex-ring simulate <scenario_file>

Order files are JSON objects with the Order fields (owner, sell_token,
buy_token, sell_amount, buy_amount, created_at, ttl, salt, fee_amount,
buy_no_more_than_buy_amount, margin_split_percentage).

Scenario files describe a complete ring for ``simulate``:

    {
      "now": 1700000000,
      "tokens": ["0x...", "0x..."],
      "balances": [{"token": "0x...", "key": "0x...", "amount": 100}],
      "miner_key": "0x...",
      "fee_recipient": "",
      "abort_on_insufficient_fee": true,
      "orders": [
        {"key": "0x...", "sell_token": "0x...", "sell_amount": 100,
         "buy_amount": 100, "ttl": 3600, "salt": 1, "fee_amount": 0,
         "buy_no_more_than_buy_amount": false, "margin_split_percentage": 0,
         "fee_selection": 0, "rate": [100, 100]}
      ]
    }

Balance entries name their account either by ``owner`` address or by the
``key`` that owns it.
"""

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from eth_keys import keys
from eth_utils import decode_hex

from ..config import load_config
from ..constants import NODE_VERSION
from ..crypto.signing import RingSignature, sign_hash
from ..exceptions import RingDexException
from ..exchange.orders import Order
from ..exchange.registries import (
    InMemoryAssetRegistry,
    InMemoryLedger,
    InMemoryRingClaimRegistry,
    calculate_ring_hash,
)
from ..exchange.state_manager import RingExchange
from ..logger import configure_logging, get_logger


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {path}: {e}")


def parse_private_key(key_hex: str) -> keys.PrivateKey:
    try:
        return keys.PrivateKey(decode_hex(key_hex))
    except (ValueError, TypeError) as e:
        raise click.ClickException(f"Invalid private key: {e}")


def order_from_dict(data: Dict[str, Any], signature: Optional[RingSignature] = None) -> Order:
    """Build an Order from its JSON form."""
    try:
        return Order(
            owner=data["owner"],
            sell_token=data["sell_token"],
            buy_token=data["buy_token"],
            sell_amount=int(data["sell_amount"]),
            buy_amount=int(data["buy_amount"]),
            created_at=int(data["created_at"]),
            ttl=int(data["ttl"]),
            salt=int(data["salt"]),
            fee_amount=int(data.get("fee_amount", 0)),
            buy_no_more_than_buy_amount=bool(data.get("buy_no_more_than_buy_amount", False)),
            margin_split_percentage=int(data.get("margin_split_percentage", 0)),
            signature=signature,
        )
    except KeyError as e:
        raise click.ClickException(f"Order is missing field {e}")


def build_submission(
    scenario: Dict[str, Any],
    engine_address: str,
    now: int,
) -> Dict[str, Any]:
    """
    Sign every order of *scenario* and the resulting ring hash.

    Returns:
        Keyword arguments for RingExchange.submit_ring
    """
    specs: List[Dict[str, Any]] = scenario.get("orders", [])
    ring_size = len(specs)
    if ring_size == 0:
        raise click.ClickException("Scenario has no orders")

    address_list, uint_args_list, uint8_args_list = [], [], []
    buy_no_more_than_list = []
    v_list, r_list, s_list = [], [], []

    for i, spec in enumerate(specs):
        if "key" not in spec or "sell_token" not in spec:
            raise click.ClickException(f"Order {i} needs a key and a sell_token")
        private_key = parse_private_key(spec["key"])
        owner = private_key.public_key.to_checksum_address()
        buy_token = specs[(i + 1) % ring_size]["sell_token"]
        order = order_from_dict({
            **spec,
            "owner": owner,
            "buy_token": buy_token,
            "created_at": spec.get("created_at", now),
        })
        sig = sign_hash(private_key, order.order_hash(engine_address))
        rate_sell, rate_buy = spec.get("rate", (order.sell_amount, order.buy_amount))

        address_list.append((owner, order.sell_token))
        uint_args_list.append((
            order.sell_amount, order.buy_amount, order.created_at, order.ttl,
            order.salt, order.fee_amount, int(rate_sell), int(rate_buy),
        ))
        uint8_args_list.append((order.margin_split_percentage, int(spec.get("fee_selection", 0))))
        buy_no_more_than_list.append(order.buy_no_more_than_buy_amount)
        v_list.append(sig.v)
        r_list.append(sig.r)
        s_list.append(sig.s)

    miner_key = parse_private_key(scenario["miner_key"])
    ring_hash = calculate_ring_hash(ring_size, v_list, r_list, s_list)
    miner_sig = sign_hash(miner_key, ring_hash)
    v_list.append(miner_sig.v)
    r_list.append(miner_sig.r)
    s_list.append(miner_sig.s)

    return {
        "ring_size": ring_size,
        "address_list": address_list,
        "uint_args_list": uint_args_list,
        "uint8_args_list": uint8_args_list,
        "buy_no_more_than_list": buy_no_more_than_list,
        "v_list": v_list,
        "r_list": r_list,
        "s_list": s_list,
        "miner": miner_key.public_key.to_checksum_address(),
        "fee_recipient": scenario.get("fee_recipient", ""),
        "abort_on_insufficient_fee": bool(scenario.get("abort_on_insufficient_fee", True)),
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=NODE_VERSION, prog_name="ringdex-ring")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(),
    default=None,
    help="config.toml path (default: $RINGDEX_CONFIG or ./config.toml)"
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]):
    """RingDEX Ring Command Line Interface

    Compute order hashes, sign orders and dry-run rings against an
    in-memory engine.
    """
    config = load_config(config_path)
    try:
        config.validate()
    except RingDexException as e:
        raise click.ClickException(f"Invalid configuration: {e.reason}")
    log_file = config.logging.file
    configure_logging(
        log_level=config.logging.level,
        log_file=Path(log_file) if log_file else None,
        file_output=bool(log_file),
    )
    ctx.obj = config


@cli.command("order-hash")
@click.argument("order_file", type=click.Path(exists=True))
@click.option("--engine", "-e", default=None, help="Engine address (default: from config)")
@click.pass_obj
def order_hash_cmd(config, order_file: str, engine: Optional[str]):
    """Print the hash of an order.

    Examples:

        ringdex-ring order-hash order.json

        ringdex-ring order-hash order.json --engine 0x5FbDB2315678afecb367f032d93F642f64180aa3
    """
    order = order_from_dict(load_json(order_file))
    engine_address = engine or config.engine.engine_address
    try:
        click.echo("0x" + order.order_hash(engine_address).hex())
    except ValueError as e:
        raise click.ClickException(f"Cannot hash order: {e}")


@cli.command("sign-order")
@click.argument("order_file", type=click.Path(exists=True))
@click.option("--key", "-k", "key_hex", required=True, help="Owner private key (hex)")
@click.option("--engine", "-e", default=None, help="Engine address (default: from config)")
@click.pass_obj
def sign_order_cmd(config, order_file: str, key_hex: str, engine: Optional[str]):
    """Sign an order and print its hash and signature as JSON.

    Examples:

        ringdex-ring sign-order order.json --key 0x4c0883a6...
    """
    private_key = parse_private_key(key_hex)
    data = load_json(order_file)
    owner = private_key.public_key.to_checksum_address()
    data.setdefault("owner", owner)
    order = order_from_dict(data)
    if order.owner.lower() != owner.lower():
        click.echo(click.style(f"WARNING: key belongs to {owner}, order owner is {order.owner}", fg="yellow"))

    engine_address = engine or config.engine.engine_address
    order_hash = order.order_hash(engine_address)
    sig = sign_hash(private_key, order_hash)
    click.echo(json.dumps({
        "order_hash": "0x" + order_hash.hex(),
        "v": sig.v,
        "r": hex(sig.r),
        "s": hex(sig.s),
    }, indent=2))


@cli.command("simulate")
@click.argument("scenario_file", type=click.Path(exists=True))
@click.pass_obj
def simulate_cmd(config, scenario_file: str):
    """Run a ring scenario through an in-memory engine.

    Prints the emitted records and the resulting balances as JSON.

    Examples:

        ringdex-ring simulate ring.json
    """
    scenario = load_json(scenario_file)
    now = int(scenario.get("now", time.time()))

    ledger = InMemoryLedger()
    for entry in scenario.get("balances", []):
        owner = entry.get("owner")
        if owner is None:
            owner = parse_private_key(entry["key"]).public_key.to_checksum_address()
        ledger.credit(entry["token"], owner, int(entry["amount"]))

    exchange = RingExchange(
        config,
        asset_registry=InMemoryAssetRegistry(scenario.get("tokens", [])),
        claim_registry=InMemoryRingClaimRegistry(),
        ledger_transfer=ledger,
        clock=lambda: now,
    )
    submission = build_submission(scenario, exchange.engine_address, now)

    try:
        result = exchange.submit_ring(**submission)
    except RingDexException as e:
        raise click.ClickException(f"Ring rejected: {type(e).__name__}: {e.reason}")
    get_logger(__name__).info("Simulated ring %s", "0x" + result.ring_hash.hex())

    accounts = {row[0] for row in submission["address_list"]}
    accounts.add(submission["miner"])
    if submission["fee_recipient"]:
        accounts.add(submission["fee_recipient"])
    tokens = {row[1] for row in submission["address_list"]} | {exchange.fee_token}

    output = result.to_dict()
    output["balances"] = [
        {"token": token, "owner": owner, "amount": ledger.balance_of(token, owner)}
        for token in sorted(tokens)
        for owner in sorted(accounts)
        if ledger.balance_of(token, owner)
    ]
    click.echo(json.dumps(output, indent=2))


if __name__ == "__main__":
    cli()
