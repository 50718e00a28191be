"""
TangoCrypto data provider.

TangoCrypto names most fields differently from Blockfrost (``hash`` vs
``tx_hash``, ``block_no`` vs ``height``, separate ``ada``/``assets``
balances); everything is normalised to the Blockfrost shapes here.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from nami_core.errors import InternalError, InvalidRequest
from nami_core.providers.base import (
    LOVELACE,
    DataProvider,
    is_error,
    raise_for_balance_error,
    raise_for_submit_error,
)


def _asset_unit(asset: dict, readable_name: bool = False) -> str:
    name = asset.get("asset_name", "")
    # transaction inputs/outputs carry the readable name, balances the hex one
    if readable_name:
        name = name.encode("utf-8").hex()
    return f"{asset['policy_id']}{name}"


def _amount(ada: Any, assets: list[dict], readable_names: bool = False) -> list[dict]:
    amount = [{"unit": LOVELACE, "quantity": str(ada)}]
    amount.extend(
        {"unit": _asset_unit(a, readable_names), "quantity": str(a["quantity"])}
        for a in assets or []
    )
    return amount


def _millis(ts: Any) -> Any:
    if not isinstance(ts, str):
        return ts
    return int(datetime.fromisoformat(ts.replace("Z", "+00:00")).timestamp() * 1000)


def _block(result: dict) -> dict:
    return {
        "time": _millis(result.get("time")),
        "height": result.get("block_no"),
        "hash": result.get("hash"),
        "slot": result.get("slot_no"),
        "epoch": result.get("epoch_no"),
        "epoch_slot": result.get("epoch_slot_no"),
        "slot_leader": result.get("slot_leader"),
        "size": result.get("size"),
        "tx_count": result.get("tx_count"),
        "output": result.get("out_sum"),
        "fees": result.get("fees"),
        "block_vrf": result.get("vrf_key"),
        "previous_block": result.get("previous_block"),
        "next_block": result.get("next_block"),
        "confirmations": result.get("confirmations"),
    }


class TangoCryptoProvider(DataProvider):
    name = "tangocrypto"

    async def get_address_transactions(self, address, limit=10, page=1, order="desc"):
        result = await self.api_request(
            f"/addresses/{address}/transactions",
            params={"page": page, "order": order, "count": limit},
        )
        if not result or is_error(result):
            return []
        if isinstance(result, dict):
            result = result.get("data", [])
        return [
            {
                "tx_hash": tx["hash"],
                "tx_index": tx.get("block_index"),
                "block_height": tx.get("block_no"),
            }
            for tx in result
        ]

    async def get_pool_delegation(self, stake_address):
        stake = await self.api_request(f"/wallets/{stake_address}")
        if not stake or is_error(stake) or not stake.get("pool_id"):
            return {}
        delegation = await self.api_request(f"/pools/{stake['pool_id']}/metadata")
        if not delegation or is_error(delegation):
            return {}
        return {
            "active": stake.get("active"),
            "rewards": stake.get("withdraw_available"),
            "homepage": delegation.get("homepage"),
            "pool_id": stake["pool_id"],
            "ticker": delegation.get("ticker"),
            "description": delegation.get("description"),
            "name": delegation.get("name"),
        }

    async def get_address_balance(self, address):
        result = await self.api_request(f"/addresses/{address}")
        if is_error(result):
            raise_for_balance_error(result)
            return [{"unit": LOVELACE, "quantity": "0"}]
        return _amount(result.get("ada", 0), result.get("assets", []))

    async def get_stake_balance(self, stake_address):
        result = await self.api_request(f"/wallets/{stake_address}")
        if not result or is_error(result):
            return "0"
        return str(int(result["controlled_total_stake"]) - int(result["withdraw_available"]))

    async def get_addresses(self, stake_address, limit=2):
        result = await self.api_request(
            f"/wallets/{stake_address}/addresses", params={"count": limit}
        )
        if not result or is_error(result):
            return []
        return result

    async def get_address_utxos(self, address, page=1, limit=100):
        result = await self.api_request(
            f"/addresses/{address}/utxos", params={"page": page, "count": limit}
        )
        if is_error(result):
            if result["status_code"] == 400:
                raise InvalidRequest()
            raise InternalError()
        if isinstance(result, dict):
            result = result.get("data", [])
        return [
            {
                "tx_hash": u["hash"],
                "output_index": u["index"],
                "address": address,
                "amount": _amount(u.get("value", 0), u.get("assets", [])),
            }
            for u in result or []
        ]

    async def get_transaction(self, tx_hash) -> Optional[dict]:
        result = await self.api_request(f"/transactions/{tx_hash}")
        if not result or is_error(result):
            return None
        block = result.get("block") or {}
        return {
            "hash": result.get("hash"),
            "block": block.get("hash"),
            "block_height": block.get("block_no"),
            "slot": block.get("slot_no"),
            "index": result.get("block_index"),
            "output_amount": _amount(result.get("out_sum", 0), result.get("assets", [])),
            "fees": result.get("fees"),
            "deposit": result.get("deposit"),
            "size": result.get("size"),
            "invalid_before": result.get("invalid_before"),
            "invalid_hereafter": result.get("invalid_hereafter"),
            "utxo_count": result.get("utxo_count"),
            "withdrawal_count": result.get("withdrawal_count"),
            "mir_cert_count": result.get("mir_cert_count"),
            "delegation_count": result.get("delegation_count"),
            "stake_cert_count": result.get("stake_cert_count"),
            "pool_update_count": result.get("pool_update_count"),
            "pool_retire_count": result.get("pool_retire_count"),
            "asset_mint_or_burn_count": result.get("asset_mint_or_burn_count"),
        }

    async def get_block(self, block_hash_or_number):
        result = await self.api_request(f"/blocks/{block_hash_or_number}")
        if not result or is_error(result):
            return None
        return _block(result)

    async def get_transaction_utxos(self, tx_hash):
        result = await self.api_request(f"/transactions/{tx_hash}/utxos")
        if not result or is_error(result):
            return None
        inputs = [
            {
                "address": i["address"],
                "tx_hash": i["hash"],
                "output_index": i["index"],
                "amount": _amount(i["value"], i.get("assets", []), readable_names=True),
            }
            for i in result.get("inputs", [])
        ]
        outputs = [
            {"address": o["address"], "amount": _amount(o["value"], o.get("assets", []), readable_names=True)}
            for o in result.get("outputs", [])
        ]
        return {"hash": result.get("hash"), "inputs": inputs, "outputs": outputs}

    async def get_transaction_metadata(self, tx_hash):
        result = await self.api_request(f"/transactions/{tx_hash}/metadata")
        if result is None or is_error(result):
            return None
        return [{"label": item.get("key"), "json_metadata": item.get("json")} for item in result]

    async def submit_tx(self, tx_hex):
        result = await self.api_request(
            "/transactions/submit",
            headers={"Content-Type": "application/json"},
            body=json.dumps({"tx": tx_hex}),
        )
        if is_error(result):
            raise_for_submit_error(result)
        return result.get("tx_id") or result.get("txId")

    async def get_asset(self, asset_unit):
        asset = await self.api_request(f"/assets/{asset_unit}")
        if not asset or is_error(asset):
            return {}
        policy_id = asset.get("policy_id", "")
        asset_name = asset.get("asset_name", "")
        onchain: dict = {}
        metadata = (asset.get("metadata") or {}).get("json") or {}
        try:
            readable = bytes.fromhex(asset_name).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            readable = asset_name
        onchain.update((metadata.get(policy_id) or {}).get(readable) or {})
        return {
            "asset": f"{policy_id}{asset_name}",
            "policy_id": policy_id,
            "asset_name": asset_name,
            "fingerprint": asset.get("fingerprint"),
            "quantity": asset.get("quantity"),
            "initial_mint_tx_hash": asset.get("initial_mint_tx_hash"),
            "mint_or_burn_count": asset.get("mint_or_burn_count"),
            "onchain_metadata": onchain,
        }

    async def get_latest_block(self):
        result = await self.api_request("/blocks/latest")
        if not result or is_error(result):
            return None
        return _block(result)

    async def get_epoch_parameters(self, epoch):
        params = await self.api_request(f"/epochs/{epoch}/parameters")
        if not params or is_error(params):
            return None
        return {
            "epoch": epoch,
            "min_fee_a": params.get("min_fee_a"),
            "min_fee_b": params.get("min_fee_b"),
            "max_block_size": params.get("max_block_size"),
            "max_tx_size": params.get("max_tx_size"),
            "max_block_header_size": params.get("max_block_header_size"),
            "key_deposit": params.get("key_deposit"),
            "pool_deposit": params.get("pool_deposit"),
            "e_max": params.get("max_epoch"),
            "n_opt": params.get("optimal_pool_count"),
            "a0": params.get("influence_a0"),
            "rho": params.get("monetary_expand_rate_rho"),
            "tau": params.get("treasury_growth_rate_tau"),
            "decentralisation_param": params.get("decentralisation"),
            "extra_entropy": params.get("entropy"),
            "protocol_major_ver": params.get("protocol_major"),
            "protocol_minor_ver": params.get("protocol_minor"),
            "min_utxo": params.get("min_utxo"),
            "min_pool_cost": params.get("min_pool_cost"),
            "nonce": params.get("nonce"),
        }
