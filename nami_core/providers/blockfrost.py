"""Blockfrost data provider. Responses are already in the canonical shapes."""

from __future__ import annotations

from typing import Optional

from nami_core.providers.base import (
    LOVELACE,
    DataProvider,
    is_error,
    raise_for_balance_error,
    raise_for_submit_error,
)


class BlockfrostProvider(DataProvider):
    name = "blockfrost"

    async def get_address_transactions(self, address, limit=10, page=1, order="desc"):
        result = await self.api_request(
            f"/addresses/{address}/transactions",
            params={"page": page, "order": order, "count": limit},
        )
        if not result or is_error(result):
            return []
        return [
            {
                "tx_hash": tx["tx_hash"],
                "tx_index": tx.get("tx_index"),
                "block_height": tx.get("block_height"),
            }
            for tx in result
        ]

    async def get_pool_delegation(self, stake_address):
        stake = await self.api_request(f"/accounts/{stake_address}")
        if not stake or is_error(stake) or not stake.get("pool_id"):
            return {}
        delegation = await self.api_request(f"/pools/{stake['pool_id']}/metadata")
        if not delegation or is_error(delegation):
            return {}
        return {
            "active": stake.get("active"),
            "rewards": stake.get("withdrawable_amount"),
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
        return [{"unit": a["unit"], "quantity": str(a["quantity"])} for a in result["amount"]]

    async def get_stake_balance(self, stake_address):
        result = await self.api_request(f"/accounts/{stake_address}")
        if not result or is_error(result):
            return "0"
        return str(int(result["controlled_amount"]) - int(result["withdrawable_amount"]))

    async def get_addresses(self, stake_address, limit=2):
        result = await self.api_request(
            f"/accounts/{stake_address}/addresses", params={"count": limit}
        )
        if not result or is_error(result):
            return []
        return result

    async def get_address_utxos(self, address, page=1, limit=100):
        collected: list[dict] = []
        while True:
            page_result = await self.api_request(
                f"/addresses/{address}/utxos", params={"page": page, "count": limit}
            )
            if is_error(page_result):
                raise_for_balance_error(page_result)
                page_result = []
            collected.extend(page_result or [])
            if not page_result:
                break
            page += 1
        return [
            {
                "tx_hash": u["tx_hash"],
                "output_index": u["output_index"],
                "address": address,
                "amount": [{"unit": a["unit"], "quantity": str(a["quantity"])} for a in u["amount"]],
            }
            for u in collected
        ]

    async def get_transaction(self, tx_hash) -> Optional[dict]:
        result = await self.api_request(f"/txs/{tx_hash}")
        if not result or is_error(result):
            return None
        return result

    async def get_block(self, block_hash_or_number):
        result = await self.api_request(f"/blocks/{block_hash_or_number}")
        if not result or is_error(result):
            return None
        return result

    async def get_transaction_utxos(self, tx_hash):
        result = await self.api_request(f"/txs/{tx_hash}/utxos")
        if not result or is_error(result):
            return None
        return result

    async def get_transaction_metadata(self, tx_hash):
        result = await self.api_request(f"/txs/{tx_hash}/metadata")
        if result is None or is_error(result):
            return None
        return result

    async def submit_tx(self, tx_hex):
        result = await self.api_request(
            "/tx/submit",
            headers={"Content-Type": "application/cbor"},
            body=bytes.fromhex(tx_hex),
        )
        if is_error(result):
            raise_for_submit_error(result)
        return result

    async def get_asset(self, asset_unit):
        result = await self.api_request(f"/assets/{asset_unit}")
        if not result or is_error(result):
            return {}
        return result

    async def get_latest_block(self):
        result = await self.api_request("/blocks/latest")
        if not result or is_error(result):
            return None
        return result

    async def get_epoch_parameters(self, epoch):
        result = await self.api_request(f"/epochs/{epoch}/parameters")
        if not result or is_error(result):
            return None
        return result
