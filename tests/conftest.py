"""Shared fixtures: bech32 address factory and a fake LCD (REST) endpoint."""
import asyncio

import pytest
from aiohttp import web
from bech32 import bech32_encode, convertbits


def make_address(seed: int, prefix: str = "mars", length: int = 20) -> str:
    payload = bytes((seed + i) % 256 for i in range(length))
    return bech32_encode(prefix, convertbits(payload, 8, 5))


def not_found_body(address: str) -> dict:
    return {
        "code": 5,
        "message": f"rpc error: code = NotFound desc = account {address} not found: key not found",
        "details": [],
    }


class FakeLCD:
    """In-process stand-in for the auth and staking REST routes of a Cosmos node."""

    def __init__(self):
        self.url = None
        self.accounts = {}
        self.delegations = {}
        self.delays = {}
        self.requests = []

    def add_account(self, address, sequence="0", **extra):
        account = {
            "@type": "/cosmos.auth.v1beta1.BaseAccount",
            "address": address,
            "pub_key": None,
            "account_number": "42",
        }
        if sequence is not None:
            account["sequence"] = sequence
        account.update(extra)
        self.accounts[address] = (200, {"account": account})

    def set_account_response(self, address, status, body):
        self.accounts[address] = (status, body)

    def add_delegations(self, address, amounts, next_key=None):
        responses = []
        for index, amount in enumerate(amounts):
            entry = {
                "delegation": {
                    "delegator_address": address,
                    "validator_address": f"marsvaloper{index}",
                    "shares": "1.000000000000000000",
                },
            }
            if amount is not None:
                entry["balance"] = {"denom": "umars", "amount": amount}
            responses.append(entry)
        body = {
            "delegation_responses": responses,
            "pagination": {"next_key": next_key, "total": str(len(responses))},
        }
        self.delegations[address] = (200, body)

    def set_delegation_response(self, address, status, body):
        self.delegations[address] = (status, body)

    def paths_for(self, address):
        return [path for path in self.requests if path.endswith(address)]

    async def _respond(self, request, table, default):
        address = request.match_info["address"]
        self.requests.append(request.path)
        delay = self.delays.get(address)
        if delay:
            await asyncio.sleep(delay)
        status, body = table.get(address, default(address))
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    async def account_handler(self, request):
        return await self._respond(request, self.accounts, lambda a: (404, not_found_body(a)))

    async def delegations_handler(self, request):
        empty = {"delegation_responses": [], "pagination": {"next_key": None, "total": "0"}}
        return await self._respond(request, self.delegations, lambda a: (200, empty))

    def app(self):
        app = web.Application()
        app.router.add_get("/cosmos/auth/v1beta1/accounts/{address}", self.account_handler)
        app.router.add_get("/cosmos/staking/v1beta1/delegations/{address}", self.delegations_handler)
        return app


@pytest.fixture
async def lcd(aiohttp_server):
    fake = FakeLCD()
    server = await aiohttp_server(fake.app())
    fake.url = str(server.make_url("/"))
    return fake
