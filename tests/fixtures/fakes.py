"""
Fakes for the two external collaborators: the identity provider and the
remote budgeting service.
"""

import json

import httpx

from household.errors import Unauthenticated
from household.security.identity import VerifiedIdentity


class FakeVerifier:
    """Maps opaque test tokens to identities; anything else is rejected."""

    def __init__(self, identities: dict[str, VerifiedIdentity] | None = None):
        self.identities = dict(identities or {})

    def add(self, token: str, subject: str, name: str = "", email: str = "") -> None:
        self.identities[token] = VerifiedIdentity(subject=subject, email=email, name=name)

    def verify(self, token: str) -> VerifiedIdentity:
        try:
            return self.identities[token]
        except KeyError:
            raise Unauthenticated("Invalid identity token") from None


def default_category_groups() -> list[dict]:
    return [
        {
            "id": "grp-everyday",
            "name": "Everyday",
            "hidden": False,
            "deleted": False,
            "categories": [
                {"id": "cat-food", "name": "Food", "hidden": False, "deleted": False},
                {"id": "cat-fun", "name": "Fun", "hidden": False, "deleted": False},
                {"id": "cat-old", "name": "Old Stuff", "hidden": True, "deleted": False},
            ],
        },
        {
            "id": "grp-bills",
            "name": "Bills",
            "hidden": False,
            "deleted": False,
            "categories": [{"id": "cat-rent", "name": "Rent", "hidden": False, "deleted": False}],
        },
        {
            "id": "internal:master",
            "name": "Internal Master Category",
            "hidden": False,
            "deleted": False,
            "categories": [{"id": "cat-tbb", "name": "Inflow: Ready to Assign"}],
        },
    ]


class FakeBudgetService:
    """In-memory stand-in for the budgeting service's REST API."""

    def __init__(self):
        self.category_groups = default_category_groups()
        self.transactions: list[dict] = []
        self.category_status = 200
        self.transaction_status = 200
        self.post_status = 201
        self.post_body: bytes | None = None
        self.requests: list[httpx.Request] = []
        self.posted: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path.endswith("/categories"):
            if self.category_status != 200:
                return httpx.Response(self.category_status, json={"error": {"detail": "category fetch failed"}})
            return httpx.Response(200, json={"data": {"category_groups": self.category_groups}})

        if request.method == "GET" and path.endswith("/transactions"):
            if self.transaction_status != 200:
                return httpx.Response(self.transaction_status, json={"error": {"detail": "transaction fetch failed"}})
            return httpx.Response(200, json={"data": {"transactions": self.transactions}})

        if request.method == "POST" and path.endswith("/transactions"):
            body = json.loads(request.content)
            self.posted.append(body)
            if self.post_status not in (200, 201):
                return httpx.Response(self.post_status, json={"error": {"detail": "rejected"}})
            if self.post_body is not None:
                return httpx.Response(self.post_status, content=self.post_body)
            return httpx.Response(
                self.post_status, json={"data": {"transaction": {"id": "remote-txn-1", **body["transaction"]}}}
            )

        return httpx.Response(404, json={"error": {"detail": f"no route for {path}"}})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
