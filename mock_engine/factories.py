"""Named record factories producing realistic payloads for scenarios."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Union

from faker import Faker

from .errors import ConfigurationError

Factory = Callable[[], dict[str, Any]]
Trait = Union[Callable[[dict[str, Any]], dict[str, Any]], dict[str, Any]]


@dataclass
class SequenceState:
    generator: Callable[[int], Any]
    counter: int = 0


@dataclass
class _FactoryEntry:
    build: Factory
    traits: dict[str, Trait] = field(default_factory=dict)


class MockFactories:
    """Registry of record builders with overrides, traits, computed fields and sequences.

    Values that are callables after overrides are applied are treated as computed
    fields and called with the assembled record.
    """

    def __init__(self, faker: Faker | None = None, seed: int | None = None) -> None:
        if faker is None:
            faker = Faker()
            if seed is not None:
                faker.seed_instance(seed)
        self.faker = faker
        self._factories: dict[str, _FactoryEntry] = {}
        self._sequences: dict[str, SequenceState] = {}
        self._register_defaults()

    def register(self, name: str, factory: Factory) -> "MockFactories":
        self._factories[name] = _FactoryEntry(build=factory)
        return self

    def trait(self, factory_name: str, trait_name: str, trait: Trait) -> "MockFactories":
        self._entry(factory_name).traits[trait_name] = trait
        return self

    def sequence(self, name: str, generator: Callable[[int], Any]) -> "MockFactories":
        self._sequences[name] = SequenceState(generator=generator)
        return self

    def next_sequence(self, name: str) -> Any:
        sequence = self._sequences.get(name)
        if sequence is None:
            raise ConfigurationError(f"Sequence '{name}' not found", details={"sequence": name})
        sequence.counter += 1
        return sequence.generator(sequence.counter)

    def reset_sequences(self) -> None:
        for sequence in self._sequences.values():
            sequence.counter = 0

    def build(self, name: str, overrides: dict[str, Any] | None = None, traits: list[str] | None = None) -> dict[str, Any]:
        entry = self._entry(name)
        data = entry.build()
        for trait_name in traits or []:
            trait = entry.traits.get(trait_name)
            if trait is None:
                continue
            data.update(trait(data) if callable(trait) else trait)
        data.update(overrides or {})
        return {key: value(data) if callable(value) else value for key, value in data.items()}

    def build_list(
        self,
        name: str,
        count: int,
        overrides: dict[str, Any] | None = None,
        traits: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        return [self.build(name, overrides, traits) for _ in range(count)]

    def names(self) -> list[str]:
        return sorted(self._factories)

    def _entry(self, name: str) -> _FactoryEntry:
        entry = self._factories.get(name)
        if entry is None:
            raise ConfigurationError(f"Factory '{name}' not found", details={"factory": name})
        return entry

    def _price(self, low: float = 1, high: float = 1000) -> float:
        return round(self.faker.random.uniform(low, high), 2)

    def _register_defaults(self) -> None:
        fake = self.faker

        self.register(
            "user",
            lambda: {
                "id": fake.uuid4(),
                "email": fake.email(),
                "username": fake.user_name(),
                "firstName": fake.first_name(),
                "lastName": fake.last_name(),
                "bio": fake.sentence(),
                "createdAt": fake.past_datetime().isoformat(),
                "isActive": fake.pybool(),
                "role": fake.random_element(["user", "admin", "moderator"]),
            },
        )
        self.register(
            "product",
            lambda: {
                "id": fake.uuid4(),
                "name": " ".join(fake.words(2)).title(),
                "description": fake.sentence(),
                "price": self._price(),
                "sku": fake.bothify("????####").upper(),
                "inStock": fake.pybool(),
                "quantity": fake.random_int(0, 100),
                "tags": fake.random_elements(["featured", "sale", "new", "popular", "limited"], length=2, unique=True),
                "createdAt": fake.past_datetime().isoformat(),
            },
        )
        self.register(
            "address",
            lambda: {
                "id": fake.uuid4(),
                "street": fake.street_address(),
                "city": fake.city(),
                "postalCode": fake.postcode(),
                "country": fake.country(),
                "type": fake.random_element(["home", "work", "billing", "shipping"]),
            },
        )
        self.register(
            "order_item",
            lambda: {
                "id": fake.uuid4(),
                "productId": fake.uuid4(),
                "price": self._price(),
                "quantity": fake.random_int(1, 5),
                "total": lambda item: round(item["price"] * item["quantity"], 2),
            },
        )
        self.register(
            "order",
            lambda: {
                "id": fake.uuid4(),
                "orderNumber": fake.bothify("??########").upper(),
                "status": fake.random_element(["pending", "processing", "shipped", "delivered", "cancelled"]),
                "items": self.build_list("order_item", fake.random_int(1, 5)),
                "shippingAddress": self.build("address"),
                "total": lambda order: round(sum(item["total"] for item in order["items"]), 2),
                "createdAt": fake.past_datetime().isoformat(),
            },
        )
        self.register(
            "api_response",
            lambda: {
                "success": True,
                "data": {},
                "message": "Request successful",
                "requestId": fake.uuid4(),
            },
        )
        self.register(
            "api_error",
            lambda: {
                "success": False,
                "error": {"code": "INTERNAL_ERROR", "message": "An error occurred", "details": None},
                "requestId": fake.uuid4(),
            },
        )

        self.sequence("incremental_id", lambda n: n)
        self.sequence("email", lambda n: f"user{n}@example.com")
        self.sequence("username", lambda n: f"user{n}")
