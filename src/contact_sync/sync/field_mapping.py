"""Field mapping between Side A's nested contact shape and Side B's property bag.

Side A records arrive in more than one shape (the current nested layout
and an older flat layout), so every Side A field is resolved through an
ordered chain of candidate extractors: the first candidate that yields a
non-empty scalar wins. Side B records are a flat ``properties`` dict.

Rules map one Side A field to one Side B field, in one or both
directions, with an optional value transform. Active rules are cached per
tenant for a short TTL; saving rules invalidates the tenant's entry.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import structlog

from src.contact_sync.core.cache import TTLCache
from src.contact_sync.schemas import (
    FieldMappingRule,
    FieldOption,
    FieldTransform,
    RuleValidationError,
    SaveRulesResult,
    Side,
    SyncDirection,
)
from src.contact_sync.stores.base import RuleStore

logger = structlog.get_logger(__name__)

Extractor = Callable[[Mapping[str, Any]], Any]


# ── Candidate extractors ────────────────────────────────────────────────────


def path(*keys: str | int) -> Extractor:
    """Extractor that walks nested dicts (str keys) and lists (int keys)."""

    def _extract(record: Mapping[str, Any]) -> Any:
        current: Any = record
        for key in keys:
            if isinstance(key, int):
                if not isinstance(current, (list, tuple)) or len(current) <= key:
                    return None
                current = current[key]
            else:
                if not isinstance(current, Mapping):
                    return None
                current = current.get(key)
            if current is None:
                return None
        return current

    return _extract


def first_non_empty(record: Mapping[str, Any], extractors: Iterable[Extractor]) -> str:
    """Return the first candidate that yields a non-empty scalar, as a string."""
    for extract in extractors:
        value = extract(record)
        if value is None or isinstance(value, (Mapping, list, tuple)):
            continue
        text = str(value)
        if text.strip():
            return text
    return ""


def _address(field: str, legacy: str) -> tuple[Extractor, ...]:
    return (
        path("info", "addresses", "items", 0, field),
        path("info", "addresses", 0, field),
        path(legacy),
    )


_EMAIL = (
    path("info", "emails", "items", 0, "email"),
    path("info", "emails", 0, "email"),
    path("primaryInfo", "email"),
    path("primaryEmail"),
)

_PHONE = (
    path("info", "phones", "items", 0, "phone"),
    path("info", "phones", 0, "phone"),
    path("primaryInfo", "phone"),
    path("primaryPhone"),
)

SIDE_A_EXTRACTORS: dict[str, tuple[Extractor, ...]] = {
    "first_name": (path("info", "name", "first"), path("firstName")),
    "last_name": (path("info", "name", "last"), path("lastName")),
    "primary_email": _EMAIL,
    "primary_phone": _PHONE,
    "company": (path("info", "company"), path("company")),
    "job_title": (path("info", "jobTitle"), path("jobTitle")),
    "birthdate": (path("info", "birthdate"), path("birthdate")),
    "street": _address("address", "street"),
    "city": _address("city", "city"),
    "state": _address("subdivision", "state"),
    "postal_code": _address("postalCode", "postalCode"),
    "country": _address("country", "country"),
    "website": (path("info", "urls", 0, "url"), path("website")),
    "locale": (path("info", "locale"), path("locale")),
}

# Aliases kept for older rule sets that name the contact channels directly.
SIDE_A_ALIASES = {"email": "primary_email", "phone": "primary_phone"}


# ── Field registry ──────────────────────────────────────────────────────────

SIDE_A_FIELD_REGISTRY: list[FieldOption] = [
    FieldOption(value="first_name", label="First Name", type="string", description="Contact first name"),
    FieldOption(value="last_name", label="Last Name", type="string", description="Contact last name"),
    FieldOption(value="primary_email", label="Email", type="string", description="Primary email address"),
    FieldOption(value="primary_phone", label="Phone", type="string", description="Primary phone number"),
    FieldOption(value="company", label="Company", type="string", description="Company / organisation name"),
    FieldOption(value="job_title", label="Job Title", type="string", description="Position or role"),
    FieldOption(value="birthdate", label="Birthdate", type="date", description="Date of birth (ISO-8601)"),
    FieldOption(value="street", label="Street Address", type="string", description="Street line of the primary address"),
    FieldOption(value="city", label="City", type="string", description="City of the primary address"),
    FieldOption(value="state", label="State / Region", type="string", description="State, province or region"),
    FieldOption(value="postal_code", label="Postal Code", type="string", description="ZIP or postal code"),
    FieldOption(value="country", label="Country", type="string", description="Country code (ISO 3166-1)"),
    FieldOption(value="website", label="Website", type="string", description="Personal or company website URL"),
    FieldOption(value="locale", label="Locale", type="string", description="e.g. en-US"),
]

SIDE_A_FIELDS = frozenset(option.value for option in SIDE_A_FIELD_REGISTRY) | frozenset(SIDE_A_ALIASES)


def field_registry() -> list[FieldOption]:
    """Side A fields available to rule editors."""
    return list(SIDE_A_FIELD_REGISTRY)


# ── Default rules ───────────────────────────────────────────────────────────

PROTECTED_DEFAULT_RULES: list[FieldMappingRule] = [
    FieldMappingRule(side_a_field="primary_email", side_b_field="email",
                     transform=FieldTransform.LOWERCASE, is_default=True),
    FieldMappingRule(side_a_field="first_name", side_b_field="firstname", is_default=True),
    FieldMappingRule(side_a_field="last_name", side_b_field="lastname", is_default=True),
    FieldMappingRule(side_a_field="primary_phone", side_b_field="phone",
                     transform=FieldTransform.PHONE_E164, is_default=True),
]

DEFAULT_RULES: list[FieldMappingRule] = PROTECTED_DEFAULT_RULES + [
    FieldMappingRule(side_a_field="company", side_b_field="company"),
    FieldMappingRule(side_a_field="job_title", side_b_field="jobtitle"),
    FieldMappingRule(side_a_field="birthdate", side_b_field="date_of_birth",
                     direction=SyncDirection.A_TO_B),
]


# ── Pure mapping functions ──────────────────────────────────────────────────

_NON_DIGITS = re.compile(r"\D")


def apply_transform(value: Any, kind: FieldTransform) -> str:
    """Apply a value transform. None, empty and whitespace-only input yield ""."""
    if value is None:
        return ""
    text = str(value)
    if not text.strip():
        return ""
    if kind == FieldTransform.TRIM:
        return text.strip()
    if kind == FieldTransform.LOWERCASE:
        return text.lower()
    if kind == FieldTransform.UPPERCASE:
        return text.upper()
    if kind == FieldTransform.PHONE_E164:
        digits = _NON_DIGITS.sub("", text)
        if not digits:
            return ""
        return f"+{digits}" if digits.startswith("1") else f"+1{digits}"
    return text


def flatten_side_a(raw: Mapping[str, Any]) -> dict[str, str]:
    flat = {name: first_non_empty(raw, extractors) for name, extractors in SIDE_A_EXTRACTORS.items()}
    for alias, target in SIDE_A_ALIASES.items():
        flat[alias] = flat[target]
    return flat


def flatten_side_b(raw: Mapping[str, Any]) -> dict[str, str]:
    properties = raw.get("properties")
    if not isinstance(properties, Mapping):
        properties = raw
    return {
        key: str(value)
        for key, value in properties.items()
        if value is not None and not isinstance(value, (Mapping, list, tuple))
    }


def flatten(raw: Mapping[str, Any], side: Side = Side.A) -> dict[str, str]:
    """Flatten a raw contact record into that side's field vocabulary."""
    if side is Side.A:
        return flatten_side_a(raw)
    return flatten_side_b(raw)


def map_to_target(
    flat: Mapping[str, str],
    rules: Iterable[FieldMappingRule],
    direction: SyncDirection,
) -> dict[str, str]:
    """Map flattened source fields into the target side's fields.

    Only active rules whose direction includes ``direction`` apply. Targets
    whose transformed value is empty are omitted.
    """
    if direction == SyncDirection.BIDIRECTIONAL:
        raise ValueError("map_to_target needs a concrete direction")
    mapped: dict[str, str] = {}
    for rule in rules:
        if not rule.is_active or not rule.direction.includes(direction):
            continue
        value = apply_transform(flat.get(rule.source_field(direction)), rule.transform)
        if value:
            mapped[rule.target_field(direction)] = value
    return mapped


def transform_record(
    raw: Mapping[str, Any],
    rules: Iterable[FieldMappingRule],
    source_side: Side,
) -> dict[str, str]:
    """Flatten a source-side record and map it onto the other side's fields."""
    direction = SyncDirection.A_TO_B if source_side is Side.A else SyncDirection.B_TO_A
    return map_to_target(flatten(raw, source_side), rules, direction)


def validate_rules(
    rules: Sequence[FieldMappingRule],
    known_target_fields: Iterable[str] | None = None,
    reserved: Sequence[FieldMappingRule] = (),
) -> list[RuleValidationError]:
    """Collect every problem in a rule set without raising.

    Checks for missing fields, Side A fields outside the registry, Side B
    fields outside ``known_target_fields`` (when given), and two active
    rules writing the same target in the same effective direction.

    ``reserved`` rules are always present alongside ``rules`` (the protected
    defaults): their targets count as taken, and a rule in ``rules`` with the
    same field pair as a reserved one is treated as that rule.
    """
    known = set(known_target_fields) if known_target_fields is not None else None
    errors: list[RuleValidationError] = []
    seen: dict[SyncDirection, dict[str, str]] = {
        SyncDirection.A_TO_B: {},
        SyncDirection.B_TO_A: {},
    }
    reserved_pairs: set[tuple[str, str]] = set()
    for rule in reserved:
        reserved_pairs.add((rule.side_a_field, rule.side_b_field))
        for direction, targets in seen.items():
            if rule.is_active and rule.direction.includes(direction):
                target = rule.side_b_field if direction == SyncDirection.A_TO_B else rule.side_a_field
                targets[target] = f"protected default {rule.side_a_field}->{rule.side_b_field}"

    for index, rule in enumerate(rules):
        prefix = f"rules[{index}]"
        side_a = rule.side_a_field.strip()
        side_b = rule.side_b_field.strip()

        if not side_a:
            errors.append(RuleValidationError(field=f"{prefix}.side_a_field", message="side_a_field is required"))
        elif side_a not in SIDE_A_FIELDS:
            errors.append(RuleValidationError(
                field=f"{prefix}.side_a_field", message=f"Unknown Side A field '{side_a}'"
            ))

        if not side_b:
            errors.append(RuleValidationError(field=f"{prefix}.side_b_field", message="side_b_field is required"))
        elif known is not None and side_b not in known:
            errors.append(RuleValidationError(
                field=f"{prefix}.side_b_field", message=f"Side B property '{side_b}' does not exist"
            ))

        if not rule.is_active or not side_a or not side_b or (side_a, side_b) in reserved_pairs:
            continue

        for direction, targets in seen.items():
            if not rule.direction.includes(direction):
                continue
            target = side_b if direction == SyncDirection.A_TO_B else side_a
            if target in targets:
                errors.append(RuleValidationError(
                    field=prefix,
                    message=(
                        f"Target field '{target}' is already mapped by {targets[target]} "
                        f"for direction {direction.value}"
                    ),
                ))
            else:
                targets[target] = prefix

    return errors


# ── Engine ──────────────────────────────────────────────────────────────────


class FieldMappingEngine:
    """Loads, caches, validates and applies tenant field mapping rules.

    Args:
        store: Persistent rule store.
        cache: Per-tenant rule cache; defaults to 500 tenants with a 30 s TTL.
    """

    def __init__(
        self,
        store: RuleStore,
        cache: TTLCache[list[FieldMappingRule]] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else TTLCache(max_size=500, ttl_seconds=30)

    async def load_rules(self, tenant_id: str, force_reload: bool = False) -> list[FieldMappingRule]:
        """Active rules for a tenant, served from cache unless expired or forced."""
        if not force_reload:
            cached = self._cache.get(tenant_id)
            if cached is not None:
                return cached
        rules = await self._store.list_active(tenant_id)
        self._cache.set(tenant_id, rules)
        logger.debug("field_mapping.rules_loaded", tenant_id=tenant_id, count=len(rules))
        return rules

    def invalidate(self, tenant_id: str) -> None:
        self._cache.delete(tenant_id)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def map_record(
        self, tenant_id: str, raw: Mapping[str, Any], source_side: Side
    ) -> dict[str, str]:
        """Map a raw source-side record using the tenant's active rules."""
        rules = await self.load_rules(tenant_id)
        return transform_record(raw, rules, source_side)

    async def seed_defaults(self, tenant_id: str) -> int:
        """Insert the default rule set for a newly connected tenant."""
        inserted = await self._store.ensure_defaults(tenant_id, DEFAULT_RULES)
        if inserted:
            self.invalidate(tenant_id)
            logger.info("field_mapping.defaults_seeded", tenant_id=tenant_id, inserted=inserted)
        return inserted

    async def save_rules(
        self,
        tenant_id: str,
        incoming: Sequence[FieldMappingRule],
        known_target_fields: Iterable[str] | None = None,
    ) -> SaveRulesResult:
        """Validate and persist a tenant's rule set.

        Non-default rules are replaced wholesale. Protected defaults cannot be
        removed or shadowed: they are re-inserted if missing, and a custom rule
        writing one of their targets in the same direction rejects the set.

        Returns:
            SaveRulesResult with the reloaded rules, or the validation errors
            when the set was rejected (nothing is written in that case).
        """
        errors = validate_rules(incoming, known_target_fields, reserved=PROTECTED_DEFAULT_RULES)
        if errors:
            logger.info("field_mapping.rules_rejected", tenant_id=tenant_id, errors=len(errors))
            return SaveRulesResult(ok=False, errors=errors)

        protected = {(rule.side_a_field, rule.side_b_field) for rule in PROTECTED_DEFAULT_RULES}
        custom = [
            rule.model_copy(update={
                "side_a_field": rule.side_a_field.strip(),
                "side_b_field": rule.side_b_field.strip(),
                "is_default": False,
            })
            for rule in incoming
            if (rule.side_a_field.strip(), rule.side_b_field.strip()) not in protected
        ]

        await self._store.replace_custom(tenant_id, custom)
        await self._store.ensure_defaults(tenant_id, PROTECTED_DEFAULT_RULES)
        self.invalidate(tenant_id)
        rules = await self.load_rules(tenant_id, force_reload=True)

        logger.info("field_mapping.rules_saved", tenant_id=tenant_id, count=len(rules))
        return SaveRulesResult(ok=True, rules=rules)
