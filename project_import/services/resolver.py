from __future__ import annotations

import logging
import re
import time
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field

import bcrypt

from ..config.loader import ImportConfig
from ..db.store import DuplicateError, Store, StoreError
from ..models.entities import CatalogType, User, UserRole
from ..models.records import ImportRow, NewUser
from .parsers import parse_string

"""Entity resolution: free-text references -> persisted ids.

Resolution runs in two sequential phases before any row is dispatched
concurrently:

1. preload   - existing users / catalogs / suppliers are fetched once and
               seeded into the run cache; email counters are primed from
               existing addresses.
2. precreate - every distinct reference still missing from the cache is
               found or created one at a time.

During row processing resolve_* only read the cache. A user reference that
misses the cache is looked up by exact name but never created there; catalog
and supplier misses fall back to find-or-create with duplicate recovery.

The cache and counters live in a ResolutionContext owned by a single run.
"""

__all__ = [
    "USER_REFERENCE_FIELDS",
    "CATALOG_REFERENCE_FIELDS",
    "SUPPLIER_SPLIT",
    "ResolutionContext",
    "EntityResolver",
    "parse_reference",
    "split_name",
    "base_identifier",
]

logger = logging.getLogger(__name__)

# row key -> role given to a user created for that reference
USER_REFERENCE_FIELDS: dict[str, UserRole] = {
    "mentor": UserRole.COLABORADOR,
    "coordinator": UserRole.COORDINADOR,
}

CATALOG_REFERENCE_FIELDS: dict[str, CatalogType] = {
    "risk": CatalogType.RISK_LEVEL,
    "project_type": CatalogType.PROJECT_TYPE,
    "business_line": CatalogType.BUSINESS_LINE,
    "opportunity_type": CatalogType.OPPORTUNITY_TYPE,
    "segment": CatalogType.SEGMENT,
    "sales_management": CatalogType.SALES_MANAGEMENT,
    "sales_executive": CatalogType.SALES_EXECUTIVE,
    "designer": CatalogType.DESIGNER,
}

SUPPLIER_SPLIT = re.compile(r"[,\n]")

_REFERENCE = re.compile(r"^(.+);#(\d+)$")
_TRAILING_DIGITS = re.compile(r"(\d+)$")
_NOT_IDENTIFIER = re.compile(r"[^a-z0-9.]")

CacheKey = tuple[str, str, str]


def parse_reference(reference: str) -> tuple[str, str | None]:
    """Split ``"Name Surname;#123"`` into ``("Name Surname", "123")``."""
    text = str(reference).strip()
    match = _REFERENCE.match(text)
    if match:
        return match.group(1).strip(), match.group(2)
    return text, None


def split_name(name: str) -> tuple[str, str]:
    """First token is the first name, the rest the last name (single token: both)."""
    parts = name.split()
    if not parts:
        return "", ""
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last


def base_identifier(first_name: str, last_name: str) -> str:
    """``first.last`` lowercased, accents folded, anything but [a-z0-9.] dropped."""
    text = unicodedata.normalize("NFKD", f"{first_name}.{last_name}".lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return _NOT_IDENTIFIER.sub("", text) or "usuario"


def _fold(value: str) -> str:
    return " ".join(value.split()).casefold()


@dataclass
class ResolutionContext:
    """Run-scoped resolution state. Discarded (clear()) when the run ends."""
    actor_id: str
    area_id: str
    entities: dict[CacheKey, str] = field(default_factory=dict)
    email_counters: dict[str, int] = field(default_factory=dict)

    def remember(self, kind: str, qualifier: str, entity_id: str, *keys: str) -> None:
        for key in keys:
            if key:
                self.entities[(kind, key, qualifier)] = entity_id

    def lookup(self, kind: str, qualifier: str, *keys: str) -> str | None:
        for key in keys:
            entity_id = self.entities.get((kind, key, qualifier))
            if entity_id is not None:
                return entity_id
        return None

    def clear(self) -> None:
        self.entities.clear()
        self.email_counters.clear()


class EntityResolver:
    def __init__(self, store: Store, config: ImportConfig | None = None) -> None:
        self._store = store
        self._config = config or ImportConfig()

    # -- phase 1 ----------------------------------------------------------
    def preload(self, ctx: ResolutionContext, rows: Iterable[ImportRow]) -> None:
        rows = list(rows)
        references = {ref for ref, _ in self._user_references(rows)}
        logger.info("preloading entities for %d distinct user references", len(references))
        try:
            users = self._store.list_users()
            catalogs = self._store.list_catalogs()
            suppliers = self._store.list_suppliers()
        except StoreError as e:
            # the precreate phase still finds existing entities one by one
            logger.error("preload failed, continuing without warm cache: %s", e)
            return

        for user in users:
            ctx.remember("user", user.role.value, user.id, _fold(user.full_name))
            self._prime_counter(ctx, user.email)
        for catalog in catalogs:
            ctx.remember("catalog", catalog.type.value, catalog.id, _fold(catalog.name))
        for supplier in suppliers:
            ctx.remember("supplier", "", supplier.id, _fold(supplier.name))
        logger.info(
            "cache preloaded: users=%d catalogs=%d suppliers=%d",
            len(users),
            len(catalogs),
            len(suppliers),
        )

    @staticmethod
    def _prime_counter(ctx: ResolutionContext, email: str) -> None:
        local = email.split("@", 1)[0].lower()
        if "." not in local:
            return
        match = _TRAILING_DIGITS.search(local)
        number = int(match.group(1)) if match else 0
        base = _TRAILING_DIGITS.sub("", local)
        if number >= ctx.email_counters.get(base, 0):
            ctx.email_counters[base] = number + 1

    # -- phase 2 ----------------------------------------------------------
    def precreate(self, ctx: ResolutionContext, rows: Iterable[ImportRow]) -> None:
        """Find or create every referenced entity, strictly one at a time."""
        rows = list(rows)

        pending = list(dict.fromkeys(self._user_references(rows)))
        created = existing = failed = 0
        for reference, role in pending:
            name, _ = parse_reference(reference)
            if ctx.lookup("user", role.value, reference, _fold(name)):
                existing += 1
                continue
            try:
                self._find_or_create_user(ctx, reference, role)
                created += 1
            except StoreError as e:
                failed += 1
                logger.error("could not pre-create user %r (%s): %s", reference, role.value, e)
        logger.info("users pre-created: %d resolved, %d cached, %d failed", created, existing, failed)

        for catalog_type, value in dict.fromkeys(self._catalog_references(rows)):
            try:
                self._find_or_create_catalog(ctx, catalog_type, value)
            except StoreError as e:
                logger.error("could not pre-create catalog %s %r: %s", catalog_type.value, value, e)

        for name in dict.fromkeys(self._supplier_names(rows)):
            try:
                self._find_or_create_supplier(ctx, name)
            except StoreError as e:
                logger.error("could not pre-create supplier %r: %s", name, e)

    @staticmethod
    def _user_references(rows: list[ImportRow]) -> Iterable[tuple[str, UserRole]]:
        for row in rows:
            for key, role in USER_REFERENCE_FIELDS.items():
                reference = parse_string(row.get(key))
                if reference:
                    yield reference, role

    @staticmethod
    def _catalog_references(rows: list[ImportRow]) -> Iterable[tuple[CatalogType, str]]:
        for row in rows:
            for key, catalog_type in CATALOG_REFERENCE_FIELDS.items():
                value = parse_string(row.get(key))
                if value:
                    yield catalog_type, value

    @staticmethod
    def _supplier_names(rows: list[ImportRow]) -> Iterable[str]:
        for row in rows:
            raw = parse_string(row.get("suppliers"))
            if raw:
                yield from (part.strip() for part in SUPPLIER_SPLIT.split(raw) if part.strip())

    # -- row phase (cache reads) ------------------------------------------
    def resolve_user(self, ctx: ResolutionContext, reference: str | None, role: UserRole) -> str | None:
        if not reference:
            return None
        reference = reference.strip()
        name, _ = parse_reference(reference)
        user_id = ctx.lookup("user", role.value, reference, _fold(name))
        if user_id is not None:
            return user_id

        logger.warning("user %r (%s) missing from cache after pre-creation", reference, role.value)
        first, last = split_name(name)
        if not first:
            return None
        user = self._store.find_user_by_name(first, last)
        if user is None:
            logger.error("user %r (%s) could not be resolved", reference, role.value)
            return None
        return user.id

    def resolve_catalog(self, ctx: ResolutionContext, catalog_type: CatalogType, reference: str | None) -> str | None:
        if not reference:
            return None
        name, _ = parse_reference(reference)
        catalog_id = ctx.lookup("catalog", catalog_type.value, reference.strip(), _fold(name))
        if catalog_id is not None:
            return catalog_id
        return self._find_or_create_catalog(ctx, catalog_type, reference, cache=False)

    def resolve_suppliers(self, ctx: ResolutionContext, raw: str | None) -> list[str]:
        if not raw:
            return []
        ids: list[str] = []
        for part in SUPPLIER_SPLIT.split(raw):
            name = part.strip()
            if not name:
                continue
            supplier_id = ctx.lookup("supplier", "", _fold(name))
            if supplier_id is None:
                supplier_id = self._find_or_create_supplier(ctx, name, cache=False)
            ids.append(supplier_id)
        return list(dict.fromkeys(ids))

    # -- users ------------------------------------------------------------
    def find_existing_user_by_name(self, first_name: str, last_name: str) -> User | None:
        """Search order: exact name, previously generated emails, partial name."""
        user = self._store.find_user_by_name(first_name, last_name)
        if user is not None:
            logger.debug("exact name match: %s", user.email)
            return user

        base = base_identifier(first_name, last_name)
        domain = self._config.email_domain
        candidates = [f"{base}@{domain}"]
        candidates += [f"{base}@{legacy}" for legacy in self._config.legacy_email_domains]
        candidates += [f"{base}1@{domain}", f"{base}2@{domain}"]
        user = self._store.find_user_by_emails(candidates)
        if user is not None:
            logger.debug("generated email match: %s", user.email)
            return user

        first_variations = dict.fromkeys([first_name, first_name.split(" ")[0]])
        last_variations = dict.fromkeys([last_name, " ".join(last_name.split(" ")[:2])])
        for first in first_variations:
            for last in last_variations:
                if not first or not last:
                    continue
                user = self._store.find_user_by_name(first, last, partial=True)
                if user is not None:
                    logger.debug("partial name match: %s for %s %s", user.email, first_name, last_name)
                    return user
        return None

    def _find_or_create_user(self, ctx: ResolutionContext, reference: str, role: UserRole) -> str | None:
        name, _ = parse_reference(reference)
        first, last = split_name(name)
        if not first:
            return None

        user = self.find_existing_user_by_name(first, last)
        if user is not None:
            user = self._adopt_existing_user(ctx, user, first, last)
        else:
            user = self._create_user(ctx, first, last, role)

        ctx.remember("user", role.value, user.id, reference, _fold(name))
        return user.id

    def _adopt_existing_user(self, ctx: ResolutionContext, user: User, first: str, last: str) -> User:
        if user.area_id is None:
            try:
                user = self._store.update_user(user.id, area_id=ctx.area_id)
                logger.info("area %s assigned to existing user %s", ctx.area_id, user.email)
            except StoreError as e:
                logger.warning("could not assign area to user %s: %s", user.id, e)

        domain = user.email.rsplit("@", 1)[-1].lower()
        if domain in {d.lower() for d in self._config.legacy_email_domains}:
            new_email = f"{base_identifier(first, last)}@{self._config.email_domain}"
            if new_email != user.email and self._store.find_user_by_email(new_email) is None:
                try:
                    previous = user.email
                    user = self._store.update_user(user.id, email=new_email)
                    logger.info("email upgraded: %s -> %s", previous, new_email)
                except StoreError as e:
                    logger.warning("could not upgrade email for user %s: %s", user.id, e)
        return user

    def _next_email(self, ctx: ResolutionContext, base: str) -> str:
        domain = self._config.email_domain
        counter = ctx.email_counters.get(base, 0)
        email = f"{base}@{domain}" if counter == 0 else f"{base}{counter}@{domain}"
        while self._store.find_user_by_email(email) is not None:
            counter += 1
            email = f"{base}{counter}@{domain}"
        ctx.email_counters[base] = counter + 1
        return email

    def _hash_password(self) -> str:
        salt = bcrypt.gensalt(rounds=self._config.password_rounds)
        return bcrypt.hashpw(self._config.default_password.encode("utf-8"), salt).decode("ascii")

    def _create_user(self, ctx: ResolutionContext, first: str, last: str, role: UserRole) -> User:
        base = base_identifier(first, last)
        email = self._next_email(ctx, base)
        new_user = NewUser(
            email=email,
            password_hash=self._hash_password(),
            first_name=first,
            last_name=last,
            role=role,
            area_id=ctx.area_id,
        )
        try:
            user = self._store.create_user(new_user)
        except DuplicateError:
            # address taken outside this run between the check and the insert
            stamped = f"{base}.{int(time.time() * 1000)}@{self._config.email_domain}"
            logger.warning("email %s already taken, retrying as %s", email, stamped)
            user = self._store.create_user(
                NewUser(
                    email=stamped,
                    password_hash=new_user.password_hash,
                    first_name=first,
                    last_name=last,
                    role=role,
                    area_id=ctx.area_id,
                )
            )
        logger.info("user created: %s %s (%s) %s", first, last, role.value, user.email)
        return user

    # -- catalogs / suppliers ---------------------------------------------
    def _find_or_create_catalog(
        self, ctx: ResolutionContext, catalog_type: CatalogType, reference: str, *, cache: bool = True
    ) -> str | None:
        name, external_id = parse_reference(reference)
        if not name:
            return None
        catalog = self._store.find_catalog(catalog_type, name)
        if catalog is None:
            try:
                catalog = self._store.create_catalog(catalog_type, name, external_id)
                logger.info("catalog created: %s %r", catalog_type.value, name)
            except DuplicateError:
                catalog = self._store.find_catalog(catalog_type, name)
                if catalog is None:
                    raise
        if cache:
            ctx.remember("catalog", catalog_type.value, catalog.id, reference.strip(), _fold(name))
        return catalog.id

    def _find_or_create_supplier(self, ctx: ResolutionContext, name: str, *, cache: bool = True) -> str:
        supplier = self._store.find_supplier(name)
        if supplier is None:
            try:
                supplier = self._store.create_supplier(name)
                logger.info("supplier created: %r", name)
            except DuplicateError:
                supplier = self._store.find_supplier(name)
                if supplier is None:
                    raise
        if cache:
            ctx.remember("supplier", "", supplier.id, _fold(name))
        return supplier.id
