"""
Lookup caches shared by the validation and persistence stages of an import.

TTLCache is a plain value with an injected clock so expiry can be tested
without sleeping. CatalogLookup wraps the tenant's families, categories and
attributes; attribute creation is serialised per name so concurrent rows never
create the same (name, tenant) attribute twice.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from django.db import IntegrityError, transaction

from apps.attributes.models import Attribute, Family
from apps.products.models import Category

logger = logging.getLogger(__name__)

_MISSING = object()


class TTLCache:
    """Thread-safe key/value cache whose entries expire ttl_seconds after being stored."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = loader()
            self.set(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self):
        with self._lock:
            now = self._clock()
            return sum(1 for expires_at, _ in self._entries.values() if expires_at > now)


class CatalogLookup:
    """
    Tenant-scoped reads used while importing. Families and categories are
    cached (including negative results); attributes are found or created.
    """

    def __init__(self, tenant, cache: Optional[TTLCache] = None, ttl_seconds: float = 300):
        self.tenant = tenant
        self.cache = cache if cache is not None else TTLCache(ttl_seconds)
        self._attribute_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _key(self, kind: str, name: str):
        return (kind, str(self.tenant.pk), name.strip().lower())

    def find_family(self, name: Optional[str]) -> Optional[Family]:
        if not name or not name.strip():
            return None

        def load():
            return (
                Family.objects
                .filter(tenant=self.tenant, name__iexact=name.strip())
                .prefetch_related('family_attributes__attribute')
                .first()
            )

        return self.cache.get_or_load(self._key('family', name), load)

    def find_category(self, name: Optional[str]) -> Optional[Category]:
        if not name or not name.strip():
            return None
        return self.cache.get_or_load(
            self._key('category', name),
            lambda: Category.objects.filter(tenant=self.tenant, name__iexact=name.strip()).first(),
        )

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._attribute_locks.setdefault(name.lower(), threading.Lock())

    def get_or_create_attribute(self, name: str, data_type: str) -> Tuple[Attribute, bool]:
        """
        Find the tenant's attribute by name or create it with data_type.
        An existing attribute keeps its stored type.
        """
        key = self._key('attribute', name)
        cached = self.cache.get(key)
        if cached is not None:
            return cached, False

        with self._lock_for(name):
            cached = self.cache.get(key)
            if cached is not None:
                return cached, False

            existing = Attribute.objects.filter(tenant=self.tenant, name__iexact=name).first()
            if existing:
                self.cache.set(key, existing)
                return existing, False

            try:
                with transaction.atomic():
                    attribute = Attribute.objects.create(tenant=self.tenant, name=name, data_type=data_type)
                created = True
                logger.info(f"Created attribute '{name}' ({data_type}) for tenant {self.tenant.pk}")
            except IntegrityError:
                # Another worker won the race
                attribute = Attribute.objects.get(tenant=self.tenant, name=name)
                created = False

            self.cache.set(key, attribute)
            return attribute, created
