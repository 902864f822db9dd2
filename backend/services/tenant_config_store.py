"""Tenant Config Store Adapter - I/O boundary for tenant_config and profiles.

Reads a tenant's subscription record by tenant id, and resolves the tenant
id for an explicitly passed session. Nothing here reads request-global state.

Admin and billing flows must go through the write helpers below (or call
tenant_config_cache.invalidate themselves) so the entitlement cache sees the
change on the next request.
"""
import asyncio
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from database import database
from models import FeatureKey, PlanTier, TenantConfig
from services.entitlement_cache import TenantCache, tenant_config_cache
from services.entitlement_errors import BackendUnavailable, ConfigNotFound

logger = logging.getLogger(__name__)

TENANT_CONFIG_TIMEOUT_SECONDS = float(os.getenv("TENANT_CONFIG_TIMEOUT_SECONDS", "5"))
SINGLE_TENANT_FALLBACK = os.getenv("SINGLE_TENANT_FALLBACK", "true").strip().lower() == "true"


class TenantConfigStore:
    """Reads and writes tenant_config rows."""

    def __init__(
        self,
        cache: TenantCache = tenant_config_cache,
        timeout_seconds: float = TENANT_CONFIG_TIMEOUT_SECONDS,
        single_tenant_fallback: bool = SINGLE_TENANT_FALLBACK,
    ):
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.single_tenant_fallback = single_tenant_fallback

    def _get_db(self, tenant_id: Optional[str]):
        db = database.get_db()
        if db is None:
            raise BackendUnavailable(tenant_id, "database not connected")
        return db

    async def _run(self, tenant_id: Optional[str], awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise BackendUnavailable(tenant_id, f"timed out after {self.timeout_seconds}s")
        except PyMongoError as e:
            raise BackendUnavailable(tenant_id, str(e))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_config(self, tenant_id: str) -> TenantConfig:
        """
        Load the tenant_config row for tenant_id.

        Raises:
            ConfigNotFound: no row for this tenant
            BackendUnavailable: transport/query error or timeout
        """
        if not tenant_id:
            raise ConfigNotFound(tenant_id or "")

        db = self._get_db(tenant_id)
        doc = await self._run(
            tenant_id,
            db.tenant_config.find_one({"id": tenant_id}, {"_id": 0})
        )
        if not doc:
            raise ConfigNotFound(tenant_id)

        try:
            return TenantConfig.from_document(doc)
        except (ValidationError, KeyError, TypeError, AttributeError, ValueError) as e:
            raise BackendUnavailable(tenant_id, f"malformed tenant config: {e}")

    async def get_config(self, tenant_id: str) -> TenantConfig:
        """fetch_config through the shared tenant-keyed cache."""
        return await self.cache.get_or_load(tenant_id, lambda: self.fetch_config(tenant_id))

    async def resolve_tenant_id_for_session(self, user: Optional[Dict[str, Any]]) -> Optional[str]:
        """
        Derive the tenant id for an authenticated session.

        Order: profiles.tenant_id for the user; then, when the single-tenant
        fallback is enabled and exactly one tenant_config row exists, that row.
        Any failure returns None so guards fail closed.
        """
        if not user:
            return None

        user_id = user.get("user_id") or user.get("sub")
        if not user_id:
            logger.warning("Session payload has no user id; tenant unresolved")
            return None

        try:
            db = self._get_db(None)
            profile = await self._run(
                None,
                db.profiles.find_one({"id": user_id}, {"_id": 0, "tenant_id": 1})
            )
            if profile and profile.get("tenant_id"):
                return str(profile["tenant_id"])

            if not self.single_tenant_fallback:
                logger.warning("No tenant linked to user_id=%s", user_id)
                return None

            rows = await self._run(
                None,
                db.tenant_config.find({}, {"_id": 0, "id": 1}).limit(2).to_list(2)
            )
        except BackendUnavailable as e:
            logger.warning("Tenant resolution failed for user_id=%s: %s", user_id, e)
            return None

        if len(rows) == 1 and rows[0].get("id"):
            return str(rows[0]["id"])

        if len(rows) > 1:
            logger.warning(
                "No profile tenant for user_id=%s and multiple tenants exist; refusing fallback",
                user_id
            )
        else:
            logger.warning("No tenant configured for user_id=%s", user_id)
        return None

    # -------------------------------------------------------------------------
    # Writes (each invalidates the tenant's cache entry)
    # -------------------------------------------------------------------------

    async def update_plan(self, tenant_id: str, plan: PlanTier) -> Optional[str]:
        """Set the tenant's plan. Returns the previous plan value."""
        db = self._get_db(tenant_id)
        try:
            before = await self._run(
                tenant_id,
                db.tenant_config.find_one({"id": tenant_id}, {"_id": 0, "plan": 1})
            )
            if not before:
                raise ConfigNotFound(tenant_id)

            await self._run(
                tenant_id,
                db.tenant_config.update_one(
                    {"id": tenant_id},
                    {"$set": {"plan": plan.value, "updated_at": datetime.now(timezone.utc).isoformat()}}
                )
            )
        finally:
            self.cache.invalidate(tenant_id)

        logger.info("Plan updated tenant_id=%s from=%s to=%s", tenant_id, before.get("plan"), plan.value)
        return before.get("plan")

    async def set_feature_override(self, tenant_id: str, feature_key: FeatureKey, enabled: bool) -> None:
        await self._write_override(
            tenant_id,
            {"$set": {
                f"features_override.{feature_key.value}": bool(enabled),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }}
        )
        logger.info("Feature override set tenant_id=%s feature=%s enabled=%s", tenant_id, feature_key.value, enabled)

    async def clear_feature_override(self, tenant_id: str, feature_key: FeatureKey) -> None:
        await self._write_override(
            tenant_id,
            {
                "$unset": {f"features_override.{feature_key.value}": ""},
                "$set": {"updated_at": datetime.now(timezone.utc).isoformat()},
            }
        )
        logger.info("Feature override cleared tenant_id=%s feature=%s", tenant_id, feature_key.value)

    async def _write_override(self, tenant_id: str, update: Dict[str, Any]) -> None:
        db = self._get_db(tenant_id)
        try:
            result = await self._run(
                tenant_id,
                db.tenant_config.update_one({"id": tenant_id}, update)
            )
            if result.matched_count == 0:
                raise ConfigNotFound(tenant_id)
        finally:
            self.cache.invalidate(tenant_id)


# Singleton instance
tenant_config_store = TenantConfigStore()
