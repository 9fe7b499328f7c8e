"""
CapabilityRegistry — resolves OAuth / Webhook / Executor capabilities by plugin id.

Plugins are plain Python modules listed in ``config.plugin_modules``.  Each
module exposes ``register(registry)`` and adds its capabilities there.
"""

from __future__ import annotations

import importlib
import logging
from typing import Dict, Iterable, List, Optional

from plugins.base import ExecutorCapability, OAuthCapability, WebhookCapability
from utils.schemas import PluginSummary

logger = logging.getLogger(__name__)


def _normalize(plugin_id: str) -> str:
    return plugin_id.strip().lower()


class CapabilityRegistry:
    """Process-wide singleton mapping plugin id → capabilities."""

    _instance: Optional["CapabilityRegistry"] = None

    def __new__(cls) -> "CapabilityRegistry":
        if cls._instance is None:
            inst = super().__new__(cls)
            inst._oauth: Dict[str, OAuthCapability] = {}
            inst._webhook: Dict[str, WebhookCapability] = {}
            inst._executor: Dict[str, ExecutorCapability] = {}
            inst._loaded_modules: set = set()
            cls._instance = inst
        return cls._instance

    # ── registration ────────────────────────────────────────────────────

    def register(self, capability: object) -> None:
        """Register ``capability`` under every contract it implements."""
        matched = False
        if isinstance(capability, OAuthCapability):
            self._oauth[_normalize(capability.plugin_id)] = capability
            matched = True
        if isinstance(capability, WebhookCapability):
            self._webhook[_normalize(capability.plugin_id)] = capability
            matched = True
        if isinstance(capability, ExecutorCapability):
            self._executor[_normalize(capability.plugin_id)] = capability
            logger.info(
                "Registered executor: %s (actions: %s)",
                capability.plugin_id,
                capability.supported_actions(),
            )
            matched = True
        if not matched:
            raise TypeError(
                f"{type(capability).__name__} implements no capability contract"
            )

    def discover(self, modules: Iterable[str]) -> None:
        """Import each plugin module and let it register its capabilities."""
        for module_name in modules:
            if module_name in self._loaded_modules:
                continue
            try:
                module = importlib.import_module(module_name)
            except ImportError as exc:
                raise RuntimeError(f"Failed to import plugin module {module_name}: {exc}") from exc
            register = getattr(module, "register", None)
            if not callable(register):
                raise RuntimeError(f"Plugin module {module_name} has no register(registry)")
            register(self)
            self._loaded_modules.add(module_name)
            logger.info("Loaded plugin module %s", module_name)

        logger.info(
            "Capabilities: %d oauth, %d webhook, %d executor",
            len(self._oauth),
            len(self._webhook),
            len(self._executor),
        )

    # ── lookup ──────────────────────────────────────────────────────────

    def get_oauth(self, plugin_id: str) -> Optional[OAuthCapability]:
        return self._oauth.get(_normalize(plugin_id))

    def get_webhook(self, plugin_id: str) -> Optional[WebhookCapability]:
        return self._webhook.get(_normalize(plugin_id))

    def get_executor(self, plugin_id: str) -> Optional[ExecutorCapability]:
        return self._executor.get(_normalize(plugin_id))

    def plugin_ids(self) -> List[str]:
        return sorted(set(self._oauth) | set(self._webhook) | set(self._executor))

    def describe(self) -> List[PluginSummary]:
        summaries = []
        for plugin_id in self.plugin_ids():
            executor = self._executor.get(plugin_id)
            summaries.append(
                PluginSummary(
                    plugin_id=plugin_id,
                    oauth=plugin_id in self._oauth,
                    webhook=plugin_id in self._webhook,
                    executor=executor is not None,
                    actions=executor.supported_actions() if executor else [],
                )
            )
        return summaries

    # ── reset (for tests) ──────────────────────────────────────────────

    @classmethod
    def reset(cls) -> None:
        """Destroy singleton — only useful in test teardown."""
        cls._instance = None
