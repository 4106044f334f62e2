# =============================================================================
# File: portico/delivery/factory.py
# Description: Picks the content delivery adapter once, at startup
# =============================================================================

from __future__ import annotations

import logging
from typing import Callable, Optional

from portico.config.server_config import ServerConfig
from portico.core.mode import ModeSelection
from portico.delivery.base import ContentDeliveryAdapter, TransformPipeline
from portico.delivery.dev_adapter import DevContentAdapter
from portico.delivery.static_adapter import StaticContentAdapter
from portico.delivery.vite_pipeline import ViteTransformPipeline

logger = logging.getLogger("portico.delivery")

PipelineFactory = Callable[[ServerConfig], TransformPipeline]


def create_vite_pipeline(config: ServerConfig) -> ViteTransformPipeline:
    return ViteTransformPipeline(
        base_url=config.dev_server_url,
        root=config.client_dir,
        timeout=config.dev_connect_timeout,
    )


async def create_content_adapter(
        selection: ModeSelection,
        config: ServerConfig,
        pipeline_factory: Optional[PipelineFactory] = None,
) -> ContentDeliveryAdapter:
    """
    Build and set up the adapter for this process.

    The development adapter is a preference: if its pipeline cannot be
    constructed or started, the failure is logged and the static adapter
    is used instead. Static adapter failures propagate.
    """
    if selection.dev_pipeline:
        logger.info("Development mode detected, attempting to setup Vite")
        dev_adapter: Optional[DevContentAdapter] = None
        try:
            pipeline = (pipeline_factory or create_vite_pipeline)(config)
            dev_adapter = DevContentAdapter(config, pipeline)
            await dev_adapter.setup()
            logger.info("Vite development server setup complete")
            return dev_adapter
        except Exception as e:
            logger.error(f"Failed to setup Vite development server, serving static files: {e}", exc_info=True)
            if dev_adapter is not None:
                await dev_adapter.close()
    else:
        logger.info("Production mode detected, serving static files")

    static_adapter = StaticContentAdapter(config)
    await static_adapter.setup()
    return static_adapter
