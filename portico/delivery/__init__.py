# portico/delivery/__init__.py
"""
Content delivery for paths no business route claims.

Production serves the client build with an application-shell fallback;
development renders the shell through the Vite transform pipeline.
"""

from portico.delivery.base import ContentDeliveryAdapter, TransformPipeline
from portico.delivery.dev_adapter import DevContentAdapter
from portico.delivery.factory import create_content_adapter
from portico.delivery.static_adapter import StaticContentAdapter
from portico.delivery.vite_pipeline import ViteTransformPipeline

__all__ = [
    "ContentDeliveryAdapter",
    "TransformPipeline",
    "DevContentAdapter",
    "StaticContentAdapter",
    "ViteTransformPipeline",
    "create_content_adapter",
]
