"""
Similarity Service - text/image similarity with a dual-encoder model.

Projects a text and an image into the shared embedding space of a
CLIP-style model and reports the cosine similarity of the two vectors.

API Endpoints:
    GET /health - Service health check
    GET /info - Service configuration and metadata
    POST /similarity - Score a {text, url} pair
    WS /ws - Same, as a stream of lifecycle events
"""

__version__ = "0.1.0"
