from bickqr.api.routes import extract_router, router

__all__ = ["extract_router", "router"]
