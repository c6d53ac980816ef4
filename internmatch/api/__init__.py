"""
API module - FastAPI routers and the ORM-to-JSON serializers they share.

Usage:
    from internmatch.api.routes import api_router
    app.include_router(api_router, prefix="/api")
"""
