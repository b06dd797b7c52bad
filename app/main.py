#!/usr/bin/env python3
"""
PeerChat - Main Application
FastAPI server for one-to-one chat and audio/video calls
"""

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
import logging
import uuid

from app.api.routes import calls as call_routes
from app.api.routes import messages as message_routes
from app.api.routes import presence as presence_routes
from app.api.routes import system as system_routes
from app.providers import init_provider_registry
from app.services.call_service import init_call_service
from app.services.messaging_service import init_messaging_service
from app.services.preferences import get_preferences
from app.services.presence_service import init_presence_service
from app.services.signaling import NotificationChannel
from app.services.websocket_manager import websocket_manager
from app.utils.logger import configure_app_logging

logger = logging.getLogger(__name__)

app = FastAPI(title="PeerChat", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global services - created on startup
preferences_service = None
store = None
call_service = None
presence_service = None
messaging_service = None

# Include routers
app.include_router(call_routes.router)
app.include_router(presence_routes.router)
app.include_router(message_routes.router)
app.include_router(system_routes.router)


# Global WebSocket endpoint
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Global WebSocket endpoint for real-time updates"""
    await websocket_manager.connect(websocket)

    try:
        # Send initial state to the new client only
        if call_service:
            await websocket_manager.send_to(websocket, "call_status", call_service.get_status())
        if presence_service:
            await websocket_manager.send_to(websocket, "roster", {"contacts": presence_service.get_roster()})

        # Keep connection alive; state changes are pushed by the services
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        websocket_manager.disconnect(websocket)


@app.get("/")
async def root():
    return {
        "name": "PeerChat",
        "version": "1.0.0",
        "status": "running",
        "uid": presence_service.identity.uid if presence_service else None,
    }


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    global preferences_service, store, call_service, presence_service, messaging_service

    configure_app_logging()

    # Initialize preferences first
    preferences_service = get_preferences()
    language = preferences_service.get_language()

    identity = preferences_service.get_identity()
    if not identity.uid:
        uid = f"guest-{uuid.uuid4().hex[:8]}"
        preferences_service.set_identity(uid, uid)
        identity = preferences_service.get_identity()
        print(f"📝 No identity configured - created {uid}")

    registry = init_provider_registry()

    store_config = preferences_service.get_store_config()
    store = registry.get_store_provider(store_config.backend, **store_config.provider_options())
    if store is None:
        print(f"⚠️ Unknown store backend '{store_config.backend}', using in-memory store")
        store = registry.get_store_provider("memory")

    media_config = preferences_service.get_media_config()
    media_provider = registry.get_media_provider(media_config.backend, **media_config.provider_options())
    if media_provider is None:
        print(f"⚠️ Unknown media backend '{media_config.backend}', using synthetic capture")
        media_provider = registry.get_media_provider("synthetic")

    upload_config = preferences_service.get_upload_config()
    upload_provider = registry.get_upload_provider(upload_config.backend, **upload_config.provider_options())

    calls_config = preferences_service.get_calls_config()

    presence_service = init_presence_service(store, identity, websocket_manager, language)
    messaging_service = init_messaging_service(store, identity, upload_provider, websocket_manager)
    call_service = init_call_service(
        identity.uid,
        NotificationChannel(store),
        media_provider,
        transport_config=calls_config.transport(),
        constraints=media_config.constraints(),
        call_timeout=float(calls_config.timeout_seconds),
        name_lookup=presence_service.display_name,
        websocket_manager=websocket_manager,
        language=language,
    )

    # Inject services into routes
    call_routes.set_call_service(call_service)
    presence_routes.set_presence_service(presence_service)
    message_routes.set_messaging_service(messaging_service)

    print("🚀 PeerChat starting up...")
    print(f"✅ Signed in as {identity.display_name} ({identity.uid}) on {store.display_name}")

    result = await presence_service.start()
    if result["success"]:
        print("✅ Presence online")
    else:
        print(f"⚠️ Presence unavailable: {result['error']}")

    call_service.start()
    print("✅ Listening for calls")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    print("🛑 PeerChat shutting down...")
    if call_service:
        await call_service.stop()
    if messaging_service:
        messaging_service.close_conversation()
    if presence_service:
        await presence_service.stop()
    if store:
        await store.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
