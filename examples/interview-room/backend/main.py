"""
Interview Room - Backend

Session gateway for the interview-room web client (editor, chat and
video signaling). Run with: python main.py

Rooms live in memory only and disappear when their last participant leaves.
Configure with MOCKROOM_* environment variables, e.g. MOCKROOM_PORT=5000.
"""

import logging

from mockroom import SessionGateway, get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

gateway = SessionGateway(settings)

# Create FastAPI app
app = gateway.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
