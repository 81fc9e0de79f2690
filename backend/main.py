"""Main entry point for the Luna WhatsApp tutor API."""
import logging
from typing import Any, Dict, Optional
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from config import (
    PORT, LOG_LEVEL, LOG_FORMAT, CORS_ORIGINS, VERIFY_TOKEN, PHONE_NUMBER_ID, HISTORY_CACHE_SIZE
)
from logger import setup_logging
from models.api import HistoryResponse, RepairResponse, TurnOut
from services.conversation_log import ConversationLog, IntegrityViolation, LogPolicy
from services.grammar_checker import GrammarChecker
from services.history_cache import HistoryCache
from services.level_detector import LevelDetector
from services.llm_client import LLMClient
from services.turn_store import StoreUnavailable, SupabaseTurnStore
from services.tutor_prompts import MEDIA_KINDS, MEDIA_REPLY, UNAVAILABLE_REPLY, UNSUPPORTED_TYPE_REPLY
from services.tutor_service import TutorService
from services.whatsapp_client import WhatsAppClient, WhatsAppError

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Luna WhatsApp Tutor",
    description="WhatsApp German tutor with a bounded conversation log",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
conversation_log: ConversationLog = None
tutor_service: TutorService = None
whatsapp_client: WhatsAppClient = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global conversation_log, tutor_service, whatsapp_client

    logger.info("Initializing Luna WhatsApp tutor services...")

    try:
        conversation_log = ConversationLog(
            SupabaseTurnStore(),
            policy=LogPolicy.from_config(),
            cache=HistoryCache(HISTORY_CACHE_SIZE)
        )
        logger.info(f"Initialized ConversationLog (capacity={conversation_log.policy.capacity})")

        llm_client = LLMClient()
        tutor_service = TutorService(
            conversation_log,
            llm_client,
            LevelDetector(),
            grammar_checker=GrammarChecker(llm_client)
        )
        logger.info("Initialized TutorService")

        whatsapp_client = WhatsAppClient()
        logger.info("Initialized WhatsAppClient")

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Luna WhatsApp Tutor API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "luna-whatsapp-tutor",
        "version": "1.0.0"
    }


@app.get("/whatsapp/webhook", response_class=PlainTextResponse)
def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge")
):
    """Webhook verification handshake from Meta."""
    if not mode or not token:
        logger.error("Webhook verification missing mode or token")
        raise HTTPException(status_code=400, detail="Bad Request")

    if mode == "subscribe" and token == VERIFY_TOKEN:
        logger.info("Webhook verified successfully")
        return challenge or ""

    logger.error("Webhook verification failed: invalid verify token")
    raise HTTPException(status_code=403, detail="Forbidden")


@app.post("/whatsapp/webhook", response_class=PlainTextResponse)
def receive_webhook(payload: Dict[str, Any] = Body(...)):
    """
    Inbound WhatsApp events.

    Always answers 200 so WhatsApp does not redeliver; failures are logged
    and, where possible, the learner gets an apology.
    """
    try:
        _dispatch_webhook(payload)
    except Exception as e:
        logger.error(f"Fatal error handling webhook: {e}", exc_info=True)
    return "OK"


def _dispatch_webhook(payload: Dict[str, Any]) -> None:
    if payload.get("object") != "whatsapp_business_account":
        logger.info("No actionable webhook data found")
        return

    change = payload["entry"][0]["changes"][0]["value"]
    webhook_phone_number_id = (change.get("metadata") or {}).get("phone_number_id")
    if not webhook_phone_number_id:
        logger.warning("Webhook missing phone_number_id in metadata, ignoring")
        return
    if webhook_phone_number_id != PHONE_NUMBER_ID:
        logger.error(f"Unauthorized webhook for phone_number_id {webhook_phone_number_id}, ignoring")
        return

    messages = change.get("messages") or []
    if messages:
        _handle_inbound_message(messages[0])
        return

    statuses = change.get("statuses") or []
    if statuses:
        status = statuses[0]
        logger.info(
            f"Message {status.get('id')} to {status.get('recipient_id')} is {status.get('status')}"
        )


def _handle_inbound_message(message: Dict[str, Any]) -> None:
    sender = message["from"]
    message_type = message.get("type")
    logger.info(f"Inbound WhatsApp {message_type} message {message.get('id')} from {sender}")

    if message_type == "text":
        text = (message.get("text") or {}).get("body", "")
        if not text.strip():
            return
        try:
            reply = tutor_service.handle_message(sender, text).message
        except (StoreUnavailable, IntegrityViolation) as e:
            logger.error(f"Conversation store error for {sender}: {e}")
            reply = UNAVAILABLE_REPLY
    elif message_type in MEDIA_KINDS:
        reply = MEDIA_REPLY.format(kind=MEDIA_KINDS[message_type])
    else:
        reply = UNSUPPORTED_TYPE_REPLY

    try:
        whatsapp_client.send_text(sender, reply)
    except WhatsAppError as e:
        logger.error(f"Failed to send reply to {sender}: {e}")


@app.get("/conversations/{conversation_id}/turns", response_model=HistoryResponse)
def get_history(conversation_id: str) -> HistoryResponse:
    """Stored history of a conversation, header first."""
    try:
        turns = conversation_log.load_history(conversation_id)
    except IntegrityViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    header, dialogue = conversation_log.split(turns)
    return HistoryResponse(
        conversation_id=conversation_id,
        header_turns=len(header),
        dialogue_turns=len(dialogue),
        turns=[TurnOut.from_turn(turn) for turn in turns]
    )


@app.post("/conversations/{conversation_id}/repair", response_model=RepairResponse)
def repair_history(conversation_id: str) -> RepairResponse:
    """Run the idempotent index repair pass."""
    try:
        result = conversation_log.repair(conversation_id)
    except IntegrityViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return RepairResponse(
        conversation_id=conversation_id,
        renumbered=result.renumbered,
        changed=result.changed
    )


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Luna WhatsApp Tutor API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
