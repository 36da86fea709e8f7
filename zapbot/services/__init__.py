from zapbot.services.ai_responder import AIResponder
from zapbot.services.auth_store import FileAuthStore
from zapbot.services.broadcast_service import EventBroadcaster
from zapbot.services.context_service import ContextStore, KeyedLocks
from zapbot.services.conversation_router import ConversationRouter
from zapbot.services.ingest_service import IngestService
from zapbot.services.session_supervisor import NotConnectedError, SessionSupervisor
from zapbot.services.store_service import ContactStore, PersistenceFailure
