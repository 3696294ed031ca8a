from typing import Optional

from parsing.parser_client import ParserClient
from pipeline.coordinator import ImportCoordinator
from storage.event_store import EventStore

DEFAULT_USER_ID = "default"

# Signed-in user; None after sign-out
current_user_id: Optional[str] = DEFAULT_USER_ID

# Global instances initialized at startup
event_store: Optional[EventStore] = None
coordinator: Optional[ImportCoordinator] = None
parser_client: Optional[ParserClient] = None
uses_database: bool = False


def get_current_user() -> Optional[str]:
    return current_user_id
