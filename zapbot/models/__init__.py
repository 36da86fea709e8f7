from zapbot.models.connection import Connection
from zapbot.models.contact import Contact
from zapbot.models.menu_option import MenuOption
from zapbot.models.message import Message
from zapbot.models.prompt import Prompt

__all__ = [
    "Connection",
    "Contact",
    "MenuOption",
    "Message",
    "Prompt",
]
