# tupochat line protocol constants

GLOBAL_ROOM = "global"
SERVER_SENDER = "server"

MAX_ROOM_NAME_LEN = 20
MAX_LOGIN_LEN = 32
MAX_AUTH_ATTEMPTS = 3
MAX_LINE_LEN = 65536
HISTORY_LIMIT = 500

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handshake prompts are written without a trailing newline.
PROMPT_LOGIN = "Login: "
PROMPT_PASSWORD = "Password: "
PROMPT_CONFIRM = "Confirm password: "

WELCOME_TEXT = "Welcome to tupochat! Type /help for commands"

# Commands
CMD_EXIT = "/exit"
CMD_HELP = "/help"
CMD_LIST = "/list"
CMD_ROOM = "/room"
CMD_JOIN = "/join"
CMD_DELETE_ROOM = "/deleteRoom"

KNOWN_COMMANDS = frozenset(
    (CMD_EXIT, CMD_HELP, CMD_LIST, CMD_ROOM, CMD_JOIN, CMD_DELETE_ROOM)
)

HELP_TEXT = "\n".join(
    (
        "commands:",
        "/help - show this help",
        "/list - list rooms",
        "/room <name> - create and join a room",
        "/join <name> - join a room",
        "/deleteRoom <name> - delete a room you own",
        "/exit - leave the chat",
    )
)

# Replies
MSG_SERVER_ERROR = "server error, try again later"
MSG_NOT_SAVED = "message could not be saved"
MSG_NO_ROOMS = "no rooms yet, create one with /room <name>"
MSG_NOT_OWNER = "you are not the owner of this room"
MSG_REPLACED = "logged in from another location"
MSG_SHUTDOWN = "server is shutting down"
